"""CyclePath MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from fastmcp import Context, FastMCP

from cyclepath.core.audit.logger import AuditLogger
from cyclepath.core.config.settings import get_settings
from cyclepath.core.reference.cache import refresh_all
from cyclepath.core.reference.loader import (
    CONTENT_BLOCKS_FILE,
    STAGE_REFERENCE_FILE,
    TEMPLATES_FILE,
    ReferenceDataError,
    load_content_blocks,
    load_stage_reference_seed,
    load_template_seed,
)
from cyclepath.core.reference.matcher import ContentBlockMatcher
from cyclepath.core.reference.stage_table import StageReferenceTable
from cyclepath.core.reference.template_store import TemplateStore
from cyclepath.core.storage.database import CycleDatabase
from cyclepath.core.storage.encryption import EncryptionError, FieldEncryptor
from cyclepath.core.storage.repository import CycleRepository
from cyclepath.domains.cycles.domain_logic.milestone_generator import MilestoneGenerator
from cyclepath.domains.cycles.domain_logic.stage_detector import StageDetector
from cyclepath.domains.cycles.resources.reference import register_reference_resources
from cyclepath.domains.cycles.tools.cycle_tools import register_cycle_tools
from cyclepath.domains.cycles.tools.stage_tools import register_stage_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "CyclePath"
SERVER_VERSION = "0.1.0"

# Seed YAML files live under src/cyclepath/domains/cycles/seeds/
_SEED_DIR = Path(__file__).resolve().parent.parent.parent / "domains" / "cycles" / "seeds"


def _open_storage(db_path: str, encryption_key: str) -> tuple[CycleDatabase, FieldEncryptor]:
    """Open the cycle store, falling back to an in-memory one.

    Without a usable ENCRYPTION_KEY nothing is persisted: cycles live in an
    in-memory database encrypted with a throwaway key.
    """
    if encryption_key:
        try:
            encryptor = FieldEncryptor(encryption_key)
            database = CycleDatabase(db_path)
            database.initialize()
            logger.info(
                "Cycle store initialized: %s (schema v%d)",
                db_path,
                database.get_schema_version(),
            )
            return database, encryptor
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence — cycles will not be stored")
    else:
        logger.info(
            "No ENCRYPTION_KEY configured — running without persistence. "
            "Set ENCRYPTION_KEY to keep cycles between restarts."
        )

    database = CycleDatabase(":memory:")
    database.initialize()
    return database, FieldEncryptor.ephemeral()


def create_app(
    *,
    repository_override: CycleRepository | None = None,
    audit_logger_override: AuditLogger | None = None,
    seed_dir_override: str | Path | None = None,
) -> FastMCP:
    """Create and configure the CyclePath MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Wires the reference data caches (templates, stage reference, content blocks)
    3. Initializes the encrypted cycle store and audit trail
    4. Builds the milestone generator and stage detector
    5. Registers all tools and resources
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "CyclePath — fertility treatment cycle server. Creates treatment "
            "cycles with dated milestones, detects the patient's current stage, "
            "reports cycle progress and serves stage-specific insights."
        ),
    )

    # --- Reference data (loaded lazily, replaced on refresh) ---
    seed_dir = Path(seed_dir_override or settings.seed_data_dir or _SEED_DIR)
    template_store = TemplateStore(lambda: load_template_seed(seed_dir / TEMPLATES_FILE))
    reference_table = StageReferenceTable(
        lambda: load_stage_reference_seed(seed_dir / STAGE_REFERENCE_FILE)
    )
    matcher = ContentBlockMatcher(lambda: load_content_blocks(seed_dir / CONTENT_BLOCKS_FILE))
    logger.info("Reference seed directory: %s", seed_dir)

    # --- Storage and audit ---
    if repository_override is not None:
        repository = repository_override
        audit_logger = audit_logger_override
        persistent = True
    else:
        database, encryptor = _open_storage(settings.db_path, settings.encryption_key)
        repository = CycleRepository(database, encryptor)
        audit_logger = audit_logger_override or AuditLogger(database)
        persistent = database.db_path != ":memory:"

    # --- Engine ---
    generator = MilestoneGenerator(template_store, repository)
    detector = StageDetector(reference_table, fallback_window_days=settings.fallback_window_days)

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "storage_persistent": persistent,
            "reference_loaded": {
                "templates": template_store.is_loaded,
                "stage_reference": reference_table.is_loaded,
                "content_blocks": matcher.is_loaded,
            },
            "treatment_types": template_store.keys(),
            "fallback_window_days": settings.fallback_window_days,
        }

    @server.tool
    async def refresh_reference_data(ctx: Context) -> str:
        """Reload templates, stage reference rows and content blocks from the seed files.

        All three datasets are rebuilt before any is swapped in. If one seed
        file fails to load, every dataset keeps its previous data.
        """
        start_time = time.monotonic()
        try:
            refresh_all((template_store, reference_table, matcher))
        except ReferenceDataError as exc:
            logger.error("Reference refresh failed: %s", exc)
            if audit_logger is not None:
                audit_logger.log_mutation(
                    "reference_refresh",
                    tool_name="refresh_reference_data",
                    status="failure",
                    error_type=type(exc).__name__,
                )
            return json.dumps({"status": "error", "message": str(exc)})

        elapsed_ms = round((time.monotonic() - start_time) * 1000, 1)
        summary = {
            "templates": len(template_store.all()),
            "stage_reference_rows": len(reference_table.all()),
            "content_block_types": len(matcher.treatment_types()),
        }
        if audit_logger is not None:
            audit_logger.log_mutation(
                "reference_refresh",
                tool_name="refresh_reference_data",
                duration_ms=elapsed_ms,
                metadata=summary,
            )
        return json.dumps({"status": "refreshed", **summary, "duration_ms": elapsed_ms})

    register_cycle_tools(server, repository, generator, audit_logger)
    logger.info("Cycle tools registered")

    register_stage_tools(
        server,
        repository,
        template_store,
        detector,
        matcher,
        default_cycle_length=settings.default_cycle_length,
    )
    logger.info("Stage tools registered")

    # --- Register resources ---
    register_reference_resources(server, template_store, reference_table)

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
