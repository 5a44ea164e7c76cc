"""Shared test fixtures for CyclePath tests."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("SEED_DATA_DIR", "")
    monkeypatch.setenv("FALLBACK_WINDOW_DAYS", "7")
    monkeypatch.setenv("DEFAULT_CYCLE_LENGTH", "28")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from cyclepath.core.reference.loader import (  # noqa: E402
    CONTENT_BLOCKS_FILE,
    STAGE_REFERENCE_FILE,
    TEMPLATES_FILE,
    load_content_blocks,
    load_stage_reference_seed,
    load_template_seed,
)
from cyclepath.core.reference.matcher import ContentBlockMatcher  # noqa: E402
from cyclepath.core.reference.stage_table import StageReferenceTable  # noqa: E402
from cyclepath.core.reference.template_store import TemplateStore  # noqa: E402

_PACKAGED_SEED_DIR = _SRC_DIR / "cyclepath" / "domains" / "cycles" / "seeds"


# ---------------------------------------------------------------------------
# Small reference seeds written per test
# ---------------------------------------------------------------------------

TEMPLATES_YAML = """
templates:
  - key: ivf_fresh
    display_name: IVF Cycle
    description: Stimulated IVF cycle with fresh embryo transfer
    duration: 35
  - key: donor_conception
    display_name: Donor Conception
    description: Pre-cycle stages for donor conception
    duration: 30
    selectable: false

stages:
  - {treatment_type: ivf_fresh, stage: Cycle day 1, day_label: Day 1, day_start: 1, day_end: 1,
     medical_details: Hormones drop and the lining sheds.,
     monitoring_procedures: Day 1 period marks the start of a new cycle.,
     patient_insights: Cramps and fatigue are common. Energy lifts by day 5.}
  - {treatment_type: ivf_fresh, stage: Stimulation injections start, day_label: Day 3,
     day_start: 3, day_end: 3, medical_details: Daily FSH injections grow follicles.,
     monitoring_procedures: Start stimulation medication, patient_insights: Mild bloating is normal.}
  - {treatment_type: ivf_fresh, stage: Trigger injection, day_label: Day 11, day_start: 11,
     day_end: 11, medical_details: The trigger completes egg maturation.}
  - {treatment_type: ivf_fresh, stage: Egg retrieval, day_label: Day 13, day_start: 13, day_end: 13,
     medical_details: Eggs are collected under sedation.,
     monitoring_procedures: Arrive fasted.,
     patient_insights: Expect cramping afterwards.}
  - {treatment_type: ivf_fresh, stage: Embryo transfer, day_label: Day 19, day_start: 19, day_end: 19,
     medical_details: An embryo is placed in the uterus.}
  - {treatment_type: ivf_fresh, stage: Pregnancy blood test, day_label: Day 28, day_start: 28,
     day_end: 28, medical_details: hCG is measured.}
  - {treatment_type: iui, stage: Insemination (IUI), day_label: Day 13, day_start: 13, day_end: 13,
     medical_details: Prepared sperm is placed in the uterus.}
  - {treatment_type: donor_conception, stage: Counselling Session, day_label: Pre-cycle,
     day_start: -30, day_end: -14, medical_details: Counselling.}
  - {treatment_type: donor_conception, stage: Donor Screening & Legal Checks, day_label: Pre-cycle,
     day_start: -21, day_end: -7, medical_details: Screening.}
  - {treatment_type: donor_conception, stage: Waiting Period, day_label: Pre-cycle,
     day_start: -14, day_end: -1, medical_details: Waiting.}
"""

STAGE_REFERENCE_YAML = """
milestones:
  - {milestone_id: IVF_CD1, treatment_type: IVF, order: 1, name: Cycle day 1, type: cycle-day-1}
  - {milestone_id: IVF_STIM, treatment_type: IVF, order: 2, name: Stimulation injections start, type: stimulation-start}
  - {milestone_id: IVF_TRIGGER, treatment_type: IVF, order: 3, name: Trigger injection, type: trigger-shot}
  - {milestone_id: IVF_OPU, treatment_type: IVF, order: 4, name: Egg retrieval, type: egg-retrieval}
  - {milestone_id: IVF_ET, treatment_type: IVF, order: 5, name: Embryo transfer, type: embryo-transfer}
  - {milestone_id: IVF_BETA, treatment_type: IVF, order: 6, name: Pregnancy blood test, type: beta-test}

stages:
  - {stage_id: S1, treatment_type: IVF, stage_name: Preparing for stimulation,
     start_milestone_id: IVF_CD1, expected_day_start: 1, expected_day_end: 2, ui_priority: 1,
     details: Baseline checks.}
  - {stage_id: S2, treatment_type: IVF, stage_name: Stimulation, start_milestone_id: IVF_STIM,
     expected_day_start: 3, expected_day_end: 10, ui_priority: 1, details: Growing follicles.}
  - {stage_id: S3, treatment_type: IVF, stage_name: Trigger, start_milestone_id: IVF_TRIGGER,
     expected_day_start: 11, expected_day_end: 12, ui_priority: 1, details: Final maturation.}
  - {stage_id: S4, treatment_type: IVF, stage_name: Egg retrieval, start_milestone_id: IVF_OPU,
     expected_day_start: 13, expected_day_end: 13, ui_priority: 1, details: Collection day.}
  - {stage_id: S5, treatment_type: IVF, stage_name: Two week wait, start_milestone_id: IVF_ET,
     end_milestone_id: IVF_BETA, expected_day_start: 14, expected_day_end: 27, ui_priority: 2,
     details: Waiting for the test.}
  - {stage_id: S6, treatment_type: IVF, stage_name: Pregnancy test, start_milestone_id: IVF_BETA,
     expected_day_start: 28, expected_day_end: 35, ui_priority: 1, details: Blood test.}
  - {stage_id: S7, treatment_type: IVF, stage_name: Result review, start_milestone_id: IVF_BETA,
     expected_day_start: 28, expected_day_end: 30, ui_priority: 1, details: Clinic follow-up.}
"""

CONTENT_BLOCKS_YAML = """
blocks:
  - id: CB_OPU
    treatment_type: IVF
    milestone_name: egg-retrieval
    notification_title: Egg collection day
    order: 4
    milestone_details: Fast from midnight.
    medical_information: A needle drains each follicle.
    what_to_expect: Cramping for a day or two.
    todays_tips: |
      Wear comfortable clothes
      Rest today
  - id: CB_STIM
    treatment_type: IVF
    milestone_name: Stim start
    notification_title: Stimulation injections start
    order: 2
    what_to_expect: Inject at the same time each day.
"""


def write_seed_dir(
    directory: Path,
    *,
    templates: str = TEMPLATES_YAML,
    stage_reference: str = STAGE_REFERENCE_YAML,
    content_blocks: str = CONTENT_BLOCKS_YAML,
) -> Path:
    """Write the three seed files into ``directory`` and return it."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / TEMPLATES_FILE).write_text(textwrap.dedent(templates), encoding="utf-8")
    (directory / STAGE_REFERENCE_FILE).write_text(textwrap.dedent(stage_reference), encoding="utf-8")
    (directory / CONTENT_BLOCKS_FILE).write_text(textwrap.dedent(content_blocks), encoding="utf-8")
    return directory


@pytest.fixture
def seed_dir(tmp_path: Path) -> Path:
    return write_seed_dir(tmp_path / "seeds")


@pytest.fixture
def template_store(seed_dir: Path) -> TemplateStore:
    return TemplateStore(lambda: load_template_seed(seed_dir / TEMPLATES_FILE))


@pytest.fixture
def reference_table(seed_dir: Path) -> StageReferenceTable:
    return StageReferenceTable(lambda: load_stage_reference_seed(seed_dir / STAGE_REFERENCE_FILE))


@pytest.fixture
def content_matcher(seed_dir: Path) -> ContentBlockMatcher:
    return ContentBlockMatcher(lambda: load_content_blocks(seed_dir / CONTENT_BLOCKS_FILE))


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cycle_db():
    """Create an in-memory CycleDatabase for testing."""
    from cyclepath.core.storage.database import CycleDatabase

    db = CycleDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from cyclepath.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def cycle_repository(cycle_db, field_encryptor):
    """Create a CycleRepository backed by in-memory SQLite."""
    from cyclepath.core.storage.repository import CycleRepository

    return CycleRepository(cycle_db, field_encryptor)


@pytest.fixture
def audit_logger(cycle_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from cyclepath.core.audit.logger import AuditLogger

    return AuditLogger(cycle_db)


@pytest.fixture
def packaged_seed_dir() -> Path:
    """The seed directory shipped with the package."""
    return _PACKAGED_SEED_DIR
