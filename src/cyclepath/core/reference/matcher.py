"""Content block matcher — normalized name lookup of enriched milestone content."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cyclepath.core.reference.cache import ReferenceCache
from cyclepath.core.reference.keys import normalize_name, normalize_treatment_type
from cyclepath.core.reference.models import ContentBlock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _BlockIndex:
    blocks: dict[str, tuple[ContentBlock, ...]]
    by_name: dict[tuple[str, str], ContentBlock]
    by_title: dict[tuple[str, str], ContentBlock]


class ContentBlockMatcher(ReferenceCache):
    """Resolve a milestone name or type to a content block.

    Both sides are normalized (case, hyphens, underscores and whitespace
    ignored) and compared for equality: first against ``milestone_name``,
    then against ``notification_title``. There is no substring matching;
    an unmatched milestone returns None.
    """

    name = "content block"

    def _build(self, blocks: list[ContentBlock]) -> _BlockIndex:
        grouped: dict[str, list[ContentBlock]] = {}
        for block in blocks:
            grouped.setdefault(block.treatment_type, []).append(block)

        by_name: dict[tuple[str, str], ContentBlock] = {}
        by_title: dict[tuple[str, str], ContentBlock] = {}
        for treatment, items in grouped.items():
            items.sort(key=lambda b: (b.order, b.milestone_name))
            for block in items:
                name_key = normalize_name(block.milestone_name)
                if name_key:
                    if (treatment, name_key) in by_name:
                        logger.debug(
                            "Duplicate content block name %r for %s; keeping %s",
                            block.milestone_name,
                            treatment,
                            by_name[(treatment, name_key)].id,
                        )
                    by_name.setdefault((treatment, name_key), block)
                title_key = normalize_name(block.notification_title)
                if title_key:
                    by_title.setdefault((treatment, title_key), block)

        return _BlockIndex(
            blocks={k: tuple(v) for k, v in grouped.items()},
            by_name=by_name,
            by_title=by_title,
        )

    def match(self, treatment_template_key: str, milestone_name_or_type: str | None) -> ContentBlock | None:
        """Return the block for a milestone, or None if nothing matches."""
        key = normalize_name(milestone_name_or_type)
        if not key:
            return None
        treatment = normalize_treatment_type(treatment_template_key)
        index = self._current()
        block = index.by_name.get((treatment, key))
        if block is None:
            block = index.by_title.get((treatment, key))
        return block

    def blocks_for(self, treatment_template_key: str) -> tuple[ContentBlock, ...]:
        """Blocks of one treatment type ordered by ``order``."""
        return self._current().blocks.get(normalize_treatment_type(treatment_template_key), ())

    def treatment_types(self) -> list[str]:
        return sorted(self._current().blocks)
