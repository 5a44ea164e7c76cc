"""Template store — in-memory index of treatment templates."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cyclepath.core.reference.cache import ReferenceCache
from cyclepath.core.reference.keys import normalize_treatment_type
from cyclepath.core.reference.models import (
    StageTemplateEntry,
    TemplateDefinition,
    TemplateSeed,
)

logger = logging.getLogger(__name__)

DONOR_CONCEPTION_OVERLAY = "donor_conception"


class TemplateNotFoundError(LookupError):
    """Raised when a treatment type has no template stages."""

    def __init__(self, treatment_type: str) -> None:
        super().__init__(f"No treatment template for type {treatment_type!r}")
        self.treatment_type = treatment_type


@dataclass(frozen=True)
class _TemplateIndex:
    templates: dict[str, TemplateDefinition]


def _title_case(key: str) -> str:
    return " ".join(word.capitalize() for word in key.replace("_", " ").split())


class TemplateStore(ReferenceCache):
    """Lookup of template definitions by treatment-type key.

    Usage::

        store = TemplateStore(lambda: load_template_seed(seed_dir / "templates.yaml"))
        template = store.get_template("fet")  # same definition as "ivf_frozen"
    """

    name = "template"

    def _build(self, seed: TemplateSeed) -> _TemplateIndex:
        grouped: dict[str, list[StageTemplateEntry]] = {}
        for entry in seed.entries:
            grouped.setdefault(entry.treatment_type, []).append(entry)

        templates: dict[str, TemplateDefinition] = {}
        for key, entries in grouped.items():
            ordered = sorted(entries, key=lambda e: (e.day_start, e.stage_name))
            meta = seed.meta.get(key)
            longest = max(e.last_day for e in ordered)
            if meta is not None:
                duration = max(meta.duration, longest)
                templates[key] = TemplateDefinition(
                    key=key,
                    display_name=meta.display_name,
                    description=meta.description,
                    total_duration=duration,
                    ordered_stages=tuple(ordered),
                    selectable=meta.selectable,
                )
            else:
                templates[key] = TemplateDefinition(
                    key=key,
                    display_name=_title_case(key),
                    description="Treatment cycle template",
                    total_duration=max(longest, 1),
                    ordered_stages=tuple(ordered),
                    selectable=key != DONOR_CONCEPTION_OVERLAY,
                )

        for key in seed.meta:
            if key not in templates:
                logger.warning("Template metadata for %r has no stages", key)

        return _TemplateIndex(templates=templates)

    def get_template(self, treatment_type: str) -> TemplateDefinition:
        """Return the template for a treatment type (synonyms accepted).

        Raises:
            TemplateNotFoundError: If the type has no stages.
        """
        key = normalize_treatment_type(treatment_type)
        template = self._current().templates.get(key)
        if template is None:
            raise TemplateNotFoundError(treatment_type)
        return template

    def find_template(self, treatment_type: str) -> TemplateDefinition | None:
        """Like :meth:`get_template` but returns None when unknown."""
        return self._current().templates.get(normalize_treatment_type(treatment_type))

    def overlay(self, name: str = DONOR_CONCEPTION_OVERLAY) -> tuple[StageTemplateEntry, ...]:
        """Stages of an overlay template, or an empty tuple if absent."""
        template = self.find_template(name)
        return template.ordered_stages if template else ()

    def keys(self, *, selectable_only: bool = True) -> list[str]:
        """Treatment keys with templates, sorted."""
        return sorted(
            key
            for key, template in self._current().templates.items()
            if template.selectable or not selectable_only
        )

    def all(self) -> list[TemplateDefinition]:
        """Return all template definitions, overlays included."""
        templates = self._current().templates
        return [templates[key] for key in sorted(templates)]
