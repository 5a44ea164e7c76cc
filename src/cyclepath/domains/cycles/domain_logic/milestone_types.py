"""Canonical milestone type tags derived from free-text stage names.

Template stage names are authored by hand ("Trigger injection", "Frozen
embryo transfer", "Day 5 blastocyst transfer"), so the type tag stored on
each patient milestone is derived by keyword rules. Rules are checked in
order and the first hit wins: "Frozen embryo transfer" must become
``frozen-transfer`` before the plain ``transfer`` rule sees it.
"""

from __future__ import annotations

import re

DEFAULT_MILESTONE_TYPE = "milestone"

# (all of these words, at least one of these words, tag)
MILESTONE_TYPE_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...], str], ...] = (
    ((), ("stimulation",), "stimulation-start"),
    ((), ("monitoring", "scan"), "monitoring"),
    ((), ("trigger",), "trigger-shot"),
    ((), ("collection",), "egg-collection"),
    (("pregnancy",), ("blood", "beta"), "beta-test"),
    (("frozen", "transfer"), (), "frozen-transfer"),
    ((), ("transfer",), "embryo-transfer"),
    ((), ("lining", "follicle"), "monitoring"),
    ((), ("fertilisation", "fertilization"), "fertilisation"),
    ((), ("luteal",), "luteal-phase"),
    ((), ("menstrual", "period"), "cycle-start"),
    ((), ("iui", "insemination"), "iui-procedure"),
    (("ovulation", "induction"), (), "stimulation-start"),
    ((), ("counselling", "counseling"), "counselling"),
    (("donor", "screening"), (), "donor-screening"),
    (("waiting", "period"), (), "waiting-period"),
)

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Collapse non-alphanumerics to single hyphens (``"Day 5 - FET"`` -> ``"day-5-fet"``)."""
    return _NON_SLUG.sub("-", value.lower()).strip("-")


def map_stage_to_milestone_type(stage_name: str | None) -> str:
    """Return the canonical type tag for a stage name. Never raises."""
    normalized = (stage_name or "").lower()
    for all_of, any_of, tag in MILESTONE_TYPE_RULES:
        if all(word in normalized for word in all_of) and (
            not any_of or any(word in normalized for word in any_of)
        ):
            return tag
    return slugify(normalized) or DEFAULT_MILESTONE_TYPE
