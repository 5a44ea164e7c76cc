"""Key normalization shared by every reference dataset.

Templates, stage reference rows and content blocks are authored
independently and drift in formatting ("Egg retrieval", "egg-retrieval",
"EGG_RETRIEVAL"). All lookups go through these two functions so that the
datasets agree on one canonical key space.
"""

from __future__ import annotations

import re

# Synonyms and legacy reference identifiers -> canonical treatment key
TREATMENT_ALIASES: dict[str, str] = {
    "fet": "ivf_frozen",
    "frozen_embryo_transfer": "ivf_frozen",
    "ivf": "ivf_fresh",
    "egg_freez": "egg_freezing",
}

_SEPARATORS = re.compile(r"[-\s_]+")
_NAME_STRIP = re.compile(r"[-\s_]")


def normalize_treatment_type(value: str | None) -> str:
    """Return the canonical treatment key for a raw treatment type.

    >>> normalize_treatment_type("FET")
    'ivf_frozen'
    >>> normalize_treatment_type("egg-freezing")
    'egg_freezing'
    """
    if not value:
        return ""
    key = _SEPARATORS.sub("_", value.strip().lower()).strip("_")
    return TREATMENT_ALIASES.get(key, key)


def normalize_name(value: str | None) -> str:
    """Lower-case and drop hyphens, underscores and whitespace.

    >>> normalize_name("Egg Retrieval") == normalize_name("egg-retrieval")
    True
    """
    if not value:
        return ""
    return _NAME_STRIP.sub("", value.lower()).strip()
