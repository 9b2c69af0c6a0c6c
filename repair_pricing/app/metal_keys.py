"""Canonical metal/karat keys used to address variant-priced values.

Every reader and writer of variant data goes through :func:`metal_key`, so a
``("yellow-gold", "14K")`` written by one caller and a ``("Gold", "14k")``
read by another land on the same ``gold_14k`` entry.
"""
from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

METAL_ALIASES: Dict[str, str] = {
    "gold": "gold",
    "yellow gold": "gold",
    "white gold": "gold",
    "rose gold": "gold",
    "red gold": "gold",
    "green gold": "gold",
    "au": "gold",
    "silver": "silver",
    "sterling silver": "silver",
    "fine silver": "silver",
    "ag": "silver",
    "platinum": "platinum",
    "plat": "platinum",
    "pt": "platinum",
    "palladium": "palladium",
    "pd": "palladium",
    "stainless": "stainless",
    "stainless steel": "stainless",
    "steel": "stainless",
    "ss": "stainless",
    "titanium": "titanium",
    "ti": "titanium",
    "copper": "copper",
    "cu": "copper",
    "brass": "brass",
    "mixed": "mixed",
    "other": "other",
}

VALID_FINENESS: Dict[str, Tuple[str, ...]] = {
    "gold": ("10k", "14k", "18k", "22k", "24k"),
    "silver": ("sterling", "fine"),
    "platinum": ("900", "950", "iridium"),
    "palladium": ("500", "950"),
    "stainless": ("304", "316l", "904l"),
    "titanium": ("grade1", "grade2"),
    "copper": ("na",),
    "brass": ("na",),
    "mixed": ("various",),
    "other": ("na",),
}

KARAT_ALIASES: Dict[str, str] = {
    "925": "sterling",
    ".925": "sterling",
    "ster": "sterling",
    "999": "fine",
    ".999": "fine",
    "316": "316l",
    "gr1": "grade1",
    "gr2": "grade2",
    "n/a": "na",
}

_GOLD_KARAT = re.compile(r"^(\d{1,2})(?:k|kt|kar|karat)?$")
_NOBLE_PREFIX = re.compile(r"^(?:pt|pd)?(\d{3})(?:pt|pd)?$")


def _clean(value: object) -> str:
    if not isinstance(value, str):
        return ""
    text = value.strip().lower().replace("-", " ").replace("_", " ")
    return " ".join(text.split())


def metal_family(metal_type: object) -> Optional[str]:
    """Return the metal family for ``metal_type`` or ``None`` when unknown."""
    return METAL_ALIASES.get(_clean(metal_type))


def normalize_karat(family: str, karat: object) -> Optional[str]:
    text = _clean(karat).replace(" ", "")
    if not text:
        return None
    text = KARAT_ALIASES.get(text, text)
    if family == "gold":
        match = _GOLD_KARAT.match(text)
        if match:
            text = f"{int(match.group(1))}k"
    elif family in {"platinum", "palladium"}:
        match = _NOBLE_PREFIX.match(text)
        if match:
            text = match.group(1)
    if text in VALID_FINENESS.get(family, ()):
        return text
    return None


def metal_key(metal_type: object, karat: object) -> Optional[str]:
    """Map a (metal type, karat) pair to its canonical key, e.g. ``gold_14k``.

    Returns ``None`` when either part is missing or not recognised. Never
    raises.
    """
    family = metal_family(metal_type)
    if family is None:
        return None
    fineness = normalize_karat(family, karat)
    if fineness is None:
        return None
    return f"{family}_{fineness}"


def parse_metal_key(key: object) -> Optional[Tuple[str, str]]:
    if not isinstance(key, str) or "_" not in key:
        return None
    family, _, fineness = key.partition("_")
    if fineness not in VALID_FINENESS.get(family, ()):
        return None
    return family, fineness


def is_valid_metal_key(key: object) -> bool:
    return parse_metal_key(key) is not None
