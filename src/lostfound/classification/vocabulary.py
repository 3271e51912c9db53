"""Closed category vocabulary shared by the classifier and claim validation."""

from __future__ import annotations

from typing import Optional

CATEGORY_LABELS: tuple[str, ...] = (
    "bracelet",
    "handbag",
    "phone case",
    "shoes",
    "sunglasses",
    "wallet",
    "watch",
    "keys",
    "backpack",
    "laptop",
    "tablet",
    "umbrella",
    "hat",
    "scarf",
    "jacket",
    "earphones",
    "camera",
    "book",
    "water bottle",
    "charger",
    "passport",
    "ID card",
    "notebook",
    "pen",
    "gloves",
    "ring",
    "necklace",
    "t-shirt",
    "shirt",
    "badge",
    "credit card",
    "cosmetics",
    "sunglasses case",
    "batteries",
)

_BY_LOWER = {label.lower(): label for label in CATEGORY_LABELS}


def canonical_label(value: Optional[str]) -> Optional[str]:
    """Return the vocabulary spelling of ``value`` (case-insensitive) or ``None``."""

    if not value:
        return None
    return _BY_LOWER.get(value.strip().lower())


def is_known_label(value: Optional[str]) -> bool:
    return canonical_label(value) is not None


__all__ = ["CATEGORY_LABELS", "canonical_label", "is_known_label"]
