"""
Cash-on-delivery payment classification.
"""

from collections.abc import Iterable

# Fixed policy list; matched on top of the store's configured gateway label.
COD_SYNONYMS: tuple[str, ...] = ("cod", "contra reembolso", "cash on delivery")


def is_cod(payment_labels: Iterable[str], configured_label: str) -> bool:
    """True if any payment label names a cash-on-delivery gateway.

    Matching is case-insensitive substring containment against the configured
    label and `COD_SYNONYMS`.
    """
    needles = [s for s in ((configured_label or "").strip().lower(), *COD_SYNONYMS) if s]
    for label in payment_labels:
        if not label:
            continue
        haystack = str(label).lower()
        if any(needle in haystack for needle in needles):
            return True
    return False
