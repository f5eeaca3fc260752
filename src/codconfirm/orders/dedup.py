"""
Upstream order dedup.
"""

from collections.abc import Iterable


def filter_new(candidate_ids: Iterable[str], existing_ids: Iterable[str]) -> set[str]:
    """Return the candidate ids not already known.

    `existing_ids` must come from one snapshot fetched right before the call;
    the unique constraint on `orders.external_order_id` catches the rest.
    """
    return set(candidate_ids) - set(existing_ids)
