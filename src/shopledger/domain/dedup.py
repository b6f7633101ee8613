"""Within-batch deduplication of facts by natural key."""

from __future__ import annotations

from collections.abc import Hashable, Iterable
from datetime import datetime
from typing import Protocol, TypeVar


class RefundAware(Protocol):
    @property
    def natural_key(self) -> Hashable: ...

    @property
    def refund_date(self) -> datetime | None: ...

    @property
    def refunded_qty(self) -> int: ...


F = TypeVar("F", bound=RefundAware)


def richness(fact: RefundAware) -> tuple[bool, int, datetime | None]:
    return (fact.refund_date is not None, fact.refunded_qty, fact.refund_date)


def prefer_richer(current: F, candidate: F) -> F:
    """Pick which of two facts with the same natural key to keep.

    A fact carrying a refund date beats one without; then the higher
    refunded quantity wins; then the later refund date. Full ties go to
    ``candidate`` (last write wins).
    """
    cur_has, cur_qty, cur_date = richness(current)
    cand_has, cand_qty, cand_date = richness(candidate)

    if cur_has != cand_has:
        return current if cur_has else candidate
    if cur_qty != cand_qty:
        return current if cur_qty > cand_qty else candidate
    if cur_date is not None and cand_date is not None and cur_date > cand_date:
        return current
    return candidate


def dedupe_by_key(facts: Iterable[F]) -> list[F]:
    """Collapse facts sharing a natural key, keeping first-seen key order."""
    kept: dict[Hashable, F] = {}
    for fact in facts:
        key = fact.natural_key
        existing = kept.get(key)
        kept[key] = fact if existing is None else prefer_richer(existing, fact)
    return list(kept.values())
