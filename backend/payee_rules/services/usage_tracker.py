"""Usage-statistic deltas for one matching batch."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class UsageDelta:
    """Statistics update for one rule: +1 match and a new last-used time."""

    last_used_at: datetime
    increment_by: int = 1


def compute_usage_deltas(
    winning_keys: Iterable[UUID | None],
    batch_started_at: datetime,
) -> dict[UUID, UsageDelta]:
    """Collapse per-transaction winners into one delta per rule.

    ``winning_keys`` is aligned with the batch's transactions (None where
    nothing matched). A rule that won any number of transactions gains
    exactly one match, and every touched rule gets the same
    ``batch_started_at`` timestamp. Keys keep first-win order.
    """
    deltas: dict[UUID, UsageDelta] = {}
    for key in winning_keys:
        if key is not None and key not in deltas:
            deltas[key] = UsageDelta(last_used_at=batch_started_at)
    return deltas
