import math
from collections.abc import Iterable
from datetime import datetime, timezone

from error_triage.reporting.models import ErrorGroup, Priority, RankedGroup, Trend

_NEVER = datetime.max.replace(tzinfo=timezone.utc)


def priority_score(group: ErrorGroup) -> int:
    """Affected users dominate: each one weighs as much as two occurrences."""
    return group.affected_users * 2 + group.count


def _sort_key(group: ErrorGroup) -> tuple:
    first_seen = group.first_seen or _NEVER
    if first_seen.tzinfo is None:
        first_seen = first_seen.replace(tzinfo=timezone.utc)
    # Oldest unresolved issue first among equals
    return (-priority_score(group), -group.count, first_seen)


class ErrorGroupRanker:
    """
    Orders error groups by priority and labels them HIGH / MEDIUM / LOW.

    Bands are relative to the batch rather than absolute cutoffs, so a quiet
    day and a noisy day both produce a usable spread. Pure: identical input
    gives identical order and labels.
    """

    def __init__(
        self,
        high_fraction: float = 1 / 3,
        medium_fraction: float = 1 / 3,
        high_score_threshold: float | None = None,
        rising_user_ratio: float = 0.5,
    ) -> None:
        self.high_fraction = high_fraction
        self.medium_fraction = medium_fraction
        self.high_score_threshold = high_score_threshold
        self.rising_user_ratio = rising_user_ratio

    def rank(self, groups: Iterable[ErrorGroup]) -> list[RankedGroup]:
        ordered = sorted(groups, key=_sort_key)
        if not ordered:
            return []

        scores = [priority_score(g) for g in ordered]
        n = len(ordered)
        high_count = min(n, math.ceil(round(n * self.high_fraction, 9)))
        medium_count = math.ceil(round(n * self.medium_fraction, 9))

        # Scores at each band boundary; ties with the boundary join the band
        high_floor = scores[high_count - 1] if high_count else None
        medium_end = min(n, high_count + medium_count)
        medium_floor = scores[medium_end - 1] if medium_end else None
        max_users = max(g.affected_users for g in ordered)

        ranked = []
        for position, (group, score) in enumerate(zip(ordered, scores), start=1):
            priority = self._label(group, score, high_floor, medium_floor, max_users)
            ranked.append(RankedGroup(group=group, score=score, priority=priority, position=position))
        return ranked

    def _label(
        self,
        group: ErrorGroup,
        score: int,
        high_floor: int | None,
        medium_floor: int | None,
        max_users: int,
    ) -> Priority:
        if score <= 0:
            return Priority.LOW
        if high_floor is not None and score >= high_floor:
            return Priority.HIGH
        if self.high_score_threshold is not None and score > self.high_score_threshold:
            return Priority.HIGH
        if (
            group.trend is Trend.RISING
            and max_users > 0
            and group.affected_users >= self.rising_user_ratio * max_users
        ):
            return Priority.HIGH
        if medium_floor is not None and score >= medium_floor:
            return Priority.MEDIUM
        return Priority.LOW


def rank(groups: Iterable[ErrorGroup]) -> list[RankedGroup]:
    """Rank with the default bands."""
    return ErrorGroupRanker().rank(groups)
