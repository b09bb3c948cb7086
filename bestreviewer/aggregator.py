"""Merge, rank and pick the final reviewers from validated candidates."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from bestreviewer.errors import NoReviewersFound, OnlyAuthorFound
from bestreviewer.schemas import CandidateCategory, ReviewerCandidate

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class CandidateAggregator:
    """Turns the candidates produced by every search level into at most N reviewers.

    The first pick is the best author-context candidate, the second the best
    activity-context candidate. When a category is empty its slot is filled
    from the ranked remainder.
    """

    def __init__(self, count: int = 2) -> None:
        self.count = count

    def select(
        self,
        candidates: list[ReviewerCandidate],
        author: str,
        seen: Iterable[str] = (),
    ) -> list[ReviewerCandidate]:
        """Return the chosen reviewers, best first.

        Raises:
            OnlyAuthorFound: nothing remains and the author was the only
                identity any level produced.
            NoReviewersFound: nothing remains otherwise.
        """
        pool = [c for c in candidates if c.login.lower() != author.lower()]
        ranked = _rank(_deduplicate(pool))

        chosen: list[ReviewerCandidate] = []
        for category in (CandidateCategory.AUTHOR, CandidateCategory.ACTIVITY):
            if len(chosen) >= self.count:
                break
            best = next((c for c in ranked if c.category == category and c not in chosen), None)
            if best is not None:
                chosen.append(best)
        for c in ranked:
            if len(chosen) >= self.count:
                break
            if c not in chosen:
                chosen.append(c)

        if not chosen:
            identities = {s.lower() for s in seen if s}
            if identities and identities <= {author.lower()}:
                raise OnlyAuthorFound(author)
            raise NoReviewersFound()

        logger.info(
            "Selected reviewers: %s",
            ", ".join(f"{c.login} ({c.method.value}, {c.combined_score:.2f})" for c in chosen),
        )
        return chosen


def _deduplicate(candidates: list[ReviewerCandidate]) -> list[ReviewerCandidate]:
    """One candidate per login, keeping the higher combined score and every source."""
    by_login: dict[str, ReviewerCandidate] = {}
    for c in candidates:
        key = c.login.lower()
        current = by_login.get(key)
        if current is None:
            by_login[key] = c.model_copy(update={"sources": _merge_sources([], c)})
            continue
        sources = _merge_sources(current.sources, c)
        if c.combined_score > current.combined_score:
            keep = c
        else:
            keep = current
        latest = max(
            (t for t in (current.last_activity, c.last_activity) if t is not None),
            default=None,
        )
        by_login[key] = keep.model_copy(update={"sources": sources, "last_activity": latest})
    return list(by_login.values())


def _merge_sources(existing: list[str], candidate: ReviewerCandidate) -> list[str]:
    out = list(existing)
    for s in candidate.sources or [candidate.method.value]:
        if s not in out:
            out.append(s)
    return out


def _rank(candidates: list[ReviewerCandidate]) -> list[ReviewerCandidate]:
    """Combined score desc, then most recent activity, then login."""
    def key(c: ReviewerCandidate) -> tuple[float, float, str]:
        when = c.last_activity or _EPOCH
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return (-c.combined_score, -when.timestamp(), c.login.lower())

    return sorted(candidates, key=key)
