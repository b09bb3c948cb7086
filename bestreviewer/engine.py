"""Reviewer resolution for pull requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from bestreviewer.aggregator import CandidateAggregator
from bestreviewer.cache import TTLCache
from bestreviewer.config import Config
from bestreviewer.errors import CancelToken, ResolutionError
from bestreviewer.schemas import ChangeRequest, ResolutionResult
from bestreviewer.search import ProgressiveCandidateSearch
from bestreviewer.source import ChangeDataSource, DataSourceError
from bestreviewer.validator import CandidateValidator

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    """Outcome of one PR in a batch: a result or the error that stopped it."""

    change: ChangeRequest
    result: ResolutionResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class ReviewerEngine:
    """Picks a primary and a secondary reviewer for a change.

    One engine may serve many resolutions; they share the cache and
    nothing else.
    """

    def __init__(
        self,
        source: ChangeDataSource,
        config: Config | None = None,
        cache: TTLCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.config = config or Config()
        self.cache = cache if cache is not None else TTLCache()
        self.search = ProgressiveCandidateSearch(source, self.cache, self.config, clock=clock)
        self.aggregator = CandidateAggregator(self.config.reviewer_count)

    def validator_for(self, change: ChangeRequest) -> CandidateValidator:
        return CandidateValidator(
            self.source,
            self.cache,
            change,
            bots=self.config.bots,
            workload=self.config.workload,
            ttl=self.config.cache_ttl,
        )

    def resolve(self, change: ChangeRequest, cancel: CancelToken | None = None) -> ResolutionResult:
        """Resolve reviewers for *change*.

        Raises:
            NoReviewersFound: no eligible reviewer exists.
            OnlyAuthorFound: the author was the only identity ever found.
            ResolutionCancelled: *cancel* fired before resolution finished.
        """
        logger.info("Resolving reviewers for %s#%d by %s", change.full_name, change.number, change.author)
        outcome = self.search.run(change, self.validator_for(change), cancel)
        if cancel is not None:
            cancel.raise_if_cancelled()

        chosen = self.aggregator.select(outcome.candidates, change.author, outcome.seen)
        result = ResolutionResult(
            owner=change.owner,
            repo=change.repo,
            number=change.number,
            author=change.author,
            draft=change.draft,
            state=change.state,
            requested_reviewers=list(change.requested_reviewers),
            reviewers=chosen,
            levels=outcome.levels,
        )
        if change.draft:
            logger.info(
                "Draft %s#%d: would have assigned %s",
                change.full_name, change.number, ", ".join(result.logins),
            )
        return result

    def resolve_pr(
        self, owner: str, repo: str, number: int, cancel: CancelToken | None = None
    ) -> ResolutionResult:
        change = self.source.change_request(owner, repo, number)
        return self.resolve(change, cancel)

    def resolve_batch(
        self, changes: list[ChangeRequest], cancel: CancelToken | None = None
    ) -> list[BatchItem]:
        """Resolve each change independently. One failure never stops the batch."""
        items: list[BatchItem] = []
        for change in changes:
            if cancel is not None and cancel.cancelled:
                break
            self.cache.purge_expired()
            try:
                items.append(BatchItem(change, result=self.resolve(change, cancel)))
            except (ResolutionError, DataSourceError) as exc:
                logger.warning("Could not resolve %s#%d: %s", change.full_name, change.number, exc)
                items.append(BatchItem(change, error=exc))
            except Exception as exc:
                logger.exception("Unexpected error resolving %s#%d", change.full_name, change.number)
                items.append(BatchItem(change, error=exc))
        return items

    def assign(self, result: ResolutionResult) -> bool:
        """Request the chosen reviewers. Returns False when the result must be held back."""
        reason = result.hold_reason
        if reason is not None:
            logger.info(
                "Not submitting reviewers for %s/%s#%d: %s",
                result.owner, result.repo, result.number, reason,
            )
            return False
        self.source.request_reviewers(result.owner, result.repo, result.number, result.logins)
        return True
