"""Progressive reviewer candidate search.

Levels run in order until enough reviewers are found:

1. PR assignees (authoritative)
2. CODEOWNERS owners of the changed files (authoritative)
3. authors and approvers of changes overlapping the edited lines
4. recent authors and approvers in the changed directories
5. recent authors and approvers across the project
6. top repository contributors

An authoritative level ends the search as soon as it yields one valid
candidate. The heuristic levels accumulate until two distinct valid
candidates exist.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from bestreviewer.cache import TTLCache
from bestreviewer.config import Config
from bestreviewer.errors import CancelToken
from bestreviewer.overlap import OverlapAnalyzer
from bestreviewer.ownership import OwnershipIndex
from bestreviewer.schemas import (
    ChangeRequest,
    HistoricalChange,
    OverlapScore,
    ReviewerCandidate,
    SelectionMethod,
)
from bestreviewer.source import ChangeDataSource, DataSourceError
from bestreviewer.validator import CandidateValidator

logger = logging.getLogger(__name__)

LEVEL_ASSIGNEES = "assignees"
LEVEL_CODEOWNERS = "codeowners"
LEVEL_OVERLAP = "overlap"
LEVEL_DIRECTORY = "directory"
LEVEL_PROJECT = "project"
LEVEL_CONTRIBUTORS = "contributors"

ENOUGH = 2

T = TypeVar("T")


def directories(paths: list[str]) -> list[str]:
    """Every ancestor directory of *paths*, deepest first, then alphabetical."""
    dirs: set[str] = set()
    for path in paths:
        parent = posixpath.dirname(path.strip("/"))
        while parent:
            dirs.add(parent)
            parent = posixpath.dirname(parent)
    return sorted(dirs, key=lambda d: (-d.count("/"), d))


@dataclass
class SearchOutcome:
    candidates: list[ReviewerCandidate] = field(default_factory=list)
    levels: list[str] = field(default_factory=list)
    seen: set[str] = field(default_factory=set)

    def distinct(self) -> int:
        return len({c.login.lower() for c in self.candidates})


class ProgressiveCandidateSearch:
    """Runs the search levels for one change against a shared cache."""

    def __init__(
        self,
        source: ChangeDataSource,
        cache: TTLCache,
        config: Config | None = None,
        analyzer: OverlapAnalyzer | None = None,
        ownership: OwnershipIndex | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.cache = cache
        self.config = config or Config()
        self.scoring = self.config.scoring
        self.ttl = self.config.cache_ttl
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.analyzer = analyzer or OverlapAnalyzer(
            source, cache, self.scoring, self.ttl, clock=self.clock
        )
        self.ownership = ownership or OwnershipIndex(source, cache, self.ttl)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        change: ChangeRequest,
        validator: CandidateValidator,
        cancel: CancelToken | None = None,
    ) -> SearchOutcome:
        out = SearchOutcome()
        state = _LevelState(change, validator, out, cancel)

        levels: list[tuple[str, Callable[[_LevelState], None], bool]] = [
            (LEVEL_ASSIGNEES, self._assignees, True),
            (LEVEL_CODEOWNERS, self._codeowners, True),
            (LEVEL_OVERLAP, lambda s: self._overlap(s, cancel), False),
            (LEVEL_DIRECTORY, self._directory, False),
            (LEVEL_PROJECT, self._project, False),
            (LEVEL_CONTRIBUTORS, self._contributors, False),
        ]
        for name, level, authoritative in levels:
            state.checkpoint()
            out.levels.append(name)
            before = out.distinct()
            try:
                level(state)
            except DataSourceError as exc:
                logger.warning("Level %s failed for %s#%d: %s", name, change.full_name, change.number, exc)
                continue
            logger.debug("Level %s added %d candidate(s)", name, out.distinct() - before)
            if authoritative and out.distinct() > before:
                logger.info("Using %s for %s#%d", name, change.full_name, change.number)
                break
            if out.distinct() >= ENOUGH:
                break
        return out

    # ------------------------------------------------------------------
    # Authoritative levels
    # ------------------------------------------------------------------

    def _assignees(self, state: _LevelState) -> None:
        for login in state.change.assignees:
            state.offer(login, SelectionMethod.ASSIGNEE, context=self.scoring.assignee_score)

    def _codeowners(self, state: _LevelState) -> None:
        change = state.change
        paths = [f.path for f in change.changed_files]
        for login in self.ownership.owners(change.owner, change.repo, paths):
            state.offer(login, SelectionMethod.CODEOWNER, context=self.scoring.codeowner_score)

    # ------------------------------------------------------------------
    # Heuristic levels
    # ------------------------------------------------------------------

    def _overlap(self, state: _LevelState, cancel: CancelToken | None) -> None:
        scores = self.analyzer.analyze(state.change, workers=self.config.workers, cancel=cancel)
        authors: dict[str, _Tally] = {}
        reviewers: dict[str, _Tally] = {}
        for s in scores:
            _tally(authors, s.change.author, s)
            for approver in s.change.approvers:
                _tally(reviewers, approver, s)

        base = self.scoring.overlap_base_score
        for t in sorted(authors.values(), key=lambda t: -t.score):
            state.offer(
                t.login, SelectionMethod.OVERLAP_AUTHOR,
                context=base + t.score, when=t.when, sources=t.sources,
            )
        for t in sorted(reviewers.values(), key=lambda t: -t.score):
            state.offer(
                t.login, SelectionMethod.OVERLAP_REVIEWER,
                activity=base + t.score, when=t.when, sources=t.sources,
            )

    def _directory(self, state: _LevelState) -> None:
        change = state.change
        for directory in directories([f.path for f in change.changed_files]):
            if state.out.distinct() >= ENOUGH:
                return
            state.checkpoint()
            try:
                history = self._directory_history(change.owner, change.repo, directory)
            except DataSourceError as exc:
                logger.warning("Skipping directory %s: %s", directory, exc)
                continue
            latest = next((h for h in history if h.number != change.number), None)
            if latest is None:
                continue
            self._offer_change(
                state, latest, SelectionMethod.DIRECTORY_AUTHOR,
                SelectionMethod.DIRECTORY_REVIEWER, self.scoring.directory_score,
                f"directory:{directory}",
            )

    def _project(self, state: _LevelState) -> None:
        change = state.change
        history = self._cached(
            ("project-history", change.owner, change.repo),
            self.ttl.project_history,
            lambda: self.source.merged_changes_in_project(
                change.owner, change.repo, self.scoring.project_history_limit
            ),
        )
        for h in history:
            if state.out.distinct() >= ENOUGH:
                return
            if h.number == change.number:
                continue
            self._offer_change(
                state, h, SelectionMethod.PROJECT_AUTHOR,
                SelectionMethod.PROJECT_REVIEWER, self.scoring.project_score,
                f"project:#{h.number}",
            )

    def _contributors(self, state: _LevelState) -> None:
        change = state.change
        contributors = self._cached(
            ("contributors", change.owner, change.repo),
            self.ttl.contributors,
            lambda: self.source.contributors(change.owner, change.repo),
        )
        if not contributors:
            return
        most = max(c.contributions for c in contributors) or 1
        local = self._directory_authors(change)
        ranked = sorted(
            contributors,
            key=lambda c: (-(c.login.lower() in local), -c.contributions, c.login.lower()),
        )
        for c in ranked:
            if state.out.distinct() >= ENOUGH:
                return
            score = self.scoring.contributor_score * (c.contributions / most)
            if c.login.lower() in local:
                score += self.scoring.contributor_score
            state.offer(c.login, SelectionMethod.TOP_CONTRIBUTOR, context=score, source="contributors")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _offer_change(
        self,
        state: _LevelState,
        change: HistoricalChange,
        author_method: SelectionMethod,
        reviewer_method: SelectionMethod,
        score: float,
        source: str,
    ) -> None:
        when = change.effective_time
        state.offer(change.author, author_method, context=score, when=when, source=source)
        for approver in change.approvers:
            state.offer(approver, reviewer_method, activity=score, when=when, source=source)

    def _directory_history(self, owner: str, repo: str, directory: str) -> list[HistoricalChange]:
        return self._cached(
            ("directory-history", owner, repo, directory),
            self.ttl.directory_history,
            lambda: self.source.merged_changes_in_directory(
                owner, repo, directory, self.scoring.directory_history_limit
            ),
        )

    def _directory_authors(self, change: ChangeRequest) -> set[str]:
        """Authors found in already-cached history of the changed directories."""
        authors: set[str] = set()
        for directory in directories([f.path for f in change.changed_files]):
            cached, found = self.cache.get(("directory-history", change.owner, change.repo, directory))
            if found:
                authors.update(h.author.lower() for h in cached if h.author)
        return authors

    def _cached(self, key: tuple[str, ...], ttl: timedelta | None, fetch: Callable[[], list[T]]) -> list[T]:
        cached, found = self.cache.get(key)
        if found:
            return cached
        value = fetch()
        self.cache.set(key, value, ttl)
        return value


@dataclass
class _Tally:
    """Overlap accumulated by one login across historical changes."""

    login: str
    score: float = 0.0
    when: datetime | None = None
    sources: list[str] = field(default_factory=list)


def _tally(tallies: dict[str, _Tally], login: str, score: OverlapScore) -> None:
    if not login:
        return
    t = tallies.setdefault(login.lower(), _Tally(login))
    t.score += score.score
    when = score.change.effective_time
    if when is not None and (t.when is None or when > t.when):
        t.when = when
    source = f"overlap:#{score.change.number}"
    if source not in t.sources:
        t.sources.append(source)


class _LevelState:
    """Bookkeeping shared by the levels of one search."""

    def __init__(
        self,
        change: ChangeRequest,
        validator: CandidateValidator,
        out: SearchOutcome,
        cancel: CancelToken | None = None,
    ) -> None:
        self.change = change
        self.validator = validator
        self.out = out
        self.cancel = cancel

    def checkpoint(self) -> None:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled()

    def offer(
        self,
        login: str,
        method: SelectionMethod,
        context: float = 0.0,
        activity: float = 0.0,
        when: datetime | None = None,
        source: str = "",
        sources: list[str] | None = None,
    ) -> bool:
        """Validate *login* and record it as a candidate when it passes."""
        if not login:
            return False
        self.checkpoint()
        self.out.seen.add(login)
        result = self.validator.validate(login)
        if not result.is_valid:
            return False
        self.out.candidates.append(
            ReviewerCandidate(
                login=login,
                method=method,
                context_score=context,
                activity_score=activity,
                last_activity=when,
                association=result.association,
                sources=list(sources or [source or method.value]),
            )
        )
        return True
