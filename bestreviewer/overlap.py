"""Line-overlap scoring between a change and the history of the files it touches."""

from __future__ import annotations

import bisect
import logging
import posixpath
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable

from bestreviewer.blame import BlameIndex
from bestreviewer.cache import TTLCache
from bestreviewer.config import CacheTTLConfig, ScoringConfig
from bestreviewer.diff_lines import ChangedLineSet, changed_line_set, core_lines
from bestreviewer.errors import CancelToken
from bestreviewer.schemas import ChangedFile, ChangeRequest, HistoricalChange, OverlapScore
from bestreviewer.source import ChangeDataSource, DataSourceError

logger = logging.getLogger(__name__)

EXACT = "exact"
CONTEXT = "context"
NEARBY = "nearby"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _checkpoint(cancel: CancelToken | None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()


def select_top_files(files: list[ChangedFile], n: int, ignored: list[str]) -> list[ChangedFile]:
    """Largest files by delta, skipping lockfiles and files without a patch."""
    ignored_names = set(ignored)
    eligible = [
        f for f in files
        if f.patch and posixpath.basename(f.path) not in ignored_names
    ]
    eligible.sort(key=lambda f: (-f.delta, f.path))
    return eligible[:n]


def nearest_distance(sorted_lines: list[int], line: int) -> int | None:
    """Distance from *line* to the closest entry of *sorted_lines*."""
    if not sorted_lines:
        return None
    i = bisect.bisect_left(sorted_lines, line)
    best: int | None = None
    for j in (i - 1, i):
        if 0 <= j < len(sorted_lines):
            d = abs(sorted_lines[j] - line)
            if best is None or d < best:
                best = d
    return best


class _PassState:
    """Scores recorded across files during one resolution pass."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scores: dict[int, float] = {}

    def is_saturated(self, number: int, threshold: float) -> bool:
        with self._lock:
            return self._scores.get(number, 0.0) >= threshold

    def record(self, number: int, score: float) -> None:
        with self._lock:
            self._scores[number] = self._scores.get(number, 0.0) + score


class OverlapAnalyzer:
    """Finds the historical changes that last touched the lines a change edits.

    Blame is the primary signal. When blame is unavailable for a file, or
    attributes nothing to a merged change, the file's merged history is
    diffed against the current patch instead.
    """

    def __init__(
        self,
        source: ChangeDataSource,
        cache: TTLCache,
        scoring: ScoringConfig | None = None,
        ttl: CacheTTLConfig | None = None,
        blame_index: BlameIndex | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.cache = cache
        self.scoring = scoring or ScoringConfig()
        self.ttl = ttl or CacheTTLConfig()
        self.blame_index = blame_index or BlameIndex(source, cache, self.ttl)
        self.clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(
        self,
        change: ChangeRequest,
        workers: int = 3,
        cancel: CancelToken | None = None,
    ) -> list[OverlapScore]:
        """Score the top-N files of *change* concurrently and merge the results."""
        files = select_top_files(
            change.changed_files, self.scoring.top_files, self.scoring.ignored_files
        )
        if not files:
            return []

        state = _PassState()
        results: list[OverlapScore] = []
        with ThreadPoolExecutor(max_workers=max(1, min(workers, len(files)))) as pool:
            futures: list[Future[list[OverlapScore]]] = [
                pool.submit(self.analyze_file, change, f, state, cancel) for f in files
            ]
            try:
                for fut in as_completed(futures):
                    _checkpoint(cancel)
                    results.extend(fut.result())
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise
        _checkpoint(cancel)
        return results

    def analyze_file(
        self,
        change: ChangeRequest,
        file: ChangedFile,
        state: _PassState | None = None,
        cancel: CancelToken | None = None,
    ) -> list[OverlapScore]:
        """Return up to top-K overlap scores for one file.

        Data source failures yield an empty list. Cancellation raises
        :class:`~bestreviewer.errors.ResolutionCancelled`.
        """
        _checkpoint(cancel)
        state = state or _PassState()
        line_set = changed_line_set(file.patch, self.scoring.nearby_distance)
        if not line_set:
            return []

        try:
            scores = self._from_blame(change, file.path, line_set, state, cancel)
            if scores is None:
                scores = self._from_history(change, file.path, line_set.core, state, cancel)
        except DataSourceError as exc:
            logger.warning("Skipping overlap for %s: %s", file.path, exc)
            return []

        for s in scores:
            state.record(s.change.number, s.score)
        logger.debug("Overlap for %s: %s", file.path, [(s.change.number, s.hits) for s in scores])
        return scores

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def classify(self, distance: int | None) -> str | None:
        if distance is None:
            return None
        if distance == 0:
            return EXACT
        if distance <= self.scoring.context_radius:
            return CONTEXT
        if distance <= self.scoring.nearby_distance:
            return NEARBY
        return None

    def decay(self, when: datetime | None) -> float:
        if when is None:
            age_days = self.scoring.unknown_age_days
        else:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            age_days = max((self.clock() - when).total_seconds() / 86400.0, 0.0)
        return 1.0 / (1.0 + age_days / self.scoring.decay_days)

    def _score(self, change: HistoricalChange, path: str, counts: dict[str, int]) -> OverlapScore:
        raw = (
            counts.get(EXACT, 0) * self.scoring.exact_weight
            + counts.get(CONTEXT, 0) * self.scoring.context_weight
            + counts.get(NEARBY, 0) * self.scoring.nearby_weight
        )
        return OverlapScore(
            change=change,
            path=path,
            hits=sum(counts.values()),
            exact=counts.get(EXACT, 0),
            context=counts.get(CONTEXT, 0),
            nearby=counts.get(NEARBY, 0),
            score=raw * self.decay(change.effective_time),
        )

    def _top_k(self, scores: list[OverlapScore]) -> list[OverlapScore]:
        def recency(s: OverlapScore) -> float:
            t = s.change.effective_time
            return t.timestamp() if t else float("-inf")

        scores.sort(key=lambda s: (-s.hits, -recency(s), s.change.number))
        return scores[: self.scoring.top_changes]

    # ------------------------------------------------------------------
    # Blame path
    # ------------------------------------------------------------------

    def _from_blame(
        self,
        change: ChangeRequest,
        path: str,
        line_set: ChangedLineSet,
        state: _PassState,
        cancel: CancelToken | None = None,
    ) -> list[OverlapScore] | None:
        ref = change.base_sha or change.base_ref
        blame = self.blame_index.lines(change.owner, change.repo, path, ref)
        if not blame:
            return None

        sorted_core = sorted(line_set.core)

        counts: dict[int, dict[str, int]] = {}
        observed: dict[int, datetime | None] = {}
        for line in line_set.lines:
            record = blame.get(line)
            if record is None or record.change_number is None:
                continue
            kind = self.classify(nearest_distance(sorted_core, line))
            if kind is None:
                continue
            bucket = counts.setdefault(record.change_number, {})
            bucket[kind] = bucket.get(kind, 0) + 1
            observed[record.change_number] = record.change_updated_at

        if not counts:
            return None

        threshold = self.scoring.high_overlap_threshold
        ranked = sorted(counts, key=lambda n: -sum(counts[n].values()))
        # Keep ties at the K-th position so merge recency can break them.
        cutoff = sum(counts[ranked[min(len(ranked), self.scoring.top_changes) - 1]].values())

        scores: list[OverlapScore] = []
        for number in ranked:
            if sum(counts[number].values()) < cutoff:
                break
            _checkpoint(cancel)
            if state.is_saturated(number, threshold):
                logger.debug("Change #%d already scored above %.1f, skipping", number, threshold)
                continue
            try:
                detail = self.historical_change(change.owner, change.repo, number, observed.get(number))
            except DataSourceError as exc:
                logger.warning("Skipping change #%d for %s: %s", number, path, exc)
                continue
            scores.append(self._score(detail, path, counts[number]))
        return self._top_k(scores)

    def historical_change(
        self, owner: str, repo: str, number: int, observed_updated_at: datetime | None = None
    ) -> HistoricalChange:
        """Cached change detail, refetched when the observed update time moved."""
        key = ("change", owner, repo, number)
        cached, found = self.cache.get(key)
        if found and (observed_updated_at is None or cached.updated_at == observed_updated_at):
            return cached
        if found:
            logger.debug("Change #%d was updated since it was cached, refetching", number)
        detail = self.source.historical_change(owner, repo, number)
        self.cache.set(key, detail, self.ttl.historical_change)
        return detail

    # ------------------------------------------------------------------
    # History path
    # ------------------------------------------------------------------

    def _from_history(
        self,
        change: ChangeRequest,
        path: str,
        core: set[int],
        state: _PassState,
        cancel: CancelToken | None = None,
    ) -> list[OverlapScore]:
        history = self._file_history(change.owner, change.repo, path)
        threshold = self.scoring.high_overlap_threshold

        scores: list[OverlapScore] = []
        for hist in history:
            _checkpoint(cancel)
            if hist.number == change.number or state.is_saturated(hist.number, threshold):
                continue
            try:
                patch = self._file_patch(change.owner, change.repo, hist.number, path)
            except DataSourceError as exc:
                logger.warning("Skipping patch of #%d for %s: %s", hist.number, path, exc)
                continue
            hist_core = sorted(core_lines(patch))
            counts: dict[str, int] = {}
            for line in core:
                kind = self.classify(nearest_distance(hist_core, line))
                if kind is not None:
                    counts[kind] = counts.get(kind, 0) + 1
            if counts:
                scores.append(self._score(hist, path, counts))
        return self._top_k(scores)

    def _file_history(self, owner: str, repo: str, path: str) -> list[HistoricalChange]:
        key = ("file-history", owner, repo, path)
        cached, found = self.cache.get(key)
        if found:
            return cached
        history = self.source.merged_changes_for_file(
            owner, repo, path, self.scoring.file_history_limit
        )
        self.cache.set(key, history, self.ttl.file_history)
        return history

    def _file_patch(self, owner: str, repo: str, number: int, path: str) -> str:
        key = ("patch", owner, repo, number, path)
        cached, found = self.cache.get(key)
        if found:
            return cached
        patch = self.source.file_patch(owner, repo, number, path)
        self.cache.set(key, patch, self.ttl.file_patch)
        return patch
