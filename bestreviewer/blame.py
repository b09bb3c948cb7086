"""Per-file blame lookups, fetched once and indexed by line."""

from __future__ import annotations

import logging

from bestreviewer.cache import TTLCache
from bestreviewer.config import CacheTTLConfig
from bestreviewer.schemas import BlameRecord
from bestreviewer.source import ChangeDataSource, DataSourceError

logger = logging.getLogger(__name__)


class BlameIndex:
    """Line -> blame record maps for files at a given head.

    Each (repository, file, head) is fetched at most once while its cache
    entry lives. A failed fetch is remembered for a short while so sibling
    lookups fall back to history instead of hammering the blame API.
    """

    def __init__(
        self,
        source: ChangeDataSource,
        cache: TTLCache,
        ttl: CacheTTLConfig | None = None,
    ) -> None:
        self.source = source
        self.cache = cache
        self.ttl = ttl or CacheTTLConfig()

    def lines(self, owner: str, repo: str, path: str, ref: str) -> dict[int, BlameRecord] | None:
        """Return the blame map for *path*, or None when blame is unavailable."""
        key = ("blame", owner, repo, path, ref)
        if self.cache.has_failure(key):
            return None
        cached, found = self.cache.get(key)
        if found:
            return cached

        try:
            records = self.source.blame(owner, repo, path, ref)
        except DataSourceError as exc:
            logger.warning("Blame unavailable for %s/%s:%s@%s: %s", owner, repo, path, ref, exc)
            self.cache.set_failure(key, self.ttl.blame_failure)
            return None

        by_line = {r.line: r for r in records}
        self.cache.set(key, by_line, self.ttl.blame)
        logger.debug("Blamed %s: %d lines", path, len(by_line))
        return by_line
