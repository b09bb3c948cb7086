"""CODEOWNERS parsing and lookup."""

from __future__ import annotations

import logging

from bestreviewer.cache import TTLCache
from bestreviewer.config import CacheTTLConfig
from bestreviewer.schemas import OwnershipEntry
from bestreviewer.source import ChangeDataSource

logger = logging.getLogger(__name__)

CODEOWNERS_PATHS = [".github/CODEOWNERS", "CODEOWNERS", "docs/CODEOWNERS"]


# ---------------------------------------------------------------------------
# CODEOWNERS Parser
# ---------------------------------------------------------------------------

def parse_codeowners(content: str) -> list[OwnershipEntry]:
    """Parse a GitHub CODEOWNERS file into ownership entries."""
    entries: list[OwnershipEntry] = []
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        pattern = parts[0]
        owners: list[str] = []
        for token in parts[1:]:
            if token.startswith("#"):
                break
            owners.append(token.lstrip("@"))
        if owners:
            entries.append(OwnershipEntry(path_pattern=pattern, owners=owners, source="CODEOWNERS"))
    return entries


def pattern_matches(pattern: str, path: str) -> bool:
    """CODEOWNERS-style matching.

    Supports:
    - ``*`` alone matches every path
    - leading ``*`` matches by suffix (``*.go``)
    - trailing ``/`` matches everything under that directory
    - otherwise an exact path or any path below it
    - leading ``/`` anchors at the repo root
    """
    pattern = pattern.lstrip("/")
    path = path.lstrip("/")
    if not pattern:
        return False
    if pattern == "*":
        return True
    if pattern.startswith("*"):
        return path.endswith(pattern[1:])
    if pattern.endswith("/"):
        return path.startswith(pattern)
    return path == pattern or path.startswith(pattern + "/")


def owners_for_path(entries: list[OwnershipEntry], path: str) -> list[str]:
    """Owners of *path*. The last matching rule wins, as on GitHub."""
    for entry in reversed(entries):
        if pattern_matches(entry.path_pattern, path):
            return list(entry.owners)
    return []


def is_team(owner: str) -> bool:
    return "/" in owner


# ---------------------------------------------------------------------------
# OwnershipIndex
# ---------------------------------------------------------------------------

class OwnershipIndex:
    """Lazily fetches and caches a repository's CODEOWNERS rules."""

    def __init__(
        self,
        source: ChangeDataSource,
        cache: TTLCache,
        ttl: CacheTTLConfig | None = None,
    ) -> None:
        self.source = source
        self.cache = cache
        self.ttl = ttl or CacheTTLConfig()

    def entries(self, owner: str, repo: str) -> list[OwnershipEntry]:
        """Rules from the first CODEOWNERS found. A missing manifest is cached as empty."""
        key = ("ownership", owner, repo)
        cached, found = self.cache.get(key)
        if found:
            return cached

        entries: list[OwnershipEntry] = []
        for path in CODEOWNERS_PATHS:
            content = self.source.file_content(owner, repo, path)
            if content:
                entries = parse_codeowners(content)
                logger.info("Parsed %d ownership rules from %s", len(entries), path)
                break  # Only use the first CODEOWNERS found
        else:
            logger.debug("No CODEOWNERS in %s/%s", owner, repo)

        self.cache.set(key, entries, self.ttl.ownership)
        return entries

    def owners(self, owner: str, repo: str, paths: list[str]) -> list[str]:
        """Individual owners across *paths*, in first-seen order. Teams are skipped."""
        rules = self.entries(owner, repo)
        out: list[str] = []
        for path in paths:
            for login in owners_for_path(rules, path):
                if is_team(login):
                    logger.debug("Skipping team owner %s for %s", login, path)
                    continue
                if login not in out:
                    out.append(login)
        return out
