"""Shared fixtures: an in-memory data source and change builders."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from bestreviewer.config import Config
from bestreviewer.schemas import (
    AccountType,
    BlameRecord,
    ChangedFile,
    ChangeRequest,
    Contributor,
    HistoricalChange,
)
from bestreviewer.source import DataSourceError

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def days_ago(n: float) -> datetime:
    return NOW - timedelta(days=n)


def make_patch(start: int, added: int, context: int = 0) -> str:
    """A one-hunk patch adding *added* lines at *start* after *context* lines."""
    lines = [" ctx"] * context + ["+new"] * added
    return f"@@ -{start},{context} +{start},{context + added} @@\n" + "\n".join(lines)


def make_change(
    files: list[ChangedFile] | None = None,
    author: str = "alice",
    number: int = 100,
    **kwargs: Any,
) -> ChangeRequest:
    defaults: dict[str, Any] = {
        "owner": "acme",
        "repo": "widgets",
        "number": number,
        "author": author,
        "base_sha": "base123",
        "changed_files": files if files is not None else [],
    }
    defaults.update(kwargs)
    return ChangeRequest(**defaults)


def blame_range(path: str, start: int, end: int, author: str, number: int | None,
                updated_at: datetime | None = None) -> list[BlameRecord]:
    return [
        BlameRecord(path=path, line=n, author=author, commit=f"c{number}",
                    change_number=number, change_updated_at=updated_at)
        for n in range(start, end + 1)
    ]


class FakeSource:
    """In-memory ChangeDataSource. Set ``fail`` to make a method raise."""

    def __init__(self) -> None:
        self.changes: dict[int, ChangeRequest] = {}
        self.blames: dict[str, list[BlameRecord]] = {}
        self.details: dict[int, HistoricalChange] = {}
        self.patches: dict[tuple[int, str], str] = {}
        self.dir_history: dict[str, list[HistoricalChange]] = {}
        self.file_history: dict[str, list[HistoricalChange]] = {}
        self.project_history: list[HistoricalChange] = []
        self.accounts: dict[str, AccountType] = {}
        self.no_write: set[str] = set()
        self.workloads: dict[str, int] = {}
        self.files: dict[str, str] = {}
        self.contributor_list: list[Contributor] = []
        self.fail: set[str] = set()
        self.fail_logins: dict[str, set[str]] = {}
        self.calls: Counter[str] = Counter()
        self.requested: list[tuple[int, list[str]]] = []

    def _hit(self, name: str, login: str = "") -> None:
        self.calls[name] += 1
        if name in self.fail or login in self.fail_logins.get(name, set()):
            raise DataSourceError(f"{name} failed")

    def change_request(self, owner: str, repo: str, number: int) -> ChangeRequest:
        self._hit("change_request")
        return self.changes[number]

    def changed_files(self, owner: str, repo: str, number: int) -> list[ChangedFile]:
        self._hit("changed_files")
        return list(self.changes[number].changed_files)

    def blame(self, owner: str, repo: str, path: str, ref: str) -> list[BlameRecord]:
        self._hit("blame")
        if path not in self.blames:
            raise DataSourceError(f"no blame for {path}")
        return self.blames[path]

    def historical_change(self, owner: str, repo: str, number: int) -> HistoricalChange:
        self._hit("historical_change")
        return self.details[number]

    def file_patch(self, owner: str, repo: str, number: int, path: str) -> str:
        self._hit("file_patch")
        return self.patches.get((number, path), "")

    def merged_changes_in_directory(self, owner: str, repo: str, directory: str, limit: int) -> list[HistoricalChange]:
        self._hit("merged_changes_in_directory")
        return self.dir_history.get(directory, [])[:limit]

    def merged_changes_for_file(self, owner: str, repo: str, path: str, limit: int) -> list[HistoricalChange]:
        self._hit("merged_changes_for_file")
        return self.file_history.get(path, [])[:limit]

    def merged_changes_in_project(self, owner: str, repo: str, limit: int) -> list[HistoricalChange]:
        self._hit("merged_changes_in_project")
        return self.project_history[:limit]

    def account_type(self, login: str) -> AccountType:
        self._hit("account_type", login)
        return self.accounts.get(login, AccountType.USER)

    def has_write_access(self, owner: str, repo: str, login: str) -> tuple[bool, str]:
        self._hit("has_write_access", login)
        if login in self.no_write:
            return False, "read"
        return True, "write"

    def open_review_count(self, owner: str, login: str, stale_days: int) -> int:
        self._hit("open_review_count", login)
        return self.workloads.get(login, 0)

    def file_content(self, owner: str, repo: str, path: str) -> str | None:
        self._hit("file_content")
        return self.files.get(path)

    def contributors(self, owner: str, repo: str) -> list[Contributor]:
        self._hit("contributors")
        return list(self.contributor_list)

    def request_reviewers(self, owner: str, repo: str, number: int, logins: list[str]) -> None:
        self._hit("request_reviewers")
        self.requested.append((number, list(logins)))


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def clock() -> Any:
    return lambda: NOW
