"""The change-request data source the engine reads from."""

from __future__ import annotations

from typing import Protocol

from bestreviewer.schemas import (
    AccountType,
    BlameRecord,
    ChangedFile,
    ChangeRequest,
    Contributor,
    HistoricalChange,
)


class DataSourceError(Exception):
    """A remote call failed. The message names the call that failed."""


class ChangeDataSource(Protocol):
    """Everything the engine needs from a code-hosting platform.

    Any method may raise :class:`DataSourceError`. Lists of historical
    changes are ordered most recently merged first.
    """

    def change_request(self, owner: str, repo: str, number: int) -> ChangeRequest: ...

    def changed_files(self, owner: str, repo: str, number: int) -> list[ChangedFile]: ...

    def blame(self, owner: str, repo: str, path: str, ref: str) -> list[BlameRecord]: ...

    def historical_change(self, owner: str, repo: str, number: int) -> HistoricalChange: ...

    def file_patch(self, owner: str, repo: str, number: int, path: str) -> str: ...

    def merged_changes_in_directory(
        self, owner: str, repo: str, directory: str, limit: int
    ) -> list[HistoricalChange]: ...

    def merged_changes_for_file(
        self, owner: str, repo: str, path: str, limit: int
    ) -> list[HistoricalChange]: ...

    def merged_changes_in_project(
        self, owner: str, repo: str, limit: int
    ) -> list[HistoricalChange]: ...

    def account_type(self, login: str) -> AccountType: ...

    def has_write_access(self, owner: str, repo: str, login: str) -> tuple[bool, str]:
        """Return ``(allowed, association)`` where association is e.g. ``"write"``."""
        ...

    def open_review_count(self, owner: str, login: str, stale_days: int) -> int: ...

    def file_content(self, owner: str, repo: str, path: str) -> str | None:
        """Return the file text, or None when the file does not exist."""
        ...

    def contributors(self, owner: str, repo: str) -> list[Contributor]: ...

    def request_reviewers(
        self, owner: str, repo: str, number: int, logins: list[str]
    ) -> None: ...
