"""Errors raised by reviewer resolution."""

from __future__ import annotations

import threading


class ResolutionError(Exception):
    pass


class NoReviewersFound(ResolutionError):
    """No eligible reviewer exists for the change. Callers may leave it unassigned."""

    def __init__(self, message: str = "no eligible reviewers found") -> None:
        super().__init__(message)


class OnlyAuthorFound(NoReviewersFound):
    """Every search level ran and the only identity seen was the change author."""

    def __init__(self, author: str) -> None:
        self.author = author
        super().__init__(
            "exhausted all reviewer candidates: "
            f"the only candidate found was the PR author ({author})"
        )


class ResolutionCancelled(ResolutionError):
    pass


class CancelToken:
    """Cooperative cancellation flag shared by one resolution and its workers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ResolutionCancelled("reviewer resolution was cancelled")
