"""Data models for bestreviewer."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Change requests
# ---------------------------------------------------------------------------

class ChangedFile(BaseModel):
    path: str
    additions: int = 0
    deletions: int = 0
    status: str = "modified"  # added, modified, removed, renamed
    patch: str = ""  # raw diff hunk for this file

    @property
    def delta(self) -> int:
        return self.additions + self.deletions


class ChangeState(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class ChangeRequest(BaseModel):
    """A pull request as fetched from the platform. Read-only to the engine."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    number: int
    author: str
    title: str = ""
    state: ChangeState = ChangeState.OPEN
    draft: bool = False
    base_ref: str = ""
    base_sha: str = ""
    changed_files: list[ChangedFile] = Field(default_factory=list)
    updated_at: datetime | None = None
    last_commit_at: datetime | None = None
    last_review_at: datetime | None = None
    requested_reviewers: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

class BlameRecord(BaseModel):
    path: str
    line: int
    author: str = ""
    commit: str = ""
    change_number: int | None = None  # None for commits pushed without a PR
    change_updated_at: datetime | None = None


class HistoricalChange(BaseModel):
    number: int
    author: str = ""
    approvers: list[str] = Field(default_factory=list)
    merged_by: str = ""
    merged_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def effective_time(self) -> datetime | None:
        """Merge time, falling back to last update when the merge time is unknown."""
        return self.merged_at or self.updated_at


class OverlapScore(BaseModel):
    change: HistoricalChange
    path: str
    hits: int = 0
    exact: int = 0
    context: int = 0
    nearby: int = 0
    score: float = 0.0


class Contributor(BaseModel):
    login: str
    contributions: int = 0


class AccountType(str, enum.Enum):
    USER = "User"
    BOT = "Bot"
    ORGANIZATION = "Organization"


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

class CandidateCategory(str, enum.Enum):
    AUTHOR = "author-context"
    ACTIVITY = "activity-context"


class SelectionMethod(str, enum.Enum):
    ASSIGNEE = "assignee"
    CODEOWNER = "codeowner"
    OVERLAP_AUTHOR = "overlap-author"
    OVERLAP_REVIEWER = "overlap-reviewer"
    DIRECTORY_AUTHOR = "directory-author"
    DIRECTORY_REVIEWER = "directory-reviewer"
    PROJECT_AUTHOR = "project-author"
    PROJECT_REVIEWER = "project-reviewer"
    TOP_CONTRIBUTOR = "top-contributor"

    @property
    def category(self) -> CandidateCategory:
        if self in _ACTIVITY_METHODS:
            return CandidateCategory.ACTIVITY
        return CandidateCategory.AUTHOR


_ACTIVITY_METHODS = frozenset({
    SelectionMethod.OVERLAP_REVIEWER,
    SelectionMethod.DIRECTORY_REVIEWER,
    SelectionMethod.PROJECT_REVIEWER,
})


class ReviewerCandidate(BaseModel):
    login: str
    method: SelectionMethod
    context_score: float = Field(default=0.0, ge=0.0)
    activity_score: float = Field(default=0.0, ge=0.0)
    last_activity: datetime | None = None
    association: str = ""  # write-access tag recorded at validation time
    sources: list[str] = Field(default_factory=list)

    @property
    def combined_score(self) -> float:
        return self.context_score + self.activity_score

    @property
    def category(self) -> CandidateCategory:
        return self.method.category


class ResolutionResult(BaseModel):
    owner: str
    repo: str
    number: int
    author: str
    draft: bool = False
    state: ChangeState = ChangeState.OPEN
    requested_reviewers: list[str] = Field(default_factory=list)
    reviewers: list[ReviewerCandidate] = Field(default_factory=list, max_length=2)
    levels: list[str] = Field(default_factory=list)

    @property
    def primary(self) -> ReviewerCandidate | None:
        return self.reviewers[0] if self.reviewers else None

    @property
    def secondary(self) -> ReviewerCandidate | None:
        return self.reviewers[1] if len(self.reviewers) > 1 else None

    @property
    def logins(self) -> list[str]:
        return [r.login for r in self.reviewers]

    @property
    def hold_reason(self) -> str | None:
        """Why the reviewers must not be requested, or ``None`` when they may be."""
        if self.draft:
            return "draft"
        if self.state != ChangeState.OPEN:
            return self.state.value
        if self.requested_reviewers:
            return "reviewers already requested"
        if not self.reviewers:
            return "no reviewers"
        return None

    @property
    def should_submit(self) -> bool:
        return self.hold_reason is None


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------

class OwnershipEntry(BaseModel):
    path_pattern: str
    owners: list[str]
    source: str = "CODEOWNERS"
