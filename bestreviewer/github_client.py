"""GitHub REST/GraphQL data source with rate-limit handling."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import requests
from pydantic import BaseModel, Field, ValidationError

from bestreviewer.config import DEFAULT_API_URL
from bestreviewer.schemas import (
    AccountType,
    BlameRecord,
    ChangedFile,
    ChangeRequest,
    ChangeState,
    Contributor,
    HistoricalChange,
)
from bestreviewer.source import DataSourceError

logger = logging.getLogger(__name__)

PER_PAGE = 100
MAX_RETRIES = 3
BACKOFF_FACTOR = 2.0
WRITE_PERMISSIONS = {"admin", "maintain", "write"}


class GitHubClientError(DataSourceError):
    pass


class RateLimitError(GitHubClientError):
    pass


_M = TypeVar("_M", bound=BaseModel)


def _decode(model: type[_M], data: Any) -> _M:
    """Validate a response payload, reporting a malformed one as a client error."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise GitHubClientError(f"Unexpected {model.__name__} payload: {exc}") from exc


def _logins(users: list[dict[str, Any]] | None) -> list[str]:
    return [u["login"] for u in users or [] if u.get("login")]


# ---------------------------------------------------------------------------
# GraphQL queries
# ---------------------------------------------------------------------------

_PR_FIELDS = """
number
merged
mergedAt
updatedAt
author { login }
mergedBy { login }
reviews(first: 10, states: APPROVED) { nodes { author { login } } }
"""

BLAME_QUERY = """
query($owner: String!, $name: String!, $ref: String!, $path: String!) {
  repository(owner: $owner, name: $name) {
    object(expression: $ref) {
      ... on Commit {
        blame(path: $path) {
          ranges {
            startingLine
            endingLine
            commit {
              oid
              author { user { login } }
              associatedPullRequests(first: 1) { nodes { %s } }
            }
          }
        }
      }
    }
  }
}
""" % _PR_FIELDS

PATH_HISTORY_QUERY = """
query($owner: String!, $name: String!, $path: String!, $limit: Int!) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(first: $limit, path: $path) {
            nodes { associatedPullRequests(first: 1) { nodes { %s } } }
          }
        }
      }
    }
  }
}
""" % _PR_FIELDS

PROJECT_HISTORY_QUERY = """
query($owner: String!, $name: String!, $limit: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequests(first: $limit, states: MERGED, orderBy: {field: UPDATED_AT, direction: DESC}) {
      nodes { %s }
    }
  }
}
""" % _PR_FIELDS


# ---------------------------------------------------------------------------
# Typed GraphQL responses
# ---------------------------------------------------------------------------

class _Actor(BaseModel):
    login: str = ""


class _Review(BaseModel):
    author: _Actor | None = None


class _Reviews(BaseModel):
    nodes: list[_Review] = Field(default_factory=list)


class _PullRequestNode(BaseModel):
    number: int
    merged: bool = False
    mergedAt: datetime | None = None
    updatedAt: datetime | None = None
    author: _Actor | None = None
    mergedBy: _Actor | None = None
    reviews: _Reviews = Field(default_factory=_Reviews)

    def to_change(self) -> HistoricalChange:
        author = self.author.login if self.author else ""
        approvers: list[str] = []
        for review in self.reviews.nodes:
            login = review.author.login if review.author else ""
            if login and login != author and login not in approvers:
                approvers.append(login)
        return HistoricalChange(
            number=self.number,
            author=author,
            approvers=approvers,
            merged_by=self.mergedBy.login if self.mergedBy else "",
            merged_at=self.mergedAt,
            updated_at=self.updatedAt,
        )


class _PullRequestConnection(BaseModel):
    nodes: list[_PullRequestNode] = Field(default_factory=list)


class _CommitUser(BaseModel):
    user: _Actor | None = None


class _BlameCommit(BaseModel):
    oid: str = ""
    author: _CommitUser | None = None
    associatedPullRequests: _PullRequestConnection = Field(default_factory=_PullRequestConnection)


class _BlameRange(BaseModel):
    startingLine: int
    endingLine: int
    commit: _BlameCommit


class _Blame(BaseModel):
    ranges: list[_BlameRange] = Field(default_factory=list)


class _BlameObject(BaseModel):
    blame: _Blame | None = None


class _BlameRepository(BaseModel):
    object: _BlameObject | None = None


class _BlameResponse(BaseModel):
    repository: _BlameRepository | None = None


class _HistoryNode(BaseModel):
    associatedPullRequests: _PullRequestConnection = Field(default_factory=_PullRequestConnection)


class _History(BaseModel):
    nodes: list[_HistoryNode] = Field(default_factory=list)


class _HistoryTarget(BaseModel):
    history: _History | None = None


class _BranchRef(BaseModel):
    target: _HistoryTarget | None = None


class _HistoryRepository(BaseModel):
    defaultBranchRef: _BranchRef | None = None


class _HistoryResponse(BaseModel):
    repository: _HistoryRepository | None = None


class _ProjectRepository(BaseModel):
    pullRequests: _PullRequestConnection = Field(default_factory=_PullRequestConnection)


class _ProjectResponse(BaseModel):
    repository: _ProjectRepository | None = None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GitHubClient:
    """GitHub implementation of :class:`~bestreviewer.source.ChangeDataSource`."""

    def __init__(self, token: str, api_url: str = DEFAULT_API_URL, timeout: float = 30.0) -> None:
        if not token:
            raise GitHubClientError(
                "GitHub token is required. Set GITHUB_TOKEN env var or config github_token."
            )
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    @property
    def graphql_url(self) -> str:
        # GitHub Enterprise serves REST at /api/v3 and GraphQL at /api/graphql.
        if self.api_url.endswith("/v3"):
            return self.api_url[: -len("/v3")] + "/graphql"
        return f"{self.api_url}/graphql"

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GitHubClientError(f"{method} {url} failed: {exc}") from exc

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> Any:
        url = f"{self.api_url}{path}" if path.startswith("/") else path
        for attempt in range(1, MAX_RETRIES + 1):
            resp = self._send(method, url, params=params, **kwargs)
            if resp.status_code in (200, 201):
                if not resp.content:
                    return None
                try:
                    return resp.json()
                except ValueError as exc:
                    raise GitHubClientError(f"{method} {path} returned invalid JSON: {exc}") from exc
            if resp.status_code == 204:
                return None
            if resp.status_code == 404 and allow_404:
                return None
            if resp.status_code in (403, 429) and "rate limit" in resp.text.lower():
                if attempt == MAX_RETRIES:
                    raise RateLimitError(f"Rate limit exhausted: {path}")
                reset_at = int(resp.headers.get("X-RateLimit-Reset", 0))
                wait = max(reset_at - int(time.time()), 0) + 1
                logger.warning("Rate limited. Sleeping %ds (attempt %d/%d)", wait, attempt, MAX_RETRIES)
                time.sleep(min(wait, 120))  # cap wait at 2 min
                continue
            if resp.status_code in (502, 503, 504) and attempt < MAX_RETRIES:
                time.sleep(BACKOFF_FACTOR ** attempt)
                continue
            raise GitHubClientError(f"{method} {path} returned HTTP {resp.status_code}")
        raise GitHubClientError(f"Request failed after {MAX_RETRIES} retries: {path}")

    def _get(self, path: str, params: dict[str, Any] | None = None, allow_404: bool = False) -> Any:
        return self._request("GET", path, params=params, allow_404=allow_404)

    def _paginate(
        self, path: str, params: dict[str, Any] | None = None, max_items: int = 1000
    ) -> list[Any]:
        """Paginate through a GitHub list endpoint."""
        params = dict(params or {})
        params.setdefault("per_page", PER_PAGE)
        items: list[Any] = []
        page = 1
        while len(items) < max_items:
            params["page"] = page
            data = self._get(path, params=params)
            if not data:
                break
            items.extend(data)
            if len(data) < PER_PAGE:
                break
            page += 1
        return items[:max_items]

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        data = self._request("POST", self.graphql_url, json={"query": query, "variables": variables})
        if not isinstance(data, dict):
            raise GitHubClientError("GraphQL returned an empty response")
        if data.get("errors"):
            messages = "; ".join(e.get("message", "") for e in data["errors"])
            raise GitHubClientError(f"GraphQL error: {messages}")
        return data.get("data") or {}

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def change_request(self, owner: str, repo: str, number: int) -> ChangeRequest:
        pr = self._get(f"/repos/{owner}/{repo}/pulls/{number}")
        if pr.get("merged_at"):
            state = ChangeState.MERGED
        else:
            state = pr.get("state", "open")

        commits = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/commits", max_items=250)
        last_commit_at = None
        if commits:
            last_commit_at = ((commits[-1].get("commit") or {}).get("committer") or {}).get("date")

        reviews = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/reviews", max_items=200)
        submitted = [r["submitted_at"] for r in reviews if r.get("submitted_at")]

        return _decode(ChangeRequest, dict(
            owner=owner,
            repo=repo,
            number=number,
            author=(pr.get("user") or {}).get("login", ""),
            title=pr.get("title", "") or "",
            state=state,
            draft=bool(pr.get("draft")),
            base_ref=(pr.get("base") or {}).get("ref", ""),
            base_sha=(pr.get("base") or {}).get("sha", ""),
            changed_files=self.changed_files(owner, repo, number),
            updated_at=pr.get("updated_at"),
            last_commit_at=last_commit_at,
            last_review_at=max(submitted) if submitted else None,
            requested_reviewers=_logins(pr.get("requested_reviewers")),
            assignees=_logins(pr.get("assignees")),
        ))

    def changed_files(self, owner: str, repo: str, number: int) -> list[ChangedFile]:
        files = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/files", max_items=3000)
        return [
            ChangedFile(
                path=f["filename"],
                additions=f.get("additions", 0),
                deletions=f.get("deletions", 0),
                status=f.get("status", "modified"),
                patch=f.get("patch", "") or "",
            )
            for f in files
        ]

    def historical_change(self, owner: str, repo: str, number: int) -> HistoricalChange:
        pr = self._get(f"/repos/{owner}/{repo}/pulls/{number}")
        author = (pr.get("user") or {}).get("login", "")
        reviews = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/reviews", max_items=200)
        approvers: list[str] = []
        for r in reviews:
            login = (r.get("user") or {}).get("login", "")
            if r.get("state") == "APPROVED" and login and login != author and login not in approvers:
                approvers.append(login)
        return _decode(HistoricalChange, dict(
            number=number,
            author=author,
            approvers=approvers,
            merged_by=(pr.get("merged_by") or {}).get("login", ""),
            merged_at=pr.get("merged_at"),
            updated_at=pr.get("updated_at"),
        ))

    def file_patch(self, owner: str, repo: str, number: int, path: str) -> str:
        for f in self.changed_files(owner, repo, number):
            if f.path == path:
                return f.patch
        return ""

    def request_reviewers(self, owner: str, repo: str, number: int, logins: list[str]) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{number}/requested_reviewers",
            json={"reviewers": logins},
        )
        logger.info("Requested reviewers %s on %s/%s#%d", ", ".join(logins), owner, repo, number)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def blame(self, owner: str, repo: str, path: str, ref: str) -> list[BlameRecord]:
        data = self._graphql(
            BLAME_QUERY,
            {"owner": owner, "name": repo, "ref": ref or "HEAD", "path": path},
        )
        resp = _decode(_BlameResponse, data)
        if not resp.repository or not resp.repository.object or not resp.repository.object.blame:
            raise GitHubClientError(f"No blame available for {owner}/{repo}:{path}@{ref}")

        records: list[BlameRecord] = []
        for rng in resp.repository.object.blame.ranges:
            commit = rng.commit
            author = commit.author.user.login if commit.author and commit.author.user else ""
            prs = commit.associatedPullRequests.nodes
            pr = prs[0] if prs and prs[0].merged else None
            for line in range(rng.startingLine, rng.endingLine + 1):
                records.append(
                    BlameRecord(
                        path=path,
                        line=line,
                        author=author,
                        commit=commit.oid,
                        change_number=pr.number if pr else None,
                        change_updated_at=pr.updatedAt if pr else None,
                    )
                )
        return records

    def _path_history(self, owner: str, repo: str, path: str, limit: int) -> list[HistoricalChange]:
        data = self._graphql(
            PATH_HISTORY_QUERY,
            {"owner": owner, "name": repo, "path": path, "limit": limit},
        )
        resp = _decode(_HistoryResponse, data)
        repo_node = resp.repository
        if not repo_node or not repo_node.defaultBranchRef or not repo_node.defaultBranchRef.target:
            return []
        history = repo_node.defaultBranchRef.target.history
        if not history:
            return []

        seen: set[int] = set()
        out: list[HistoricalChange] = []
        for node in history.nodes:
            for pr in node.associatedPullRequests.nodes:
                if pr.merged and pr.number not in seen:
                    seen.add(pr.number)
                    out.append(pr.to_change())
        return out

    def merged_changes_in_directory(
        self, owner: str, repo: str, directory: str, limit: int
    ) -> list[HistoricalChange]:
        return self._path_history(owner, repo, directory, limit)

    def merged_changes_for_file(
        self, owner: str, repo: str, path: str, limit: int
    ) -> list[HistoricalChange]:
        return self._path_history(owner, repo, path, limit)

    def merged_changes_in_project(
        self, owner: str, repo: str, limit: int
    ) -> list[HistoricalChange]:
        data = self._graphql(PROJECT_HISTORY_QUERY, {"owner": owner, "name": repo, "limit": limit})
        resp = _decode(_ProjectResponse, data)
        if not resp.repository:
            return []
        return [pr.to_change() for pr in resp.repository.pullRequests.nodes if pr.merged]

    # ------------------------------------------------------------------
    # Users and access
    # ------------------------------------------------------------------

    def account_type(self, login: str) -> AccountType:
        user = self._get(f"/users/{login}")
        try:
            return AccountType(user.get("type", "User"))
        except ValueError:
            raise GitHubClientError(f"Unknown account type for {login}: {user.get('type')}") from None

    def has_write_access(self, owner: str, repo: str, login: str) -> tuple[bool, str]:
        data = self._get(
            f"/repos/{owner}/{repo}/collaborators/{login}/permission", allow_404=True
        )
        if data is None:
            return False, "none"
        permission = data.get("role_name") or data.get("permission") or "none"
        return permission in WRITE_PERMISSIONS, permission

    def open_review_count(self, owner: str, login: str, stale_days: int) -> int:
        """Open, recently updated PRs in *owner* assigned to or awaiting review from *login*."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=stale_days)).strftime("%Y-%m-%d")
        seen: set[int] = set()
        for qualifier in ("assignee", "review-requested"):
            query = f"is:pr is:open org:{owner} {qualifier}:{login} updated:>={cutoff}"
            data = self._get("/search/issues", params={"q": query, "per_page": PER_PAGE})
            for item in (data or {}).get("items", []):
                seen.add(item["id"])
        return len(seen)

    # ------------------------------------------------------------------
    # Repo helpers
    # ------------------------------------------------------------------

    def file_content(self, owner: str, repo: str, path: str) -> str | None:
        """Get raw file content from the repo. Returns None if not found."""
        url = f"{self.api_url}/repos/{owner}/{repo}/contents/{path}"
        resp = self._send("GET", url, headers={"Accept": "application/vnd.github.raw+json"})
        if resp.status_code == 200:
            return resp.text
        if resp.status_code == 404:
            return None
        raise GitHubClientError(f"GET contents {path} returned HTTP {resp.status_code}")

    def contributors(self, owner: str, repo: str) -> list[Contributor]:
        items = self._paginate(f"/repos/{owner}/{repo}/contributors", max_items=100)
        return [
            Contributor(login=c["login"], contributions=c.get("contributions", 0))
            for c in items
            if c.get("login") and c.get("type", "User") == "User"
        ]
