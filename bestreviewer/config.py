"""Configuration loading from YAML, env vars, and CLI defaults."""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr

DEFAULT_CONFIG_PATHS = [
    Path("bestreviewer.yaml"),
    Path.home() / ".bestreviewer" / "config.yaml",
]

DEFAULT_API_URL = "https://api.github.com"


class ScoringConfig(BaseModel):
    """Weights, radii and bounds used by the search levels."""

    context_radius: int = 2
    nearby_distance: int = 3
    exact_weight: float = 1.0
    context_weight: float = 0.7
    nearby_weight: float = 0.5
    decay_days: float = 30.0
    unknown_age_days: float = 365.0

    top_files: int = 3
    top_changes: int = 3
    high_overlap_threshold: float = 5.0

    assignee_score: float = 100.0
    codeowner_score: float = 95.0
    overlap_base_score: float = 50.0
    directory_score: float = 30.0
    project_score: float = 10.0
    contributor_score: float = 5.0

    directory_history_limit: int = 10
    project_history_limit: int = 5
    file_history_limit: int = 10

    ignored_files: list[str] = Field(
        default_factory=lambda: [
            "go.mod",
            "go.sum",
            "package-lock.json",
            "yarn.lock",
            "pnpm-lock.yaml",
            "Gemfile.lock",
            "Cargo.lock",
            "poetry.lock",
            "uv.lock",
        ]
    )


class WorkloadConfig(BaseModel):
    enabled: bool = True
    threshold: int = 9
    stale_days: int = 90


class CacheTTLConfig(BaseModel):
    """Time-to-live per cached kind. ``None`` keeps the entry for the whole session."""

    blame: timedelta | None = None
    blame_failure: timedelta = timedelta(minutes=10)
    historical_change: timedelta = timedelta(days=20)
    account_type: timedelta = timedelta(days=30)
    ownership: timedelta = timedelta(days=3)
    directory_history: timedelta = timedelta(hours=4)
    project_history: timedelta = timedelta(hours=1)
    file_history: timedelta = timedelta(hours=4)
    file_patch: timedelta = timedelta(days=3)
    contributors: timedelta = timedelta(hours=4)
    collaborator: timedelta = timedelta(hours=6)
    workload: timedelta = timedelta(hours=6)
    workload_failure: timedelta = timedelta(minutes=10)


class BotPolicy(BaseModel):
    """Login patterns that mark an account as automation.

    Matching is case-insensitive. The allowlist always wins.
    """

    suffixes: list[str] = Field(
        default_factory=lambda: ["[bot]", "-bot", "_bot", ".bot"]
    )
    prefixes: list[str] = Field(default_factory=lambda: ["bot-", "bot_"])
    known_bots: list[str] = Field(
        default_factory=lambda: [
            "dependabot", "renovate", "github-actions", "stale", "mergify",
            "codecov", "coveralls", "snyk", "whitesource", "greenkeeper",
            "imgbot", "allcontributors", "netlify", "vercel", "cypress",
            "semantic-release", "release-drafter", "probot", "octokitbot",
            "circleci", "travis", "jenkins", "buildkite", "semaphore",
            "appveyor", "azure-pipelines", "sonarcloud", "deepsource",
            "codefactor", "codacy", "hound",
        ]
    )
    fragments: list[str] = Field(
        default_factory=lambda: ["automation", "ci-bot", "cd-bot"]
    )
    service_account_markers: list[str] = Field(
        default_factory=lambda: [
            "octo-sts", "-sts", "-svc", "-service", "-system",
            "-automation", "-deploy", "-release", "release-manager",
        ]
    )
    allowlist: list[str] = Field(default_factory=list)


class Config(BaseModel):
    github_token: SecretStr = SecretStr("")
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 30.0
    workers: int = 3
    reviewer_count: int = Field(default=2, ge=1, le=2)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    workload: WorkloadConfig = Field(default_factory=WorkloadConfig)
    cache_ttl: CacheTTLConfig = Field(default_factory=CacheTTLConfig)
    bots: BotPolicy = Field(default_factory=BotPolicy)


def load_config(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> Config:
    """Load config from YAML file, env vars, and caller overrides (in that priority)."""
    raw: dict[str, Any] = {}

    # 1. Load from YAML file
    paths_to_try = [Path(config_path)] if config_path else DEFAULT_CONFIG_PATHS
    for p in paths_to_try:
        if p.exists():
            with open(p) as f:
                raw = yaml.safe_load(f) or {}
            break

    # 2. Env var overrides
    if tok := os.environ.get("GITHUB_TOKEN"):
        raw.setdefault("github_token", tok)
    if url := os.environ.get("BESTREVIEWER_API_URL"):
        raw["api_url"] = url

    # 3. Caller overrides (CLI flags)
    if overrides:
        raw.update({k: v for k, v in overrides.items() if v is not None})

    return Config(**raw)
