"""Tests for candidate validation and bot detection."""

from __future__ import annotations

from datetime import timedelta

import pytest

from bestreviewer.cache import TTLCache
from bestreviewer.config import BotPolicy, CacheTTLConfig, WorkloadConfig
from bestreviewer.schemas import AccountType
from bestreviewer.validator import BotClassifier, CandidateValidator

from conftest import make_change


def _validator(source, cache: TTLCache | None = None, **kwargs) -> CandidateValidator:
    return CandidateValidator(source, cache if cache is not None else TTLCache(), make_change(author="alice"), **kwargs)


# ---------------------------------------------------------------------------
# Bot name patterns
# ---------------------------------------------------------------------------

class TestBotClassifier:
    @pytest.mark.parametrize("login", [
        "dependabot[bot]",
        "dependabot",
        "renovate",
        "github-actions",
        "my-custom-bot",
        "deploy_bot",
        "team.bot",
        "bot-runner",
        "bot_helper",
        "Codecov",
        "infra-automation",
        "ci-bot-east",
        "octo-sts",
        "payments-svc",
        "release-manager",
        "acme-deploy",
    ])
    def test_bots_detected(self, login: str) -> None:
        is_bot, reason = BotClassifier(BotPolicy()).classify(login)
        assert is_bot, login
        assert reason

    @pytest.mark.parametrize("login", ["alice", "bob-smith", "robotics-dev", "abbott", "stalemate"])
    def test_humans_pass(self, login: str) -> None:
        assert not BotClassifier(BotPolicy()).classify(login)[0]

    def test_allowlist_wins(self) -> None:
        policy = BotPolicy(allowlist=["Release-Manager"])
        assert not BotClassifier(policy).classify("release-manager") == (False, "")


# ---------------------------------------------------------------------------
# Validation order
# ---------------------------------------------------------------------------

class TestCandidateValidator:
    def test_valid_human(self, source) -> None:
        result = _validator(source).validate("bob")
        assert result.is_valid
        assert result.association == "write"

    def test_author_rejected_case_insensitive(self, source) -> None:
        result = _validator(source).validate("Alice")
        assert not result.is_valid
        assert result.reason == "author"
        assert source.calls["account_type"] == 0

    def test_bot_name_rejected_without_remote_calls(self, source) -> None:
        result = _validator(source).validate("renovate[bot]")
        assert not result.is_valid
        assert sum(source.calls.values()) == 0

    @pytest.mark.parametrize("account", [AccountType.BOT, AccountType.ORGANIZATION])
    def test_account_type_rejected(self, source, account: AccountType) -> None:
        source.accounts["shadow"] = account
        result = _validator(source).validate("shadow")
        assert not result.is_valid
        assert result.reason == f"account-type:{account.value}"

    def test_account_type_failure_is_inconclusive(self, source) -> None:
        source.fail.add("account_type")
        assert _validator(source).validate("bob").is_valid

    def test_no_write_access_rejected(self, source) -> None:
        source.no_write.add("bob")
        result = _validator(source).validate("bob")
        assert not result.is_valid
        assert result.reason == "no-write-access:read"

    def test_write_access_fails_closed(self, source) -> None:
        source.fail.add("has_write_access")
        result = _validator(source).validate("bob")
        assert not result.is_valid
        assert result.reason == "no-write-access:unknown"

    def test_write_access_failure_not_cached(self, source) -> None:
        cache = TTLCache()
        source.fail.add("has_write_access")
        assert not _validator(source, cache).is_valid("bob")
        source.fail.clear()
        assert _validator(source, cache).is_valid("bob")

    def test_overloaded_rejected(self, source) -> None:
        source.workloads["bob"] = 10
        result = _validator(source).validate("bob")
        assert not result.is_valid
        assert result.reason.startswith("overloaded")

    def test_at_threshold_allowed(self, source) -> None:
        source.workloads["bob"] = 9
        assert _validator(source).is_valid("bob")

    def test_workload_disabled(self, source) -> None:
        source.workloads["bob"] = 50
        assert _validator(source, workload=WorkloadConfig(enabled=False)).is_valid("bob")
        assert source.calls["open_review_count"] == 0

    def test_workload_failure_does_not_reject_and_is_cached(self, source) -> None:
        cache = TTLCache()
        source.fail.add("open_review_count")
        assert _validator(source, cache).is_valid("bob")
        assert _validator(source, cache).is_valid("bob")
        assert source.calls["open_review_count"] == 1

    def test_workload_failure_expires(self, source) -> None:
        now = [0.0]
        cache = TTLCache(lambda: now[0])
        source.fail.add("open_review_count")
        ttl = CacheTTLConfig(workload_failure=timedelta(minutes=10))
        _validator(source, cache, ttl=ttl).validate("bob")
        now[0] += 601
        _validator(source, cache, ttl=ttl).validate("bob")
        assert source.calls["open_review_count"] == 2


class TestMemoisation:
    def test_verdicts_memoised_per_pass(self, source) -> None:
        v = _validator(source)
        v.validate("bob")
        v.validate("BOB")
        assert source.calls["has_write_access"] == 1

    def test_remote_answers_shared_through_cache(self, source) -> None:
        cache = TTLCache()
        _validator(source, cache).validate("bob")
        _validator(source, cache).validate("bob")
        assert source.calls["account_type"] == 1
        assert source.calls["has_write_access"] == 1
        assert source.calls["open_review_count"] == 1
