"""Eligibility checks for reviewer candidates.

A candidate passes when, in order:

- it is not the change author,
- it is not automation (login patterns first, then the platform account type),
- it can write to the repository,
- it is not already carrying too many open reviews.

The account-type and workload checks are best effort: when the platform
cannot answer, the candidate is kept. The write-access check fails closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bestreviewer.cache import TTLCache
from bestreviewer.config import BotPolicy, CacheTTLConfig, WorkloadConfig
from bestreviewer.schemas import AccountType, ChangeRequest
from bestreviewer.source import ChangeDataSource, DataSourceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    """Verdict for one login."""

    is_valid: bool
    reason: str = ""
    association: str = ""


# ---------------------------------------------------------------------------
# Bot classifier
# ---------------------------------------------------------------------------

class BotClassifier:
    """Classifies a login as automation from its name alone.

    The allowlist always wins.
    """

    def __init__(self, policy: BotPolicy) -> None:
        self.policy = policy
        self._allow = {a.lower() for a in policy.allowlist}
        self._known = {b.lower() for b in policy.known_bots}

    def classify(self, login: str) -> tuple[bool, str]:
        """Return ``(is_bot, reason)``; *reason* names the rule that matched."""
        name = login.lower()
        if not name or name in self._allow:
            return False, ""

        for suffix in self.policy.suffixes:
            if name.endswith(suffix.lower()):
                return True, f"bot-suffix:{suffix}"
        for prefix in self.policy.prefixes:
            if name.startswith(prefix.lower()):
                return True, f"bot-prefix:{prefix}"
        if name in self._known:
            return True, f"known-bot:{name}"
        for fragment in self.policy.fragments:
            if fragment.lower() in name:
                return True, f"bot-fragment:{fragment}"
        for marker in self.policy.service_account_markers:
            if marker.lower() in name:
                return True, f"service-account:{marker}"
        return False, ""


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class CandidateValidator:
    """Validates logins for one change. Verdicts are memoised for the pass."""

    def __init__(
        self,
        source: ChangeDataSource,
        cache: TTLCache,
        change: ChangeRequest,
        bots: BotPolicy | None = None,
        workload: WorkloadConfig | None = None,
        ttl: CacheTTLConfig | None = None,
    ) -> None:
        self.source = source
        self.cache = cache
        self.change = change
        self.classifier = BotClassifier(bots or BotPolicy())
        self.workload = workload or WorkloadConfig()
        self.ttl = ttl or CacheTTLConfig()
        self._verdicts: dict[str, ValidationResult] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, login: str) -> ValidationResult:
        key = login.lower()
        if key not in self._verdicts:
            result = self._validate(login)
            if not result.is_valid:
                logger.info("Filtered candidate %s: %s", login, result.reason)
            self._verdicts[key] = result
        return self._verdicts[key]

    def is_valid(self, login: str) -> bool:
        return self.validate(login).is_valid

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _validate(self, login: str) -> ValidationResult:
        if not login:
            return ValidationResult(False, "empty-login")
        if login.lower() == self.change.author.lower():
            return ValidationResult(False, "author")

        is_bot, reason = self.classifier.classify(login)
        if is_bot:
            return ValidationResult(False, reason)

        account = self._account_type(login)
        if account in (AccountType.BOT, AccountType.ORGANIZATION):
            return ValidationResult(False, f"account-type:{account.value}")

        allowed, association = self._write_access(login)
        if not allowed:
            return ValidationResult(False, f"no-write-access:{association}", association)

        if self.workload.enabled:
            count = self._open_reviews(login)
            if count is not None and count > self.workload.threshold:
                return ValidationResult(
                    False, f"overloaded:{count}>{self.workload.threshold}", association
                )

        return ValidationResult(True, "", association)

    def _account_type(self, login: str) -> AccountType | None:
        key = ("account-type", login.lower())
        cached, found = self.cache.get(key)
        if found:
            return cached
        try:
            account = self.source.account_type(login)
        except DataSourceError as exc:
            logger.warning("Account type lookup failed for %s, keeping candidate: %s", login, exc)
            return None
        self.cache.set(key, account, self.ttl.account_type)
        return account

    def _write_access(self, login: str) -> tuple[bool, str]:
        owner, repo = self.change.owner, self.change.repo
        key = ("collaborator", owner, repo, login.lower())
        cached, found = self.cache.get(key)
        if found:
            return cached
        try:
            verdict = self.source.has_write_access(owner, repo, login)
        except DataSourceError as exc:
            logger.warning("Write access check failed for %s, rejecting: %s", login, exc)
            return False, "unknown"
        self.cache.set(key, verdict, self.ttl.collaborator)
        return verdict

    def _open_reviews(self, login: str) -> int | None:
        owner = self.change.owner
        key = ("workload", owner, login.lower())
        if self.cache.has_failure(key):
            return None
        cached, found = self.cache.get(key)
        if found:
            return cached
        try:
            count = self.source.open_review_count(owner, login, self.workload.stale_days)
        except DataSourceError as exc:
            logger.warning("Workload lookup failed for %s, keeping candidate: %s", login, exc)
            self.cache.set_failure(key, self.ttl.workload_failure)
            return None
        self.cache.set(key, count, self.ttl.workload)
        return count
