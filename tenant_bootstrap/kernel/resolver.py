# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Profile Resolver — principal id → classified profile outcome.

  FOUND            the profile row exists
  NOT_FOUND        no row (may be read-after-write lag right after signup)
  TRANSIENT_ERROR  network / timeout, worth retrying
  SCHEMA_ERROR     the profile collection itself is missing; never retried

resolve() performs exactly one read. resolve_with_retry() wraps it in two
independent retry budgets: transient failures (linear backoff) and misses
(fixed short delay). A schema error ends the loop immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.protocols.errors import (
    BootstrapError,
    SchemaError,
    TransientStoreError,
)
from tenant_bootstrap.protocols.schema import Profile
from tenant_bootstrap.resilience.retry import (
    RetryManager,
    not_found_policy,
    transient_policy,
)
from tenant_bootstrap.storage.store import IdentityStore

logger = logging.getLogger("bootstrap.resolver")


class OutcomeKind(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"
    SCHEMA_ERROR = "schema_error"


@dataclass
class ProfileOutcome:
    kind: OutcomeKind
    profile: Optional[Profile] = None
    error: Optional[BootstrapError] = None

    @classmethod
    def found(cls, profile: Profile) -> "ProfileOutcome":
        return cls(OutcomeKind.FOUND, profile=profile)

    @classmethod
    def not_found(cls) -> "ProfileOutcome":
        return cls(OutcomeKind.NOT_FOUND)

    @classmethod
    def transient(cls, error: BootstrapError) -> "ProfileOutcome":
        return cls(OutcomeKind.TRANSIENT_ERROR, error=error)

    @classmethod
    def schema(cls, error: BootstrapError) -> "ProfileOutcome":
        return cls(OutcomeKind.SCHEMA_ERROR, error=error)


class ProfileResolver:
    """Reads and classifies the profile of a principal."""

    def __init__(
        self,
        store: IdentityStore,
        transient_retry: Optional[RetryManager] = None,
        not_found_retry: Optional[RetryManager] = None,
    ) -> None:
        self._store = store
        self._transient = transient_retry or RetryManager(transient_policy(), name="resolver:transient")
        self._not_found = not_found_retry or RetryManager(not_found_policy(), name="resolver:not_found")

    async def resolve(self, principal_id: str) -> ProfileOutcome:
        """Single read of the profile, classified."""
        try:
            profile = await self._store.get_profile(principal_id)
        except SchemaError as exc:
            logger.error("Profile collection missing while resolving %s: %s",
                         principal_id, exc, extra={"principal_id": principal_id})
            return ProfileOutcome.schema(exc)
        except TransientStoreError as exc:
            return ProfileOutcome.transient(exc)
        if profile is None:
            return ProfileOutcome.not_found()
        return ProfileOutcome.found(profile)

    async def resolve_with_retry(self, principal_id: str) -> ProfileOutcome:
        """Resolve, spending the transient and not-found retry budgets."""
        transient_retries = 0
        not_found_retries = 0
        while True:
            outcome = await self.resolve(principal_id)

            if outcome.kind is OutcomeKind.TRANSIENT_ERROR:
                if not await self._transient.should_retry(transient_retries):
                    logger.error("Profile read for %s failed %d times: %s",
                                 principal_id, transient_retries + 1, outcome.error,
                                 extra={"principal_id": principal_id})
                    return outcome
                transient_retries += 1
                bootstrap_metrics.inc("resolver:retry:transient")
                await self._transient.wait_before_retry(transient_retries)
                continue

            if outcome.kind is OutcomeKind.NOT_FOUND:
                if not await self._not_found.should_retry(not_found_retries):
                    logger.info("No profile for %s after %d re-reads",
                                principal_id, not_found_retries,
                                extra={"principal_id": principal_id})
                    return outcome
                not_found_retries += 1
                bootstrap_metrics.inc("resolver:retry:not_found")
                await self._not_found.wait_before_retry(not_found_retries)
                continue

            return outcome
