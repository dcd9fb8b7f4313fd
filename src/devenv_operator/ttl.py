# ABOUTME: Time-to-live parsing and the expiry state machine for Environments
# ABOUTME: Arms a timer once the Environment is ready and deletes it on expiry

"""
TTL expiry policy.

=============================================================================
TTL STRINGS
=============================================================================

A TTL is ``<integer><unit>``:

    m  minutes        "90m"
    h  hours          "2h"
    d  days (24h)     "1d"
    y  years (365d)   "1y"

Anything else is rejected with InvalidTTLError, which the Environment model
turns into a validation error. No TTL at all disables the policy.

=============================================================================
STATE MACHINE
=============================================================================

    disarmed --(ready, no stamp)--> armed      stamp "now" and persist it
    armed    --(ready, elapsed > ttl)--> expired  delete the Environment
    armed    --(not ready)--> disarmed         stamp cleared by status.py

The timer only runs while the Environment is continuously ready. Losing
readiness clears the stamp, and the countdown restarts from zero the next
time readiness is regained.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from devenv_operator.constants import ENVIRONMENT
from devenv_operator.utils.client import KubeError

if TYPE_CHECKING:
    from devenv_operator.models import Environment
    from devenv_operator.utils.client import KubeClient
    from devenv_operator.utils.logging import AuditLogger

logger = structlog.get_logger(__name__)

TTL_PATTERN = re.compile(r"^([0-9]+)([mhdy])$")

TTL_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(hours=24),
    "y": timedelta(days=365),
}


class InvalidTTLError(ValueError):
    """Raised for a TTL string that does not match ``<integer><m|h|d|y>``."""


def parse_ttl(value: str) -> timedelta:
    """
    Parse a TTL string into a duration.

    Examples:
        >>> parse_ttl("2h")
        datetime.timedelta(seconds=7200)
        >>> parse_ttl("1d")
        datetime.timedelta(days=1)

    Raises:
        InvalidTTLError: For an empty string, a missing number, or an
                         unrecognized unit suffix such as "5w"
    """
    match = TTL_PATTERN.match(value or "")
    if not match:
        raise InvalidTTLError(
            f"invalid ttl {value!r}: expected <integer><unit> with unit one of m, h, d, y"
        )
    amount, unit = match.groups()
    return int(amount) * TTL_UNITS[unit]


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds, matching persisted timestamps."""
    return datetime.now(UTC).replace(microsecond=0)


# =============================================================================
# POLICY
# =============================================================================


class TTLDecision(str, Enum):
    """What the policy wants done on this pass."""

    ARM = "arm"
    WAIT = "wait"
    EXPIRE = "expire"


@dataclass(frozen=True)
class TTLOutcome:
    """Result of applying the policy to one Environment."""

    decision: TTLDecision
    elapsed: timedelta | None = None
    deleted: bool = False


class TTLExpiryPolicy:
    """
    Applies the TTL state machine to a ready Environment.

    The engine calls ``apply`` only when a TTL is configured AND the
    Environment is fully ready; disarming is handled by the status
    aggregator, which clears the stamp on every not-ready pass.
    """

    def __init__(self, client: KubeClient, audit: AuditLogger) -> None:
        self._client = client
        self._audit = audit

    @staticmethod
    def evaluate(ttl_start: datetime | None, ttl: timedelta, now: datetime) -> TTLDecision:
        """
        Decide the transition without side effects.

        The Environment expires only once elapsed time is strictly greater
        than the TTL.
        """
        if ttl_start is None:
            return TTLDecision.ARM
        if now - ttl_start > ttl:
            return TTLDecision.EXPIRE
        return TTLDecision.WAIT

    async def apply(self, env: Environment, now: datetime) -> TTLOutcome:
        """
        Arm the timer or delete an expired Environment.

        Arming stamps ``now`` on the in-memory status and persists it right
        away, so a later failing step in the same pass cannot lose the stamp.
        A 404 on delete counts as success.

        Raises:
            KubeError: If the status write or the delete fails
        """
        ttl = env.spec.ttl_duration
        if ttl is None:
            return TTLOutcome(decision=TTLDecision.WAIT)

        log = logger.bind(environment=env.name, ttl=env.spec.ttl)
        start = env.status.ttl_start_timestamp
        decision = self.evaluate(start, ttl, now)

        if decision is TTLDecision.ARM:
            env.status.ttl_start_timestamp = now
            updated = await self._client.replace_status(ENVIRONMENT, env.status_body())
            env.refresh_resource_version(updated)
            log.info("TTL timer armed", ttl_start=env.status.ttl_start_timestamp.isoformat())
            self._audit.log_write("arm_ttl", env.name, "armed", {"ttl": env.spec.ttl})
            return TTLOutcome(decision=decision)

        elapsed = now - start if start else None

        if decision is TTLDecision.WAIT:
            log.debug("TTL not yet exceeded", elapsed=str(elapsed))
            return TTLOutcome(decision=decision, elapsed=elapsed)

        log.info(
            "Environment exceeded TTL, deleting",
            cluster=env.spec.cluster_name,
            ttl_start=start.isoformat() if start else None,
            elapsed=str(elapsed),
        )
        try:
            await self._client.delete(ENVIRONMENT, env.name)
        except KubeError as e:
            if not e.is_not_found:
                log.error("Could not delete environment after TTL expiry", error=str(e))
                self._audit.log_error("delete_environment", env.name, str(e))
                raise
            log.info("Environment already gone")

        self._audit.log_write(
            "delete_environment", env.name, "deleted", {"ttl": env.spec.ttl, "elapsed": str(elapsed)}
        )
        return TTLOutcome(decision=decision, elapsed=elapsed, deleted=True)
