# ABOUTME: Structured logging with correlation IDs for the devenv operator
# ABOUTME: Implements audit logging of child creation and TTL deletion

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides three observability features:

1. STRUCTURED LOGGING: Logs in machine-readable format (JSON) with consistent
   fields, making it easy to search and analyze logs.

2. CORRELATION IDs: One ID per reconcile pass, attached to every log line the
   pass produces. Many Environments reconcile concurrently, so without it the
   lines of different passes interleave beyond recognition.

3. AUDIT LOGGING: A record of every change the operator makes on its own
   initiative: cluster claims, node pools and applications it created, TTL
   timers it armed, and Environments it deleted.

Example log lines from one pass:

    {"correlation_id": "a1b2c3d4", "event": "Reconciling environment", "environment": "demo"}
    {"correlation_id": "a1b2c3d4", "event": "Created cluster claim", "cluster": "demo-cluster"}
    {"correlation_id": "a1b2c3d4", "event": "Node pool pending", "reason": "no managed resource"}

=============================================================================
CONTEXT VARIABLES (contextvars)
=============================================================================

kopf runs each handler in its own asyncio task. A ContextVar set inside one
task is invisible to the others, so concurrent passes never see each other's
correlation ID.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Code outside a reconcile pass (startup, shutdown) still gets an ID, so
    every log line is correlatable.

    Returns:
        8-character correlation ID string.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    Called at the start of each reconcile pass. An empty string makes the
    next get_correlation_id() call generate a fresh one.
    """
    correlation_id.set(cid)


def new_correlation_id() -> str:
    """Start a fresh correlation ID for the current context and return it."""
    set_correlation_id("")
    return get_correlation_id()


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """
    Add correlation ID to log events.

    This is a STRUCTLOG PROCESSOR: it receives the event dictionary of every
    log call and returns it enriched with the current correlation ID.
    """
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging.

    Call it ONCE at startup. Calling it again reconfigures logging.

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: Adds values bound with bind_contextvars()
    2. add_log_level: Adds "level" field
    3. TimeStamper: Adds ISO-format timestamp
    4. add_correlation_id: Adds the reconcile pass ID
    5. Renderer: JSON (in-cluster) or colored console (local runs)

    Args:
        level: "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL"
        json_output: If True, output JSON for log aggregators.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit logger for operator-initiated changes.

    WHAT WE LOG:
    ------------
    - timestamp: When it happened (UTC ISO 8601)
    - correlation_id: Reconcile pass identifier
    - action: "create_cluster_claim", "create_node_pool",
              "create_application", "arm_ttl", "delete_environment"
    - target: Resource name
    - result: "created", "exists", "armed", "deleted", "error"
    - details: Additional context (owning Environment, error message)

    TWO OUTPUT MODES:
    -----------------
    1. FILE: Append JSON lines to a file
    2. STDOUT: Through structlog, alongside normal logs
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Initialize audit logger.

        Args:
            log_path: Path to audit log file (appended, never truncated),
                      or None for stdout.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log an auditable action."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }

        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a write operation.

        Example:
            audit_logger.log_write(
                "create_application", "guestbook", "created", {"environment": "demo"}
            )
        """
        self.log(action, target, result, details)

    def log_error(
        self,
        action: str,
        target: str,
        error: str,
    ) -> None:
        """Log a failed write."""
        self.log(action, target, "error", {"error": error})
