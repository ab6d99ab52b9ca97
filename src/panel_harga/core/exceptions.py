"""Custom exception hierarchy for panel-harga."""

from enum import StrEnum
from typing import Any


class PanelHargaError(Exception):
    """Base exception for all panel-harga errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PanelHargaError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class FetchCause(StrEnum):
    """Why a source adapter could not produce observations."""

    NETWORK = "network"
    PARSE = "parse"
    HTTP_STATUS = "http_status"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    NO_CONTENT = "no_content"
    BROWSER_CRASH = "browser_crash"


class FetchFailure(PanelHargaError):
    """A source adapter failed to fetch or parse the price source.

    Policy: transient. Retried by the retry orchestrator, then the next
    adapter is tried.

    Context keys:
        url: str — the URL that was being fetched
        status_code: int | None — HTTP status, when one was received
    """

    def __init__(
        self,
        message: str,
        cause: FetchCause,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context)
        self.cause = cause


class ExhaustedRetries(PanelHargaError):
    """An operation failed on every allowed attempt.

    Policy: terminal for one adapter. The coordinator falls back to the
    next adapter or records a failed run.
    """

    def __init__(self, attempts: int, last_cause: BaseException):
        super().__init__(
            f"Gave up after {attempts} attempt(s): {last_cause}",
            context={"attempts": attempts, "last_cause": repr(last_cause)},
        )
        self.attempts = attempts
        self.last_cause = last_cause


class PersistenceFailure(PanelHargaError):
    """Database operation failed.

    Policy: isolated per record during ingestion (counted, batch
    continues); raised to the caller everywhere else.

    Context keys:
        operation: str — "upsert", "query", "migrate", etc.
        table: str — the table involved
    """


class EntitlementRequired(PanelHargaError):
    """The caller's tier does not cover the requested scope.

    Policy: caller-facing. Surfaced as an upgrade prompt, never as a
    system fault.

    Context keys:
        account_id: str | None — the caller, when known
        status: str — the entitlement status that was evaluated
    """
