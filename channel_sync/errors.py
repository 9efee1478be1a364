"""
Error taxonomy for the channel sync engine
Each error carries its retry and circuit-breaker semantics as class attributes
"""

from datetime import datetime
from typing import Any, Dict, List, Optional


class ChannelSyncError(Exception):
    """Base error for all sync failures"""

    code = "sync_error"
    # Safe to attempt again (by the client's retry driver or the queue)
    retryable = False
    # Recorded as a failure by the account's circuit breaker
    counts_as_failure = False
    # Aborts the active sync run
    fatal = False

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.details:
            data["details"] = self.details
        return data


class ConfigurationError(ChannelSyncError):
    """Missing or invalid sync configuration"""
    code = "configuration_error"
    fatal = True


class SyncInProgressError(ChannelSyncError):
    """Another run for the same configuration holds the run lock"""
    code = "sync_in_progress"

    def __init__(self, config_id: str, running_since: Optional[datetime] = None):
        super().__init__(f"Sync already running for configuration {config_id}")
        self.config_id = config_id
        self.running_since = running_since


class AuthenticationError(ChannelSyncError):
    code = "authentication_error"
    counts_as_failure = True
    fatal = True


class RateLimitError(ChannelSyncError):
    """Local token bucket exhausted or remote returned 429"""
    code = "rate_limited"
    retryable = True

    def __init__(self, message: str, retry_after_ms: int, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after(self) -> float:
        return self.retry_after_ms / 1000.0


class NetworkError(ChannelSyncError):
    code = "network_error"
    retryable = True
    counts_as_failure = True


class RequestTimeoutError(NetworkError):
    code = "timeout"

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ValidationError(ChannelSyncError):
    """Rejected or malformed record; never retried"""
    code = "validation_error"

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class NotFoundError(ChannelSyncError):
    code = "not_found"

    def __init__(self, message: str, resource: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.resource = resource
        self.resource_id = resource_id


class ServerError(ChannelSyncError):
    code = "server_error"
    retryable = True
    counts_as_failure = True


class CircuitOpenError(ChannelSyncError):
    """Raised without any network I/O while the account's breaker is open"""
    code = "circuit_open"

    def __init__(self, account: str, opened_at: Optional[datetime], reset_at: Optional[datetime]):
        super().__init__(f"Circuit breaker for '{account}' is open until {reset_at}")
        self.account = account
        self.opened_at = opened_at
        self.reset_at = reset_at


class MappingError(ChannelSyncError):
    """Local correlation inconsistency (missing prerequisite or bijection conflict)"""
    code = "mapping_error"

    def __init__(self, message: str, entity_kind: str, local_id: Optional[str] = None, remote_id: Optional[str] = None):
        super().__init__(message)
        self.entity_kind = entity_kind
        self.local_id = local_id
        self.remote_id = remote_id


def _extract_remote_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict):
                return first.get("message") or first.get("msg")
            return str(first)
        return body.get("message") or body.get("error")
    if isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return None


def error_from_response(status_code: int, body: Any = None, retry_after_ms: Optional[int] = None) -> ChannelSyncError:
    """Map a non-success HTTP status to the error taxonomy."""
    remote_message = _extract_remote_message(body)
    details = {"body": body} if isinstance(body, dict) else {}

    if status_code in (401, 403):
        return AuthenticationError(
            remote_message or "Authentication failed - check the API key and its permissions",
            status_code=status_code,
        )
    if status_code == 429:
        return RateLimitError(
            remote_message or "Remote API rate limit exceeded",
            retry_after_ms=retry_after_ms if retry_after_ms is not None else 60_000,
            status_code=status_code,
        )
    if status_code == 404:
        return NotFoundError(remote_message or "Resource not found", status_code=status_code, details=details)
    if 400 <= status_code < 500:
        errors = []
        if isinstance(body, dict) and isinstance(body.get("errors"), list):
            errors = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in body["errors"]]
        return ValidationError(
            remote_message or f"Request rejected with status {status_code}",
            errors=errors,
            status_code=status_code,
            details=details,
        )
    return ServerError(
        remote_message or f"Remote server error (HTTP {status_code})",
        status_code=status_code,
        details=details,
    )


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ChannelSyncError) and error.retryable


def is_fatal(error: BaseException) -> bool:
    return isinstance(error, ChannelSyncError) and error.fatal
