"""
Video Analytics Errors
Failure taxonomy shared by the SDK and the ingestion sink.
"""

from typing import Optional


class AnalyticsError(Exception):
    """Base class for all video analytics errors."""


class ConfigError(AnalyticsError):
    """SDK configuration is missing a required value or holds an invalid one."""


class DecodeError(AnalyticsError):
    """Inbound event batch could not be decoded."""


class TransportFailure(AnalyticsError):
    """A batch send failed: non-2xx response, network error or unreadable ack."""

    def __init__(self, message: str, reason: str = "network_error", status_code: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class RetryExhausted(AnalyticsError):
    """Events were dropped after the retry attempt ceiling was reached."""

    def __init__(self, attempts: int, dropped: int):
        super().__init__(f"Gave up after {attempts} retry attempts, discarded {dropped} events")
        self.attempts = attempts
        self.dropped = dropped
