"""Exceptions raised by the live monitor."""

from typing import Optional


class MonitorError(Exception):
    """Base class for live monitor errors."""


class MonitoringApiError(MonitorError):
    """A call to the exam server failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthExpiredError(MonitoringApiError):
    """The exam server rejected our credentials."""


class InvalidCommandError(MonitorError):
    """An operator command was rejected before it was sent."""


class PushChannelError(MonitorError):
    """The push channel could not be connected."""
