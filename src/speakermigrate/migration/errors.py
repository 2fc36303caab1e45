"""Exceptions raised by migration operations.

Every error carries ``log``: the operation transcript accumulated up to the
failure, so callers can show partial progress.
"""

from __future__ import annotations


class MigrationError(RuntimeError):
    """Base exception for migration manager failures."""

    def __init__(self, message: str, log: str = "") -> None:
        super().__init__(message)
        self.log = log


class PreflightError(MigrationError):
    """Raised when write access to the speaker cannot be obtained."""


class DNSPreflightError(MigrationError):
    """Raised when the local DNS service is not usable for resolv migration."""


class InvalidTargetError(MigrationError):
    """Raised when the target URL has no usable hostname."""


class BackupMissingError(MigrationError):
    """Raised when a revert needs an on-device backup that does not exist."""


class ConfigEncodingError(MigrationError):
    """Raised when the planned configuration cannot be serialized."""


class RemoteOperationError(MigrationError):
    """Raised when a required read or upload on the speaker fails."""


class SelfTestError(MigrationError):
    """Raised when a connectivity self-test does not pass."""
