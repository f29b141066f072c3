"""
Sync error taxonomy

Transient remote failures are retried through the queue backoff, auth
unavailability skips remote work for the cycle, and schema mismatches are
logged and skipped.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the sync engine"""


class RemoteError(SyncError):
    """A remote system rejected or failed a request"""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteError):
    """Timeout, connectivity loss, 429 or 5xx"""

    retryable = True


class RemoteSchemaError(RemoteError):
    """Remote response did not have the expected shape"""


class RemoteRequestError(RemoteError):
    """Remote rejected the request (4xx other than 429)"""


class AuthUnavailableError(SyncError):
    """No usable access token; remote operations are skipped this cycle"""


class ConfigurationError(SyncError):
    """A required owner key (spreadsheet or calendar id) is not configured"""
