"""Exception hierarchy shared by every discovery provider."""

from __future__ import annotations


class DiscoveryError(Exception):
    """Base error for service discovery failures."""


class DiscoveryConfigError(DiscoveryError):
    """Raised when a provider configuration is malformed or incomplete."""


class PollError(DiscoveryError):
    """A single poll cycle failed; the provider keeps polling."""


class ScriptExecutionError(PollError):
    """Raised when a discovery script exits non-zero or times out."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class ScriptIntegrityError(PollError):
    """Raised when a discovery script changed since its first trusted run."""


class ResponseDecodeError(PollError):
    """Raised when script output cannot be decoded."""


class ResponseValidationError(DiscoveryError):
    """Raised when a decoded script record fails validation."""


class CloudAPIError(PollError):
    """Base error for cloud API failures."""


class CloudAuthError(CloudAPIError):
    """Raised when the cloud API rejects our credentials."""
