from __future__ import annotations


class ImgbedError(Exception):
    """Base error for imgbed."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ImgbedError):
    """Required backend configuration is missing."""

    status_code = 500


class UploadValidationError(ImgbedError):
    """Upload request is missing a usable file."""

    status_code = 400


class PolicyRejection(ImgbedError):
    """Upload refused by policy (blocked IP, moderation, quota)."""

    status_code = 403


class IpBlockedError(PolicyRejection):
    """Client IP has a live block entry."""

    status_code = 423


class ModerationRejectedError(PolicyRejection):
    """Uploaded asset was rated at or above the violation threshold."""

    status_code = 422


class QuotaExceededError(PolicyRejection):
    """Caller has used up its upload quota."""

    status_code = 429


class UpstreamError(ImgbedError):
    """Storage or moderation backend failure."""

    status_code = 500


class StorageError(UpstreamError):
    """Storage adapter request failed."""


class PersistenceError(ImgbedError):
    """Bookkeeping write failed after the remote asset was stored."""
