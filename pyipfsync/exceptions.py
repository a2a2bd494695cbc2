"""Exceptions raised by pyipfsync."""

from __future__ import annotations

BAD_BLOCK_PREFIXES = ("failed to get block", "no such file or directory")


class IpfsSyncError(Exception):
    """Base exception for all pyipfsync errors."""


class IpfsConfigError(IpfsSyncError):
    """Raised when the configuration is missing or invalid."""


class IpfsAPIError(IpfsSyncError):
    """Raised when the IPFS daemon answers a request with an error.

    The IPFS RPC API reports command failures as a JSON body with
    ``Message``, ``Code`` and ``Type`` fields, which are kept here.
    """

    def __init__(
        self,
        message: str,
        code: int = -1,
        error_type: str = "error",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.type = error_type
        self.status_code = status_code

    @classmethod
    def from_response_body(
        cls, data: dict, status_code: int | None = None
    ) -> IpfsAPIError:
        """Build an error from a decoded IPFS error body."""
        return cls(
            message=str(data.get("Message") or data.get("message") or ""),
            code=int(data.get("Code", data.get("code", -1))),
            error_type=str(data.get("Type") or data.get("type") or "error"),
            status_code=status_code,
        )


class IpfsNetworkError(IpfsAPIError):
    """Raised when the daemon cannot be reached."""


class IpfsInvalidResponseError(IpfsAPIError):
    """Raised when a response does not have the expected shape."""


class IpfsPinnedError(IpfsAPIError):
    """Raised by block removal when the block is still pinned.

    ``pin_cid`` is the pin that has to be removed before the block can be.
    """

    def __init__(self, message: str, pin_cid: str, **kwargs):
        super().__init__(message, **kwargs)
        self.pin_cid = pin_cid


class EstuaryError(IpfsSyncError):
    """Raised when the Estuary pinning service rejects a request."""


class BadBlockRecoveryError(IpfsSyncError):
    """Raised when a file keeps failing after bad block recovery."""

    def __init__(self, path: str, attempts: int):
        super().__init__(
            f"Giving up on {path!r} after {attempts} bad block recovery attempt(s)"
        )
        self.path = path
        self.attempts = attempts


def error_message(error: BaseException) -> str:
    """Return the text used to classify an error."""
    if isinstance(error, IpfsAPIError):
        return error.message
    return str(error)


def is_bad_block_error(error: BaseException) -> bool:
    """Check whether an error means a referenced block is missing.

    Examples:
        >>> is_bad_block_error(IpfsAPIError("failed to get block for Qm..."))
        True
        >>> is_bad_block_error(IpfsAPIError("file already exists"))
        False
    """
    return error_message(error).startswith(BAD_BLOCK_PREFIXES)
