"""pyipfsync - keep local directories published on IPFS under IPNS keys."""

__version__ = "0.1.0"

from .api import IpfsClient  # noqa: E402
from .estuary import EstuaryClient  # noqa: E402
from .exceptions import (  # noqa: E402
    BadBlockRecoveryError,
    EstuaryError,
    IpfsAPIError,
    IpfsConfigError,
    IpfsInvalidResponseError,
    IpfsNetworkError,
    IpfsPinnedError,
    IpfsSyncError,
)

__all__ = [
    "__version__",
    "IpfsClient",
    "EstuaryClient",
    "IpfsSyncError",
    "IpfsAPIError",
    "IpfsConfigError",
    "IpfsInvalidResponseError",
    "IpfsNetworkError",
    "IpfsPinnedError",
    "EstuaryError",
    "BadBlockRecoveryError",
]
