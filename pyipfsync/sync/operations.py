"""Publish and remove operations for single files."""

import asyncio
import logging

from ..api import IpfsClient
from ..exceptions import BadBlockRecoveryError, IpfsAPIError
from ..utils import (
    DEFAULT_MAX_RECOVERY_ATTEMPTS,
    DEFAULT_RECOVERY_BACKOFF,
    parent_path,
)
from .directory import DirectoryState
from .recovery import BadBlockRecovery

logger = logging.getLogger(__name__)


class SyncOperations:
    """Moves single files between the local tree and MFS.

    Callers serialize operations on the same path.
    """

    def __init__(
        self,
        client: IpfsClient,
        recovery: BadBlockRecovery | None = None,
        max_recovery_attempts: int = DEFAULT_MAX_RECOVERY_ATTEMPTS,
        recovery_backoff: float = DEFAULT_RECOVERY_BACKOFF,
    ):
        """Initialize sync operations.

        Args:
            client: IPFS API client
            recovery: Bad block recovery, created from the client if omitted
            max_recovery_attempts: Publish retries after bad block recovery
            recovery_backoff: Delay before the first retry, doubled each time
        """
        self.client = client
        self.recovery = recovery or BadBlockRecovery(client)
        self.max_recovery_attempts = max_recovery_attempts
        self.recovery_backoff = recovery_backoff

    async def publish_file(
        self,
        state: DirectoryState,
        file_path: str,
        overwrite: bool = False,
    ) -> str:
        """Add a local file to IPFS and link it into MFS.

        Args:
            state: State of the directory the file belongs to
            file_path: Absolute path of the file on disk
            overwrite: Remove an existing MFS entry at the target first

        Returns:
            CID of the published file

        Raises:
            IpfsAPIError: If adding or linking fails for a reason other than
                a bad block
            BadBlockRecoveryError: If linking keeps failing after recovery
            OSError: If the file can't be read
        """
        directory = state.directory
        remote_path = directory.remote_path(file_path)
        attempts = 0

        while True:
            logger.info(
                f"Adding file from {file_path} to "
                f"{self.client.mfs_path(remote_path)}..."
            )
            cid = await self.client.add_file(file_path, nocopy=directory.nocopy)

            if state.claim_parent(remote_path):
                parent = parent_path(remote_path)
                logger.debug(f"Creating parent directory {parent} in MFS...")
                try:
                    await self.client.make_dir(parent)
                except IpfsAPIError:
                    state.created_parents.discard(parent)
                    raise

            if overwrite:
                logger.debug("Removing existing file, if any...")
                try:
                    await self.client.remove_file(remote_path)
                except IpfsAPIError as e:
                    logger.debug(f"Nothing removed at {remote_path}: {e}")

            try:
                await self.client.copy_file(
                    f"/ipfs/{cid}", self.client.mfs_path(remote_path)
                )
                return cid
            except IpfsAPIError as e:
                logger.error(f"Error on files/cp for {file_path}: {e}")
                if not await self.recovery.handle(e, file_path, directory.nocopy):
                    raise

            attempts += 1
            if attempts > self.max_recovery_attempts:
                raise BadBlockRecoveryError(file_path, self.max_recovery_attempts)

            delay = self.recovery_backoff * (2 ** (attempts - 1))
            logger.info(
                f"files/cp failure due to filestore, retrying in {delay:.1f}s "
                f"({attempts}/{self.max_recovery_attempts})"
            )
            await asyncio.sleep(delay)

    async def remove_file(self, state: DirectoryState, file_path: str) -> None:
        """Remove the MFS entry of a deleted local file or directory."""
        remote_path = state.directory.remote_path(file_path)
        logger.info(f"Removing {self.client.mfs_path(remote_path)} from MFS...")
        await self.client.remove_file(remote_path)
        # a removed directory has to be created again on its next file
        state.created_parents = {
            p
            for p in state.created_parents
            if p != remote_path and not p.startswith(f"{remote_path}/")
        }
