"""Recovery from "bad block" errors.

With ``nocopy`` the daemon's filestore references file contents on disk
instead of storing blocks. When such a file changes or disappears behind
the daemon's back, operations touching its blocks fail with errors like
``failed to get block``. Recovery removes the stale blocks (unpinning
whatever holds them) so the content can be added again.
"""

import logging
from typing import Optional

from ..api import IpfsClient
from ..exceptions import IpfsAPIError, IpfsPinnedError, is_bad_block_error

logger = logging.getLogger(__name__)


class BadBlockRecovery:
    """Clears stale blocks after a bad block error."""

    def __init__(self, client: IpfsClient):
        self.client = client

    async def handle(
        self,
        error: BaseException,
        file_path: Optional[str] = None,
        nocopy: bool = False,
    ) -> bool:
        """Run recovery if ``error`` is a bad block error.

        With a ``file_path`` the file is hashed again (without storing
        anything) and every block of that CID is removed. Without one, the
        whole filestore is swept for entries whose file no longer exists.

        Returns:
            True if the error was a bad block error and recovery ran, in
            which case the caller should retry its operation
        """
        if not is_bad_block_error(error):
            return False

        logger.info(f"Handling bad block error: {error}")

        if not file_path:
            # TODO: parse the offending path out of the error message when present
            await self.clean_filestore()
            return True

        try:
            cid = await self.client.add_file(file_path, nocopy=nocopy, only_hash=True)
        except (IpfsAPIError, OSError) as e:
            logger.error(f"Error handling bad block error for {file_path}: {e}")
            return True

        await self.remove_cid(cid)
        return True

    async def remove_block(self, cid: str) -> bool:
        """Remove a block, dropping the pins that hold it first.

        Returns:
            True if the block was removed
        """
        stuck_pin = ""
        while True:
            try:
                await self.client.remove_block(cid)
                return True
            except IpfsPinnedError as e:
                if e.pin_cid == stuck_pin:
                    logger.error(f"Pin {e.pin_cid} keeps holding block {cid}")
                    return False
                logger.info(f"Affected block is pinned, removing pin: {e.pin_cid}")
                try:
                    await self.client.remove_pin(e.pin_cid)
                    stuck_pin = ""
                except IpfsAPIError as pin_error:
                    logger.error(f"Error removing pin ({e.pin_cid}): {pin_error}")
                    stuck_pin = e.pin_cid
            except IpfsAPIError as e:
                logger.error(f"Error removing block ({cid}): {e}")
                return False

    async def remove_cid(self, cid: str) -> None:
        """Remove every block reachable from ``cid``, and ``cid`` itself."""
        try:
            async for ref in self.client.iter_refs(cid):
                if ref.err:
                    logger.error(f"Error listing refs of {cid}: {ref.err}")
                    continue
                if ref.ref and ref.ref != cid:
                    logger.debug(f"Removing block {ref.ref}")
                    await self.remove_block(ref.ref)
        except IpfsAPIError as e:
            logger.error(f"Error while listing references of {cid}: {e}")

        logger.debug(f"Removing block {cid}")
        await self.remove_block(cid)

    async def clean_filestore(self) -> None:
        """Remove filestore blocks that point to files that don't exist."""
        logger.info("Removing blocks that point to a missing file from filestore...")
        try:
            async for entry in self.client.iter_filestore_verify():
                if entry.missing_file:
                    logger.info(f"Removing reference from filestore: {entry.key}")
                    await self.remove_cid(entry.key)
        except IpfsAPIError as e:
            logger.error(f"Error while verifying objects in filestore: {e}")
