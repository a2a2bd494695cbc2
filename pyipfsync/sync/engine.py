"""Core sync engine keeping monitored directories published on IPFS."""

import asyncio
import logging
import os
from collections.abc import Sequence
from typing import Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..api import IpfsClient, key_name
from ..estuary import EstuaryClient
from ..exceptions import EstuaryError, IpfsAPIError, IpfsSyncError
from ..models import Key
from ..output import OutputFormatter
from ..utils import (
    DEFAULT_IGNORE_SUFFIXES,
    DEFAULT_MAX_RECOVERY_ATTEMPTS,
    DEFAULT_RECOVERY_BACKOFF,
    DEFAULT_SYNC_INTERVAL,
)
from .directory import DirectoryState, MonitoredDirectory, Phase, build_states
from .fingerprint import FileFingerprint
from .locks import PathLocks
from .operations import SyncOperations
from .recovery import BadBlockRecovery
from .scanner import DirectoryScanner
from .state import ChangeProcessor, FingerprintStore
from .watcher import WatchEvent, WatchEventType, WatchSource, watch_directory

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrates reconciliation, live watching and IPNS drift polling.

    Each directory moves through ``UNINITIALIZED``, then ``DISCOVERED`` (its
    IPNS key exists) or ``GENERATING`` (first full upload), and finally
    ``WATCHING`` for the rest of the process lifetime.
    """

    def __init__(
        self,
        client: IpfsClient,
        directories: Sequence[MonitoredDirectory],
        store: Optional[FingerprintStore] = None,
        estuary: Optional[EstuaryClient] = None,
        output: Optional[OutputFormatter] = None,
        ignore_suffixes: Sequence[str] = DEFAULT_IGNORE_SUFFIXES,
        ignore_hidden: bool = False,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        verify_filestore: bool = False,
        max_recovery_attempts: int = DEFAULT_MAX_RECOVERY_ATTEMPTS,
        recovery_backoff: float = DEFAULT_RECOVERY_BACKOFF,
        watch_source: WatchSource = watch_directory,
    ):
        """Initialize sync engine.

        Args:
            client: IPFS API client
            directories: Directories to keep in sync
            store: Durable fingerprint store; None runs without change tracking
            estuary: Estuary client for directories with ``estuary`` set
            output: Output formatter for displaying progress/status
            ignore_suffixes: File extensions never synced
            ignore_hidden: Skip dot files unless a directory overrides it
            sync_interval: Seconds between IPNS drift checks
            verify_filestore: Sweep the filestore for stale blocks on start
            max_recovery_attempts: Publish retries after bad block recovery
            recovery_backoff: Delay before the first publish retry
            watch_source: Produces watch events for a directory
        """
        self.client = client
        self.store = store
        self.estuary = estuary
        self.output = output or OutputFormatter(quiet=True)
        self.ignore_suffixes = list(ignore_suffixes)
        self.ignore_hidden = ignore_hidden
        self.sync_interval = sync_interval
        self.verify_filestore = verify_filestore
        self.watch_source = watch_source

        self.states = build_states(list(directories))
        self.processor = ChangeProcessor(store)
        self.recovery = BadBlockRecovery(client)
        self.operations = SyncOperations(
            client,
            self.recovery,
            max_recovery_attempts=max_recovery_attempts,
            recovery_backoff=recovery_backoff,
        )
        self.locks = PathLocks()
        self._watch_tasks: dict[str, asyncio.Task] = {}
        self._stop_events: dict[str, asyncio.Event] = {}

    def scanner_for(self, directory: MonitoredDirectory) -> DirectoryScanner:
        ignore_hidden = (
            self.ignore_hidden
            if directory.ignore_hidden is None
            else directory.ignore_hidden
        )
        return DirectoryScanner(
            ignore_suffixes=self.ignore_suffixes, ignore_hidden=ignore_hidden
        )

    def get_state(self, directory_id: str) -> DirectoryState:
        for state in self.states:
            if state.id == directory_id:
                return state
        raise KeyError(directory_id)

    # =========================
    # Lifecycle
    # =========================

    async def run(self) -> None:
        """Start syncing and keep polling until cancelled."""
        try:
            await self.start()
            await self.poll_forever()
        finally:
            await self.close()

    async def start(self) -> None:
        """Reconcile every directory and attach the live watches.

        Raises:
            IpfsSyncError: If the daemon can't be reached or a directory
                can't be initialized; the process should exit
            OSError: If a directory can't be walked during reconciliation
        """
        try:
            version = await self.client.version()
        except IpfsAPIError as e:
            raise IpfsSyncError(f"Failed to connect to endpoint: {e}") from e
        logger.debug(f"Connected to IPFS {version}")

        if self.verify_filestore:
            await self.recovery.clean_filestore()

        try:
            keys = await self.client.list_keys()
        except IpfsAPIError as e:
            raise IpfsSyncError(f"Failed to retrieve keys from IPFS: {e}") from e

        for state in self.states:
            await self.initialize_directory(state, keys)

        for state in self.states:
            self.attach_watch(state)

    async def close(self) -> None:
        """Stop the watches and release clients and the store."""
        for stop_event in self._stop_events.values():
            stop_event.set()
        tasks = list(self._watch_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._watch_tasks.clear()
        self._stop_events.clear()

        await self.client.close()
        if self.estuary is not None:
            await self.estuary.close()
        if self.store is not None:
            await self.store.close()

    # =========================
    # Startup reconciliation
    # =========================

    async def initialize_directory(
        self, state: DirectoryState, keys: Sequence[Key]
    ) -> None:
        """Bring one directory from ``UNINITIALIZED`` to ready-to-watch."""
        directory = state.directory

        if self.processor.enabled:
            updated = await self.reconcile_directory(state)
            logger.info(f"{directory.id}: {updated} file(s) changed while offline")

        name = key_name(directory.id)
        key = next((k for k in keys if k.name == name), None)
        if key is not None:
            await self._load_existing(state, key)
        else:
            await self._generate(state)

    async def reconcile_directory(self, state: DirectoryState) -> int:
        """Publish files that changed since the fingerprints were stored.

        Files are fingerprinted and published one at a time. A file that
        fails is logged and skipped.

        Returns:
            Number of files reported as changed

        Raises:
            OSError: If the directory can't be walked
        """
        directory = state.directory
        if not self.processor.enabled:
            return 0

        files = await self._scan(directory)
        updated = 0
        for file_path in files:
            logger.debug(f"Loading {file_path}...")
            try:
                if await self.sync_file(state, file_path, overwrite=True):
                    updated += 1
            except (IpfsSyncError, OSError) as e:
                logger.error(f"Error adding file {file_path}: {e}")
        return updated

    async def _scan(self, directory: MonitoredDirectory) -> list[str]:
        scanner = self.scanner_for(directory)
        if self.output.quiet:
            return await scanner.scan(directory.path)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=self.output.console,
        ) as progress:
            task = progress.add_task(f"Scanning {directory.path}...", total=None)
            files = await scanner.scan(directory.path)
            progress.update(task, description=f"Found {len(files)} file(s)")
        return files

    async def _load_existing(self, state: DirectoryState, key: Key) -> None:
        """Load a directory whose IPNS key already exists."""
        directory = state.directory
        state.phase = Phase.DISCOVERED
        state.key = key

        try:
            state.cid = await self.client.resolve_name(key.id)
        except IpfsAPIError as e:
            logger.error(f"Error resolving IPNS for {directory.id}: {e}")
            logger.info("Republishing key...")
            state.cid = await self.client.get_file_cid(directory.remote_root)
            if state.cid:
                try:
                    await self.client.publish(state.cid, key.id)
                except IpfsAPIError as publish_error:
                    logger.error(f"Error republishing {directory.id}: {publish_error}")

        self.output.info(f"{directory.id} loaded: {key.id}")

    async def _generate(self, state: DirectoryState) -> None:
        """Create the IPNS key of a new directory and upload it in full.

        Raises:
            IpfsSyncError: If the key can't be created or the upload fails
        """
        directory = state.directory
        state.phase = Phase.GENERATING
        logger.info(f"{directory.id} not found, generating...")

        try:
            state.key = await self.client.generate_key(directory.id)
        except IpfsAPIError as e:
            raise IpfsSyncError(
                f"Could not generate IPNS key for {directory.id}: {e}"
            ) from e

        try:
            state.cid = await self.upload_directory(state)
            await self.client.publish(state.cid, state.key.id)
        except (IpfsAPIError, OSError) as e:
            raise IpfsSyncError(f"Failed to add directory {directory.path}: {e}") from e

        self.output.info(f"{directory.id} loaded: {state.key.id}")

    async def upload_directory(self, state: DirectoryState) -> str:
        """Upload every file of a directory and return the directory CID.

        The CID is pinned locally and on Estuary when the directory asks
        for it; pinning failures are logged only.
        """
        directory = state.directory
        files = await self._scan(directory)

        for file_path in files:
            try:
                async with self.locks.hold(file_path):
                    await self.operations.publish_file(
                        state, file_path, overwrite=True
                    )
                    if self.processor.enabled:
                        await self._record(file_path, directory.dont_hash)
            except (IpfsSyncError, OSError) as e:
                logger.error(f"Error adding file {file_path}: {e}")

        cid = await self.client.get_file_cid(directory.remote_root)
        if not cid:
            raise IpfsAPIError(f"Could not resolve CID of {directory.remote_root}")

        if directory.pin:
            try:
                await self.client.pin(cid)
            except IpfsAPIError as e:
                logger.error(f"Error pinning {directory.remote_root}: {e}")

        if directory.estuary:
            await self._estuary_pin(cid, directory.remote_root)

        return cid

    async def _estuary_pin(self, cid: str, name: str) -> None:
        if self.estuary is None:
            logger.warning(f"No Estuary client configured, not pinning {name}")
            return
        try:
            await self.estuary.pin(cid, name)
        except EstuaryError as e:
            logger.error(f"Error pinning to Estuary: {e}")

    # =========================
    # Per-file work
    # =========================

    async def _fingerprint(self, file_path: str, dont_hash: bool) -> FileFingerprint:
        """Return a fresh fingerprint, starting from the cached or stored one."""
        previous = self.processor.hashmap.get(file_path)
        if previous is None:
            previous = await self.processor.load(file_path, dont_hash)
        return await asyncio.to_thread(previous.recalculate, dont_hash)

    async def _record(self, file_path: str, dont_hash: bool) -> bool:
        fingerprint = await self._fingerprint(file_path, dont_hash)
        changed = await self.processor.update(fingerprint)
        self.processor.hashmap[file_path] = fingerprint
        return changed

    async def sync_file(
        self, state: DirectoryState, file_path: str, overwrite: bool = True
    ) -> bool:
        """Publish a file if its fingerprint changed.

        Without a fingerprint store every call publishes.

        Returns:
            True if the file was published
        """
        async with self.locks.hold(file_path):
            if self.processor.enabled:
                changed = await self._record(file_path, state.directory.dont_hash)
                if not changed:
                    return False
                logger.info(f"File updated {file_path}")
            await self.operations.publish_file(state, file_path, overwrite=overwrite)
            return True

    async def remove_path(self, state: DirectoryState, path: str) -> None:
        """Remove a deleted file or directory from MFS and the store."""
        async with self.locks.hold(path):
            try:
                await self.operations.remove_file(state, path)
            except IpfsAPIError as e:
                logger.error(f"Error removing {path} from MFS: {e}")
            await self.processor.delete(path)

    # =========================
    # Live watching
    # =========================

    def attach_watch(self, state: DirectoryState) -> asyncio.Task:
        """Start consuming watch events for a directory."""
        stop_event = asyncio.Event()
        self._stop_events[state.id] = stop_event
        task = asyncio.create_task(
            self.watch(state, stop_event), name=f"watch:{state.id}"
        )
        self._watch_tasks[state.id] = task
        state.phase = Phase.WATCHING
        return task

    async def watch(self, state: DirectoryState, stop_event: asyncio.Event) -> None:
        """Handle watch events of one directory, in order, until detached."""
        directory = state.directory
        logger.info(f"Watching {directory.path}")
        async for event in self.watch_source(directory.path, stop_event):
            if event.type == WatchEventType.DIR_REMOVED:
                logger.warning(f"{directory.path} was removed, detaching watch")
                stop_event.set()
                break
            try:
                await self.handle_event(state, event)
            except (IpfsSyncError, OSError) as e:
                logger.error(f"Error handling {event.type.value} of {event.path}: {e}")

    async def handle_event(self, state: DirectoryState, event: WatchEvent) -> None:
        directory = state.directory
        scanner = self.scanner_for(directory)

        if scanner.is_ignored(event.path, root=directory.path):
            return

        if event.type == WatchEventType.REMOVED:
            if not os.path.exists(event.path):
                await self.remove_path(state, event.path)
                return
            # replaced again before the event was handled
            logger.debug(f"{event.path} was removed and recreated, syncing")

        if os.path.isdir(event.path):
            if event.type != WatchEventType.CHANGED:
                # a directory moved in arrives as a single event
                await self.sync_tree(state, event.path)
            return

        if os.path.isfile(event.path):
            await self.sync_file(state, event.path)

    async def sync_tree(self, state: DirectoryState, root: str) -> int:
        """Publish every file below a directory that appeared while watching.

        A file that fails is logged and skipped.

        Returns:
            Number of files published
        """
        scanner = self.scanner_for(state.directory)
        published = 0
        for file_path in await scanner.scan(root):
            try:
                if await self.sync_file(state, file_path):
                    published += 1
            except (IpfsSyncError, OSError) as e:
                logger.error(f"Error adding file {file_path}: {e}")
        return published

    # =========================
    # IPNS drift polling
    # =========================

    async def poll_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            await self.poll_once()

    async def poll_once(self) -> int:
        """Check every directory for a new root CID.

        Returns:
            Number of directories that were updated
        """
        updated = 0
        for state in self.states:
            try:
                if await self.sync_directory(state):
                    updated += 1
            except IpfsSyncError as e:
                logger.error(f"Error syncing {state.id}: {e}")
        return updated

    async def sync_directory(self, state: DirectoryState) -> bool:
        """Publish a directory's root CID if it moved since the last check.

        Returns:
            True if a new CID was published
        """
        directory = state.directory
        async with state.lock:
            cid = await self.client.get_file_cid(directory.remote_root)
            if not cid or cid == state.cid:
                return False

            if directory.pin:
                await self.update_pin(state.cid, cid)

            if directory.estuary:
                if self.estuary is None:
                    logger.warning(f"No Estuary client configured for {directory.id}")
                else:
                    try:
                        await self.estuary.update_pin(
                            state.cid, cid, directory.remote_root
                        )
                    except EstuaryError as e:
                        logger.error(f"Error pinning to Estuary: {e}")

            key_id = state.key.id if state.key else key_name(directory.id)
            await self.client.publish(cid, key_id)
            state.cid = cid

        self.output.info(f"{directory.remote_root} updated...")
        return True

    async def update_pin(self, from_cid: str, to_cid: str, retried: bool = False) -> None:
        """Move the local pin, recovering from bad blocks once.

        Falls back to pinning ``to_cid`` from scratch when the update can't
        be done.
        """
        try:
            await self.client.update_pin(from_cid, to_cid)
            return
        except IpfsAPIError as e:
            logger.error(f"Error updating pin from {from_cid} to {to_cid}: {e}")
            if not retried and await self.recovery.handle(e):
                logger.info("Bad blocks found, running pin/update again")
                await self.update_pin(from_cid, to_cid, retried=True)
                return

        try:
            await self.client.pin(to_cid)
        except IpfsAPIError as e:
            logger.error(f"Error adding pin: {e}")
