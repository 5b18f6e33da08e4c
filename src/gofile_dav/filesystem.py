"""
gofile_dav/filesystem.py - Path-based filesystem over the Gofile tree
"""

import asyncio
import hashlib
import logging
import posixpath
import sys
import tempfile
import weakref
from typing import TYPE_CHECKING, Any, BinaryIO

from gofile_dav.bypass import BypassRouter
from gofile_dav.client import DownloadStream, GofileClient
from gofile_dav.exceptions import ConfigError, ErrorKind, RemoteError, is_not_found
from gofile_dav.models import File, Folder, normalize_id
from gofile_dav.session import SessionManager
from gofile_dav.tree_cache import ROOT, CachedFolder, TreeCache

if TYPE_CHECKING:
    from gofile_dav.config import GofileDavConfig

logger = logging.getLogger(__name__)

# Copies larger than this are spooled to disk
SPOOL_SIZE = 16 * 1024 * 1024


def hash_password(password: str) -> str:
    """Folder passwords are sent as their SHA-256 hex digest"""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class GofileFileSystem:
    """
    Async filesystem over a Gofile folder tree.

    Paths are resolved from the configured root one segment at a time through
    the tree cache. Every mutation invalidates the folders it changed before
    returning, so a following call observes it.
    """

    def __init__(
        self,
        client: GofileClient,
        session: SessionManager,
        root_id: str | None = None,
        password: str | None = None,
        read_write: bool = False,
        bypass: bool = False,
        prefetch_depth: int = 0,
        max_concurrency: int = 8,
        parent_lookup_limit: int = 256,
        cache: TreeCache | None = None,
    ):
        """
        Initialize the filesystem

        Args:
            client: Remote API client
            session: Session owning the token
            root_id: Root folder id or code; the account root when omitted
            password: Plaintext password of protected folders
            read_write: Allow mutations
            bypass: Route downloads of public folders through the bypass service
            prefetch_depth: Levels to warm in the background after a listing
            max_concurrency: Fan-out limit for subtree population
            parent_lookup_limit: Folders visited when searching a file's parent
            cache: Tree cache to use instead of a new one
        """
        self.client = client
        self.session = session
        self.read_only = not read_write
        self.prefetch_depth = prefetch_depth
        self._password = hash_password(password) if password else None

        self.cache = cache or TreeCache(
            self._load_folder, root_id=root_id, max_concurrency=max_concurrency
        )
        if root_id is not None and self.cache.root_id is None:
            self.cache.root_id = root_id
        self.router = BypassRouter(
            client,
            session,
            self.cache,
            bypass=bypass,
            parent_lookup_limit=parent_lookup_limit,
        )

        self._prefetching: dict[str, asyncio.Task] = {}
        # One writer at a time per target path
        self._write_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._initialized = False
        self._closed = False

        self.stats = {
            "operations": 0,
            "errors": 0,
            "reads": 0,
            "bytes_written": 0,
            "files_created": 0,
            "folders_created": 0,
            "deleted": 0,
            "moved": 0,
        }

    @classmethod
    def from_config(
        cls, config: "GofileDavConfig", client: GofileClient | None = None
    ) -> "GofileFileSystem":
        client = client or GofileClient(timeout=config.timeout)
        session = SessionManager(client, config.api_token, ttl=config.token_ttl)
        return cls(
            client,
            session,
            root_id=config.root_id,
            password=config.password,
            read_write=config.read_write,
            bypass=config.bypass,
            prefetch_depth=config.prefetch_depth,
            max_concurrency=config.max_concurrency,
            parent_lookup_limit=config.parent_lookup_limit,
        )

    async def _load_folder(self, folder_id: str) -> Folder:
        return await self.session.call(self.client.list_folder, folder_id, self._password)

    async def initialize(self) -> None:
        """Resolve and validate the root folder"""
        if self._initialized:
            return

        if self.cache.root_id is None:
            account = await self.session.call(self.client.get_account_info)
            self.cache.root_id = account.root_folder
            logger.info(f"Using root folder {account.root_folder} of account {account.id}")

        try:
            root = await self.cache.resolve(ROOT)
        except RemoteError as e:
            if e.kind == ErrorKind.INVALID:
                raise ConfigError(f"Root {self.cache.root_id} is not a folder: {e}") from e
            raise

        if not self.read_only and not root.folder.is_owner:
            raise ConfigError("Read-write mode requires a root folder owned by the account")
        if root.folder.is_owner and root.folder.password:
            logger.warning("Root folder is owned by the account, ignoring its password")
            self._password = None

        self._initialized = True
        mode = "read-only" if self.read_only else "read-write"
        logger.info(f"Initialized GofileFileSystem on {root.folder.name or root.id} ({mode})")

    async def close(self) -> None:
        """Cancel background work and close the client"""
        if self._closed:
            return

        for task in list(self._prefetching.values()):
            task.cancel()
        self._prefetching.clear()
        self.cache.clear()
        await self.client.close()

        self._closed = True
        logger.info("Closed GofileFileSystem")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # Path utilities

    @staticmethod
    def normalize_path(path: str) -> str:
        """Normalize a WebDAV path to ``/a/b`` form"""
        if not path:
            return "/"
        return posixpath.normpath("/" + path.strip("/"))

    def split_path(self, path: str) -> tuple[str, str]:
        """Split path into parent and name"""
        path = self.normalize_path(path)
        if path == "/":
            return "/", ""
        parent, name = posixpath.split(path)
        return parent or "/", name

    def _segments(self, path: str) -> list[str]:
        path = self.normalize_path(path)
        return [s for s in path.split("/") if s]

    async def _lookup(self, path: str) -> tuple[CachedFolder | None, File | Folder]:
        """Return the containing folder (None for the root) and the entry"""
        current = await self.cache.resolve(ROOT)
        segments = self._segments(path)
        if not segments:
            return None, current.folder

        for depth, name in enumerate(segments, start=1):
            entry = current.child(name)
            if entry is None:
                raise RemoteError.not_found(f"{self.normalize_path(path)} not found")
            if depth == len(segments):
                return current, entry
            if not isinstance(entry, Folder):
                raise RemoteError.not_found(f"{name} in {path} is a file")
            current = await self.cache.resolve(entry.id)

        raise RemoteError.not_found(path)

    async def _resolve_folder(self, path: str) -> CachedFolder:
        _, entry = await self._lookup(path)
        if not isinstance(entry, Folder):
            raise RemoteError.not_found(f"{path} is not a folder")
        return await self.cache.resolve(entry.id)

    async def _parent_folder(self, path: str) -> CachedFolder:
        """Resolve the folder a new entry goes into"""
        try:
            return await self._resolve_folder(path)
        except RemoteError as e:
            if is_not_found(e):
                raise RemoteError.conflict(f"parent folder {path} does not exist") from e
            raise

    def _check_writable(self) -> None:
        if self.read_only:
            raise RemoteError.forbidden("filesystem is read-only")

    def _invalidate(self, *folder_ids: str) -> None:
        for folder_id in folder_ids:
            self.cache.invalidate(folder_id)
            self.router.forget(folder_id)

    # Reads

    async def stat(self, path: str) -> File | Folder:
        """Return the entry at a path"""
        _, entry = await self._lookup(path)
        self.stats["operations"] += 1
        return entry

    async def exists(self, path: str) -> bool:
        try:
            await self._lookup(path)
        except RemoteError as e:
            if is_not_found(e):
                return False
            raise
        return True

    async def list(self, path: str) -> list[File | Folder]:
        """List the visible children of a folder in remote order"""
        cached = await self._resolve_folder(path)
        self.stats["operations"] += 1
        if self.prefetch_depth > 0:
            self._schedule_prefetch(cached.id)
        return list(cached.children)

    def _schedule_prefetch(self, folder_id: str) -> None:
        if folder_id in self._prefetching:
            return
        task = asyncio.create_task(self._prefetch_in_background(folder_id))
        self._prefetching[folder_id] = task
        task.add_done_callback(lambda t: self._prefetching.pop(folder_id, None))

    async def _prefetch_in_background(self, folder_id: str) -> None:
        try:
            await self.cache.populate_subtree(folder_id, self.prefetch_depth)
        except RemoteError as e:
            logger.warning(f"Background prefetch of {folder_id} failed: {e}")

    async def read(
        self, path: str, byte_range: tuple[int, int | None] | None = None
    ) -> DownloadStream:
        """
        Open a file for reading

        Args:
            path: File path
            byte_range: Inclusive (start, end) offsets; end None means to EOF

        Returns:
            Async byte stream over the file contents
        """
        _, entry = await self._lookup(path)
        if isinstance(entry, Folder):
            raise RemoteError.forbidden(f"{path} is a folder")

        self.stats["reads"] += 1
        return await self.router.open(entry, byte_range)

    async def read_bytes(
        self, path: str, byte_range: tuple[int, int | None] | None = None
    ) -> bytes:
        """Read a whole file, or a range of it, into memory"""
        async with await self.read(path, byte_range) as stream:
            return await stream.read()

    # Mutations

    async def write(self, path: str, data: bytes | BinaryIO) -> File:
        """
        Upload a file, replacing any file of the same name

        Older files with the same name are deleted only after the upload
        succeeded.
        """
        self._check_writable()
        parent_path, name = self.split_path(path)
        if not name:
            raise RemoteError.conflict("cannot write to the root folder")

        parent = await self._parent_folder(parent_path)
        if isinstance(parent.child(name), Folder):
            raise RemoteError.conflict(f"{path} is a folder")

        key = (parent.id, name)
        lock = self._write_locks.get(key)
        if lock is None:
            lock = self._write_locks[key] = asyncio.Lock()

        async with lock:
            try:
                uploaded = await self.session.call(
                    self.client.upload_file, parent.id, name, data
                )
                self.cache.record_parent(uploaded.id, parent.id)

                # The listing must include uploads that finished meanwhile
                self._invalidate(parent.id)
                fresh = await self.cache.resolve(parent.id)
                stale = [
                    c.id
                    for c in fresh.named(name)
                    if isinstance(c, File) and normalize_id(c.id) != normalize_id(uploaded.id)
                ]
                if stale:
                    logger.debug(f"Replacing {len(stale)} older file(s) named {name}")
                    await self.session.call(self.client.delete_entry, *stale)
                    for file_id in stale:
                        self.cache.forget(file_id)
            except RemoteError:
                self.stats["errors"] += 1
                raise
            finally:
                self._invalidate(parent.id)

        self.stats["operations"] += 1
        self.stats["files_created"] += 1
        if isinstance(data, bytes):
            self.stats["bytes_written"] += len(data)
        return uploaded

    async def mkdir(self, path: str) -> Folder:
        """Create a folder; the name must be free"""
        self._check_writable()
        parent_path, name = self.split_path(path)
        if not name:
            raise RemoteError.conflict("root folder already exists")

        parent = await self._parent_folder(parent_path)
        if parent.child(name) is not None:
            raise RemoteError.conflict(f"{path} already exists")

        try:
            folder = await self.session.call(self.client.create_folder, parent.id, name)
        finally:
            self._invalidate(parent.id)
        self.cache.learn(folder, parent.id)

        self.stats["operations"] += 1
        self.stats["folders_created"] += 1
        return folder

    async def remove(self, path: str, recursive: bool = False) -> None:
        """
        Delete a file or folder

        Args:
            path: Entry to delete
            recursive: Allow deleting a folder that still has children
        """
        self._check_writable()
        parent, entry = await self._lookup(path)
        if parent is None:
            raise RemoteError.forbidden("cannot remove the root folder")

        if isinstance(entry, Folder) and not recursive:
            contents = await self.cache.resolve(entry.id)
            if contents.listed or contents.folder.children_count:
                raise RemoteError.forbidden(f"{path} is not empty")

        try:
            await self.session.call(self.client.delete_entry, entry.id)
        finally:
            if isinstance(entry, Folder):
                self.cache.invalidate_subtree(entry.id)
                self.router.forget(entry.id)
            self._invalidate(parent.id)
        self.cache.forget(entry.id)

        self.stats["operations"] += 1
        self.stats["deleted"] += 1

    async def move(self, path: str, new_path: str, overwrite: bool = True) -> File | Folder:
        """
        Move or rename an entry

        Args:
            path: Entry to move
            new_path: Destination path
            overwrite: Replace an existing file at the destination

        Returns:
            The entry with its new name and parent
        """
        self._check_writable()
        source, destination = self.normalize_path(path), self.normalize_path(new_path)
        src_parent, entry = await self._lookup(source)
        if src_parent is None:
            raise RemoteError.forbidden("cannot move the root folder")
        if isinstance(entry, Folder) and destination.startswith(source + "/"):
            raise RemoteError.conflict(f"cannot move {source} into itself")

        dst_parent_path, new_name = self.split_path(destination)
        if not new_name:
            raise RemoteError.conflict("cannot replace the root folder")
        dst_parent = await self._parent_folder(dst_parent_path)

        target = dst_parent.child(new_name)
        if target is not None and normalize_id(target.id) == normalize_id(entry.id):
            return entry
        if target is not None:
            if isinstance(target, Folder):
                raise RemoteError.conflict(f"{destination} is an existing folder")
            if not overwrite:
                raise RemoteError.conflict(f"{destination} already exists")

        try:
            if src_parent.id != dst_parent.id:
                await self.session.call(self.client.move_entry, entry.id, dst_parent.id)
                self.cache.record_parent(entry.id, dst_parent.id)
            if new_name != entry.name:
                await self.session.call(self.client.rename_entry, entry.id, new_name)
            if target is not None:
                await self.session.call(self.client.delete_entry, target.id)
                self.cache.forget(target.id)
        finally:
            self._invalidate(src_parent.id, dst_parent.id)

        self.stats["operations"] += 1
        self.stats["moved"] += 1
        return entry.model_copy(update={"name": new_name, "parent_folder": dst_parent.id})

    async def copy(self, path: str, new_path: str, overwrite: bool = True) -> File:
        """Copy a file by streaming it back through an upload"""
        self._check_writable()
        _, entry = await self._lookup(path)
        if isinstance(entry, Folder):
            raise RemoteError.forbidden("copying folders is not supported")
        if not overwrite and await self.exists(new_path):
            raise RemoteError.conflict(f"{new_path} already exists")

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_SIZE) as spool:
            async with await self.read(path) as stream:
                async for chunk in stream:
                    spool.write(chunk)
            spool.seek(0)
            return await self.write(new_path, spool)

    # Tree walks

    async def prefetch(self, path: str = "/", depth: int = 1) -> int:
        """Warm the cache below a folder; returns the number of folders visited"""
        cached = await self._resolve_folder(path)
        visited = await self.cache.populate_subtree(cached.id, depth)
        return len(visited)

    async def disk_usage(self, path: str = "/") -> dict[str, int]:
        """Count files, folders and bytes below a folder"""
        cached = await self._resolve_folder(path)
        visited = await self.cache.populate_subtree(cached.id, sys.maxsize)

        usage = {"files": 0, "folders": len(visited) - 1, "bytes": 0}
        for folder in visited:
            for child in folder.children:
                if isinstance(child, File):
                    usage["files"] += 1
                    usage["bytes"] += child.size
        return usage

    def get_stats(self) -> dict[str, Any]:
        return {
            "filesystem": self.stats.copy(),
            "cache": self.cache.stats(),
            "router": self.router.get_stats(),
            "session": self.session.stats.copy(),
        }
