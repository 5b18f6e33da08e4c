"""
WebDAV adapter for gofile-dav.

Exposes a Gofile folder tree via WebDAV protocol, so it can be mounted in
Finder (macOS), File Explorer (Windows), rclone or any WebDAV client.
"""

import io
import logging
import posixpath
import tempfile
import threading
import time
from typing import TYPE_CHECKING, Any, Optional

from wsgidav import wsgidav_app
from wsgidav.dav_error import DAVError
from wsgidav.dav_provider import DAVCollection, DAVNonCollection, DAVProvider

from gofile_dav.exceptions import ErrorKind, RemoteError, is_not_found
from gofile_dav.models import File, Folder
from gofile_dav.node_info import EntryInfo, guess_mime_type
from gofile_dav.sync_wrapper import SyncGofileFileSystem

if TYPE_CHECKING:
    from cheroot.wsgi import Server

logger = logging.getLogger(__name__)

DAV_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.INVALID: 502,
}

_DESCRIPTIONS = {
    ErrorKind.RATE_LIMITED: "Remote API rate limit reached",
    ErrorKind.QUOTA_EXCEEDED: "Download quota exceeded, try again later or enable bypass mode",
}

# Uploads larger than this are spooled to disk
SPOOL_SIZE = 16 * 1024 * 1024


def to_dav_error(error: RemoteError, path: str) -> DAVError:
    """Convert a RemoteError into the DAVError WsgiDAV reports to the client"""
    status = DAV_STATUS.get(error.kind, 502)
    description = _DESCRIPTIONS.get(error.kind, error.message)
    logger.error(f"{path}: {error.kind.name} {error.message}")
    return DAVError(status, context_info=f"{description}: {path}")


class _UploadBuffer(io.RawIOBase):
    """
    Request body spool handed to WsgiDAV by begin_write.

    WsgiDAV closes the buffer before calling end_write, so closing keeps the
    data; ``discard`` releases it.
    """

    def __init__(self):
        super().__init__()
        self.spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_SIZE)
        self.size = 0

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        n = self.spool.write(data)
        self.size += n
        return n

    def close(self) -> None:
        if not self.spool.closed:
            self.spool.flush()

    @property
    def closed(self) -> bool:
        return self.spool.closed

    def rewind(self):
        self.spool.seek(0)
        return self.spool

    def discard(self) -> None:
        self.spool.close()


class GofileResource(DAVNonCollection):
    """Represents a remote file."""

    def __init__(
        self,
        path: str,
        fs: SyncGofileFileSystem,
        environ: dict,
        entry: File | None = None,
    ):
        super().__init__(path, environ)
        self.fs = fs
        self.entry = entry
        self.info = EntryInfo.from_entry(entry) if entry is not None else None
        self._upload: _UploadBuffer | None = None

    def get_content_length(self) -> int | None:
        """Return file size."""
        return self.info.size if self.info else 0

    def get_content_type(self) -> str:
        """Return MIME type."""
        return self.info.mime_type if self.info else guess_mime_type(self.name)

    def get_creation_date(self) -> float | None:
        return float(self.info.created) if self.info and self.info.created else None

    def get_last_modified(self) -> float | None:
        if self.info and self.info.modified:
            return float(self.info.modified)
        return time.time()

    def get_display_name(self) -> str:
        return posixpath.basename(self.path)

    def get_etag(self) -> str | None:
        """Return entity tag (unquoted, WsgiDAV adds the quotes)."""
        return self.info.etag if self.info else None

    def support_etag(self) -> bool:
        return True

    def support_ranges(self) -> bool:
        """WsgiDAV seeks the reader for Range requests."""
        return True

    def get_content(self) -> io.RawIOBase:
        """Return a seekable reader over the remote file."""
        if self.info is None:
            return io.BytesIO(b"")
        try:
            return self.fs.open_reader(self.path, self.info.size)
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e

    def begin_write(self, content_type: str | None = None) -> _UploadBuffer:
        """Begin writing to file."""
        if self.fs.read_only:
            raise DAVError(403, context_info=f"Read-only: {self.path}")
        self._upload = _UploadBuffer()
        return self._upload

    def end_write(self, with_errors: bool) -> None:
        """Upload the spooled body."""
        upload, self._upload = self._upload, None
        if upload is None:
            return
        try:
            if with_errors:
                logger.warning(f"Discarding incomplete upload of {self.path}")
                return
            file = self.fs.write(self.path, upload.rewind())
            self.entry = file
            self.info = EntryInfo.from_entry(file)
            logger.info(f"Uploaded {self.path} ({upload.size} bytes)")
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e
        finally:
            upload.discard()

    def delete(self) -> None:
        try:
            self.fs.remove(self.path)
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e

    def copy_move_single(self, dest_path: str, is_move: bool) -> None:
        try:
            if is_move:
                self.fs.move(self.path, dest_path)
            else:
                self.fs.copy(self.path, dest_path)
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e

    def support_recursive_move(self, dest_path: str) -> bool:
        return True

    def move_recursive(self, dest_path: str) -> None:
        self.copy_move_single(dest_path, is_move=True)


class GofileCollection(DAVCollection):
    """Represents a remote folder."""

    def __init__(
        self,
        path: str,
        fs: SyncGofileFileSystem,
        environ: dict,
        entry: Folder | None = None,
    ):
        super().__init__(path, environ)
        self.fs = fs
        self.entry = entry
        self.info = EntryInfo.from_entry(entry) if entry is not None else None

    def _member_path(self, name: str) -> str:
        return posixpath.join(self.path or "/", name)

    def _make(self, entry: File | Folder):
        path = self._member_path(entry.name)
        if isinstance(entry, Folder):
            return GofileCollection(path, self.fs, self.environ, entry)
        return GofileResource(path, self.fs, self.environ, entry)

    def _list(self) -> list[File | Folder]:
        try:
            return self.fs.list(self.path)
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e

    def get_member_names(self) -> list[str]:
        """Return list of member names."""
        return [entry.name for entry in self._list()]

    def get_member_list(self) -> list:
        """Build members from one listing instead of one lookup per name."""
        return [self._make(entry) for entry in self._list()]

    def get_member(self, name: str) -> Optional["GofileResource | GofileCollection"]:
        """Return a member by name."""
        member_path = self._member_path(name)
        try:
            entry = self.fs.stat(member_path)
        except RemoteError as e:
            if is_not_found(e):
                return None
            raise to_dav_error(e, member_path) from e
        return self._make(entry)

    def create_empty_resource(self, name: str) -> GofileResource:
        """Create a placeholder; the upload happens in end_write."""
        if self.fs.read_only:
            raise DAVError(403, context_info=f"Read-only: {self.path}")
        return GofileResource(self._member_path(name), self.fs, self.environ)

    def create_collection(self, name: str) -> "GofileCollection":
        """Create a new folder."""
        member_path = self._member_path(name)
        try:
            folder = self.fs.mkdir(member_path)
        except RemoteError as e:
            raise to_dav_error(e, member_path) from e
        return GofileCollection(member_path, self.fs, self.environ, folder)

    def support_recursive_delete(self) -> bool:
        return True

    def delete(self) -> None:
        """Delete this folder and everything below it."""
        try:
            self.fs.remove(self.path, recursive=True)
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e

    def copy_move_single(self, dest_path: str, is_move: bool) -> None:
        """Create the destination folder; members are copied one by one."""
        try:
            if is_move:
                self.fs.move(self.path, dest_path)
            else:
                self.fs.mkdir(dest_path)
        except RemoteError as e:
            raise to_dav_error(e, dest_path) from e

    def support_recursive_move(self, dest_path: str) -> bool:
        return True

    def move_recursive(self, dest_path: str) -> None:
        try:
            self.fs.move(self.path, dest_path)
        except RemoteError as e:
            raise to_dav_error(e, self.path) from e

    def get_display_name(self) -> str:
        return posixpath.basename(self.path.rstrip("/")) or "/"

    def get_creation_date(self) -> float | None:
        return float(self.info.created) if self.info and self.info.created else None

    def get_last_modified(self) -> float | None:
        if self.info and self.info.modified:
            return float(self.info.modified)
        return None


class GofileDAVProvider(DAVProvider):
    """WebDAV provider that exposes a Gofile folder tree."""

    def __init__(self, fs: SyncGofileFileSystem):
        """
        Initialize WebDAV provider.

        Args:
            fs: Blocking filesystem to expose; its mode decides read-only
        """
        super().__init__()
        self.fs = fs

    def get_resource_inst(
        self, path: str, environ: dict
    ) -> Optional["GofileResource | GofileCollection"]:
        """
        Return a DAVResource object for the given path.

        Args:
            path: WebDAV path (e.g., "/docs/file.txt")
            environ: WSGI environment dict

        Returns:
            GofileResource, GofileCollection, or None if not found
        """
        path = path or "/"
        try:
            entry = self.fs.stat(path)
        except RemoteError as e:
            if is_not_found(e):
                return None
            raise to_dav_error(e, path) from e

        if isinstance(entry, Folder):
            return GofileCollection(path, self.fs, environ, entry)
        return GofileResource(path, self.fs, environ, entry)

    def is_readonly(self) -> bool:
        """Return True if this provider is read-only."""
        return self.fs.read_only


class WebDAVAdapter:
    """
    WebDAV server for a Gofile folder tree.

    Example:
        >>> from gofile_dav import GofileDavConfig, SyncGofileFileSystem
        >>> from gofile_dav.adapters import WebDAVAdapter
        >>>
        >>> config = GofileDavConfig(root_id="Veil7n")
        >>> fs = SyncGofileFileSystem.from_config(config)
        >>>
        >>> adapter = WebDAVAdapter(fs, host=config.host, port=config.port)
        >>> adapter.start()  # Blocking
    """

    def __init__(
        self,
        fs: SyncGofileFileSystem,
        host: str = "127.0.0.1",
        port: int = 4914,
        **kwargs: Any,
    ):
        """
        Initialize WebDAV adapter.

        Args:
            fs: Filesystem to expose
            host: Host to bind to (default: 127.0.0.1)
            port: Port to bind to (default: 4914)
            **kwargs: Additional WsgiDAV configuration options
        """
        self.fs = fs
        self.host = host
        self.port = port

        self.provider = GofileDAVProvider(fs)

        config = {
            "host": host,
            "port": port,
            "provider_mapping": {"/": self.provider},
            "verbose": kwargs.pop("verbose", 1),
            "logging": {
                "enable_loggers": kwargs.pop("enable_loggers", []),
            },
            "simple_dc": {"user_mapping": {"*": True}},
        }
        config.update(kwargs)

        self.app = wsgidav_app.WsgiDAVApp(config)
        self._server: Server | None = None
        self._thread: threading.Thread | None = None

    def _make_server(self) -> "Server":
        from cheroot import wsgi

        return wsgi.Server((self.host, self.port), self.app)

    def start(self) -> None:
        """
        Start WebDAV server (blocking).

        This will block until the server is stopped via Ctrl+C or stop().
        """
        logger.info(f"Starting WebDAV server at {self.url}")
        self._server = self._make_server()
        try:
            self._server.start()
        except KeyboardInterrupt:
            logger.info("WebDAV server stopped by user")
            self._server.stop()

    def start_background(self) -> None:
        """Start WebDAV server in a daemon thread; stop() terminates it."""
        if self._thread and self._thread.is_alive():
            logger.warning("WebDAV server already running")
            return

        logger.info(f"Starting WebDAV server in background at {self.url}")
        self._server = self._make_server()
        self._thread = threading.Thread(target=self._server.start, daemon=True)
        self._thread.start()

        # Give server time to start
        time.sleep(0.5)
        logger.info(f"WebDAV server ready at {self.url}")

    def stop(self) -> None:
        """Stop WebDAV server."""
        if self._server:
            logger.info("Stopping WebDAV server")
            self._server.stop()
            self._server = None
            self._thread = None

    @property
    def url(self) -> str:
        """Get the WebDAV server URL."""
        return f"http://{self.host}:{self.port}"

    def __enter__(self) -> "WebDAVAdapter":
        self.start_background()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
