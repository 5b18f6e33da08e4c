"""
Synchronous wrapper for GofileFileSystem

Runs the async filesystem on one dedicated event loop thread and exposes
blocking calls for threaded servers such as WsgiDAV on cheroot.
"""

import asyncio
import io
import logging
import threading
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any, BinaryIO, TypeVar

from gofile_dav.client import DownloadStream
from gofile_dav.exceptions import RemoteError
from gofile_dav.filesystem import GofileFileSystem
from gofile_dav.models import File, Folder

if TYPE_CHECKING:
    from gofile_dav.config import GofileDavConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncGofileFileSystem:
    """Synchronous wrapper around GofileFileSystem"""

    def __init__(self, fs: GofileFileSystem, bridge_timeout: float = 300.0):
        """
        Initialize sync wrapper

        Args:
            fs: Async filesystem; all of its state lives on the wrapper's loop
            bridge_timeout: Seconds a blocking call waits for its coroutine
        """
        self._async_fs = fs
        self.bridge_timeout = bridge_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._initialized = False

    @classmethod
    def from_config(cls, config: "GofileDavConfig") -> "SyncGofileFileSystem":
        return cls(GofileFileSystem.from_config(config), config.bridge_timeout)

    @property
    def read_only(self) -> bool:
        return self._async_fs.read_only

    def _start_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is not None:
                return self._loop

            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def run() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                loop.run_forever()

            self._thread = threading.Thread(target=run, name="gofile-dav-loop", daemon=True)
            self._thread.start()
            ready.wait()
            self._loop = loop
            logger.debug("Started event loop thread")
            return loop

    def _run_async(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine on the loop thread and wait for its result"""
        if self._thread is not None and threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("blocking call made from the event loop thread")

        loop = self._loop or self._start_loop()
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=self.bridge_timeout)
        except TimeoutError:
            future.cancel()
            raise RemoteError.transient(
                f"remote operation did not finish within {self.bridge_timeout}s"
            ) from None

    def _ensure_initialized(self) -> None:
        """Ensure the filesystem is initialized"""
        if not self._initialized:
            self._run_async(self._async_fs.initialize())
            self._initialized = True

    def initialize(self) -> None:
        self._ensure_initialized()

    def stat(self, path: str) -> File | Folder:
        self._ensure_initialized()
        return self._run_async(self._async_fs.stat(path))

    def exists(self, path: str) -> bool:
        self._ensure_initialized()
        return self._run_async(self._async_fs.exists(path))

    def list(self, path: str) -> list[File | Folder]:
        self._ensure_initialized()
        return self._run_async(self._async_fs.list(path))

    def read_bytes(
        self, path: str, byte_range: tuple[int, int | None] | None = None
    ) -> bytes:
        """Read a file, or part of it, into memory"""
        self._ensure_initialized()
        return self._run_async(self._async_fs.read_bytes(path, byte_range))

    def open_reader(self, path: str, size: int) -> "RemoteFileReader":
        """Open a seekable blocking reader over a remote file"""
        self._ensure_initialized()
        return RemoteFileReader(self, path, size)

    def write(self, path: str, data: bytes | BinaryIO) -> File:
        self._ensure_initialized()
        return self._run_async(self._async_fs.write(path, data))

    def mkdir(self, path: str) -> Folder:
        self._ensure_initialized()
        return self._run_async(self._async_fs.mkdir(path))

    def remove(self, path: str, recursive: bool = False) -> None:
        self._ensure_initialized()
        self._run_async(self._async_fs.remove(path, recursive=recursive))

    def move(self, path: str, new_path: str, overwrite: bool = True) -> File | Folder:
        self._ensure_initialized()
        return self._run_async(self._async_fs.move(path, new_path, overwrite=overwrite))

    def copy(self, path: str, new_path: str, overwrite: bool = True) -> File:
        self._ensure_initialized()
        return self._run_async(self._async_fs.copy(path, new_path, overwrite=overwrite))

    def prefetch(self, path: str = "/", depth: int = 1) -> int:
        self._ensure_initialized()
        return self._run_async(self._async_fs.prefetch(path, depth))

    def disk_usage(self, path: str = "/") -> dict[str, int]:
        self._ensure_initialized()
        return self._run_async(self._async_fs.disk_usage(path))

    def get_stats(self) -> dict[str, Any]:
        return self._async_fs.get_stats()

    def close(self) -> None:
        """Close the filesystem and stop the loop thread"""
        if self._loop is None:
            return

        try:
            self._run_async(self._async_fs.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread is not None:
                self._thread.join(timeout=5)
            self._loop.close()
            self._loop = None
            self._thread = None
            self._initialized = False
            logger.debug("Stopped event loop thread")

    def __enter__(self):
        self._ensure_initialized()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class RemoteFileReader(io.RawIOBase):
    """
    Seekable blocking reader over a remote file.

    A download is opened lazily at the current offset; seeking closes it and
    the next read reopens it with a Range request.
    """

    def __init__(self, fs: SyncGofileFileSystem, path: str, size: int):
        super().__init__()
        self._fs = fs
        self._path = path
        self._size = size
        self._pos = 0
        self._stream: DownloadStream | None = None

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._pos + offset
        elif whence == io.SEEK_END:
            position = self._size + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if position < 0:
            raise ValueError("negative seek position")

        if position != self._pos:
            self._close_stream()
            self._pos = position
        return self._pos

    def readinto(self, buffer) -> int:
        if self._pos >= self._size:
            return 0

        if self._stream is None:
            byte_range = (self._pos, None) if self._pos else None
            self._stream = self._fs._run_async(
                self._fs._async_fs.read(self._path, byte_range)
            )

        data = self._fs._run_async(self._stream.read(len(buffer)))
        n = len(data)
        buffer[:n] = data
        self._pos += n
        return n

    def _close_stream(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            # The loop may already be gone when closed during shutdown
            if self._fs._loop is not None:
                self._fs._run_async(stream.aclose())

    def close(self) -> None:
        if not self.closed:
            try:
                self._close_stream()
            finally:
                super().close()
