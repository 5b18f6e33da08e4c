"""
gofile_dav - Serve a Gofile folder tree over WebDAV
"""

from gofile_dav import exceptions
from gofile_dav.client import DownloadStream, GofileClient
from gofile_dav.config import GofileDavConfig
from gofile_dav.exceptions import ErrorKind, GofileError, RemoteError
from gofile_dav.filesystem import GofileFileSystem
from gofile_dav.models import File, Folder, RemoteEntry
from gofile_dav.node_info import EntryInfo
from gofile_dav.session import SessionManager, Token
from gofile_dav.sync_wrapper import SyncGofileFileSystem
from gofile_dav.tree_cache import TreeCache

__all__ = [
    # Core async components
    "GofileFileSystem",
    "SyncGofileFileSystem",
    "GofileClient",
    "DownloadStream",
    "SessionManager",
    "Token",
    "TreeCache",
    # Models
    "File",
    "Folder",
    "RemoteEntry",
    "EntryInfo",
    "GofileDavConfig",
    # Errors
    "exceptions",
    "ErrorKind",
    "GofileError",
    "RemoteError",
]
