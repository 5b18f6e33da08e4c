"""
Adapters for exposing a Gofile folder tree through different protocols.
"""

from gofile_dav.adapters.webdav import GofileDAVProvider, WebDAVAdapter

__all__ = ["GofileDAVProvider", "WebDAVAdapter"]
