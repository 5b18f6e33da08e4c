"""
gofile_dav/node_info.py - Display metadata for remote entries
"""

import mimetypes
from dataclasses import dataclass

from gofile_dav.models import File, Folder

# Types the platform registry often lacks
_MIME_OVERRIDES = {
    ".md": "text/markdown",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
    ".toml": "text/toml",
    ".rs": "text/x-rust",
    ".go": "text/x-go",
    ".mkv": "video/x-matroska",
    ".7z": "application/x-7z-compressed",
}


def guess_mime_type(name: str) -> str:
    """Guess a MIME type from a file name"""
    lower = name.lower()
    for ext, mime in _MIME_OVERRIDES.items():
        if lower.endswith(ext):
            return mime
    mime, _ = mimetypes.guess_type(lower)
    return mime or "application/octet-stream"


@dataclass
class EntryInfo:
    """Entry metadata in the form the WebDAV layer serves it"""

    id: str
    name: str
    is_dir: bool
    size: int = 0
    mime_type: str = "application/octet-stream"
    md5: str | None = None
    created: int = 0
    modified: int = 0

    @classmethod
    def from_entry(cls, entry: File | Folder) -> "EntryInfo":
        if isinstance(entry, Folder):
            return cls(
                id=entry.id,
                name=entry.name,
                is_dir=True,
                size=entry.total_size,
                mime_type="httpd/unix-directory",
                created=entry.create_time,
                modified=entry.mod_time or entry.create_time,
            )
        return cls(
            id=entry.id,
            name=entry.name,
            is_dir=False,
            size=entry.size,
            mime_type=entry.mimetype or guess_mime_type(entry.name),
            md5=entry.md5,
            created=entry.create_time,
            modified=entry.mod_time or entry.create_time,
        )

    @property
    def etag(self) -> str:
        """Content checksum when known, else id and modification time"""
        if self.md5:
            return self.md5
        return f"{self.id}-{self.modified}-{self.size}"

    def __str__(self) -> str:
        type_str = "DIR" if self.is_dir else "FILE"
        return f"[{type_str}] {self.name} ({self.size} bytes)"
