#!/usr/bin/env python3
"""
Background WebDAV Server Example

Serves a public Gofile folder in the background and prints its top level
while the server runs.

Usage:
    python examples/webdav/01_background_server.py Veil7n
"""

import sys
import time

from gofile_dav import GofileDavConfig, SyncGofileFileSystem
from gofile_dav.adapters import WebDAVAdapter


def main():
    """Run WebDAV server in background."""
    root_id = sys.argv[1] if len(sys.argv) > 1 else "Veil7n"
    config = GofileDavConfig(root_id=root_id, port=8080, prefetch_depth=1)

    fs = SyncGofileFileSystem.from_config(config)
    fs.initialize()

    adapter = WebDAVAdapter(fs, host=config.host, port=config.port)
    adapter.start_background()

    print(f"Server running at {adapter.url}")
    print("Mount in Finder: Cmd+K -> http://localhost:8080\n")

    for entry in fs.list("/"):
        kind = "DIR " if entry.is_dir else "FILE"
        print(f"  {kind} {entry.name} ({entry.size} bytes)")

    try:
        while True:
            time.sleep(10)
            stats = fs.get_stats()["cache"]
            print(f"Cached folders: {stats['cached_folders']}, fetches: {stats['fetches']}")
    except KeyboardInterrupt:
        print("\nStopping server...")
        adapter.stop()
        fs.close()


if __name__ == "__main__":
    main()
