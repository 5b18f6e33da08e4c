"""
gofile_dav/bypass.py - Direct or bypass download routing
"""

import logging
from collections import deque

from gofile_dav.client import DownloadStream, GofileClient
from gofile_dav.exceptions import ErrorKind, RemoteError
from gofile_dav.inflight import InflightMap
from gofile_dav.models import BypassFile, File, Folder, normalize_id
from gofile_dav.session import SessionManager
from gofile_dav.tree_cache import ROOT, TreeCache

logger = logging.getLogger(__name__)

# Proxy hosts the bypass service hands out that never serve files
BROKEN_PROXY_HOSTS = ("gf.cybar.xyz",)
MAX_BYPASS_ATTEMPTS = 10

# Failures of the metadata hint that only mean "no hint"
_HINT_MISSES = (ErrorKind.NOT_FOUND, ErrorKind.FORBIDDEN, ErrorKind.INVALID)


def _is_broken(proxy_link: str) -> bool:
    return any(host in proxy_link for host in BROKEN_PROXY_HOSTS)


class BypassRouter:
    """
    Opens file downloads, either directly or through the bypass service.

    The bypass service lists a public folder by its short code, so a bypassed
    download first needs the file's parent folder. Listings are memoized per
    folder until ``forget`` is called for it.
    """

    def __init__(
        self,
        client: GofileClient,
        session: SessionManager,
        cache: TreeCache,
        bypass: bool = False,
        parent_lookup_limit: int = 256,
    ):
        self.client = client
        self.session = session
        self.cache = cache
        self.bypass = bypass
        self.parent_lookup_limit = parent_lookup_limit

        self._listings: dict[str, list[BypassFile]] = {}
        self._generations: dict[str, int] = {}
        self._inflight = InflightMap()

        self._stats = {
            "direct": 0,
            "bypassed": 0,
            "fallbacks": 0,
            "parent_lookups": 0,
            "listings": 0,
        }

    def get_stats(self) -> dict[str, int]:
        return self._stats.copy()

    async def open(
        self, file: File, byte_range: tuple[int, int | None] | None = None
    ) -> DownloadStream:
        """
        Open a download stream for a file

        Args:
            file: File to download
            byte_range: Inclusive (start, end) offsets; end None means to EOF

        Returns:
            Stream over the requested bytes
        """
        if not self.bypass:
            return await self._direct(file, byte_range)

        parent_id = await self.find_parent(file)
        folder = (await self.cache.resolve(parent_id)).folder
        if folder.password or not folder.public:
            logger.warning(
                f"Bypass does not apply to {file.name}: folder {folder.id} is "
                "private or password protected, downloading directly"
            )
            self._stats["fallbacks"] += 1
            return await self._direct(file, byte_range)

        proxy_link = await self.proxy_link(folder, file)
        self._stats["bypassed"] += 1
        logger.debug(f"Downloading {file.name} through {proxy_link}")
        return await self.client.download(None, proxy_link, byte_range, bypassed=True)

    async def _direct(
        self, file: File, byte_range: tuple[int, int | None] | None
    ) -> DownloadStream:
        if not file.link:
            file = await self.session.call(self.client.get_file, file.id)
        self._stats["direct"] += 1
        return await self.session.call(self.client.download, file.link, byte_range)

    async def find_parent(self, file: File) -> str:
        """Return the canonical id of a file's parent folder"""
        if file.parent_folder:
            return self.cache.canonical(file.parent_folder)

        known = self.cache.parent_of(file.id)
        if known is not None:
            return known

        self._stats["parent_lookups"] += 1
        parent_id = await self._lookup_parent(file.id)
        self.cache.record_parent(file.id, parent_id)
        return parent_id

    async def _lookup_parent(self, file_id: str) -> str:
        file_id = normalize_id(file_id)

        try:
            meta = await self.session.call(self.client.get_file, file_id)
            if meta.parent_folder:
                hinted = await self.cache.resolve(meta.parent_folder)
                if hinted.child_by_id(file_id) is not None:
                    return hinted.id
                logger.debug(f"Hinted folder {meta.parent_folder} does not list {file_id}")
        except RemoteError as e:
            if e.kind not in _HINT_MISSES:
                raise
            logger.debug(f"No usable metadata hint for {file_id}: {e}")

        queue = deque([ROOT])
        visited: set[str] = set()
        while queue and len(visited) < self.parent_lookup_limit:
            folder_id = queue.popleft()
            try:
                cached = await self.cache.resolve(folder_id)
            except RemoteError as e:
                if e.kind not in _HINT_MISSES:
                    raise
                logger.debug(f"Skipping unlistable folder {folder_id}: {e}")
                visited.add(folder_id)
                continue
            if cached.id in visited:
                continue
            visited.add(cached.id)

            if cached.child_by_id(file_id) is not None:
                logger.debug(f"Found parent {cached.id} of {file_id} after {len(visited)} folders")
                return cached.id

            for child in cached.children:
                child_id = normalize_id(child.id)
                if isinstance(child, Folder) and child_id not in visited:
                    queue.append(child_id)

        raise RemoteError.not_found(
            f"parent of {file_id} not found in {len(visited)} folders"
        )

    async def proxy_link(self, folder: Folder, file: File) -> str:
        """Return the bypass proxy link of a file in a public folder"""
        file_id = normalize_id(file.id)
        for entry in await self._listing(folder):
            if file.id in entry.link or file_id in entry.link:
                return entry.proxy_link
        raise RemoteError.not_found(f"{file.name} is not in the bypass listing")

    async def _listing(self, folder: Folder) -> list[BypassFile]:
        key = normalize_id(folder.id)
        listing = self._listings.get(key)
        if listing is not None:
            return listing
        return await self._inflight.run(key, lambda: self._fetch_listing(key, folder))

    async def _fetch_listing(self, key: str, folder: Folder) -> list[BypassFile]:
        generation = self._generations.get(key, 0)
        code = folder.code or folder.id

        listing: list[BypassFile] = []
        for attempt in range(1, MAX_BYPASS_ATTEMPTS + 1):
            self._stats["listings"] += 1
            listing = await self.client.get_bypass_files(code)
            if not listing or not _is_broken(listing[0].proxy_link):
                break
            logger.debug(f"Bypass listing for {code} uses a broken proxy (attempt {attempt})")

        if self._generations.get(key, 0) == generation:
            self._listings[key] = listing
        return listing

    def forget(self, folder_id: str) -> None:
        """Drop the memoized bypass listing of a folder"""
        key = self.cache.canonical(folder_id)
        self._generations[key] = self._generations.get(key, 0) + 1
        self._inflight.discard(key)
        self._listings.pop(key, None)
