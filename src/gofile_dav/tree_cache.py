"""
gofile_dav/tree_cache.py - In-memory view of observed remote folders
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from gofile_dav.exceptions import RemoteError
from gofile_dav.inflight import InflightMap
from gofile_dav.models import File, Folder, normalize_id

logger = logging.getLogger(__name__)

# Cache key standing for the configured root folder
ROOT = "/"

FolderLoader = Callable[[str], Awaitable[Folder]]


@dataclass
class CachedFolder:
    """A fetched folder with its visible children in remote order"""

    folder: Folder
    children: tuple[File | Folder, ...] = ()
    by_name: dict[str, File | Folder] = field(default_factory=dict)
    listed: tuple[File | Folder, ...] = ()

    @classmethod
    def from_folder(cls, folder: Folder) -> "CachedFolder":
        children = []
        by_name = {}
        for child in folder.children:
            if not child.visible:
                continue
            if child.name in by_name:
                # First listed entry wins
                logger.debug(f"Hiding duplicate {child.name!r} ({child.id}) in {folder.id}")
                continue
            by_name[child.name] = child
            children.append(child)
        return cls(
            folder=folder.without_children(),
            children=tuple(children),
            listed=folder.children,
            by_name=by_name,
        )

    @property
    def id(self) -> str:
        return normalize_id(self.folder.id)

    def child(self, name: str) -> File | Folder | None:
        return self.by_name.get(name)

    def named(self, name: str) -> list[File | Folder]:
        """Every listed entry called ``name``, hidden ones included"""
        return [c for c in self.listed if c.name == name]

    def child_by_id(self, entry_id: str) -> File | Folder | None:
        entry_id = normalize_id(entry_id)
        for child in self.children:
            if normalize_id(child.id) == entry_id:
                return child
        return None


class TreeCache:
    """
    Folder cache keyed by canonical folder id.

    At most one remote fetch runs per folder; concurrent resolves of the same
    folder share it. Entries live until they are invalidated.
    """

    def __init__(
        self,
        loader: FolderLoader,
        root_id: str | None = None,
        max_concurrency: int = 8,
    ):
        """
        Initialize the cache

        Args:
            loader: Coroutine fetching one folder with its children
            root_id: Id (UUID or code) of the virtual root folder
            max_concurrency: Fan-out limit for subtree population
        """
        self._loader = loader
        self.root_id = root_id
        self.max_concurrency = max_concurrency

        self._entries: dict[str, CachedFolder] = {}
        self._aliases: dict[str, str] = {}
        self._parents: dict[str, str] = {}
        self._generations: dict[str, int] = {}
        self._inflight = InflightMap()
        self._semaphore = asyncio.Semaphore(max_concurrency)

        self._stats = {
            "hits": 0,
            "misses": 0,
            "fetches": 0,
            "coalesced": 0,
            "invalidations": 0,
        }

    def canonical(self, folder_id: str) -> str:
        """Return the cache key for a folder id, code or ROOT"""
        if folder_id == ROOT:
            if self.root_id is None:
                raise RemoteError.invalid("root folder is not configured")
            folder_id = self.root_id
        key = normalize_id(folder_id)
        return self._aliases.get(key, key)

    def learn(self, folder: Folder, parent_id: str | None = None) -> None:
        """Record the code/UUID pair and parent of an observed folder"""
        canonical_id = normalize_id(folder.id)
        if folder.code and folder.code != canonical_id:
            self._aliases[folder.code] = canonical_id
        if parent_id is not None:
            self._parents[canonical_id] = self.canonical(parent_id)

    def record_parent(self, entry_id: str, parent_id: str) -> None:
        self._parents[normalize_id(entry_id)] = self.canonical(parent_id)

    def forget(self, entry_id: str) -> None:
        """Drop what is known about an entry's location"""
        self._parents.pop(normalize_id(entry_id), None)

    def parent_of(self, entry_id: str) -> str | None:
        return self._parents.get(self.canonical(entry_id))

    def peek(self, folder_id: str) -> CachedFolder | None:
        """Return a cached folder without fetching"""
        return self._entries.get(self.canonical(folder_id))

    async def resolve(self, folder_id: str) -> CachedFolder:
        """
        Return a folder's entry, fetching it at most once

        Args:
            folder_id: UUID, code or ROOT

        Returns:
            The cached folder with its visible children
        """
        key = self.canonical(folder_id)
        cached = self._entries.get(key)
        if cached is not None:
            self._stats["hits"] += 1
            logger.debug(f"Cache hit for {key}")
            return cached

        if key in self._inflight:
            self._stats["coalesced"] += 1
        else:
            self._stats["misses"] += 1
        return await self._inflight.run(key, lambda: self._fetch(key))

    async def _fetch(self, key: str) -> CachedFolder:
        generation = self._generations.get(key, 0)
        self._stats["fetches"] += 1
        logger.debug(f"Fetching folder {key}")

        folder = await self._loader(key)
        cached = CachedFolder.from_folder(folder)

        if self._generations.get(key, 0) != generation:
            logger.debug(f"Folder {key} was invalidated during fetch, not caching")
            return cached

        canonical_id = cached.id
        self.learn(folder)
        if key != canonical_id:
            self._aliases[key] = canonical_id
        for child in cached.children:
            if isinstance(child, Folder):
                self.learn(child)
            self._parents[normalize_id(child.id)] = canonical_id
        self._entries[canonical_id] = cached
        return cached

    def invalidate(self, folder_id: str) -> None:
        """Drop a folder's cached children so the next resolve refetches"""
        key = self.canonical(folder_id)
        for k in {key, normalize_id(folder_id)}:
            self._generations[k] = self._generations.get(k, 0) + 1
            self._inflight.discard(k)
        if self._entries.pop(key, None) is not None:
            self._stats["invalidations"] += 1
            logger.debug(f"Invalidated folder {key}")

    def invalidate_subtree(self, folder_id: str) -> None:
        """Invalidate a folder and every cached descendant"""
        queue = [self.canonical(folder_id)]
        seen = set()
        while queue:
            key = queue.pop()
            if key in seen:
                continue
            seen.add(key)
            cached = self._entries.get(key)
            if cached is not None:
                queue.extend(
                    normalize_id(c.id) for c in cached.children if isinstance(c, Folder)
                )
            self.invalidate(key)

    async def _bounded_resolve(self, folder_id: str) -> CachedFolder:
        async with self._semaphore:
            return await self.resolve(folder_id)

    async def populate_subtree(self, folder_id: str, depth: int) -> list[CachedFolder]:
        """
        Fetch a folder and its descendants breadth-first

        Args:
            folder_id: Starting folder
            depth: Number of levels below the starting folder to fetch

        Returns:
            Every folder visited, starting folder first
        """
        start = await self.resolve(folder_id)
        visited = {start.id}
        level = [start]
        result = [start]

        for _ in range(max(depth, 0)):
            pending = []
            for cached in level:
                for child in cached.children:
                    child_id = normalize_id(child.id)
                    if isinstance(child, Folder) and child_id not in visited:
                        visited.add(child_id)
                        pending.append(child_id)
            if not pending:
                break
            level = list(await asyncio.gather(*(self._bounded_resolve(i) for i in pending)))
            result.extend(level)

        return result

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.cancel_all()

    def stats(self) -> dict[str, int]:
        stats = self._stats.copy()
        stats["cached_folders"] = len(self._entries)
        stats["in_flight"] = len(self._inflight)
        return stats
