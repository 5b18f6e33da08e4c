"""
In-memory stand-in for the Gofile service, used by the filesystem tests.

FakeGofileClient has the same coroutine surface as GofileClient and keeps a
small folder tree in dictionaries. Every call is counted, tokens can be
expired on demand, and listings can be held back with an asyncio.Event to
exercise request coalescing.
"""

import asyncio
import uuid
from collections import Counter
from dataclasses import dataclass, field

import httpx

from gofile_dav.client import DownloadStream
from gofile_dav.exceptions import ErrorKind, RemoteError
from gofile_dav.models import AccountInfo, BypassFile, File, Folder
from gofile_dav.session import Token

ROOT_CODE = "Veil7n"
DOWNLOAD_HOST = "https://store1.gofile.io/download/web"
PROXY_HOST = "https://proxy.example.org/dl"


@dataclass
class Node:
    id: str
    name: str
    is_dir: bool
    parent: str | None = None
    code: str = ""
    content: bytes = b""
    children: list[str] = field(default_factory=list)
    public: bool = True
    password: bool = False
    is_owner: bool = True
    frozen: bool = False


class FakeGofileClient:
    """In-memory Gofile service"""

    def __init__(self, root_code: str = ROOT_CODE):
        self.nodes: dict[str, Node] = {}
        self.codes: dict[str, str] = {}
        self.calls: Counter = Counter()
        self.list_calls: list[str] = []
        self.list_passwords: list[str | None] = []
        self.downloads: list[tuple[str, bool, tuple | None]] = []
        self.valid_tokens: set[str] = set()
        self.issued = 0
        self.closed = False
        self.tree: dict[str, Node] = {}

        # Set to an unset Event to hold list_folder until it is set
        self.list_gate: asyncio.Event | None = None
        # Method name -> error raised by the next call of that method
        self.fail_next: dict[str, RemoteError] = {}
        # Proxy links handed out before a working one
        self.broken_bypass_rolls = 0

        self.root = self.add_folder(None, "root", code=root_code)

    # Tree building

    def _new_id(self) -> str:
        return str(uuid.uuid4())

    def add_folder(
        self,
        parent: Node | None,
        name: str,
        code: str | None = None,
        public: bool = True,
        password: bool = False,
    ) -> Node:
        node = Node(
            id=self._new_id(),
            name=name,
            is_dir=True,
            parent=parent.id if parent else None,
            code=code or uuid.uuid4().hex[:6],
            public=public,
            password=password,
        )
        self.nodes[node.id] = node
        self.codes[node.code] = node.id
        if parent is not None:
            parent.children.append(node.id)
        return node

    def add_file(
        self, parent: Node, name: str, content: bytes = b"", frozen: bool = False
    ) -> Node:
        node = Node(
            id=self._new_id(),
            name=name,
            is_dir=False,
            parent=parent.id,
            content=content,
            frozen=frozen,
        )
        self.nodes[node.id] = node
        parent.children.append(node.id)
        return node

    def child_named(self, parent: Node, name: str) -> Node | None:
        for child_id in parent.children:
            if self.nodes[child_id].name == name:
                return self.nodes[child_id]
        return None

    def expire_tokens(self) -> None:
        """Make the service reject every token issued so far"""
        self.valid_tokens.clear()

    # Payload rendering

    def link_for(self, node: Node) -> str:
        return f"{DOWNLOAD_HOST}/{node.id}/{node.name}"

    def _file(self, node: Node, with_parent: bool = True) -> File:
        return File(
            id=node.id,
            name=node.name,
            parent_folder=node.parent if with_parent else None,
            size=len(node.content),
            create_time=1700000000,
            mod_time=1700000000,
            link=self.link_for(node),
            is_frozen=node.frozen,
        )

    def _folder(self, node: Node, with_children: bool = True) -> Folder:
        children = ()
        if with_children:
            children = tuple(self._entry(self.nodes[c]) for c in node.children)
        return Folder(
            id=node.id,
            code=node.code,
            name=node.name,
            public=node.public,
            password=node.password,
            is_owner=node.is_owner,
            parent_folder=node.parent,
            children_count=len(node.children),
            children=children,
        )

    def _entry(self, node: Node) -> File | Folder:
        if node.is_dir:
            return self._folder(node, with_children=False)
        return self._file(node)

    # Internals

    async def _enter(self, name: str, token: Token | None = None) -> None:
        self.calls[name] += 1
        # Give other tasks a chance to run, like a real request would
        await asyncio.sleep(0)
        error = self.fail_next.pop(name, None)
        if error is not None:
            raise error
        if token is not None and token.api_token not in self.valid_tokens:
            raise RemoteError(ErrorKind.UNAUTHORIZED, "API returned error-token")

    def _node(self, content_id: str) -> Node:
        node_id = self.codes.get(content_id, content_id)
        node = self.nodes.get(node_id)
        if node is None:
            raise RemoteError(ErrorKind.NOT_FOUND, "API returned error-notFound")
        return node

    def _detach(self, node: Node) -> None:
        if node.parent is not None:
            self.nodes[node.parent].children.remove(node.id)

    def _drop(self, node: Node) -> None:
        for child_id in list(node.children):
            self._drop(self.nodes[child_id])
        self.nodes.pop(node.id, None)
        self.codes.pop(node.code, None)

    # Client surface

    async def get_session_token(self, api_token: str | None = None) -> Token:
        await self._enter("get_session_token")
        self.issued += 1
        value = f"token-{self.issued}"
        self.valid_tokens.add(value)
        return Token(api_token=value, website_token="wt-test")

    async def get_account_info(self, token: Token) -> AccountInfo:
        await self._enter("get_account_info", token)
        return AccountInfo(id="account-1", root_folder=self.root.id, token=token.api_token)

    async def list_folder(
        self, token: Token, folder_id: str, password: str | None = None
    ) -> Folder:
        await self._enter("list_folder", token)
        self.list_calls.append(folder_id)
        self.list_passwords.append(password)
        if self.list_gate is not None:
            await self.list_gate.wait()
        node = self._node(folder_id)
        if not node.is_dir:
            raise RemoteError.invalid(f"{folder_id} is a file, not a folder")
        return self._folder(node)

    async def get_contents(
        self, token: Token, content_id: str, password: str | None = None
    ) -> File | Folder:
        await self._enter("get_contents", token)
        node = self._node(content_id)
        return self._folder(node) if node.is_dir else self._file(node)

    async def get_file(self, token: Token, file_id: str) -> File:
        await self._enter("get_file", token)
        node = self._node(file_id)
        if node.is_dir:
            raise RemoteError.invalid(f"{file_id} is a folder, not a file")
        return self._file(node)

    async def download(
        self,
        token: Token | None,
        url: str,
        byte_range: tuple[int, int | None] | None = None,
        bypassed: bool = False,
    ) -> DownloadStream:
        await self._enter("download", None if bypassed else token)
        self.downloads.append((url, bypassed, byte_range))
        node = self._node(url.rstrip("/").split("/")[-1 if bypassed else -2])
        data = node.content
        status = 200
        if byte_range is not None:
            start, end = byte_range
            data = data[start : None if end is None else end + 1]
            status = 206
        return DownloadStream(httpx.Response(status, content=data))

    async def get_bypass_files(self, folder_code: str) -> list[BypassFile]:
        await self._enter("get_bypass_files")
        node = self._node(folder_code)
        proxy = PROXY_HOST
        if self.broken_bypass_rolls > 0:
            self.broken_bypass_rolls -= 1
            proxy = "https://gf.cybar.xyz/dl"
        return [
            BypassFile(
                name=child.name,
                size=len(child.content),
                link=self.link_for(child),
                proxy_link=f"{proxy}/{child.id}",
            )
            for child in (self.nodes[c] for c in node.children)
            if not child.is_dir
        ]

    async def create_folder(self, token: Token, parent_id: str, name: str) -> Folder:
        await self._enter("create_folder", token)
        node = self.add_folder(self._node(parent_id), name)
        return self._folder(node)

    async def upload_file(self, token: Token, parent_id: str, name: str, content) -> File:
        await self._enter("upload_file", token)
        if not isinstance(content, bytes):
            content = content.read()
        node = self.add_file(self._node(parent_id), name, content)
        return self._file(node)

    async def delete_entry(self, token: Token, *content_ids: str) -> None:
        await self._enter("delete_entry", token)
        for content_id in content_ids:
            node = self._node(content_id)
            self._detach(node)
            self._drop(node)

    async def rename_entry(self, token: Token, content_id: str, name: str) -> None:
        await self._enter("rename_entry", token)
        self._node(content_id).name = name

    async def move_entry(self, token: Token, content_id: str, folder_id: str) -> None:
        await self._enter("move_entry", token)
        node = self._node(content_id)
        target = self._node(folder_id)
        self._detach(node)
        node.parent = target.id
        target.children.append(node.id)

    async def close(self) -> None:
        self.closed = True


def build_veil7n(client: FakeGofileClient) -> dict[str, Node]:
    """Root "Veil7n" with a.txt (500 bytes) and sub/b.txt"""
    a = client.add_file(client.root, "a.txt", bytes(range(250)) * 2)
    sub = client.add_folder(client.root, "sub")
    b = client.add_file(sub, "b.txt", b"hello from b")
    return {"a": a, "sub": sub, "b": b}
