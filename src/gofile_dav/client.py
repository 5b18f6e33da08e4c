"""
gofile_dav/client.py - Async HTTP client for the Gofile API

Every call takes the session Token explicitly; the client itself holds no
credentials. Failures are raised as RemoteError with a classified kind.
"""

import logging
import re
from typing import Any, BinaryIO

import httpx
from pydantic import BaseModel, ValidationError

from gofile_dav.exceptions import ErrorKind, RemoteError
from gofile_dav.models import ENTRY_ADAPTER, AccountInfo, BypassFile, File, Folder
from gofile_dav.session import Token

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.gofile.io"
UPLOAD_URL = "https://upload.gofile.io/uploadfile"
WEBSITE_CONFIG_URL = "https://gofile.io/dist/js/config.js"
BYPASS_API_URL = "https://gf.1drv.eu.org"
REFERER = "https://gofile.io/"

# Largest page size the website itself requests
MAX_PAGE_SIZE = "9007199254740991"

_WEBSITE_TOKEN_RE = re.compile(r'(?:appdata\.)?wt\s*[:=]\s*"([^"]+)"')

_STATUS_KINDS = {
    "error-notFound": ErrorKind.NOT_FOUND,
    "error-rateLimit": ErrorKind.RATE_LIMITED,
    "error-token": ErrorKind.UNAUTHORIZED,
    "error-notPremium": ErrorKind.FORBIDDEN,
    "error-notAuthorized": ErrorKind.FORBIDDEN,
}

_PASSWORD_ERRORS = {
    "passwordRequired": "password required",
    "passwordWrong": "wrong password",
}


def _raise_for_status(response: httpx.Response, *, quota: bool = False) -> None:
    """Map an HTTP error status to a RemoteError"""
    code = response.status_code
    if code < 400:
        return

    where = f"{response.request.method} {response.request.url}"
    if code == 401:
        raise RemoteError(ErrorKind.UNAUTHORIZED, f"{where}: unauthorized")
    if code == 403:
        raise RemoteError(ErrorKind.FORBIDDEN, f"{where}: forbidden")
    if code == 404:
        raise RemoteError(ErrorKind.NOT_FOUND, f"{where}: not found")
    if code in (429, 509):
        kind = ErrorKind.QUOTA_EXCEEDED if quota else ErrorKind.RATE_LIMITED
        raise RemoteError(kind, f"{where}: HTTP {code}")
    if code >= 500:
        raise RemoteError(ErrorKind.TRANSIENT, f"{where}: HTTP {code}")
    raise RemoteError(ErrorKind.INVALID, f"{where}: HTTP {code}")


def _unwrap(response: httpx.Response, *, quota: bool = False) -> Any:
    """Return the ``data`` member of an API envelope or raise"""
    try:
        payload = response.json()
    except ValueError:
        _raise_for_status(response, quota=quota)
        raise RemoteError.invalid("response is not JSON")

    if not isinstance(payload, dict) or "status" not in payload:
        _raise_for_status(response, quota=quota)
        raise RemoteError.invalid("response has no status")

    status = payload["status"]
    if status in ("ok", "success"):
        if "data" not in payload:
            raise RemoteError.invalid("response has no data")
        return payload["data"]

    kind = _STATUS_KINDS.get(status)
    if kind is None:
        _raise_for_status(response, quota=quota)
        kind = ErrorKind.INVALID
    raise RemoteError(kind, f"API returned {status}")


def _parse(model: type[BaseModel], data: Any) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RemoteError.invalid(
            f"unexpected {model.__name__} payload ({e.error_count()} errors)"
        ) from e


def _parse_entry(data: Any) -> File | Folder:
    if isinstance(data, dict):
        status = data.get("passwordStatus")
        if status in _PASSWORD_ERRORS:
            raise RemoteError.forbidden(_PASSWORD_ERRORS[status])
    try:
        return ENTRY_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise RemoteError.invalid(
            f"unexpected contents payload ({e.error_count()} errors)"
        ) from e


class DownloadStream:
    """Async byte stream over a streamed download response"""

    def __init__(self, response: httpx.Response, chunk_size: int = 64 * 1024):
        self._response = response
        self._chunks = response.aiter_bytes(chunk_size)
        self._buffer = bytearray()
        self._eof = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def size(self) -> int | None:
        length = self._response.headers.get("content-length")
        return int(length) if length and length.isdigit() else None

    async def _next_chunk(self) -> bytes | None:
        try:
            return await anext(self._chunks)
        except StopAsyncIteration:
            self._eof = True
            return None
        except httpx.TransportError as e:
            raise RemoteError.transient(f"download interrupted: {e}") from e

    async def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` bytes; everything that is left when ``n`` < 0"""
        while not self._eof and (n < 0 or len(self._buffer) < n):
            chunk = await self._next_chunk()
            if chunk is None:
                break
            self._buffer.extend(chunk)

        if n < 0 or n >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:n])
            del self._buffer[:n]
        return data

    async def __aiter__(self):
        if self._buffer:
            data = bytes(self._buffer)
            self._buffer.clear()
            yield data
        while not self._eof:
            chunk = await self._next_chunk()
            if chunk:
                yield chunk

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> "DownloadStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class GofileClient:
    """
    Thin async wrapper around the Gofile HTTP API.

    One httpx.AsyncClient is shared by all calls; it is created lazily unless
    one is passed in (tests pass one backed by httpx.MockTransport).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        api_url: str = API_BASE_URL,
        upload_url: str = UPLOAD_URL,
        bypass_url: str = BYPASS_API_URL,
    ):
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url
        self.bypass_url = bypass_url.rstrip("/")

        self._http = http_client
        self._owns_http = http_client is None

        self._stats = {
            "requests": 0,
            "downloads": 0,
            "uploads": 0,
            "errors": 0,
        }

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Referer": REFERER},
                follow_redirects=True,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    def get_stats(self) -> dict[str, int]:
        return self._stats.copy()

    @staticmethod
    def _auth(token: Token) -> dict[str, str]:
        return {"Authorization": f"Bearer {token.api_token}"}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        self._stats["requests"] += 1
        headers = {"Referer": REFERER, **kwargs.pop("headers", {})}
        logger.debug(f"{method} {url}")
        try:
            return await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self._stats["errors"] += 1
            raise RemoteError.transient(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            self._stats["errors"] += 1
            raise RemoteError.transient(f"{method} {url} failed: {e}") from e

    async def _api(self, method: str, path: str, token: Token | None = None, **kwargs):
        headers = kwargs.pop("headers", {})
        if token is not None:
            headers = {**self._auth(token), **headers}
        response = await self._send(
            method, f"{self.api_url}{path}", headers=headers, **kwargs
        )
        return _unwrap(response)

    # Session

    async def get_website_token(self) -> str:
        """Scrape the website token from the site's config script"""
        response = await self._send("GET", WEBSITE_CONFIG_URL)
        _raise_for_status(response)
        match = _WEBSITE_TOKEN_RE.search(response.text)
        if match is None:
            raise RemoteError.invalid("website token not found in config script")
        return match.group(1)

    async def create_guest_account(self) -> AccountInfo:
        data = await self._api("POST", "/accounts")
        return _parse(AccountInfo, data)

    async def get_account_info(self, token: Token) -> AccountInfo:
        data = await self._api("GET", "/accounts/website", token)
        if isinstance(data, dict) and "token" not in data:
            data = {**data, "token": token.api_token}
        return _parse(AccountInfo, data)

    async def get_session_token(self, api_token: str | None = None) -> Token:
        """
        Issue a session Token

        Args:
            api_token: Account token; a guest account is created when None

        Returns:
            Token with both the account and website tokens filled in
        """
        if api_token is None:
            account = await self.create_guest_account()
            logger.info(f"Created guest account {account.id}")
            api_token = account.token
        website_token = await self.get_website_token()
        return Token(api_token=api_token, website_token=website_token)

    # Reads

    async def get_contents(
        self, token: Token, content_id: str, password: str | None = None
    ) -> File | Folder:
        """
        Fetch one entry; folders come back with their children

        Args:
            token: Session token
            content_id: UUID or short folder code
            password: SHA-256 hex digest of the folder password
        """
        params = {"page": "1", "pageSize": MAX_PAGE_SIZE}
        if password:
            params["password"] = password
        data = await self._api(
            "GET",
            f"/contents/{content_id}",
            token,
            params=params,
            headers={"X-Website-Token": token.website_token},
        )
        return _parse_entry(data)

    async def list_folder(
        self, token: Token, folder_id: str, password: str | None = None
    ) -> Folder:
        """
        Fetch a folder with its children

        Child folders that come back restricted because of a password are
        fetched again with ``password`` so their metadata is complete.
        """
        entry = await self.get_contents(token, folder_id, password)
        if not isinstance(entry, Folder):
            raise RemoteError.invalid(f"{folder_id} is a file, not a folder")

        restricted = {
            child.id
            for child in entry.children
            if isinstance(child, Folder) and child.password and not child.can_access
        }
        if not restricted:
            return entry

        children = []
        for child in entry.children:
            if child.id in restricted:
                refetched = await self.get_contents(token, child.id, password)
                if not isinstance(refetched, Folder):
                    raise RemoteError.invalid(f"{child.id} is a file, not a folder")
                child = refetched.without_children()
            children.append(child)
        return entry.model_copy(update={"children": tuple(children)})

    async def get_file(self, token: Token, file_id: str) -> File:
        entry = await self.get_contents(token, file_id)
        if not isinstance(entry, File):
            raise RemoteError.invalid(f"{file_id} is a folder, not a file")
        return entry

    async def download(
        self,
        token: Token | None,
        url: str,
        byte_range: tuple[int, int | None] | None = None,
        bypassed: bool = False,
    ) -> DownloadStream:
        """
        Open a streamed download

        Args:
            token: Session token; unused for bypassed downloads
            url: Direct or proxy link
            byte_range: Inclusive (start, end) offsets; end None means to EOF
            bypassed: The URL is a bypass proxy link
        """
        headers = {"Referer": REFERER}
        if byte_range is not None:
            start, end = byte_range
            headers["Range"] = f"bytes={start}-{'' if end is None else end}"
        if not bypassed and token is not None:
            headers.update(self._auth(token))
            headers["Cookie"] = f"accountToken={token.api_token}"

        self._stats["downloads"] += 1
        request = self.http.build_request("GET", url, headers=headers)
        try:
            response = await self.http.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise RemoteError.transient(f"download {url} timed out") from e
        except httpx.TransportError as e:
            raise RemoteError.transient(f"download {url} failed: {e}") from e

        if response.status_code >= 400:
            await response.aclose()
            _raise_for_status(response, quota=True)
        return DownloadStream(response)

    async def get_bypass_files(self, folder_code: str) -> list[BypassFile]:
        """List a public folder through the bypass service"""
        response = await self._send(
            "GET", f"{self.bypass_url}/api/files", params={"folderId": folder_code}
        )
        data = _unwrap(response, quota=True)
        if not isinstance(data, list):
            raise RemoteError.invalid("bypass listing is not a list")
        return [_parse(BypassFile, item) for item in data]

    # Mutations

    async def create_folder(self, token: Token, parent_id: str, name: str) -> Folder:
        data = await self._api(
            "POST",
            "/contents/createfolder",
            token,
            json={"parentFolderId": parent_id, "folderName": name},
        )
        if isinstance(data, dict):
            data = {"type": "folder", "parentFolder": parent_id, "name": name, **data}
        return _parse(Folder, data)

    async def upload_file(
        self, token: Token, parent_id: str, name: str, content: bytes | BinaryIO
    ) -> File:
        """Upload a file into ``parent_id``"""
        self._stats["uploads"] += 1
        response = await self._send(
            "POST",
            self.upload_url,
            headers=self._auth(token),
            data={"token": token.api_token, "folderId": parent_id},
            files={"file": (name, content)},
        )
        data = _unwrap(response)
        if isinstance(data, dict):
            data = {
                **data,
                "type": "file",
                "id": data.get("id") or data.get("fileId"),
                "name": data.get("name") or data.get("fileName") or name,
                "parentFolder": data.get("parentFolder") or parent_id,
            }
        return _parse(File, data)

    async def delete_entry(self, token: Token, *content_ids: str) -> None:
        await self._api(
            "DELETE", "/contents", token, json={"contentsId": ",".join(content_ids)}
        )

    async def rename_entry(self, token: Token, content_id: str, name: str) -> None:
        await self._api(
            "PUT",
            f"/contents/{content_id}/update",
            token,
            json={"attribute": "name", "attributeValue": name},
        )

    async def move_entry(self, token: Token, content_id: str, folder_id: str) -> None:
        await self._api(
            "PUT",
            "/contents/move",
            token,
            json={"contentsId": content_id, "folderId": folder_id},
        )
