"""Tests for WebDAV adapter."""

import io
from unittest.mock import Mock, patch

import pytest
from helpers import ROOT_CODE
from wsgidav.dav_error import DAVError

from gofile_dav.adapters.webdav import (
    DAV_STATUS,
    GofileCollection,
    GofileDAVProvider,
    GofileResource,
    WebDAVAdapter,
    _UploadBuffer,
    to_dav_error,
)
from gofile_dav.exceptions import ErrorKind, RemoteError
from gofile_dav.filesystem import GofileFileSystem
from gofile_dav.models import File
from gofile_dav.session import SessionManager
from gofile_dav.sync_wrapper import SyncGofileFileSystem


@pytest.fixture
def dav_fs(fake_client):
    """Blocking read-write filesystem over the fake service"""
    session = SessionManager(fake_client)
    sync_fs = SyncGofileFileSystem(
        GofileFileSystem(fake_client, session, root_id=ROOT_CODE, read_write=True)
    )
    sync_fs.initialize()
    yield sync_fs
    sync_fs.close()


@pytest.fixture
def provider(dav_fs):
    return GofileDAVProvider(dav_fs)


@pytest.fixture
def environ(provider):
    return {"wsgidav.provider": provider}


def mock_fs(read_only=False):
    fs = Mock(spec=SyncGofileFileSystem)
    fs.read_only = read_only
    return fs


class TestErrorMapping:
    @pytest.mark.parametrize(
        "kind,status",
        [
            (ErrorKind.NOT_FOUND, 404),
            (ErrorKind.UNAUTHORIZED, 401),
            (ErrorKind.FORBIDDEN, 403),
            (ErrorKind.CONFLICT, 409),
            (ErrorKind.RATE_LIMITED, 429),
            (ErrorKind.QUOTA_EXCEEDED, 429),
            (ErrorKind.TRANSIENT, 503),
            (ErrorKind.INVALID, 502),
        ],
    )
    def test_status_for_kind(self, kind, status):
        error = to_dav_error(RemoteError(kind, "boom"), "/x")
        assert isinstance(error, DAVError)
        assert error.value == status

    def test_every_kind_is_mapped(self):
        assert set(DAV_STATUS) == set(ErrorKind)

    def test_quota_description(self):
        error = to_dav_error(RemoteError(ErrorKind.QUOTA_EXCEEDED, "limit"), "/a.txt")
        assert "quota" in error.context_info.lower()
        assert "/a.txt" in error.context_info


class TestGofileDAVProvider:
    def test_root_is_collection(self, provider, environ):
        resource = provider.get_resource_inst("/", environ)
        assert isinstance(resource, GofileCollection)
        assert resource.get_display_name() == "/"

    def test_file_resource(self, provider, environ, fake_client):
        resource = provider.get_resource_inst("/a.txt", environ)

        assert isinstance(resource, GofileResource)
        assert resource.get_content_length() == 500
        assert resource.get_content_type() == "text/plain"
        assert resource.get_display_name() == "a.txt"
        assert resource.get_etag().startswith(fake_client.tree["a"].id)
        assert resource.get_last_modified() == 1700000000.0

    def test_missing_path(self, provider, environ):
        assert provider.get_resource_inst("/nonexistent", environ) is None

    def test_remote_failure_becomes_dav_error(self):
        fs = mock_fs()
        fs.stat.side_effect = RemoteError.transient("down")
        provider = GofileDAVProvider(fs)

        with pytest.raises(DAVError) as exc_info:
            provider.get_resource_inst("/a.txt", {"wsgidav.provider": provider})
        assert exc_info.value.value == 503

    def test_is_readonly(self):
        assert GofileDAVProvider(mock_fs(read_only=True)).is_readonly() is True
        assert GofileDAVProvider(mock_fs(read_only=False)).is_readonly() is False


class TestGofileCollection:
    def test_members(self, provider, environ):
        root = provider.get_resource_inst("/", environ)

        assert root.get_member_names() == ["a.txt", "sub"]
        members = root.get_member_list()
        assert [type(m) for m in members] == [GofileResource, GofileCollection]
        assert members[1].path == "/sub"

    def test_get_member(self, provider, environ):
        sub = provider.get_resource_inst("/sub", environ)

        member = sub.get_member("b.txt")
        assert member.path == "/sub/b.txt"
        assert sub.get_member("missing.txt") is None

    def test_create_collection(self, provider, environ, dav_fs):
        root = provider.get_resource_inst("/", environ)

        created = root.create_collection("docs")

        assert isinstance(created, GofileCollection)
        assert dav_fs.exists("/docs")

    def test_create_existing_collection_conflicts(self, provider, environ):
        root = provider.get_resource_inst("/", environ)
        with pytest.raises(DAVError) as exc_info:
            root.create_collection("sub")
        assert exc_info.value.value == 409

    def test_recursive_delete(self, provider, environ, dav_fs):
        sub = provider.get_resource_inst("/sub", environ)
        assert sub.support_recursive_delete()

        sub.delete()

        assert not dav_fs.exists("/sub")

    def test_move_folder(self, provider, environ, dav_fs):
        sub = provider.get_resource_inst("/sub", environ)
        assert sub.support_recursive_move("/moved")

        sub.move_recursive("/moved")

        assert dav_fs.exists("/moved/b.txt")
        assert not dav_fs.exists("/sub")

    def test_copy_creates_destination_folder(self, provider, environ, dav_fs):
        sub = provider.get_resource_inst("/sub", environ)
        sub.copy_move_single("/sub-copy", is_move=False)
        assert dav_fs.list("/sub-copy") == []

    def test_read_only_placeholder_forbidden(self):
        fs = mock_fs(read_only=True)
        provider = GofileDAVProvider(fs)
        root = GofileCollection("/", fs, {"wsgidav.provider": provider})

        with pytest.raises(DAVError) as exc_info:
            root.create_empty_resource("new.txt")
        assert exc_info.value.value == 403


class TestGofileResource:
    def test_get_content(self, provider, environ, fake_client):
        resource = provider.get_resource_inst("/a.txt", environ)
        content = fake_client.tree["a"].content

        reader = resource.get_content()
        try:
            assert reader.read(10) == content[:10]
            reader.seek(100)
            assert reader.read(50) == content[100:150]
        finally:
            reader.close()

    def test_upload_through_placeholder(self, provider, environ, dav_fs):
        root = provider.get_resource_inst("/", environ)
        resource = root.create_empty_resource("new.txt")
        assert resource.get_content().read() == b""

        buffer = resource.begin_write(content_type="text/plain")
        buffer.write(b"uploaded ")
        buffer.write(b"body")
        buffer.close()
        resource.end_write(with_errors=False)

        assert dav_fs.read_bytes("/new.txt") == b"uploaded body"
        assert resource.get_content_length() == len(b"uploaded body")
        assert buffer.closed

    def test_upload_with_errors_is_discarded(self, provider, environ, fake_client):
        resource = provider.get_resource_inst("/a.txt", environ)

        buffer = resource.begin_write()
        buffer.write(b"partial")
        resource.end_write(with_errors=True)

        assert fake_client.calls["upload_file"] == 0
        assert buffer.closed

    def test_read_only_write_forbidden(self):
        fs = mock_fs(read_only=True)
        provider = GofileDAVProvider(fs)
        resource = GofileResource(
            "/a.txt", fs, {"wsgidav.provider": provider}, File(id="f", name="a.txt")
        )

        with pytest.raises(DAVError) as exc_info:
            resource.begin_write()
        assert exc_info.value.value == 403

    def test_upload_failure_is_mapped(self):
        fs = mock_fs()
        fs.write.side_effect = RemoteError(ErrorKind.RATE_LIMITED, "slow down")
        provider = GofileDAVProvider(fs)
        resource = GofileResource("/x.txt", fs, {"wsgidav.provider": provider})

        buffer = resource.begin_write()
        buffer.write(b"x")
        buffer.close()
        with pytest.raises(DAVError) as exc_info:
            resource.end_write(with_errors=False)

        assert exc_info.value.value == 429
        assert buffer.closed

    def test_delete(self, provider, environ, dav_fs):
        provider.get_resource_inst("/a.txt", environ).delete()
        assert not dav_fs.exists("/a.txt")

    def test_move_and_copy(self, provider, environ, dav_fs, fake_client):
        resource = provider.get_resource_inst("/a.txt", environ)

        resource.copy_move_single("/sub/copy.txt", is_move=False)
        resource.move_recursive("/sub/moved.txt")

        content = fake_client.tree["a"].content
        assert dav_fs.read_bytes("/sub/copy.txt") == content
        assert dav_fs.read_bytes("/sub/moved.txt") == content
        assert not dav_fs.exists("/a.txt")

    def test_missing_source_maps_to_404(self, provider, environ, dav_fs):
        resource = provider.get_resource_inst("/a.txt", environ)
        dav_fs.remove("/a.txt")

        with pytest.raises(DAVError) as exc_info:
            resource.delete()
        assert exc_info.value.value == 404


class TestUploadBuffer:
    def test_close_keeps_data(self):
        buffer = _UploadBuffer()
        buffer.write(b"abc")
        buffer.close()

        assert not buffer.closed
        assert buffer.rewind().read() == b"abc"
        assert buffer.size == 3

        buffer.discard()
        assert buffer.closed
        buffer.close()

    def test_copyfileobj_into_buffer(self):
        buffer = _UploadBuffer()
        source = io.BytesIO(b"x" * 100_000)
        while chunk := source.read(8192):
            buffer.write(chunk)
        assert buffer.size == 100_000
        buffer.discard()


class TestWebDAVAdapter:
    """Test WebDAVAdapter."""

    def test_init(self):
        fs = mock_fs()
        adapter = WebDAVAdapter(fs, host="127.0.0.1", port=8080)
        assert adapter.fs is fs
        assert adapter.host == "127.0.0.1"
        assert adapter.port == 8080
        assert adapter.provider.fs is fs

    def test_url_property(self):
        adapter = WebDAVAdapter(mock_fs(), host="127.0.0.1", port=8080)
        assert adapter.url == "http://127.0.0.1:8080"

    @patch("cheroot.wsgi.Server")
    def test_start_background(self, mock_server_class):
        adapter = WebDAVAdapter(mock_fs())

        mock_server = Mock()
        mock_server_class.return_value = mock_server

        adapter.start_background()

        mock_server_class.assert_called_once_with(("127.0.0.1", 4914), adapter.app)
        mock_server.start.assert_called_once()

    @patch("cheroot.wsgi.Server")
    def test_stop(self, mock_server_class):
        adapter = WebDAVAdapter(mock_fs())

        mock_server = Mock()
        mock_server_class.return_value = mock_server
        adapter.start_background()

        adapter.stop()
        mock_server.stop.assert_called_once()

    @patch("cheroot.wsgi.Server")
    def test_start_blocking_handles_interrupt(self, mock_server_class):
        adapter = WebDAVAdapter(mock_fs())

        mock_server = Mock()
        mock_server.start.side_effect = KeyboardInterrupt
        mock_server_class.return_value = mock_server

        adapter.start()
        mock_server.stop.assert_called_once()

    @patch("cheroot.wsgi.Server")
    def test_context_manager(self, mock_server_class):
        mock_server = Mock()
        mock_server_class.return_value = mock_server

        with WebDAVAdapter(mock_fs()) as adapter:
            assert adapter is not None
            mock_server.start.assert_called_once()

        mock_server.stop.assert_called_once()
