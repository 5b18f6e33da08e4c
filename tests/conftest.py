"""
Shared fixtures: a fake Gofile service with the Veil7n tree and filesystems on top of it
"""

import pytest
from helpers import ROOT_CODE, FakeGofileClient, build_veil7n

from gofile_dav.filesystem import GofileFileSystem
from gofile_dav.session import SessionManager


@pytest.fixture
def fake_client():
    """Fake service holding root Veil7n with a.txt and sub/b.txt"""
    client = FakeGofileClient()
    client.tree = build_veil7n(client)
    return client


@pytest.fixture
def session(fake_client):
    return SessionManager(fake_client)


@pytest.fixture
async def fs(fake_client, session):
    """Read-write filesystem rooted at Veil7n"""
    gfs = GofileFileSystem(fake_client, session, root_id=ROOT_CODE, read_write=True)
    await gfs.initialize()
    yield gfs
    await gfs.close()


@pytest.fixture
async def ro_fs(fake_client, session):
    """Read-only filesystem rooted at Veil7n"""
    gfs = GofileFileSystem(fake_client, session, root_id=ROOT_CODE)
    await gfs.initialize()
    yield gfs
    await gfs.close()
