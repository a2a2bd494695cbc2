"""Shared fixtures for pyipfsync tests."""

from unittest.mock import Mock

import pytest

from pyipfsync.api import IpfsClient
from pyipfsync.models import FilestoreEntry, RefEntry


def async_iter(items):
    """Return a factory producing async iterators over ``items``."""

    def factory(*args, **kwargs):
        async def generate():
            for item in items:
                if isinstance(item, Exception):
                    raise item
                yield item

        return generate()

    return factory


@pytest.fixture
def mock_client():
    """Create a mock IPFS client with MFS path handling."""
    client = Mock(spec=IpfsClient)
    client.base_path = "/ipfs-sync/"
    client.mfs_path.side_effect = lambda path: f"/ipfs-sync/{path}"
    client.iter_refs.side_effect = async_iter([])
    client.iter_filestore_verify.side_effect = async_iter([])
    return client


def refs(*cids):
    return [RefEntry(ref=cid) for cid in cids]


def filestore(*entries):
    return [FilestoreEntry(status=status, key=key) for status, key in entries]
