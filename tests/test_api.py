"""Unit tests for the IPFS API client."""

import json

import httpx
import pytest

from pyipfsync.api import IpfsClient, key_name
from pyipfsync.exceptions import (
    IpfsAPIError,
    IpfsInvalidResponseError,
    IpfsNetworkError,
    IpfsPinnedError,
)
from pyipfsync.models import Key


def make_client(handler, **kwargs):
    """Create a client answering requests with ``handler``."""
    kwargs.setdefault("retry_delay", 0)
    return IpfsClient(transport=httpx.MockTransport(handler), **kwargs)


def ipfs_error(message, code=0, status_code=500):
    return httpx.Response(
        status_code, json={"Message": message, "Code": code, "Type": "error"}
    )


class TestIpfsClient:
    """Tests for IpfsClient initialization and helpers."""

    def test_defaults(self):
        client = IpfsClient()
        assert client.api_url == "http://127.0.0.1:5001/api/v0"
        assert client.base_path == "/ipfs-sync/"

    def test_base_path_gets_trailing_slash(self):
        client = IpfsClient(base_path="/sync")
        assert client.mfs_path("docs/a.txt") == "/sync/docs/a.txt"

    def test_key_name(self):
        """Directory keys live in their own key space."""
        assert key_name("docs") == "ipfs-sync.docs"


class TestRequest:
    """Tests for request handling and retries."""

    @pytest.mark.asyncio
    async def test_version(self):
        """Requests are POSTs to the API prefix."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Version": "0.17.0"})

        client = make_client(handler)
        assert await client.version() == "0.17.0"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/v0/version"
        await client.close()

    @pytest.mark.asyncio
    async def test_command_error_not_retried(self):
        """A JSON error body is raised as is, without retrying."""
        calls = []

        def handler(request):
            calls.append(request)
            return ipfs_error("file does not exist")

        client = make_client(handler)
        with pytest.raises(IpfsAPIError, match="file does not exist") as exc_info:
            await client.remove_file("docs/a.txt")
        assert exc_info.value.status_code == 500
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        """Bare 5xx responses are retried."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(502)
            return httpx.Response(200, json={"Version": "0.17.0"})

        client = make_client(handler)
        assert await client.version() == "0.17.0"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_network_error_after_retries(self):
        """Network failures surface once the retries are used up."""
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=2)
        with pytest.raises(IpfsNetworkError, match="Network error"):
            await client.version()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, text="404 page not found")

        client = make_client(handler)
        with pytest.raises(IpfsAPIError) as exc_info:
            await client.version()
        assert exc_info.value.status_code == 404
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_ndjson_keeps_last_line(self):
        """Newline delimited answers are decoded from their last line."""

        def handler(request):
            body = b'{"Bytes": 5}\n{"Name": "a.txt", "Hash": "QmA", "Size": "13"}\n'
            return httpx.Response(200, content=body)

        client = make_client(handler)
        assert await client._request("add") == {
            "Name": "a.txt",
            "Hash": "QmA",
            "Size": "13",
        }

    @pytest.mark.asyncio
    async def test_garbage_response(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        client = make_client(handler)
        with pytest.raises(IpfsInvalidResponseError):
            await client._request("version")


class TestOperations:
    """Tests for the individual RPC wrappers."""

    @pytest.mark.asyncio
    async def test_add_file(self, tmp_path):
        """Files are uploaded as multipart with their absolute path."""
        file_path = tmp_path / "a.txt"
        file_path.write_text("hello")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Name": "a.txt", "Hash": "QmA"})

        client = make_client(handler)
        assert await client.add_file(file_path, nocopy=True) == "QmA"

        request = seen[0]
        assert request.url.path == "/api/v0/add"
        assert request.url.params["nocopy"] == "true"
        assert request.url.params["only-hash"] == "false"
        assert request.url.params["pin"] == "false"
        body = request.read()
        assert b"hello" in body
        assert f"Abspath: {file_path}".encode() in body

    @pytest.mark.asyncio
    async def test_add_file_only_hash(self, tmp_path):
        file_path = tmp_path / "a.txt"
        file_path.write_text("hello")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Hash": "QmA"})

        client = make_client(handler)
        await client.add_file(file_path, only_hash=True)
        assert seen[0].url.params["only-hash"] == "true"

    @pytest.mark.asyncio
    async def test_add_file_missing_hash(self, tmp_path):
        """An answer without a hash is rejected at the boundary."""
        file_path = tmp_path / "a.txt"
        file_path.write_text("hello")
        client = make_client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(IpfsInvalidResponseError, match="Hash"):
            await client.add_file(file_path)

    @pytest.mark.asyncio
    async def test_get_file_cid(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Hash": "QmRoot", "Type": "directory"})

        client = make_client(handler)
        assert await client.get_file_cid("docs") == "QmRoot"
        assert seen[0].url.params["arg"] == "/ipfs-sync/docs"
        assert seen[0].url.params["hash"] == "true"

    @pytest.mark.asyncio
    async def test_get_file_cid_error_is_empty(self):
        """An unresolvable path yields an empty CID."""
        client = make_client(lambda request: ipfs_error("file does not exist"))
        assert await client.get_file_cid("docs") == ""

    @pytest.mark.asyncio
    async def test_copy_file(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        client = make_client(handler)
        await client.copy_file("/ipfs/QmA", "/ipfs-sync/docs/a.txt")
        assert seen[0].url.path == "/api/v0/files/cp"
        assert seen[0].url.params.get_list("arg") == [
            "/ipfs/QmA",
            "/ipfs-sync/docs/a.txt",
        ]

    @pytest.mark.asyncio
    async def test_make_dir_with_parents(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        client = make_client(handler)
        await client.make_dir("docs/notes")
        assert seen[0].url.params["arg"] == "/ipfs-sync/docs/notes"
        assert seen[0].url.params["parents"] == "true"

    @pytest.mark.asyncio
    async def test_list_keys(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "Keys": [
                        {"Name": "self", "Id": "k51self"},
                        {"Name": "ipfs-sync.docs", "Id": "k51docs"},
                    ]
                },
            )

        client = make_client(handler)
        assert await client.list_keys() == [
            Key(id="k51self", name="self"),
            Key(id="k51docs", name="ipfs-sync.docs"),
        ]

    @pytest.mark.asyncio
    async def test_list_keys_malformed(self):
        client = make_client(lambda request: httpx.Response(200, json={"Keys": None}))
        with pytest.raises(IpfsInvalidResponseError):
            await client.list_keys()

    @pytest.mark.asyncio
    async def test_generate_key(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Name": "ipfs-sync.docs", "Id": "k51"})

        client = make_client(handler)
        key = await client.generate_key("docs")
        assert key == Key(id="k51", name="ipfs-sync.docs")
        assert seen[0].url.params["arg"] == "ipfs-sync.docs"

    @pytest.mark.asyncio
    async def test_resolve_name(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"Path": "/ipfs/QmRoot"})
        )
        assert await client.resolve_name("k51") == "QmRoot"

    @pytest.mark.asyncio
    async def test_resolve_name_bad_path(self):
        client = make_client(lambda request: httpx.Response(200, json={"Path": "x"}))
        with pytest.raises(IpfsInvalidResponseError, match="name/resolve"):
            await client.resolve_name("k51")

    @pytest.mark.asyncio
    async def test_publish_and_pin_update(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.publish("QmB", "k51")
        await client.update_pin("QmA", "QmB")

        assert seen[0].url.path == "/api/v0/name/publish"
        assert seen[0].url.params["arg"] == "QmB"
        assert seen[0].url.params["key"] == "k51"
        assert seen[1].url.path == "/api/v0/pin/update"
        assert seen[1].url.params.get_list("arg") == ["QmA", "QmB"]


class TestRemoveBlock:
    """Tests for block removal and pinned errors."""

    @pytest.mark.asyncio
    async def test_removed(self):
        client = make_client(lambda request: httpx.Response(200, json={"Hash": "Qm"}))
        await client.remove_block("QmBlock")

    @pytest.mark.asyncio
    async def test_pinned_via_parent(self):
        """The pin holding the block is extracted from the message."""
        client = make_client(
            lambda request: ipfs_error("pinned via QmParent (recursive)")
        )
        with pytest.raises(IpfsPinnedError) as exc_info:
            await client.remove_block("QmBlock")
        assert exc_info.value.pin_cid == "QmParent"

    @pytest.mark.asyncio
    async def test_pinned_in_success_body(self):
        """Per-block errors in a 200 answer are raised too."""
        client = make_client(
            lambda request: httpx.Response(
                200, json={"Hash": "QmBlock", "Error": "pinned: recursive"}
            )
        )
        with pytest.raises(IpfsPinnedError) as exc_info:
            await client.remove_block("QmBlock")
        assert exc_info.value.pin_cid == "QmBlock"

    @pytest.mark.asyncio
    async def test_other_error(self):
        client = make_client(lambda request: ipfs_error("blockstore: block not found"))
        with pytest.raises(IpfsAPIError) as exc_info:
            await client.remove_block("QmBlock")
        assert not isinstance(exc_info.value, IpfsPinnedError)


class TestStreams:
    """Tests for streamed listings."""

    @pytest.mark.asyncio
    async def test_iter_refs(self):
        lines = [{"Ref": "QmA", "Err": ""}, {"Ref": "", "Err": "boom"}]

        def handler(request):
            body = "\n".join(json.dumps(line) for line in lines) + "\n"
            return httpx.Response(200, content=body.encode())

        client = make_client(handler)
        refs = [ref async for ref in client.iter_refs("QmRoot")]
        assert [(r.ref, r.err) for r in refs] == [("QmA", ""), ("", "boom")]

    @pytest.mark.asyncio
    async def test_iter_filestore_verify(self):
        lines = [
            {"Status": 0, "Key": {"/": "QmOk"}, "FilePath": "/docs/a.txt"},
            {"Status": 11, "Key": {"/": "QmGone"}, "FilePath": "/docs/b.txt"},
        ]

        def handler(request):
            body = "\n".join(json.dumps(line) for line in lines)
            return httpx.Response(200, content=body.encode())

        client = make_client(handler)
        entries = [e async for e in client.iter_filestore_verify()]
        assert [e.missing_file for e in entries] == [False, True]
        assert entries[1].key == "QmGone"

    @pytest.mark.asyncio
    async def test_stream_error(self):
        client = make_client(lambda request: ipfs_error("filestore is not enabled"))
        with pytest.raises(IpfsAPIError, match="filestore is not enabled"):
            async for _ in client.iter_filestore_verify():
                pass
