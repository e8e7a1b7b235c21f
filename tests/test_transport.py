"""Tests for the signed request executor (CosTransport).

Every request is captured by an httpx.MockTransport handler so the tests can
check URL, query string, headers, and that the Authorization value was
computed from exactly the headers and params that were sent.
"""

import httpx
import pytest

from conftest import BUCKET, HOST, SECRET_ID, SECRET_KEY, FakeCos, make_config
from cos_upload.auth import generate_authorization
from cos_upload.errors import (
    CosResponseError,
    CosTransportError,
    MissingETagError,
    MissingUploadIdError,
)
from cos_upload.transport import CosTransport, metadata_headers


def _auth_fields(request: httpx.Request) -> dict[str, str]:
    return dict(pair.split("=", 1) for pair in request.headers["Authorization"].split("&"))


def _assert_signed_as_sent(request: httpx.Request) -> None:
    """Recompute the signature from the request as it went over the wire."""
    fields = _auth_fields(request)
    start = int(fields["q-key-time"].split(";")[0])
    end = int(fields["q-key-time"].split(";")[1])

    raw = {k.decode(): v.decode() for k, v in request.headers.raw}
    header_names = fields["q-header-list"].split(";") if fields["q-header-list"] else []
    headers = {name: value for name, value in raw.items() if name.lower() in header_names}
    params = dict(request.url.params)

    expected = generate_authorization(
        SECRET_ID,
        SECRET_KEY,
        request.method,
        request.url.path,
        params,
        headers,
        expire=end - start,
        now=start,
    )
    assert request.headers["Authorization"] == expected


@pytest.fixture
async def fake_transport(fake_cos: FakeCos):
    async with CosTransport(
        make_config(), transport=httpx.MockTransport(fake_cos.handler)
    ) as transport:
        yield transport


class TestUrls:
    """Tests for object URL construction."""

    def test_object_url(self):
        transport = CosTransport(make_config())
        assert transport.object_url("a/b.txt") == f"https://{HOST}/a/b.txt"

    def test_object_url_encodes_unsafe_characters(self):
        transport = CosTransport(make_config())
        assert transport.object_url("dir/a b.txt") == f"https://{HOST}/dir/a%20b.txt"


class TestMetadataHeaders:
    """Tests for metadata_headers()."""

    def test_prefix_and_case_preserved(self):
        assert metadata_headers({"User-Id": "123", "source": "web"}) == {
            "x-cos-meta-User-Id": "123",
            "x-cos-meta-source": "web",
        }

    def test_none(self):
        assert metadata_headers(None) == {}


class TestPutObject:
    """Tests for put_object()."""

    async def test_headers_and_signature(self, fake_transport, fake_cos):
        etag = await fake_transport.put_object(
            "docs/hello.txt", b"Hello, COS!", content_type="text/plain", metadata={"User-Id": "7"}
        )
        assert etag is not None

        (request,) = fake_cos.requests
        assert request.method == "PUT"
        assert str(request.url) == f"https://{HOST}/docs/hello.txt"
        assert request.headers["Host"] == HOST
        assert request.headers["Content-Length"] == "11"
        assert request.headers["Content-Type"] == "text/plain"
        assert ("x-cos-meta-User-Id", "7") in [
            (k.decode(), v.decode()) for k, v in request.headers.raw
        ]
        fields = _auth_fields(request)
        assert fields["q-header-list"] == "content-length;content-type;host;x-cos-meta-user-id"
        assert fields["q-url-param-list"] == ""
        _assert_signed_as_sent(request)

    async def test_non_2xx_raises_response_error(self, fake_transport, fake_cos):
        fake_cos.fail["PutObject"] = 403
        with pytest.raises(CosResponseError) as exc_info:
            await fake_transport.put_object("k", b"x")
        err = exc_info.value
        assert err.status_code == 403
        assert err.cos_code == "InternalError"
        assert err.request_id == "NjQ0MDAwMDBfYTc0"
        assert "PutObject failed" in err.body
        assert err.operation == "PutObject"


class TestMultipartRequests:
    """Tests for initiate/upload-part/complete/abort request shapes."""

    async def test_initiate(self, fake_transport, fake_cos):
        upload_id = await fake_transport.initiate_multipart_upload(
            "big.bin", metadata={"source": "cli"}
        )
        assert upload_id in fake_cos.uploads

        (request,) = fake_cos.requests
        assert request.method == "POST"
        assert str(request.url) == f"https://{HOST}/big.bin?uploads"
        assert request.headers["x-cos-meta-source"] == "cli"
        fields = _auth_fields(request)
        assert fields["q-url-param-list"] == "uploads"
        assert fields["q-header-list"] == "host;x-cos-meta-source"
        _assert_signed_as_sent(request)

    async def test_initiate_without_upload_id(self, fake_transport, fake_cos):
        fake_cos.initiate_body = "<InitiateMultipartUploadResult/>"
        with pytest.raises(MissingUploadIdError):
            await fake_transport.initiate_multipart_upload("big.bin")

    async def test_upload_part(self, fake_transport, fake_cos):
        upload_id = await fake_transport.initiate_multipart_upload("big.bin")
        etag = await fake_transport.upload_part("big.bin", upload_id, 3, b"abc")
        assert etag.startswith('"') and etag.endswith('"')

        request = fake_cos.requests_for("UploadPart")[0]
        assert request.url.params["partNumber"] == "3"
        assert request.url.params["uploadId"] == upload_id
        assert request.content == b"abc"
        assert _auth_fields(request)["q-url-param-list"] == "partnumber;uploadid"
        assert _auth_fields(request)["q-header-list"] == "content-length;host"
        _assert_signed_as_sent(request)

    async def test_upload_part_without_etag(self, fake_transport, fake_cos):
        upload_id = await fake_transport.initiate_multipart_upload("big.bin")
        fake_cos.omit_etag = True
        with pytest.raises(MissingETagError) as exc_info:
            await fake_transport.upload_part("big.bin", upload_id, 1, b"abc")
        assert exc_info.value.part_number == 1

    async def test_complete_body(self, fake_transport, fake_cos):
        upload_id = await fake_transport.initiate_multipart_upload("big.bin")
        e1 = await fake_transport.upload_part("big.bin", upload_id, 1, b"ab")
        e2 = await fake_transport.upload_part("big.bin", upload_id, 2, b"cd")
        await fake_transport.complete_multipart_upload("big.bin", upload_id, [(1, e1), (2, e2)])

        request = fake_cos.requests_for("CompleteMultipartUpload")[0]
        assert request.url.params["uploadId"] == upload_id
        assert request.content.decode() == (
            "<CompleteMultipartUpload>"
            f"<Part><PartNumber>1</PartNumber><ETag>{e1}</ETag></Part>"
            f"<Part><PartNumber>2</PartNumber><ETag>{e2}</ETag></Part>"
            "</CompleteMultipartUpload>"
        )
        _assert_signed_as_sent(request)
        assert fake_cos.objects["big.bin"]["body"] == b"abcd"

    async def test_abort(self, fake_transport, fake_cos):
        upload_id = await fake_transport.initiate_multipart_upload("big.bin")
        await fake_transport.abort_multipart_upload("big.bin", upload_id)
        request = fake_cos.requests_for("AbortMultipartUpload")[0]
        assert request.method == "DELETE"
        assert request.url.params["uploadId"] == upload_id
        assert upload_id not in fake_cos.uploads
        _assert_signed_as_sent(request)


class TestHeadAndDelete:
    """Tests for head_object() and delete_object()."""

    async def test_head_returns_headers(self, fake_transport, fake_cos):
        await fake_transport.put_object("k.txt", b"12345", metadata={"a": "1"})
        headers = await fake_transport.head_object("k.txt")
        assert headers["content-length"] == "5"
        assert headers["x-cos-meta-a"] == "1"
        _assert_signed_as_sent(fake_cos.requests_for("HeadObject")[0])

    async def test_head_missing_object(self, fake_transport):
        with pytest.raises(CosResponseError) as exc_info:
            await fake_transport.head_object("missing")
        assert exc_info.value.status_code == 404

    async def test_delete(self, fake_transport, fake_cos):
        await fake_transport.put_object("k.txt", b"x")
        await fake_transport.delete_object("k.txt")
        assert "k.txt" not in fake_cos.objects
        request = fake_cos.requests_for("DeleteObject")[0]
        assert _auth_fields(request)["q-header-list"] == "host"
        _assert_signed_as_sent(request)


class TestTransportErrors:
    """Network failures surface as CosTransportError and are not retried."""

    async def test_connect_error(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with CosTransport(make_config(), transport=httpx.MockTransport(handler)) as t:
            with pytest.raises(CosTransportError) as exc_info:
                await t.delete_object("k")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert len(attempts) == 1


class TestClientOwnership:
    """A caller-supplied client is not closed by the transport."""

    async def test_external_client_left_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204)))
        transport = CosTransport(make_config(), client=client)
        await transport.aclose()
        assert not client.is_closed
        await client.aclose()

    def test_bucket_in_host(self):
        assert CosTransport(make_config()).endpoint.host.startswith(BUCKET)
