"""Shared pytest fixtures for cos-upload tests.

HTTP traffic never leaves the process: ``FakeCos`` implements just enough of
the COS XML API (simple put, multipart initiate/part/complete/abort, head,
delete) in memory and is mounted with ``httpx.MockTransport``. Tests can
inject failures per operation, drop the ETag header, replace the initiate
response body, or delay individual parts to force out-of-order completion.
"""

import asyncio
import hashlib
import xml.etree.ElementTree as ET

import httpx
import pytest

from cos_upload.config import CosConfig
from cos_upload.uploader import Uploader

SECRET_ID = "AKIDexample"
SECRET_KEY = "example-secret-key"
REGION = "ap-guangzhou"
BUCKET = "examplebucket-1250000000"
HOST = f"{BUCKET}.cos.{REGION}.myqcloud.com"


def _error_body(code: str, message: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Error><Code>{code}</Code><Message>{message}</Message>"
        "<RequestId>NjQ0MDAwMDBfYTc0</RequestId></Error>"
    )


class FakeCos:
    """In-memory COS bucket served through httpx.MockTransport.

    Attributes:
        requests: Every request received, in arrival order.
        calls: Operation name of every request, in arrival order.
        objects: Stored objects by key: {"body": bytes, "headers": dict}.
        uploads: Open multipart sessions: upload_id -> {part_number: bytes}.
        fail: Operation name -> HTTP status to answer with instead.
        omit_etag: If True, UploadPart answers 200 without an ETag.
        initiate_body: Replacement body for InitiateMultipartUpload.
        part_delays: Part number -> seconds to sleep before answering.
        part_finish_order: Part numbers in the order their responses were sent.
        completed_parts: Part numbers listed by the last completion body.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.calls: list[str] = []
        self.objects: dict[str, dict] = {}
        self.uploads: dict[str, dict[int, bytes]] = {}
        self.fail: dict[str, int] = {}
        self.omit_etag = False
        self.initiate_body: str | None = None
        self.part_delays: dict[int, float] = {}
        self.part_finish_order: list[int] = []
        self.completed_parts: list[int] = []
        self._next_upload = 0

    @staticmethod
    def operation(request: httpx.Request) -> str:
        params = request.url.params
        method = request.method
        if method == "POST" and "uploads" in params:
            return "InitiateMultipartUpload"
        if method == "PUT" and "partNumber" in params:
            return "UploadPart"
        if method == "POST" and "uploadId" in params:
            return "CompleteMultipartUpload"
        if method == "DELETE" and "uploadId" in params:
            return "AbortMultipartUpload"
        return {
            "PUT": "PutObject",
            "HEAD": "HeadObject",
            "DELETE": "DeleteObject",
        }.get(method, "Unknown")

    def requests_for(self, operation: str) -> list[httpx.Request]:
        return [r for r in self.requests if self.operation(r) == operation]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        op = self.operation(request)
        self.requests.append(request)
        self.calls.append(op)

        if op in self.fail:
            return httpx.Response(
                self.fail[op], text=_error_body("InternalError", f"{op} failed")
            )

        key = request.url.path[1:]
        params = request.url.params

        if op == "PutObject":
            body = request.content
            self.objects[key] = {"body": body, "headers": dict(request.headers)}
            return httpx.Response(200, headers={"ETag": f'"{hashlib.md5(body).hexdigest()}"'})

        if op == "InitiateMultipartUpload":
            if self.initiate_body is not None:
                return httpx.Response(200, text=self.initiate_body)
            self._next_upload += 1
            upload_id = f"1585130821cbb7df1d1184{self._next_upload:04d}"
            self.uploads[upload_id] = {}
            return httpx.Response(
                200,
                text=(
                    '<?xml version="1.0" encoding="UTF-8"?>'
                    "<InitiateMultipartUploadResult>"
                    f"<Bucket>{BUCKET}</Bucket><Key>{key}</Key>"
                    f"<UploadId>{upload_id}</UploadId>"
                    "</InitiateMultipartUploadResult>"
                ),
            )

        if op == "UploadPart":
            upload_id = params["uploadId"]
            part_number = int(params["partNumber"])
            if upload_id not in self.uploads:
                return httpx.Response(404, text=_error_body("NoSuchUpload", "no upload"))
            delay = self.part_delays.get(part_number, 0)
            if delay:
                await asyncio.sleep(delay)
            self.uploads[upload_id][part_number] = request.content
            self.part_finish_order.append(part_number)
            if self.omit_etag:
                return httpx.Response(200)
            etag = f'"{hashlib.md5(request.content).hexdigest()}"'
            return httpx.Response(200, headers={"ETag": etag})

        if op == "CompleteMultipartUpload":
            upload_id = params["uploadId"]
            parts = self.uploads.pop(upload_id, None)
            if parts is None:
                return httpx.Response(404, text=_error_body("NoSuchUpload", "no upload"))
            root = ET.fromstring(request.content)
            numbers = [int(p.findtext("PartNumber")) for p in root.findall("Part")]
            self.completed_parts = numbers
            if numbers != sorted(numbers):
                return httpx.Response(400, text=_error_body("InvalidPartOrder", "order"))
            body = b"".join(parts[n] for n in numbers)
            self.objects[key] = {"body": body, "headers": {}}
            return httpx.Response(
                200,
                text=(
                    "<CompleteMultipartUploadResult>"
                    f"<Location>{HOST}/{key}</Location>"
                    "</CompleteMultipartUploadResult>"
                ),
            )

        if op == "AbortMultipartUpload":
            self.uploads.pop(params["uploadId"], None)
            return httpx.Response(204)

        if op == "HeadObject":
            obj = self.objects.get(key)
            if obj is None:
                return httpx.Response(404)
            headers = {
                "Content-Length": str(len(obj["body"])),
                "ETag": f'"{hashlib.md5(obj["body"]).hexdigest()}"',
            }
            for name, value in obj["headers"].items():
                if name.lower().startswith("x-cos-meta-") or name.lower() == "content-type":
                    headers[name] = value
            return httpx.Response(200, headers=headers)

        if op == "DeleteObject":
            self.objects.pop(key, None)
            return httpx.Response(204)

        return httpx.Response(405)


def make_config(**upload) -> CosConfig:
    return CosConfig.create(SECRET_ID, SECRET_KEY, REGION, BUCKET, **upload)


@pytest.fixture
def fake_cos() -> FakeCos:
    return FakeCos()


@pytest.fixture
def config() -> CosConfig:
    """Config with small sizes so multipart tests stay fast."""
    return make_config(multipart_threshold=100, part_size=64)


@pytest.fixture
async def uploader(config: CosConfig, fake_cos: FakeCos):
    """An Uploader wired to the in-memory FakeCos."""
    async with Uploader(config, http_transport=httpx.MockTransport(fake_cos.handler)) as up:
        yield up
