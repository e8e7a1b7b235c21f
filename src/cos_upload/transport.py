"""HTTP exchanges with the COS XML API for cos-upload.

Each public coroutine performs exactly one signed request:

    - PutObject                (PUT    /{key})
    - InitiateMultipartUpload  (POST   /{key}?uploads)
    - UploadPart               (PUT    /{key}?partNumber={n}&uploadId={id})
    - CompleteMultipartUpload  (POST   /{key}?uploadId={id})
    - AbortMultipartUpload     (DELETE /{key}?uploadId={id})
    - HeadObject               (HEAD   /{key})
    - DeleteObject             (DELETE /{key})

The header and param maps that are signed are exactly the ones sent. Any
2xx status is success; everything else raises ``CosResponseError`` with the
response body attached. Nothing is retried here.
"""

import logging
import time
import urllib.parse
from typing import Iterable, Mapping

import httpx

from cos_upload import metrics
from cos_upload.auth import CosSigner
from cos_upload.config import CosConfig
from cos_upload.errors import CosResponseError, CosTransportError, MissingETagError
from cos_upload.xml_utils import parse_error, parse_upload_id, render_complete_multipart_upload

logger = logging.getLogger(__name__)

META_PREFIX = "x-cos-meta-"


def metadata_headers(metadata: Mapping[str, str] | None) -> dict[str, str]:
    """Flatten caller metadata into ``x-cos-meta-<key>`` headers.

    The key is used as supplied; its case is not changed.
    """
    if not metadata:
        return {}
    return {f"{META_PREFIX}{key}": value for key, value in metadata.items()}


def _render_query(params: Mapping[str, str]) -> str:
    """Render a query string; params with an empty value render bare (``uploads``)."""
    rendered = []
    for name, value in params.items():
        encoded_name = urllib.parse.quote(name, safe="-_.~")
        if value == "":
            rendered.append(encoded_name)
        else:
            rendered.append(f"{encoded_name}={urllib.parse.quote(value, safe='-_.~')}")
    return "&".join(rendered)


class CosTransport:
    """Signed request executor bound to one bucket.

    Owns an ``httpx.AsyncClient`` unless one is passed in. Use as an async
    context manager or call :meth:`aclose` when done.

    Attributes:
        endpoint: The bucket/region endpoint configuration.
        signer: Signer holding this client's credentials.
    """

    def __init__(
        self,
        config: CosConfig,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Validated client configuration.
            client: Optional pre-built client; it is not closed by :meth:`aclose`.
            transport: Optional httpx transport for a client built here
                (tests pass ``httpx.MockTransport``).
        """
        self.endpoint = config.endpoint
        self.signer = CosSigner(
            config.credentials.secret_id,
            config.credentials.secret_key.get_secret_value(),
            expire=config.upload.sign_expire,
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=config.upload.timeout, transport=transport
        )

    async def __aenter__(self) -> "CosTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    # -- URLs ------------------------------------------------------------------

    def object_url(self, key: str) -> str:
        """Return the canonical URL of an object, e.g. ``https://b.cos.r.myqcloud.com/a/b.txt``."""
        return f"{self.endpoint.base_url}/{urllib.parse.quote(key, safe='/-_.~')}"

    def _request_url(self, key: str, params: Mapping[str, str]) -> str:
        url = self.object_url(key)
        query = _render_query(params)
        return f"{url}?{query}" if query else url

    # -- Core exchange ---------------------------------------------------------

    async def _send(
        self,
        operation: str,
        method: str,
        key: str,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Sign and send one request.

        Args:
            operation: Operation name for logs, metrics, and errors.
            method: HTTP method.
            key: Object key without a leading slash.
            params: Query parameters (signed and sent).
            headers: Extra headers (signed and sent). ``Host`` and, when a
                body is present, ``Content-Length`` are added here.
            content: Request body.

        Returns:
            The 2xx response.

        Raises:
            CosTransportError: If the request could not be completed.
            CosResponseError: If the status is not 2xx.
        """
        params = dict(params or {})
        signed_headers = {"Host": self.endpoint.host}
        signed_headers.update(headers or {})
        if content is not None:
            signed_headers["Content-Length"] = str(len(content))

        path = f"/{key}"
        authorization = self.signer.sign(method, path, params, signed_headers)
        url = self._request_url(key, params)
        sent = len(content) if content else 0

        start = time.monotonic()
        try:
            response = await self._client.request(
                method,
                url,
                headers={**signed_headers, "Authorization": authorization},
                content=content,
            )
        except httpx.HTTPError as exc:
            metrics.record_request(operation, "error")
            logger.warning("%s %s failed: %s", method, path, exc)
            raise CosTransportError(f"{operation} {path} failed: {exc}") from exc

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        logger.debug(
            "%s %s -> %d (%.2f ms)",
            method,
            path,
            response.status_code,
            duration_ms,
            extra={
                "method": method,
                "path": path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        metrics.record_request(operation, response.status_code, sent)

        if not response.is_success:
            body = response.text
            error = parse_error(body)
            raise CosResponseError(
                operation,
                response.status_code,
                body,
                cos_code=error.get("code", ""),
                request_id=error.get("request_id", ""),
            )
        return response

    # -- Operations ------------------------------------------------------------

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
        metadata: Mapping[str, str] | None = None,
    ) -> str | None:
        """Upload a whole object in one request.

        Returns:
            The object's ETag, or None if the service did not send one.
        """
        headers = {"Content-Type": content_type}
        headers.update(metadata_headers(metadata))
        response = await self._send("PutObject", "PUT", key, headers=headers, content=body)
        return response.headers.get("ETag")

    async def initiate_multipart_upload(
        self,
        key: str,
        metadata: Mapping[str, str] | None = None,
        content_type: str | None = None,
    ) -> str:
        """Open a multipart upload session.

        Returns:
            The upload id.

        Raises:
            MissingUploadIdError: If the 2xx body has no UploadId.
        """
        headers = metadata_headers(metadata)
        if content_type:
            headers["Content-Type"] = content_type
        response = await self._send(
            "InitiateMultipartUpload", "POST", key, params={"uploads": ""}, headers=headers
        )
        upload_id = parse_upload_id(response.content)
        logger.info(
            "Initiated multipart upload for %s: %s",
            key,
            upload_id,
            extra={"object_key": key, "upload_id": upload_id},
        )
        return upload_id

    async def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Upload one part of a multipart session.

        Returns:
            The part's ETag exactly as sent by the service (quotes included).

        Raises:
            MissingETagError: If the 2xx response has no ETag header.
        """
        params = {"partNumber": str(part_number), "uploadId": upload_id}
        response = await self._send("UploadPart", "PUT", key, params=params, content=data)
        etag = response.headers.get("ETag")
        if not etag:
            raise MissingETagError(part_number, response.status_code, response.text)
        return etag

    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: Iterable[tuple[int, str]]
    ) -> None:
        """Commit a multipart session from ``(part_number, etag)`` pairs in ascending order."""
        body = render_complete_multipart_upload(parts).encode("utf-8")
        await self._send(
            "CompleteMultipartUpload",
            "POST",
            key,
            params={"uploadId": upload_id},
            content=body,
        )

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Discard a multipart session and every part uploaded to it."""
        await self._send(
            "AbortMultipartUpload", "DELETE", key, params={"uploadId": upload_id}
        )

    async def head_object(self, key: str) -> dict[str, str]:
        """Fetch object metadata.

        Returns:
            All response headers, names lower-cased.
        """
        response = await self._send("HeadObject", "HEAD", key)
        return dict(response.headers.items())

    async def delete_object(self, key: str) -> None:
        await self._send("DeleteObject", "DELETE", key)
