"""Simple and multipart upload orchestration for cos-upload.

``Uploader.upload_file`` picks the route by size:

    - size <= multipart_threshold: one PutObject carrying the whole body.
    - size >  multipart_threshold: InitiateMultipartUpload, one UploadPart
      per ``part_size`` byte range, then CompleteMultipartUpload with the
      ordered part manifest.

Both routes return the object's canonical URL.

A multipart upload moves through NOT_STARTED -> INITIATED ->
PARTS_UPLOADING -> COMPLETED, or to ABORTED on the first failure. Nothing is
retried. A failed upload leaves its session open on the service unless
``abort_on_failure`` is set, in which case one best-effort
AbortMultipartUpload is sent before the original error is re-raised.
Sessions can also be discarded explicitly with :meth:`Uploader.abort_upload`.
"""

import asyncio
import enum
import logging
import math
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, NamedTuple

import httpx

from cos_upload import metrics
from cos_upload.config import MIB, CosConfig
from cos_upload.errors import (
    CosError,
    LocalFileError,
    PartNumberOverflowError,
    PartSequenceError,
    ShortReadError,
)
from cos_upload.transport import CosTransport
from cos_upload.validation import normalize_object_key, validate_metadata

logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 5 * MIB
PART_SIZE = 5 * MIB
# COS accepts part numbers 1..10000.
MAX_PART_NUMBER = 10000

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadState(enum.Enum):
    """Lifecycle of a multipart upload session."""

    NOT_STARTED = "not_started"
    INITIATED = "initiated"
    PARTS_UPLOADING = "parts_uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TRANSITIONS = {
    UploadState.NOT_STARTED: {UploadState.INITIATED, UploadState.ABORTED},
    UploadState.INITIATED: {UploadState.PARTS_UPLOADING, UploadState.ABORTED},
    UploadState.PARTS_UPLOADING: {UploadState.COMPLETED, UploadState.ABORTED},
    UploadState.COMPLETED: set(),
    UploadState.ABORTED: set(),
}


class PartRange(NamedTuple):
    """Byte range ``[offset, offset + length)`` covered by one part."""

    part_number: int
    offset: int
    length: int


@dataclass(frozen=True)
class PartRecord:
    """A successfully uploaded part."""

    part_number: int
    etag: str
    offset: int = 0
    size: int = 0


@dataclass
class UploadSession:
    """One multipart upload: its server-assigned id, state, and uploaded parts.

    Attributes:
        object_key: Target object key.
        upload_id: Id returned by InitiateMultipartUpload, None before that.
        state: Current lifecycle state.
        parts: Part records in the order they finished uploading.
    """

    object_key: str
    upload_id: str | None = None
    state: UploadState = UploadState.NOT_STARTED
    parts: list[PartRecord] = field(default_factory=list)

    def transition(self, new_state: UploadState) -> None:
        """Move to ``new_state``.

        Raises:
            PartSequenceError: If the move is not allowed from the current state.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise PartSequenceError(
                f"Cannot move upload of {self.object_key} from "
                f"{self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def initiated(self, upload_id: str) -> None:
        self.upload_id = upload_id
        self.transition(UploadState.INITIATED)

    def add_part(self, record: PartRecord) -> None:
        """Record an uploaded part.

        Raises:
            PartSequenceError: If the session is not uploading parts, the
                part number is out of range, or it was already recorded.
        """
        if self.state is not UploadState.PARTS_UPLOADING:
            raise PartSequenceError(
                f"Cannot record part {record.part_number} in state {self.state.value}"
            )
        if not 1 <= record.part_number <= MAX_PART_NUMBER:
            raise PartSequenceError(f"Part number {record.part_number} out of range")
        if any(p.part_number == record.part_number for p in self.parts):
            raise PartSequenceError(f"Part {record.part_number} recorded twice")
        self.parts.append(record)

    def manifest(self) -> list[tuple[int, str]]:
        """Return ``(part_number, etag)`` pairs in ascending part order.

        Raises:
            PartSequenceError: If there are no parts or the numbers are not
                exactly ``1..N``.
        """
        ordered = sorted(self.parts, key=lambda p: p.part_number)
        if not ordered:
            raise PartSequenceError(f"No parts recorded for {self.object_key}")
        for expected, record in enumerate(ordered, start=1):
            if record.part_number != expected:
                raise PartSequenceError(
                    f"Missing part {expected} for {self.object_key} "
                    f"(next recorded part is {record.part_number})"
                )
        return [(p.part_number, p.etag) for p in ordered]


def plan_parts(
    file_size: int, part_size: int = PART_SIZE, max_parts: int = MAX_PART_NUMBER
) -> list[PartRange]:
    """Split ``[0, file_size)`` into contiguous parts of ``part_size`` bytes.

    The last part holds the remainder. Part numbers run from 1 to
    ``ceil(file_size / part_size)``.

    Raises:
        ValueError: If ``part_size`` is not positive or ``file_size`` is negative.
        PartNumberOverflowError: If more than ``max_parts`` parts are needed.
    """
    if part_size <= 0:
        raise ValueError(f"part_size must be positive, got {part_size}")
    if file_size < 0:
        raise ValueError(f"file_size must not be negative, got {file_size}")

    count = math.ceil(file_size / part_size)
    if count > max_parts:
        raise PartNumberOverflowError(count, max_parts)

    ranges = []
    for index in range(count):
        offset = index * part_size
        ranges.append(PartRange(index + 1, offset, min(part_size, file_size - offset)))
    return ranges


def read_part(path: Path, offset: int, length: int) -> bytes:
    """Read exactly ``length`` bytes at ``offset``.

    Raises:
        LocalFileError: If the file cannot be opened or read.
        ShortReadError: If the file ends before ``length`` bytes were read.
    """
    try:
        with open(path, "rb") as fh:
            fh.seek(offset)
            data = fh.read(length)
    except OSError as exc:
        raise LocalFileError(f"Cannot read {path}: {exc}") from exc
    if len(data) != length:
        raise ShortReadError(str(path), offset, length, len(data))
    return data


def guess_content_type(path: str | os.PathLike) -> str:
    """Guess a MIME type from the file name, defaulting to octet-stream."""
    content_type, _ = mimetypes.guess_type(str(path))
    return content_type or DEFAULT_CONTENT_TYPE


class Uploader:
    """Uploads files to one COS bucket and manages their objects.

    The uploader holds only configuration and an HTTP transport, so one
    instance can serve concurrent uploads.

    Attributes:
        config: The validated client configuration.
        transport: The signed request executor.
    """

    def __init__(
        self,
        config: CosConfig,
        transport: CosTransport | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            config: Validated client configuration.
            transport: Optional pre-built CosTransport.
            http_transport: Optional httpx transport used when building the
                CosTransport here.
        """
        self.config = config
        self.transport = transport or CosTransport(config, transport=http_transport)

    async def __aenter__(self) -> "Uploader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    # -- Public API ------------------------------------------------------------

    async def upload_file(
        self,
        file_path: str | os.PathLike,
        object_key: str,
        metadata: Mapping[str, str] | None = None,
        concurrency: int | None = None,
    ) -> str:
        """Upload a local file, choosing simple or multipart upload by size.

        Args:
            file_path: Path of the file to upload.
            object_key: Destination key, e.g. ``uploads/user_123/report.pdf``.
            metadata: Optional user metadata, sent as ``x-cos-meta-*`` headers.
            concurrency: Parts in flight at once for multipart uploads;
                defaults to ``config.upload.concurrency``.

        Returns:
            The object's URL.

        Raises:
            InvalidObjectKey: If the key is empty.
            LocalFileError: If the file is missing or cannot be read.
            ValueError: If ``concurrency`` is less than 1.
            PartNumberOverflowError: If the file needs too many parts.
            CosTransportError: If a request could not be sent.
            CosProtocolError: If the service rejected a request or omitted
                a required field.
        """
        if concurrency is not None and concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        key = normalize_object_key(object_key)
        meta = validate_metadata(dict(metadata) if metadata else None)
        path = Path(file_path)

        try:
            stat = path.stat()
        except OSError as exc:
            raise LocalFileError(f"Cannot stat {path}: {exc}") from exc
        if not path.is_file():
            raise LocalFileError(f"Not a regular file: {path}")

        if concurrency is None:
            concurrency = self.config.upload.concurrency
        if stat.st_size > self.config.upload.multipart_threshold:
            return await self._multipart_upload(path, key, meta, stat.st_size, concurrency)
        return await self._simple_upload(path, key, meta)

    async def get_object_metadata(self, object_key: str) -> dict[str, str]:
        """Return the headers of a HEAD request on the object (names lower-cased)."""
        return await self.transport.head_object(normalize_object_key(object_key))

    async def delete_object(self, object_key: str) -> None:
        key = normalize_object_key(object_key)
        await self.transport.delete_object(key)
        logger.info("Deleted %s", key, extra={"object_key": key})

    async def abort_upload(self, object_key: str, upload_id: str) -> None:
        """Discard a multipart session left open by a failed upload."""
        key = normalize_object_key(object_key)
        await self.transport.abort_multipart_upload(key, upload_id)
        logger.info(
            "Aborted multipart upload %s for %s",
            upload_id,
            key,
            extra={"object_key": key, "upload_id": upload_id},
        )

    # -- Simple upload ---------------------------------------------------------

    async def _simple_upload(self, path: Path, key: str, metadata: dict[str, str]) -> str:
        logger.debug("Simple upload of %s to %s", path, key, extra={"object_key": key})
        try:
            body = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise LocalFileError(f"Cannot read {path}: {exc}") from exc

        await self.transport.put_object(
            key, body, content_type=guess_content_type(path), metadata=metadata
        )
        url = self.transport.object_url(key)
        logger.info("Uploaded %s to %s", path, url, extra={"object_key": key})
        return url

    # -- Multipart upload ------------------------------------------------------

    async def _multipart_upload(
        self,
        path: Path,
        key: str,
        metadata: dict[str, str],
        file_size: int,
        concurrency: int,
    ) -> str:
        plan = plan_parts(file_size, self.config.upload.part_size)
        logger.info(
            "Multipart upload of %s to %s: %d bytes in %d parts",
            path,
            key,
            file_size,
            len(plan),
            extra={"object_key": key},
        )

        session = UploadSession(object_key=key)
        try:
            upload_id = await self.transport.initiate_multipart_upload(
                key, metadata, content_type=guess_content_type(path)
            )
            session.initiated(upload_id)

            session.transition(UploadState.PARTS_UPLOADING)
            await self._upload_parts(path, session, plan, concurrency)

            await self.transport.complete_multipart_upload(key, upload_id, session.manifest())
            session.transition(UploadState.COMPLETED)
        except Exception:
            session.state = UploadState.ABORTED
            if session.upload_id is not None and self.config.upload.abort_on_failure:
                await self._abort_after_failure(session)
            raise

        url = self.transport.object_url(key)
        logger.info(
            "Uploaded %s to %s (%d parts)",
            path,
            url,
            len(session.parts),
            extra={"object_key": key, "upload_id": session.upload_id},
        )
        return url

    async def _upload_parts(
        self,
        path: Path,
        session: UploadSession,
        plan: list[PartRange],
        concurrency: int,
    ) -> None:
        """Upload every planned part, at most ``concurrency`` at a time.

        With ``concurrency == 1`` parts go strictly in ascending order. The
        first failure cancels the parts still pending and is re-raised.
        """
        lock = asyncio.Lock()

        async def upload_one(part: PartRange) -> None:
            data = await asyncio.to_thread(read_part, path, part.offset, part.length)
            etag = await self.transport.upload_part(
                session.object_key, session.upload_id, part.part_number, data
            )
            async with lock:
                session.add_part(PartRecord(part.part_number, etag, part.offset, part.length))
            metrics.record_part()
            logger.debug(
                "Uploaded part %d of %d for %s",
                part.part_number,
                len(plan),
                session.object_key,
                extra={
                    "object_key": session.object_key,
                    "upload_id": session.upload_id,
                    "part_number": part.part_number,
                },
            )

        if concurrency <= 1:
            for part in plan:
                await upload_one(part)
            return

        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(part: PartRange) -> None:
            async with semaphore:
                await upload_one(part)

        tasks = [asyncio.create_task(bounded(part)) for part in plan]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _abort_after_failure(self, session: UploadSession) -> None:
        """Send one AbortMultipartUpload; log instead of raising if it fails."""
        try:
            await self.transport.abort_multipart_upload(session.object_key, session.upload_id)
        except CosError as exc:
            logger.warning(
                "Could not abort multipart upload %s for %s: %s",
                session.upload_id,
                session.object_key,
                exc,
                extra={"object_key": session.object_key, "upload_id": session.upload_id},
            )
        else:
            logger.info(
                "Aborted multipart upload %s for %s after failure",
                session.upload_id,
                session.object_key,
                extra={"object_key": session.object_key, "upload_id": session.upload_id},
            )
