"""COS XML request rendering and response parsing helpers for cos-upload."""

import xml.etree.ElementTree as ET
from typing import Iterable
from xml.sax.saxutils import escape as _sax_escape

from cos_upload.errors import MissingUploadIdError


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value.

    Args:
        value: The raw string to escape.

    Returns:
        The XML-safe escaped string.
    """
    return _sax_escape(str(value))


def _namespace(root: ET.Element) -> str:
    """Return the ``{uri}`` prefix of the root tag, or an empty string."""
    if root.tag.startswith("{"):
        return root.tag[: root.tag.index("}") + 1]
    return ""


def _parse(body: str | bytes) -> ET.Element | None:
    """Parse an XML body, returning None when it is empty or malformed."""
    if not body:
        return None
    try:
        return ET.fromstring(body)
    except ET.ParseError:
        return None


def render_complete_multipart_upload(parts: Iterable[tuple[int, str]]) -> str:
    """Render the CompleteMultipartUpload request body.

    Parts are written in the order given; callers pass them sorted by
    part number.

    Args:
        parts: ``(part_number, etag)`` pairs.

    Returns:
        An XML string such as
        ``<CompleteMultipartUpload><Part><PartNumber>1</PartNumber>
        <ETag>"abc"</ETag></Part></CompleteMultipartUpload>`` (one line).
    """
    rendered = [
        f"<Part><PartNumber>{part_number}</PartNumber>"
        f"<ETag>{_escape_xml(etag)}</ETag></Part>"
        for part_number, etag in parts
    ]
    return f"<CompleteMultipartUpload>{''.join(rendered)}</CompleteMultipartUpload>"


def parse_upload_id(body: str | bytes) -> str:
    """Extract the UploadId from an InitiateMultipartUploadResult body.

    The document may or may not carry an XML namespace.

    Args:
        body: The raw response body.

    Returns:
        The upload id, stripped of surrounding whitespace.

    Raises:
        MissingUploadIdError: If the body is not XML or has no non-empty
            UploadId element.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    root = _parse(body)
    if root is None:
        raise MissingUploadIdError(text)

    ns = _namespace(root)
    if root.tag == f"{ns}UploadId":
        elem = root
    else:
        elem = root.find(f"{ns}UploadId")
    if elem is None or not (elem.text or "").strip():
        raise MissingUploadIdError(text)
    return elem.text.strip()


def parse_error(body: str | bytes) -> dict[str, str]:
    """Parse a COS ``<Error>`` response body.

    Args:
        body: The raw response body.

    Returns:
        A dict with whichever of ``code``, ``message``, ``resource`` and
        ``request_id`` are present; empty if the body is not an error document.
    """
    root = _parse(body)
    if root is None:
        return {}

    ns = _namespace(root)
    if root.tag != f"{ns}Error":
        return {}

    fields = {
        "code": "Code",
        "message": "Message",
        "resource": "Resource",
        "request_id": "RequestId",
    }
    result: dict[str, str] = {}
    for key, tag in fields.items():
        elem = root.find(f"{ns}{tag}")
        if elem is not None and elem.text:
            result[key] = elem.text.strip()
    return result
