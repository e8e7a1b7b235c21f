"""Input validation helpers for cos-upload.

These run before any request is built so that obviously unusable input
fails locally instead of as a rejected signature on the wire.

Each function raises an appropriate ``CosError`` subclass on invalid input.
"""

import re

from cos_upload.errors import InvalidMetadata, InvalidObjectKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Metadata keys become part of an HTTP header name (x-cos-meta-<key>), so
# they must be valid header tokens.
_HEADER_TOKEN_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")

# Header values are sent as ASCII: visible characters, space and tab.
_HEADER_VALUE_RE = re.compile(r"[\t\x20-\x7e]*")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_object_key(key: str) -> str:
    """Validate an object key and strip a single leading slash.

    Args:
        key: The caller-supplied object key, e.g. ``uploads/user_1/a.txt``.

    Returns:
        The key without a leading ``/``.

    Raises:
        InvalidObjectKey: If the key is empty (or only ``/``).
    """
    if key.startswith("/"):
        key = key[1:]
    if not key:
        raise InvalidObjectKey(key)
    return key


def validate_metadata(metadata: dict[str, str] | None) -> dict[str, str]:
    """Check that every metadata entry can be sent as a header.

    Args:
        metadata: Caller metadata, or None.

    Returns:
        The metadata (an empty dict for None).

    Raises:
        InvalidMetadata: If a key is not a valid HTTP header token or a value
            contains anything but visible ASCII, space or tab.
    """
    if not metadata:
        return {}
    for key, value in metadata.items():
        if not _HEADER_TOKEN_RE.fullmatch(key):
            raise InvalidMetadata(key)
        if not _HEADER_VALUE_RE.fullmatch(value):
            raise InvalidMetadata(key)
    return metadata
