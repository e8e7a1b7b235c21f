"""COS request signing (q-sign-algorithm=sha1) for cos-upload.

Implements the COS XML API authorization algorithm:

1. ``key_time`` is the validity window ``"{start};{end}"`` in Unix seconds.
2. ``sign_key = HMAC-SHA1(secret_key, key_time)`` (hex).
3. The canonical HTTP string is
   ``method\\npath\\ncanonical_params\\ncanonical_headers\\n``.
4. ``string_to_sign = "sha1\\n" + key_time + "\\n" + SHA1(http_string) + "\\n"``.
5. ``signature = HMAC-SHA1(sign_key, string_to_sign)`` (hex).

The canonical forms must be byte-exact or COS rejects the request with
``SignatureDoesNotMatch``.

References:
    - https://cloud.tencent.com/document/product/436/7778
"""

import hashlib
import hmac
import logging
import time
import urllib.parse
from typing import Mapping

from cos_upload.errors import CanonicalizationError

logger = logging.getLogger(__name__)

# Constants
ALGORITHM = "sha1"
DEFAULT_EXPIRE = 3600  # seconds


def uri_encode(value: str) -> str:
    """COS-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters (including '/') are percent-encoded as UTF-8
    with uppercase hex. Spaces become %20 (not +). Input that is already
    percent-encoded is encoded again.

    Args:
        value: The string to encode.

    Returns:
        The URI-encoded string.
    """
    return urllib.parse.quote(value, safe="-_.~")


def canonicalize(mapping: Mapping[str, str]) -> tuple[str, str]:
    """Build the name list and canonical string for a header or param map.

    Names are lower-cased and sorted by the lower-cased string. The name
    list joins them with ``;``. The canonical string joins
    ``uri_encode(name)=uri_encode(value)`` pairs with ``&``.

    Args:
        mapping: Header or query-parameter map.

    Returns:
        ``(name_list, canonical_string)``; both empty for an empty map.

    Raises:
        CanonicalizationError: If two names are equal once lower-cased.
    """
    lowered: dict[str, str] = {}
    for name, value in mapping.items():
        lower_name = name.lower()
        if lower_name in lowered:
            raise CanonicalizationError(name)
        lowered[lower_name] = value

    names = sorted(lowered)
    name_list = ";".join(names)
    canonical = "&".join(f"{uri_encode(name)}={uri_encode(lowered[name])}" for name in names)
    return name_list, canonical


def format_params(params: Mapping[str, str]) -> tuple[str, str]:
    """Canonicalize query parameters into ``(url_param_list, http_parameters)``."""
    return canonicalize(params)


def format_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Canonicalize headers into ``(header_list, http_headers)``."""
    return canonicalize(headers)


def hmac_sha1(key: str, message: str) -> str:
    """Return the hex HMAC-SHA1 of ``message`` under ``key`` (both UTF-8)."""
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha1).hexdigest()


def sha1_digest(message: str) -> str:
    """Return the hex SHA1 digest of ``message`` (UTF-8)."""
    return hashlib.sha1(message.encode("utf-8")).hexdigest()


def build_key_time(expire: int, now: float | None = None) -> str:
    """Build the ``"{start};{end}"`` signing window.

    Args:
        expire: Validity in seconds; must be positive.
        now: Unix time to start the window at. Defaults to the current time.

    Returns:
        The key_time string.
    """
    if expire <= 0:
        raise ValueError(f"expire must be positive, got {expire}")
    start = int(time.time() if now is None else now)
    return f"{start};{start + expire}"


def build_http_string(
    method: str, path: str, params: Mapping[str, str], headers: Mapping[str, str]
) -> str:
    """Build the canonical HTTP string that gets hashed into the signature."""
    _, http_parameters = format_params(params)
    _, http_headers = format_headers(headers)
    return f"{method.lower()}\n{path}\n{http_parameters}\n{http_headers}\n"


def generate_authorization(
    secret_id: str,
    secret_key: str,
    method: str,
    path: str,
    params: Mapping[str, str],
    headers: Mapping[str, str],
    expire: int = DEFAULT_EXPIRE,
    now: float | None = None,
) -> str:
    """Generate the value of the ``Authorization`` header for one request.

    Args:
        secret_id: COS SecretId.
        secret_key: COS SecretKey.
        method: HTTP method, any case.
        path: Request path; must start with ``/``.
        params: Query parameters that will be sent with the request.
        headers: Headers that will be sent with the request.
        expire: Validity window in seconds.
        now: Window start as Unix time; defaults to the current time.

    Returns:
        The authorization token string.

    Raises:
        ValueError: If ``path`` does not start with ``/`` or ``expire`` is
            not positive.
        CanonicalizationError: If header or param names collide once
            lower-cased.
    """
    if not path.startswith("/"):
        raise ValueError(f"path must start with '/', got {path!r}")

    key_time = build_key_time(expire, now)
    url_param_list, _ = format_params(params)
    header_list, _ = format_headers(headers)

    sign_key = hmac_sha1(secret_key, key_time)
    http_string = build_http_string(method, path, params, headers)
    string_to_sign = f"{ALGORITHM}\n{key_time}\n{sha1_digest(http_string)}\n"
    signature = hmac_sha1(sign_key, string_to_sign)
    logger.debug(
        "Signed %s %s: header-list=%s param-list=%s key-time=%s",
        method.upper(),
        path,
        header_list,
        url_param_list,
        key_time,
    )

    return (
        f"q-sign-algorithm={ALGORITHM}"
        f"&q-ak={secret_id}"
        f"&q-sign-time={key_time}"
        f"&q-key-time={key_time}"
        f"&q-header-list={header_list}"
        f"&q-url-param-list={url_param_list}"
        f"&q-signature={signature}"
    )


class CosSigner:
    """Signs COS requests with one fixed pair of credentials.

    The signer holds no mutable state and can be shared between concurrent
    requests.

    Attributes:
        secret_id: COS SecretId, emitted as ``q-ak``.
        expire: Default validity window in seconds.
    """

    def __init__(self, secret_id: str, secret_key: str, expire: int = DEFAULT_EXPIRE) -> None:
        self.secret_id = secret_id
        self._secret_key = secret_key
        self.expire = expire

    def __repr__(self) -> str:
        return f"CosSigner(secret_id={self.secret_id!r}, expire={self.expire})"

    def sign(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        expire: int | None = None,
        now: float | None = None,
    ) -> str:
        """Return the Authorization value for a request.

        See :func:`generate_authorization` for the arguments.
        """
        return generate_authorization(
            self.secret_id,
            self._secret_key,
            method,
            path,
            params or {},
            headers or {},
            expire=self.expire if expire is None else expire,
            now=now,
        )
