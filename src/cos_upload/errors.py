"""COS client error definitions for cos-upload."""


class CosError(Exception):
    """Base class for every error raised by cos-upload.

    Attributes:
        code: A short machine-readable error code (e.g. "ConfigurationError").
        message: Human-readable error description.
    """

    code = "CosError"

    def __init__(self, message: str, code: str | None = None) -> None:
        """Initialize the error.

        Args:
            message: Error description.
            code: Optional override for the class-level error code.
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# -- Configuration ------------------------------------------------------------


class ConfigurationError(CosError):
    """Required configuration is missing or invalid."""

    code = "ConfigurationError"


# -- Transport ----------------------------------------------------------------


class CosTransportError(CosError):
    """The HTTP exchange itself failed (connect, timeout, protocol)."""

    code = "TransportError"


# -- Protocol -----------------------------------------------------------------


class CosProtocolError(CosError):
    """The service answered, but not with what the protocol requires.

    Attributes:
        status_code: HTTP status of the response.
        body: Raw response body text, kept for diagnostics.
    """

    code = "ProtocolError"

    def __init__(self, message: str, status_code: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CosResponseError(CosProtocolError):
    """The service returned a non-2xx status.

    Attributes:
        cos_code: The ``<Code>`` element of the COS error body, if any.
        request_id: The ``<RequestId>`` element of the COS error body, if any.
    """

    code = "ResponseError"

    def __init__(
        self,
        operation: str,
        status_code: int,
        body: str = "",
        cos_code: str = "",
        request_id: str = "",
    ) -> None:
        detail = f" ({cos_code})" if cos_code else ""
        super().__init__(
            f"{operation} failed with HTTP {status_code}{detail}: {body}",
            status_code=status_code,
            body=body,
        )
        self.operation = operation
        self.cos_code = cos_code
        self.request_id = request_id


class MissingUploadIdError(CosProtocolError):
    """Initiate-multipart response did not carry an UploadId."""

    code = "MissingUploadId"

    def __init__(self, body: str = "", status_code: int = 200) -> None:
        super().__init__(
            "Initiate multipart upload response has no UploadId",
            status_code=status_code,
            body=body,
        )


class MissingETagError(CosProtocolError):
    """A successful part upload response did not carry an ETag header."""

    code = "MissingETag"

    def __init__(self, part_number: int, status_code: int = 200, body: str = "") -> None:
        super().__init__(
            f"Upload of part {part_number} succeeded without an ETag header",
            status_code=status_code,
            body=body,
        )
        self.part_number = part_number


# -- Local I/O ----------------------------------------------------------------


class LocalFileError(CosError):
    """The local file could not be opened, sized, or read."""

    code = "LocalFileError"


class ShortReadError(LocalFileError):
    """Fewer bytes were read from the file than the part requires."""

    code = "ShortRead"

    def __init__(self, path: str, offset: int, expected: int, actual: int) -> None:
        super().__init__(
            f"Short read from {path} at offset {offset}: "
            f"expected {expected} bytes, got {actual}"
        )
        self.path = path
        self.offset = offset
        self.expected = expected
        self.actual = actual


# -- Sequencing ---------------------------------------------------------------


class PartSequenceError(CosError):
    """Part records are duplicated or not contiguous."""

    code = "PartSequenceError"


class PartNumberOverflowError(PartSequenceError):
    """The file needs more parts than the service allows."""

    code = "PartNumberOverflow"

    def __init__(self, part_count: int, limit: int) -> None:
        super().__init__(
            f"File needs {part_count} parts, more than the limit of {limit}; "
            f"use a larger part size"
        )
        self.part_count = part_count
        self.limit = limit


# -- Input --------------------------------------------------------------------


class InvalidObjectKey(CosError):
    """The object key is empty or otherwise unusable."""

    code = "InvalidObjectKey"

    def __init__(self, key: str = "") -> None:
        super().__init__(f"Invalid object key: {key!r}")
        self.key = key


class CanonicalizationError(CosError):
    """Two names collide once lower-cased, so the signature would be ambiguous."""

    code = "CanonicalizationError"

    def __init__(self, name: str) -> None:
        super().__init__(f"Duplicate name after lower-casing: {name!r}")
        self.name = name


class InvalidMetadata(CosError):
    """A metadata key or value cannot be sent as an HTTP header."""

    code = "InvalidMetadata"

    def __init__(self, key: str) -> None:
        super().__init__(f"Invalid metadata entry: {key!r}")
        self.key = key
