"""Error taxonomy for multipartkit.

Two families live here:

    - Workflow errors raised by the upload core (signing, part transfer,
      manifest completion, session state, verification).
    - Store errors carrying S3 error codes, raised by object store
      collaborators and rendered as S3 XML by the in-memory store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from botocore.exceptions import ClientError

    from multipartkit.models import FieldMismatch


class MultipartError(Exception):
    """Base class for every multipartkit error.

    Attributes:
        code: Short machine-readable error code.
        message: Human-readable error description.
    """

    code = "MultipartError"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# -- Workflow errors ------------------------------------------------------------


class SigningError(MultipartError):
    """A signed URL was requested for a terminal session or a bad part number.

    Detected locally before any store call; not retryable without fixing
    the session state.
    """

    code = "SigningError"


class PartUploadError(MultipartError):
    """A single part PUT was rejected by the store or failed in transport.

    Retryable with a freshly signed URL; the caller owns the retry policy.

    Attributes:
        part_number: The part whose transfer failed.
        http_status: Response status, or None when no response was received.
    """

    code = "PartUploadError"

    def __init__(
        self,
        part_number: int,
        http_status: int | None,
        message: str = "",
        code: str | None = None,
    ) -> None:
        if not message:
            message = f"Upload of part {part_number} failed with status {http_status}"
        super().__init__(message, code=code)
        self.part_number = part_number
        self.http_status = http_status


class IncompleteManifestError(MultipartError):
    """complete() was called before every part number had an ETag."""

    code = "IncompleteManifest"

    def __init__(self, missing: list[int]) -> None:
        preview = ", ".join(str(pn) for pn in missing[:10])
        if len(missing) > 10:
            preview += ", ..."
        super().__init__(f"Manifest is missing {len(missing)} part(s): {preview}")
        self.missing = missing


class SessionStateError(MultipartError):
    """An operation was invoked on a session in a state that forbids it."""

    code = "InvalidSessionState"


class InvalidPartNumber(MultipartError, ValueError):
    """A part number fell outside 1..part_count."""

    code = "InvalidPartNumber"


class VerificationFailure(MultipartError):
    """Stored object metadata did not match the intended manifest.

    Attributes:
        mismatches: Every mismatched field, not just the first.
    """

    code = "VerificationFailure"

    def __init__(self, bucket: str, key: str, mismatches: list[FieldMismatch]) -> None:
        details = "; ".join(
            f"{m.field}: expected {m.expected!r}, observed {m.observed!r}" for m in mismatches
        )
        super().__init__(f"Verification of {bucket}/{key} failed: {details}")
        self.bucket = bucket
        self.key = key
        self.mismatches = mismatches

    @property
    def fields(self) -> list[str]:
        return [m.field for m in self.mismatches]


class SweepIncomplete(MultipartError):
    """A sweep finished but the store refused to abort some uploads.

    Attributes:
        aborted: How many uploads the sweep did abort.
        failures: (upload_id, error) for every upload left in place.
    """

    code = "SweepIncomplete"

    def __init__(
        self,
        bucket: str,
        key_prefix: str,
        aborted: int,
        failures: list[tuple[str, MultipartError]],
    ) -> None:
        details = "; ".join(f"{upload_id}: {exc.code}" for upload_id, exc in failures)
        super().__init__(
            f"Sweep of {bucket}/{key_prefix} left {len(failures)} upload(s) in place: {details}"
        )
        self.aborted = aborted
        self.failures = failures


# -- Store errors -----------------------------------------------------------------


class StoreError(MultipartError):
    """An S3-compatible error with code, message, and HTTP status.

    Attributes:
        code: The S3 error code string (e.g. "NoSuchUpload", "AccessDenied").
        message: Human-readable error description.
        http_status: The HTTP status code the store answered with.
        extra_fields: Additional key-value pairs for the XML error body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


class NoSuchBucket(StoreError):
    """The specified bucket does not exist."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="NoSuchBucket",
            message="The specified bucket does not exist.",
            http_status=404,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class NoSuchKey(StoreError):
    """The specified key does not exist."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="NoSuchKey",
            message="The specified key does not exist.",
            http_status=404,
            extra_fields={"Key": key} if key else {},
        )


class NoSuchUpload(StoreError):
    """The specified multipart upload does not exist."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code="NoSuchUpload",
            message="The specified multipart upload does not exist.",
            http_status=404,
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class InvalidArgument(StoreError):
    """An invalid argument was provided."""

    def __init__(self, message: str = "Invalid Argument") -> None:
        super().__init__(code="InvalidArgument", message=message, http_status=400)


class InvalidPart(StoreError):
    """One or more of the specified parts could not be found."""

    def __init__(
        self, message: str = "One or more of the specified parts could not be found."
    ) -> None:
        super().__init__(code="InvalidPart", message=message, http_status=400)


class InvalidPartOrder(StoreError):
    """The list of parts was not in ascending order."""

    def __init__(self, message: str = "The list of parts was not in ascending order.") -> None:
        super().__init__(code="InvalidPartOrder", message=message, http_status=400)


class EntityTooSmall(StoreError):
    """The proposed upload is smaller than the minimum allowed object size."""

    def __init__(
        self, message: str = "Your proposed upload is smaller than the minimum allowed object size."
    ) -> None:
        super().__init__(code="EntityTooSmall", message=message, http_status=400)


class AccessDenied(StoreError):
    """Access denied error."""

    def __init__(self, message: str = "Access Denied") -> None:
        super().__init__(code="AccessDenied", message=message, http_status=403)


class SignatureDoesNotMatch(StoreError):
    """The request signature does not match."""

    def __init__(
        self,
        message: str = "The request signature we calculated does not match the signature you provided.",
    ) -> None:
        super().__init__(code="SignatureDoesNotMatch", message=message, http_status=403)


class ExpiredPresignedUrl(StoreError):
    """The presigned URL has expired."""

    def __init__(self, message: str = "Request has expired.") -> None:
        super().__init__(code="AccessDenied", message=message, http_status=403)


class AuthorizationQueryParametersError(StoreError):
    """Error with authorization query parameters (presigned URLs)."""

    def __init__(
        self,
        message: str = "Query-string authentication requires the X-Amz-Algorithm, X-Amz-Credential, X-Amz-Signature, X-Amz-Date, X-Amz-SignedHeaders, and X-Amz-Expires parameters.",
    ) -> None:
        super().__init__(code="AuthorizationQueryParametersError", message=message, http_status=400)


class RequestTimeTooSkewed(StoreError):
    """The request time lies too far in the future."""

    def __init__(
        self,
        message: str = "The difference between the request time and the current time is too large.",
    ) -> None:
        super().__init__(code="RequestTimeTooSkewed", message=message, http_status=403)


_CODE_TO_ERROR: dict[str, type[StoreError]] = {
    "NoSuchBucket": NoSuchBucket,
    "NoSuchKey": NoSuchKey,
    "NoSuchUpload": NoSuchUpload,
    "InvalidPart": InvalidPart,
    "InvalidPartOrder": InvalidPartOrder,
    "EntityTooSmall": EntityTooSmall,
}


def store_error_from_client_error(exc: ClientError) -> StoreError:
    """Translate a botocore ClientError into the matching StoreError.

    Known codes map onto their subclass (keeping the store's message);
    anything else becomes a plain StoreError with the original code.
    """
    error = exc.response.get("Error", {})
    code = str(error.get("Code", "")) or "Unknown"
    message = error.get("Message") or str(exc)
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 500

    # HEAD responses carry no body, so botocore reports the bare status code
    if code == "404":
        code = "NoSuchKey"

    cls = _CODE_TO_ERROR.get(code)
    if cls is not None:
        err = cls()
        err.message = message
        err.args = (message,)
        return err
    return StoreError(code=code, message=message, http_status=int(status))
