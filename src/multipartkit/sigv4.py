"""AWS Signature Version 4 query-string signing for presigned part URLs.

Implements both halves of presigned-URL auth:

    - presign_url() builds a URL whose X-Amz-* query parameters authorize
      exactly one method on one path+query for a bounded time.
    - PresignedURLVerifier checks such a URL on the receiving side
      (signature, expiry, credential scope).

The S3 store delegates signing to botocore; this module backs the
in-memory store so that tests exercise real signatures and real expiry.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sigv4-query-string-auth.html
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

from multipartkit.errors import (
    AccessDenied,
    AuthorizationQueryParametersError,
    ExpiredPresignedUrl,
    RequestTimeTooSkewed,
    SignatureDoesNotMatch,
)

logger = logging.getLogger(__name__)

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
MAX_PRESIGNED_EXPIRES = 604800  # 7 days in seconds
CLOCK_SKEW_TOLERANCE = 900  # 15 minutes in seconds
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

_REQUIRED_PARAMS = (
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "X-Amz-Expires",
    "X-Amz-SignedHeaders",
    "X-Amz-Signature",
)


def presign_url(
    method: str,
    endpoint: str,
    path: str,
    query: Mapping[str, str],
    access_key: str,
    secret_key: str,
    region: str,
    expires_in: int,
    now: datetime,
) -> str:
    """Build a SigV4 presigned URL.

    Only the ``host`` header is signed and the payload is UNSIGNED-PAYLOAD,
    so any client can PUT arbitrary bytes with any content type.

    Args:
        method: HTTP method the URL authorizes.
        endpoint: Scheme and authority, e.g. ``http://127.0.0.1:4566``.
        path: Unencoded request path, e.g. ``/bucket/key``.
        query: Operation query parameters (partNumber, uploadId, ...).
        access_key: Access key ID embedded in the credential scope.
        secret_key: Secret used to derive the signing key.
        region: Region embedded in the credential scope.
        expires_in: Validity window in seconds.
        now: Issuance time (UTC).

    Returns:
        The complete presigned URL.

    Raises:
        ValueError: If expires_in is outside 1..MAX_PRESIGNED_EXPIRES.
    """
    if expires_in < 1 or expires_in > MAX_PRESIGNED_EXPIRES:
        raise ValueError(f"expires_in must be between 1 and {MAX_PRESIGNED_EXPIRES} seconds")

    parsed = urllib.parse.urlsplit(endpoint)
    host = parsed.netloc
    amz_date = now.astimezone(timezone.utc).strftime(AMZ_DATE_FORMAT)
    date_part = amz_date[:8]
    scope = f"{date_part}/{region}/{SERVICE_NAME}/{SCOPE_TERMINATOR}"

    params = dict(query)
    params.update(
        {
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{access_key}/{scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_in),
            "X-Amz-SignedHeaders": "host",
        }
    )
    canonical_query = _encode_query_pairs(sorted(params.items()))

    canonical_request = build_canonical_request(
        method=method,
        uri=path,
        canonical_query=canonical_query,
        headers={"host": host},
        signed_headers=["host"],
        payload_hash=UNSIGNED_PAYLOAD,
    )
    string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
    signing_key = derive_signing_key(secret_key, date_part, region, SERVICE_NAME)
    signature = compute_signature(signing_key, string_to_sign)

    base = endpoint.rstrip("/")
    return f"{base}{_uri_encode_path(path)}?{canonical_query}&X-Amz-Signature={signature}"


class PresignedURLVerifier:
    """Verifies SigV4 presigned requests on the receiving side.

    Attributes:
        lookup_secret: Returns the secret for an access key, or None.
        region: The region credentials must be scoped to.
    """

    def __init__(
        self,
        lookup_secret: Callable[[str], str | None],
        region: str = "us-east-1",
    ) -> None:
        self.lookup_secret = lookup_secret
        self.region = region
        # Signing key cache: (access_key, date, region) -> signing_key bytes
        self._signing_key_cache: dict[tuple[str, str, str], bytes] = {}

    def verify(
        self,
        method: str,
        path: str,
        query_string: str,
        headers: Mapping[str, str],
        now: datetime,
    ) -> str:
        """Verify a presigned request.

        Args:
            method: HTTP method of the incoming request.
            path: Decoded request path.
            query_string: Raw query string (without the leading '?').
            headers: Request headers.
            now: Current time used for the expiry check.

        Returns:
            The access key ID that signed the URL.

        Raises:
            AuthorizationQueryParametersError: On missing or invalid params.
            AccessDenied: On a malformed credential or unknown access key.
            ExpiredPresignedUrl: If the validity window has elapsed.
            RequestTimeTooSkewed: If X-Amz-Date lies in the future.
            SignatureDoesNotMatch: On signature mismatch.
        """
        params = dict(urllib.parse.parse_qsl(query_string, keep_blank_values=True))
        for param in _REQUIRED_PARAMS:
            if param not in params:
                raise AuthorizationQueryParametersError()

        algorithm = params["X-Amz-Algorithm"]
        if algorithm != ALGORITHM:
            raise AccessDenied(f"Unsupported algorithm: {algorithm}")

        credential_parts = params["X-Amz-Credential"].split("/")
        if len(credential_parts) != 5:
            raise AccessDenied("Invalid Credential format.")
        access_key, credential_date, credential_region, credential_service, terminator = (
            credential_parts
        )
        if terminator != SCOPE_TERMINATOR:
            raise AccessDenied(f"Invalid credential scope terminator: {terminator}")
        if credential_service != SERVICE_NAME:
            raise AccessDenied(f"Invalid credential service: {credential_service}")
        if credential_region != self.region:
            raise AccessDenied(f"Credential region {credential_region} does not match {self.region}.")

        amz_date = params["X-Amz-Date"]
        if amz_date[:8] != credential_date:
            raise AccessDenied(
                f"Date in Credential scope ({credential_date}) does not match "
                f"X-Amz-Date ({amz_date[:8]})."
            )

        try:
            expires_seconds = int(params["X-Amz-Expires"])
        except ValueError:
            raise AuthorizationQueryParametersError("Invalid X-Amz-Expires value.")
        if expires_seconds < 1 or expires_seconds > MAX_PRESIGNED_EXPIRES:
            raise AuthorizationQueryParametersError(
                f"X-Amz-Expires must be between 1 and {MAX_PRESIGNED_EXPIRES} seconds."
            )

        try:
            request_time = datetime.strptime(amz_date, AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            raise AccessDenied("Invalid X-Amz-Date format.")

        if request_time - now > timedelta(seconds=CLOCK_SKEW_TOLERANCE):
            raise RequestTimeTooSkewed()
        if now > request_time + timedelta(seconds=expires_seconds):
            raise ExpiredPresignedUrl()

        secret_key = self.lookup_secret(access_key)
        if secret_key is None:
            raise AccessDenied("The AWS access key Id you provided does not exist in our records.")

        canonical_request = build_canonical_request(
            method=method,
            uri=path,
            canonical_query=_canonical_query_without_signature(query_string),
            headers=headers,
            signed_headers=params["X-Amz-SignedHeaders"].split(";"),
            payload_hash=UNSIGNED_PAYLOAD,
        )
        scope = f"{credential_date}/{credential_region}/{SERVICE_NAME}/{SCOPE_TERMINATOR}"
        string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
        signing_key = self._signing_key(access_key, secret_key, credential_date, credential_region)
        expected_signature = compute_signature(signing_key, string_to_sign)

        # Constant-time comparison
        if not hmac.compare_digest(expected_signature, params["X-Amz-Signature"]):
            logger.debug("Presigned signature mismatch for %s %s", method, path)
            raise SignatureDoesNotMatch()

        return access_key

    def _signing_key(self, access_key: str, secret_key: str, date: str, region: str) -> bytes:
        cache_key = (access_key, date, region)
        cached = self._signing_key_cache.get(cache_key)
        if cached is not None:
            return cached

        signing_key = derive_signing_key(secret_key, date, region, SERVICE_NAME)
        if len(self._signing_key_cache) > 100:
            self._signing_key_cache.clear()
        self._signing_key_cache[cache_key] = signing_key
        return signing_key


# ---------------------------------------------------------------------------
# Canonical request helpers
# ---------------------------------------------------------------------------


def build_canonical_request(
    method: str,
    uri: str,
    canonical_query: str,
    headers: Mapping[str, str],
    signed_headers: list[str],
    payload_hash: str,
) -> str:
    """Build the canonical request string.

    Args:
        method: HTTP method (uppercase).
        uri: The unencoded request path.
        canonical_query: Query string already in canonical form.
        headers: Request headers (names may be mixed case).
        signed_headers: Names of the signed headers.
        payload_hash: SHA-256 hex digest or UNSIGNED-PAYLOAD.

    Returns:
        The canonical request string.
    """
    canonical_uri = _uri_encode_path(uri)

    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in lower_headers:
            lower_headers[lower_name] += "," + _trim_header_value(value)
        else:
            lower_headers[lower_name] = _trim_header_value(value)

    sorted_signed = sorted(h.lower() for h in signed_headers)
    canonical_headers = "".join(f"{name}:{lower_headers.get(name, '')}\n" for name in sorted_signed)

    return "\n".join(
        [
            method.upper(),
            canonical_uri,
            canonical_query,
            canonical_headers,
            ";".join(sorted_signed),
            payload_hash,
        ]
    )


def build_string_to_sign(timestamp: str, scope: str, canonical_request: str) -> str:
    canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_hash}"


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac.new(
        (KEY_PREFIX + secret_key).encode("utf-8"),
        date.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    k_region = hmac.new(k_date, region.encode("utf-8"), hashlib.sha256).digest()
    k_service = hmac.new(k_region, service.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(k_service, SCOPE_TERMINATOR.encode("utf-8"), hashlib.sha256).digest()


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def _canonical_query_without_signature(query_string: str) -> str:
    """Canonicalize a raw query string, dropping X-Amz-Signature."""
    if not query_string:
        return ""

    params: list[tuple[str, str]] = []
    for pair in query_string.split("&"):
        if not pair:
            continue
        if "=" in pair:
            name, value = pair.split("=", 1)
        else:
            name, value = pair, ""
        # URL-decode first, then re-encode canonically
        decoded_name = urllib.parse.unquote_plus(name)
        if decoded_name == "X-Amz-Signature":
            continue
        params.append((decoded_name, urllib.parse.unquote_plus(value)))

    params.sort()
    return _encode_query_pairs(params)


def _encode_query_pairs(pairs: list[tuple[str, str]]) -> str:
    return "&".join(f"{_uri_encode(name)}={_uri_encode(value)}" for name, value in pairs)


def _uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def _uri_encode_path(path: str) -> str:
    """URI-encode a path segment by segment, preserving forward slashes."""
    if not path:
        return "/"
    result = "/".join(_uri_encode(seg, encode_slash=False) for seg in path.split("/"))
    if not result.startswith("/"):
        result = "/" + result
    return result


def _trim_header_value(value: str) -> str:
    """Strip a header value and collapse sequential spaces."""
    return re.sub(r" +", " ", value.strip())
