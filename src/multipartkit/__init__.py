"""multipartkit - presigned-URL multipart uploads for S3-compatible object stores."""

from multipartkit.errors import (
    IncompleteManifestError,
    MultipartError,
    PartUploadError,
    SessionStateError,
    SigningError,
    StoreError,
    SweepIncomplete,
    VerificationFailure,
)
from multipartkit.models import (
    ExpectedObject,
    PartTransferResult,
    SignedURL,
    UploadResult,
    UploadTarget,
    VerificationReport,
)
from multipartkit.reconciler import SessionReconciler
from multipartkit.session import MultipartSession, SessionState
from multipartkit.signer import SignedURLIssuer
from multipartkit.uploader import PartUploader
from multipartkit.verifier import UploadVerifier
from multipartkit.workflow import split_payload, upload_payload

__version__ = "0.1.0"

__all__ = [
    "ExpectedObject",
    "IncompleteManifestError",
    "MultipartError",
    "MultipartSession",
    "PartTransferResult",
    "PartUploadError",
    "PartUploader",
    "SessionReconciler",
    "SessionState",
    "SessionStateError",
    "SignedURL",
    "SignedURLIssuer",
    "SigningError",
    "StoreError",
    "SweepIncomplete",
    "UploadResult",
    "UploadTarget",
    "UploadVerifier",
    "VerificationFailure",
    "VerificationReport",
    "split_payload",
    "upload_payload",
]
