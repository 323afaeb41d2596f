"""Multipart upload session state machine.

One MultipartSession tracks one logical object upload:

    Created --(signed URL issued / part added)--> PartsPending
    Created | PartsPending --complete()--> Completed
    Created | PartsPending --abort() or failed completion--> Aborted

Completed and Aborted are terminal. The manifest (part number -> ETag) is
guarded by a lock so parallel uploaders can report parts concurrently, and
a part reported after abort() is discarded rather than recorded.
"""

import enum
import logging
import threading

from multipartkit import metrics
from multipartkit.errors import (
    IncompleteManifestError,
    InvalidPartNumber,
    NoSuchUpload,
    SessionStateError,
)
from multipartkit.models import CompletedPart, UploadTarget
from multipartkit.store.base import ObjectStore

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    CREATED = "Created"
    PARTS_PENDING = "PartsPending"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


_OPEN_STATES = (SessionState.CREATED, SessionState.PARTS_PENDING)


class MultipartSession:
    """State machine for one multipart upload.

    Build instances with :meth:`open`; the store assigns ``upload_id``
    exactly once and every later call is keyed by it.

    Attributes:
        store: The object store collaborator.
        target: What is being uploaded.
        part_count: Number of parts, numbered 1..part_count.
        upload_id: Store-assigned upload identifier.
        etag: Composite ETag of the final object, once completed.
    """

    def __init__(
        self,
        store: ObjectStore,
        target: UploadTarget,
        part_count: int,
        upload_id: str,
    ) -> None:
        if part_count < 1:
            raise ValueError("part_count must be a positive integer")
        self.store = store
        self.target = target
        self.part_count = part_count
        self.upload_id = upload_id
        self.etag: str | None = None
        self._state = SessionState.CREATED
        self._manifest: dict[int, str] = {}
        self._completing = False
        self._lock = threading.Lock()

    @classmethod
    async def open(
        cls, store: ObjectStore, target: UploadTarget, part_count: int
    ) -> "MultipartSession":
        """Create the multipart upload in the store and return its session.

        Raises:
            ValueError: If part_count is not positive.
            StoreError: If the store refuses the upload.
        """
        if part_count < 1:
            raise ValueError("part_count must be a positive integer")
        upload_id = await store.create_multipart_upload(
            target.bucket, target.key, target.content_type, target.tags
        )
        logger.info(
            "Opened multipart upload %s for %s/%s (%d parts)",
            upload_id,
            target.bucket,
            target.key,
            part_count,
            extra={"bucket": target.bucket, "key": target.key, "upload_id": upload_id},
        )
        return cls(store, target, part_count, upload_id)

    # -- Introspection ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state not in _OPEN_STATES

    @property
    def accepts_parts(self) -> bool:
        """True while signing and part reports are still allowed."""
        with self._lock:
            return self._state in _OPEN_STATES and not self._completing

    @property
    def manifest(self) -> dict[int, str]:
        """A snapshot copy of the part number -> ETag map."""
        with self._lock:
            return dict(self._manifest)

    def missing_parts(self) -> list[int]:
        with self._lock:
            return self._missing_locked()

    def _missing_locked(self) -> list[int]:
        return [pn for pn in range(1, self.part_count + 1) if pn not in self._manifest]

    def check_part_number(self, part_number: int) -> None:
        if not 1 <= part_number <= self.part_count:
            raise InvalidPartNumber(
                f"Part number {part_number} is outside 1..{self.part_count}"
            )

    # -- Transitions -----------------------------------------------------------

    def mark_signed(self) -> None:
        """Record that a signed URL was issued (Created -> PartsPending)."""
        with self._lock:
            if self._state is SessionState.CREATED and not self._completing:
                self._state = SessionState.PARTS_PENDING

    def add_part(self, part_number: int, etag: str) -> bool:
        """Record the ETag of an uploaded part.

        Re-adding a part number overwrites the previous ETag (a retried
        upload of the same part).

        Returns:
            True if recorded, False if discarded because the session was
            aborted while the part was in flight.

        Raises:
            InvalidPartNumber: If part_number is outside 1..part_count.
            SessionStateError: If the session is completed or completing.
        """
        self.check_part_number(part_number)
        with self._lock:
            if self._state is SessionState.ABORTED:
                logger.warning(
                    "Discarding part %d of aborted upload %s",
                    part_number,
                    self.upload_id,
                    extra={"upload_id": self.upload_id, "part_number": part_number},
                )
                return False
            if self._state is SessionState.COMPLETED or self._completing:
                raise SessionStateError(
                    f"Cannot add part {part_number}: upload {self.upload_id} is {self._describe_locked()}"
                )
            self._manifest[part_number] = etag
            self._state = SessionState.PARTS_PENDING
        return True

    async def complete(self) -> str:
        """Submit the ordered manifest to the store.

        Completion is attempted once. If the store call fails, the upload
        is aborted (best effort) and the session ends Aborted.

        Returns:
            The composite ETag of the final object.

        Raises:
            SessionStateError: If the session is terminal or already completing.
            IncompleteManifestError: If any part number lacks an ETag; no
                store call is made.
            StoreError: If the store rejects completion.
        """
        with self._lock:
            if self._state not in _OPEN_STATES or self._completing:
                raise SessionStateError(
                    f"Cannot complete upload {self.upload_id}: it is {self._describe_locked()}"
                )
            missing = self._missing_locked()
            if missing:
                raise IncompleteManifestError(missing)
            parts = [CompletedPart(pn, self._manifest[pn]) for pn in sorted(self._manifest)]
            self._completing = True

        try:
            etag = await self.store.complete_multipart_upload(
                self.target.bucket, self.target.key, self.upload_id, parts
            )
        except Exception as exc:
            logger.error(
                "Completion of upload %s failed: %s",
                self.upload_id,
                exc,
                extra={"upload_id": self.upload_id},
            )
            with self._lock:
                self._state = SessionState.ABORTED
                self._completing = False
            metrics.record_session("aborted")
            if not isinstance(exc, NoSuchUpload):
                await self._abort_quietly()
            raise
        finally:
            with self._lock:
                self._completing = False

        with self._lock:
            self._state = SessionState.COMPLETED
            self.etag = etag
        metrics.record_session("completed")
        logger.info(
            "Completed upload %s for %s/%s with %d parts",
            self.upload_id,
            self.target.bucket,
            self.target.key,
            len(parts),
            extra={"bucket": self.target.bucket, "key": self.target.key, "upload_id": self.upload_id},
        )
        return etag

    async def abort(self) -> None:
        """Abort the upload in the store.

        Idempotent: aborting an already-Aborted session is a no-op and makes
        no store call. The session is Aborted before the store call, so parts
        arriving meanwhile are discarded; if the store call fails the error
        propagates and the upload is left for a reconciliation sweep.

        Raises:
            SessionStateError: If the session completed or is completing.
            StoreError: If the store rejects the abort for a reason other
                than the upload already being gone.
        """
        with self._lock:
            if self._state is SessionState.ABORTED:
                logger.debug("Upload %s already aborted", self.upload_id)
                return
            if self._state is SessionState.COMPLETED or self._completing:
                raise SessionStateError(
                    f"Cannot abort upload {self.upload_id}: it is {self._describe_locked()}"
                )
            self._state = SessionState.ABORTED

        metrics.record_session("aborted")
        try:
            await self.store.abort_multipart_upload(
                self.target.bucket, self.target.key, self.upload_id
            )
        except NoSuchUpload:
            logger.info("Upload %s was already gone from the store", self.upload_id)
            return
        logger.info(
            "Aborted upload %s for %s/%s",
            self.upload_id,
            self.target.bucket,
            self.target.key,
            extra={"bucket": self.target.bucket, "key": self.target.key, "upload_id": self.upload_id},
        )

    async def _abort_quietly(self) -> None:
        try:
            await self.store.abort_multipart_upload(
                self.target.bucket, self.target.key, self.upload_id
            )
        except Exception:
            logger.warning(
                "Failed to abort multipart upload %s after failed completion",
                self.upload_id,
                exc_info=True,
            )

    def _describe_locked(self) -> str:
        if self._completing:
            return "completing"
        return self._state.value

    # -- Context manager -------------------------------------------------------

    async def __aenter__(self) -> "MultipartSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Abort a still-open session when the block raised."""
        if exc_type is not None and not self.is_terminal:
            await self._abort_on_error()

    async def _abort_on_error(self) -> None:
        try:
            await self.abort()
        except Exception:
            logger.warning(
                "Failed to abort multipart upload %s during error cleanup",
                self.upload_id,
                exc_info=True,
            )

    def __repr__(self) -> str:
        return (
            f"MultipartSession(upload_id={self.upload_id!r}, key={self.target.key!r}, "
            f"state={self._state.value}, parts={len(self._manifest)}/{self.part_count})"
        )
