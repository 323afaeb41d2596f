"""Issues time-bounded signed URLs for individual parts of a session."""

import logging
import urllib.parse
from datetime import timedelta

from multipartkit.errors import SigningError
from multipartkit.models import SignedPartRequest, SignedURL
from multipartkit.session import MultipartSession

logger = logging.getLogger(__name__)


class SignedURLIssuer:
    """Signs part upload URLs for open sessions.

    Preconditions are checked locally, before the store is asked to sign,
    so a terminal session or a bad part number never costs a store call.
    """

    async def issue(
        self, session: MultipartSession, part_number: int, expiry: timedelta
    ) -> SignedURL:
        """Sign a URL for one PUT of one part.

        Args:
            session: An open (Created or PartsPending) session.
            part_number: 1-based part number, at most session.part_count.
            expiry: How long the URL stays valid, from now.

        Returns:
            The signed URL.

        Raises:
            SigningError: If the session is terminal or completing, the part
                number is out of range, or expiry is not positive.
        """
        request = SignedPartRequest(
            upload_id=session.upload_id,
            key=session.target.key,
            part_number=part_number,
            expiry=expiry,
        )
        self._check(session, request)

        signed = await session.store.presign_upload_part(
            session.target.bucket,
            request.key,
            request.upload_id,
            request.part_number,
            int(request.expiry.total_seconds()),
        )
        session.mark_signed()
        logger.debug(
            "Signed part %d of upload %s: %s (expires %s)",
            part_number,
            session.upload_id,
            urllib.parse.urlsplit(signed.url).path,
            signed.expires_at.isoformat(),
            extra={"upload_id": session.upload_id, "part_number": part_number},
        )
        return signed

    def _check(self, session: MultipartSession, request: SignedPartRequest) -> None:
        if not session.accepts_parts:
            raise SigningError(
                f"Cannot sign part {request.part_number}: upload {request.upload_id} "
                f"is {session.state.value}"
            )
        if not 1 <= request.part_number <= session.part_count:
            raise SigningError(
                f"Part number {request.part_number} is outside 1..{session.part_count}"
            )
        if request.expiry.total_seconds() < 1:
            raise SigningError(f"Expiry must be at least one second, got {request.expiry}")
