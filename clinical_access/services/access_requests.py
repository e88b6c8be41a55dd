"""Access request (patient consent) workflow.

States: PENDING -> APPROVED | DENIED | EXPIRED, all terminal.

- Creation is idempotent per (professional, patient, document): a live
  PENDING request for the triple is returned instead of a new one.
- Patient decisions and expiry are compare-and-set transitions in the
  store; whichever lands first wins and the other gets a ConflictError.
- Every read path turns a PENDING request past its deadline into EXPIRED
  before returning it.
- An APPROVED request authorizes document retrieval for as long as it
  stays APPROVED; every retrieval is audited.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime

from clinical_access.core.config import settings
from clinical_access.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from clinical_access.core.logging import mask_ci
from clinical_access.db.base import utc_now
from clinical_access.models.access_request import (
    AccessRequest,
    AccessRequestStatus,
    UrgencyLevel,
    pending_key,
)
from clinical_access.models.audit_event import ActorType
from clinical_access.policies.models import AccessContext
from clinical_access.repositories.base import AccessRequestRepository, DuplicatePendingRequest
from clinical_access.services.audit import AuditTrail
from clinical_access.services.documents import (
    Document,
    DocumentNotFound,
    DocumentSource,
    DocumentSourceError,
)
from clinical_access.services.notifications import Notifier, deliver

logger = logging.getLogger(__name__)

# One lock per (professional, patient, document) triple within this process
_creation_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _creation_lock(key: str) -> asyncio.Lock:
    lock = _creation_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _creation_locks[key] = lock
    return lock


class AccessRequestService:
    """Consent workflow between professionals and patients."""

    def __init__(
        self,
        requests: AccessRequestRepository,
        audit: AuditTrail,
        notifier: Notifier,
        documents: DocumentSource | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.requests = requests
        self.audit = audit
        self.notifier = notifier
        self.documents = documents
        self.clock = clock

    # Expiry

    async def _expire(self, request_id: str, now: datetime) -> AccessRequest | None:
        """Expire one request; None if it was no longer PENDING and overdue."""
        expired = await self.requests.expire(request_id, now)
        if expired is None:
            return None

        await self.audit.record(
            actor_type=ActorType.SYSTEM,
            actor_id=None,
            action="access_request.expired",
            action_category="access_request",
            entity_type="access_request",
            entity_id=expired.id,
            patient_id=expired.patient_id,
            metadata={"expires_at": expired.expires_at.isoformat()},
        )
        return expired

    async def _refresh(self, request: AccessRequest, now: datetime) -> AccessRequest:
        """Apply the expiry rule to a request that was just read."""
        if request.is_pending and request.is_expired_at(now):
            expired = await self._expire(request.id, now)
            if expired is None:
                # Someone else moved it first; report the stored state
                return await self.requests.get(request.id) or request
            return expired
        return request

    async def expire_overdue(
        self,
        patient_id: str | None = None,
        limit: int | None = None,
    ) -> int:
        """Expire every PENDING request past its deadline.

        Args:
            patient_id: Only this patient's requests
            limit: Maximum requests to expire in this call

        Returns:
            Number of requests moved to EXPIRED by this call
        """
        now = self.clock()
        expired = 0
        for request_id in await self.requests.find_overdue_ids(now, patient_id, limit):
            if await self._expire(request_id, now) is not None:
                expired += 1
        if expired:
            logger.info("Expired %d overdue access requests", expired)
        return expired

    # Creation

    async def create_or_reuse(
        self,
        context: AccessContext,
        professional_name: str | None = None,
        clinic_name: str | None = None,
        urgency: str | None = None,
    ) -> tuple[AccessRequest, bool]:
        """Return the live PENDING request for the triple or create one.

        Returns:
            Tuple of (request, is_new)

        Raises:
            ValidationError: If the context is malformed
            ConflictError: If a concurrent writer holds the triple and its
                request cannot be read back
        """
        context.validate()
        key = pending_key(context.professional_id, context.patient_id, context.document_id)

        async with _creation_lock(key):
            now = self.clock()
            existing = await self.requests.find_pending(
                context.professional_id, context.patient_id, context.document_id
            )
            if existing is not None:
                existing = await self._refresh(existing, now)
                if existing.is_pending:
                    await self._record_reuse(existing)
                    return existing, False

            request = AccessRequest.open(
                professional_id=context.professional_id,
                patient_id=context.patient_id,
                now=now,
                expiration_hours=settings.access_request_expiration_hours,
                professional_name=professional_name,
                professional_specialties=sorted(context.specialties),
                clinic_id=context.clinic_id,
                clinic_name=clinic_name,
                document_id=context.document_id,
                document_type=context.document_type.value,
                request_reason=context.request_reason,
                urgency=UrgencyLevel.parse(urgency).value,
            )
            try:
                saved = await self.requests.add(request)
            except DuplicatePendingRequest:
                # Another process inserted first
                existing = await self.requests.find_pending(
                    context.professional_id, context.patient_id, context.document_id
                )
                if existing is None:
                    raise ConflictError("A concurrent access request is being created")
                await self._record_reuse(existing)
                return existing, False

        await self.audit.record(
            actor_type=ActorType.PROFESSIONAL,
            actor_id=context.professional_id,
            action="access_request.created",
            action_category="access_request",
            entity_type="access_request",
            entity_id=saved.id,
            patient_id=saved.patient_id,
            metadata={
                "document_id": saved.document_id,
                "document_type": saved.document_type,
                "urgency": saved.urgency,
                "expires_at": saved.expires_at.isoformat(),
            },
        )
        await deliver(
            self.notifier.new_access_request(saved),
            f"new access request {saved.id}",
        )
        logger.info(
            "Access request %s created by %s for patient %s",
            saved.id,
            saved.professional_id,
            mask_ci(saved.patient_id),
        )
        return saved, True

    async def _record_reuse(self, request: AccessRequest) -> None:
        await self.audit.record(
            actor_type=ActorType.PROFESSIONAL,
            actor_id=request.professional_id,
            action="access_request.reused",
            action_category="access_request",
            entity_type="access_request",
            entity_id=request.id,
            patient_id=request.patient_id,
        )

    # Patient decisions

    async def _load_owned(self, request_id: str, patient_id: str) -> AccessRequest:
        request = await self.requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Access request {request_id} not found")
        if request.patient_id != patient_id:
            logger.warning(
                "Patient %s attempted to act on access request %s of another patient",
                mask_ci(patient_id),
                request_id,
            )
            raise ForbiddenError("Access request belongs to another patient")
        return await self._refresh(request, self.clock())

    async def get_request(self, request_id: str, patient_id: str) -> AccessRequest:
        """Read one of the patient's requests."""
        return await self._load_owned(request_id, patient_id)

    async def _decide(
        self,
        request_id: str,
        patient_id: str,
        status: AccessRequestStatus,
        reason: str | None,
    ) -> AccessRequest:
        request = await self._load_owned(request_id, patient_id)
        if not request.is_pending:
            raise ConflictError(f"Access request is already {request.status}")

        now = self.clock()
        decided = await self.requests.resolve(request_id, status, now, reason)
        if decided is None:
            current = await self.requests.get(request_id)
            if current is not None:
                current = await self._refresh(current, now)
            state = current.status if current else "resolved"
            raise ConflictError(f"Access request is already {state}")

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action=f"access_request.{status.value.lower()}",
            action_category="access_request",
            entity_type="access_request",
            entity_id=request_id,
            patient_id=patient_id,
            metadata={"professional_id": decided.professional_id, "reason": reason},
        )
        await deliver(
            self.notifier.request_decided(decided),
            f"decision on access request {request_id}",
        )
        return decided

    async def approve(self, request_id: str, patient_id: str, reason: str | None = None) -> str:
        """Approve a PENDING request.

        Raises:
            NotFoundError: If the request does not exist
            ForbiddenError: If it belongs to another patient
            ConflictError: If it is no longer PENDING (including expired)
        """
        reason = reason.strip() if reason and reason.strip() else None
        await self._decide(request_id, patient_id, AccessRequestStatus.APPROVED, reason)
        return "Access request approved"

    async def deny(self, request_id: str, patient_id: str, reason: str | None) -> str:
        """Deny a PENDING request. A reason of minimum length is required."""
        reason = (reason or "").strip()
        if len(reason) < settings.deny_reason_min_length:
            raise ValidationError(
                f"A denial reason of at least {settings.deny_reason_min_length} characters is required"
            )
        await self._decide(request_id, patient_id, AccessRequestStatus.DENIED, reason)
        return "Access request denied"

    async def request_more_info(self, request_id: str, patient_id: str, question: str | None) -> str:
        """Send the patient's question to the professional; status is unchanged."""
        question = (question or "").strip()
        if len(question) < settings.info_question_min_length:
            raise ValidationError(
                f"A question of at least {settings.info_question_min_length} characters is required"
            )

        request = await self._load_owned(request_id, patient_id)
        if not request.is_pending:
            raise ConflictError(f"Access request is already {request.status}")

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action="access_request.info_requested",
            action_category="access_request",
            entity_type="access_request",
            entity_id=request_id,
            patient_id=patient_id,
            metadata={"professional_id": request.professional_id, "question": question},
        )
        await deliver(
            self.notifier.info_requested(request, question),
            f"info request on access request {request_id}",
        )
        return "Question sent to the professional"

    # Reads

    async def list_for_patient(
        self,
        patient_id: str,
        status: AccessRequestStatus | str | None = None,
        page: int = 0,
        size: int | None = None,
    ) -> tuple[list[AccessRequest], int]:
        """One page of the patient's requests, newest first.

        Overdue PENDING requests are expired before the page is read, so
        the page and its total never show them as PENDING.
        """
        if page < 0:
            raise ValidationError("page must not be negative")
        if size is None:
            size = settings.default_page_size
        if size < 1:
            raise ValidationError("size must be positive")
        size = min(size, settings.max_page_size)

        parsed_status = None
        if status:
            try:
                parsed_status = AccessRequestStatus(str(status).upper())
            except ValueError as e:
                raise ValidationError(f"Invalid status: {status}") from e

        await self.expire_overdue(patient_id=patient_id)
        return await self.requests.list_for_patient(
            patient_id, status=parsed_status, offset=page * size, limit=size
        )

    async def pending_count(self, patient_id: str) -> int:
        """Number of actionable requests waiting for the patient."""
        return await self.requests.count_pending(patient_id, self.clock())

    # Document handoff

    async def get_approved_document(self, request_id: str, professional_id: str) -> Document:
        """Fetch the document of an APPROVED request for its professional.

        Raises:
            NotFoundError: If the request or the document does not exist
            ForbiddenError: If the caller is not the requesting professional
            ConflictError: If the request is not APPROVED
            ValidationError: If the request is not tied to a document
            UpstreamError: If the document source fails
        """
        request = await self.requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Access request {request_id} not found")
        if request.professional_id != professional_id:
            raise ForbiddenError("Access request belongs to another professional")

        request = await self._refresh(request, self.clock())
        if request.status != AccessRequestStatus.APPROVED.value:
            raise ConflictError(f"Access request is {request.status}, not APPROVED")
        if not request.document_id:
            raise ValidationError("Access request is not tied to a specific document")
        if self.documents is None:
            raise UpstreamError("No document source configured")

        try:
            document = await self.documents.fetch(request.document_id)
        except DocumentNotFound as e:
            raise NotFoundError(f"Document {request.document_id} not found") from e
        except DocumentSourceError as e:
            logger.error("Document source failed for request %s: %s", request_id, e)
            raise UpstreamError("Unable to retrieve the document") from e

        await self.audit.record(
            actor_type=ActorType.PROFESSIONAL,
            actor_id=professional_id,
            action="access_request.document_retrieved",
            action_category="access_request",
            entity_type="document",
            entity_id=request.document_id,
            patient_id=request.patient_id,
            metadata={"access_request_id": request_id, "sha256": document.sha256},
        )
        return document
