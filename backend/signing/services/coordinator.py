"""
Signing coordinator service layer.

Responsibilities:
- Create signing requests with their fixed set of signer slots
- Accept or refuse signatures from required signers
- Detect completion exactly once and hand the request to the finalizer
- Reject requests, report status, and repair stuck requests

State machine per request: ``pending -> completed`` or ``pending -> rejected``.
Both end states are terminal. Every transition goes through a conditional
update in the store; whoever wins the ``pending -> completed`` update is the
only caller that triggers finalization.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..exceptions import (
    AlreadySigned,
    Conflict,
    InvalidRequest,
    InvalidSignature,
    OutOfTurn,
    RequestClosed,
)
from ..models import SigningRequest, SignerSlot
from .crypto import build_signing_message, get_signature_verifier
from .finalizer import get_finalization_queue
from .hashing import HashingService
from .store import get_signing_request_store
from .webhook_service import WebhookService

logger = logging.getLogger(__name__)


def compute_progress(slots):
    """
    Progress of a request from its slots.

    Returns:
        dict: {completed, total, percentage}
    """
    total = len(slots)
    completed = len([s for s in slots if s.status == SignerSlot.STATUS_SIGNED])
    percentage = int(round(completed * 100 / total)) if total else 0
    return {'completed': completed, 'total': total, 'percentage': percentage}


class SigningCoordinator:
    """Service driving the signing request state machine."""

    def __init__(self, store=None, verifier=None, queue=None, max_retries=None):
        self.store = store or get_signing_request_store()
        self.verifier = verifier or get_signature_verifier()
        self.queue = queue or get_finalization_queue()
        self.max_retries = max_retries or settings.SIGNING_MAX_CAS_RETRIES

    # ----------------------------
    # initiate
    # ----------------------------
    @staticmethod
    def validate_initiate(initiator_id, document_hash, signer_ids, signing_type):
        """
        Validate initiate input.

        Raises:
            InvalidRequest if any constraint is violated
        """
        if not isinstance(initiator_id, str) or not initiator_id.strip():
            raise InvalidRequest('initiator_id is required', field='initiator_id')

        if not HashingService.is_valid_hash(document_hash):
            raise InvalidRequest(
                'document_hash must be a 64 character hex SHA256 digest',
                field='document_hash'
            )

        if not isinstance(signer_ids, (list, tuple)) or not signer_ids:
            raise InvalidRequest('signer_ids must be a non-empty list', field='signer_ids')

        for signer_id in signer_ids:
            if not isinstance(signer_id, str) or not signer_id.strip():
                raise InvalidRequest('Every signer id must be a non-empty string', field='signer_ids')

        seen = set()
        duplicates = []
        for signer_id in signer_ids:
            if signer_id in seen:
                duplicates.append(signer_id)
            seen.add(signer_id)
        if duplicates:
            raise InvalidRequest(
                'Duplicate signer ids are not allowed',
                field='signer_ids',
                duplicates=duplicates
            )

        allowed_types = {choice for choice, _ in SigningRequest.SIGNING_TYPE_CHOICES}
        if signing_type not in allowed_types:
            raise InvalidRequest(
                f"signing_type must be one of {sorted(allowed_types)}",
                field='signing_type'
            )

    def initiate(
        self,
        initiator_id,
        document_hash,
        signer_ids,
        signing_type=SigningRequest.SIGNING_PARALLEL,
        description='',
        document=None,
        document_name='',
    ):
        """
        Create a pending request with one pending slot per signer.

        Args:
            initiator_id: str, identity of the creator
            document_hash: str or None, SHA256 hex of the document; computed
                from ``document`` when omitted
            signer_ids: list of str, ordered and without duplicates
            signing_type: 'parallel' or 'sequential'
            description: str
            document: optional django File holding the original bytes
            document_name: str

        Returns:
            SigningRequest

        Raises:
            InvalidRequest
        """
        document_hash = HashingService.normalize_hash(document_hash)
        if document is not None:
            file_hash = HashingService.compute_file_sha256(document)
            if document_hash and document_hash != file_hash:
                raise InvalidRequest(
                    'document_hash does not match the uploaded document',
                    field='document_hash'
                )
            document_hash = file_hash
            document_name = document_name or getattr(document, 'name', '') or 'document'

        signer_ids = [s.strip() if isinstance(s, str) else s for s in (signer_ids or [])]
        self.validate_initiate(initiator_id, document_hash, signer_ids, signing_type)

        signing_request = self.store.create_request_with_slots(
            initiator_id=initiator_id.strip(),
            document_hash=document_hash,
            signer_ids=signer_ids,
            signing_type=signing_type,
            description=description or '',
            document=document,
            document_name=document_name,
        )

        logger.info(
            f"Signing request {signing_request.id} created by {initiator_id[:16]} "
            f"with {len(signer_ids)} signer(s) ({signing_type})"
        )

        WebhookService.trigger_event(
            event_type='signing_request.created',
            payload={
                'request_id': str(signing_request.id),
                'initiator_id': signing_request.initiator_id,
                'document_hash': signing_request.document_hash,
                'required_signer_ids': signing_request.required_signer_ids,
                'signing_type': signing_request.signing_type,
            }
        )
        return signing_request

    # ----------------------------
    # sign
    # ----------------------------
    def sign(self, request_id, signer_id, signature, ip_address=None, user_agent=''):
        """
        Accept a signature for one signer slot.

        Phase 1 validates everything without mutating. Phase 2 moves the slot
        to ``signed`` with a conditional update. Phase 3 re-reads all slots and,
        if every one is signed, races for the ``pending -> completed`` update.

        Returns:
            dict: {accepted, request_id, signer_id, status, completed,
                   completion_owner, progress}

        Raises:
            NotFound, RequestClosed, AlreadySigned, OutOfTurn,
            InvalidSignature, Conflict
        """
        # Phase 1: validate
        signing_request = self.store.get_request(request_id)
        if not signing_request.is_pending:
            raise RequestClosed(f"Signing request is {signing_request.status}")

        slot = self.store.get_slot(signing_request.pk, signer_id)
        if slot.status != SignerSlot.STATUS_PENDING:
            raise AlreadySigned(f"Slot for {signer_id} is already {slot.status}")

        if signing_request.signing_type == SigningRequest.SIGNING_SEQUENTIAL:
            self._check_turn(signing_request, slot)

        if not isinstance(signature, str) or not self.verifier.verify_slot_signature(
            signing_request.pk, signing_request.document_hash, signer_id, signature
        ):
            logger.warning(f"Invalid signature from {signer_id[:16]} on request {signing_request.pk}")
            raise InvalidSignature()

        # Phase 2: conditional slot update
        slot = self._mark_slot_signed(
            signing_request, slot, signature.strip().lower().removeprefix('0x'),
            ip_address, user_agent
        )
        logger.info(f"Signature accepted from {signer_id[:16]} on request {signing_request.pk}")

        WebhookService.trigger_event(
            event_type='signing_request.signed',
            payload={
                'request_id': str(signing_request.pk),
                'signer_id': signer_id,
                'order': slot.order,
                'signed_at': slot.signed_at.isoformat(),
            }
        )

        # Phase 3: completion detection
        try:
            completion_owner = self._try_complete(signing_request.pk)
        except Conflict:
            # The signature stands; the reconciler completes the request later
            logger.warning(f"Completion check for {signing_request.pk} exhausted retries")
            completion_owner = False

        signing_request = self.store.get_request(signing_request.pk)
        slots = self.store.get_slots(signing_request.pk)
        return {
            'accepted': True,
            'request_id': str(signing_request.pk),
            'signer_id': signer_id,
            'status': signing_request.status,
            'completed': signing_request.status == SigningRequest.STATUS_COMPLETED,
            'completion_owner': completion_owner,
            'progress': compute_progress(slots),
        }

    def _check_turn(self, signing_request, slot):
        earlier_pending = [
            s for s in self.store.get_slots(signing_request.pk)
            if s.order < slot.order and s.status != SignerSlot.STATUS_SIGNED
        ]
        if earlier_pending:
            raise OutOfTurn(
                f"Waiting for signer #{earlier_pending[0].order + 1} to sign first",
                current_signer=earlier_pending[0].signer_id
            )

    def _mark_slot_signed(self, signing_request, slot, signature, ip_address, user_agent):
        for _ in range(self.max_retries):
            signed_at = timezone.now()
            slot.signature = signature
            slot.signed_at = signed_at
            event_hash = HashingService.compute_slot_event_hash(slot, signing_request.document_hash)

            if self.store.cas_slot(
                slot,
                SignerSlot.STATUS_PENDING,
                status=SignerSlot.STATUS_SIGNED,
                signature=signature,
                signed_at=signed_at,
                ip_address=ip_address,
                user_agent=user_agent or '',
                metadata={
                    'document_hash': signing_request.document_hash,
                    'signer_id': slot.signer_id,
                    'signed_at': signed_at.isoformat(),
                },
                event_hash=event_hash,
            ):
                return self.store.refresh_slot(slot)

            slot = self.store.refresh_slot(slot)
            if slot.status != SignerSlot.STATUS_PENDING:
                raise AlreadySigned(f"Slot for {slot.signer_id} is already {slot.status}")
            current = self.store.get_request(signing_request.pk)
            if not current.is_pending:
                raise RequestClosed(f"Signing request is {current.status}")

        raise Conflict(f"Could not record signature for {slot.signer_id}")

    @staticmethod
    def _finalization_in_flight(signing_request):
        """A recent completion with no recorded failure still has its finalization queued."""
        if signing_request.finalization_error or signing_request.completed_at is None:
            return False
        grace = timedelta(seconds=settings.SIGNING_STUCK_GRACE_SECONDS)
        return timezone.now() - signing_request.completed_at < grace

    def _try_complete(self, request_id):
        """
        Race for the ``pending -> completed`` transition.

        Returns:
            bool: True only for the single caller whose conditional update
            succeeded; that caller has queued finalization.
        """
        for _ in range(self.max_retries):
            signing_request = self.store.get_request(request_id)
            if not signing_request.is_pending:
                return False

            slots = self.store.get_slots(request_id)
            all_signed = (
                len(slots) == len(signing_request.required_signer_ids)
                and all(s.status == SignerSlot.STATUS_SIGNED for s in slots)
            )
            if not all_signed:
                return False

            completed_at = timezone.now()
            if self.store.cas_request(
                signing_request,
                SigningRequest.STATUS_PENDING,
                status=SigningRequest.STATUS_COMPLETED,
                completed_at=completed_at,
            ):
                logger.info(f"Signing request {request_id} completed, queueing finalization")
                self._on_completed(signing_request, slots, completed_at)
                return True

        raise Conflict(f"Could not complete signing request {request_id}")

    def _on_completed(self, signing_request, slots, completed_at):
        self._enqueue_finalization(signing_request.pk)
        WebhookService.trigger_event(
            event_type='signing_request.completed',
            payload={
                'request_id': str(signing_request.pk),
                'document_hash': signing_request.document_hash,
                'completed_at': completed_at.isoformat(),
                'signatures_count': len(slots),
                'all_signatures': [
                    {
                        'signer_id': s.signer_id,
                        'order': s.order,
                        'signed_at': s.signed_at.isoformat() if s.signed_at else None,
                    }
                    for s in slots
                ],
            }
        )

    def _enqueue_finalization(self, request_id):
        # Workers must only see committed state
        transaction.on_commit(lambda: self.queue.enqueue(request_id))

    # ----------------------------
    # reject
    # ----------------------------
    def reject(self, request_id, signer_id, signature, reason=''):
        """
        Reject a request on behalf of one required signer.

        The signer authenticates with a signature over the rejection message.
        A single rejection cancels the whole request.

        Returns:
            SigningRequest (refreshed)

        Raises:
            NotFound, RequestClosed, AlreadySigned, InvalidSignature, Conflict
        """
        signing_request = self.store.get_request(request_id)
        if not signing_request.is_pending:
            raise RequestClosed(f"Signing request is {signing_request.status}")

        slot = self.store.get_slot(signing_request.pk, signer_id)
        if slot.status != SignerSlot.STATUS_PENDING:
            raise AlreadySigned(f"Slot for {signer_id} is already {slot.status}")

        if not isinstance(signature, str) or not self.verifier.verify_rejection_signature(
            signing_request.pk, signing_request.document_hash, signer_id, signature
        ):
            raise InvalidSignature('Signature does not match the rejection message')

        for _ in range(self.max_retries):
            if self.store.cas_slot(
                slot,
                SignerSlot.STATUS_PENDING,
                status=SignerSlot.STATUS_REJECTED,
                rejected_at=timezone.now(),
                metadata={'rejection_reason': reason or ''},
            ):
                break
            slot = self.store.refresh_slot(slot)
            if slot.status != SignerSlot.STATUS_PENDING:
                raise AlreadySigned(f"Slot for {signer_id} is already {slot.status}")
            current = self.store.get_request(signing_request.pk)
            if not current.is_pending:
                raise RequestClosed(f"Signing request is {current.status}")
        else:
            raise Conflict(f"Could not record rejection for {signer_id}")

        self._try_reject(signing_request.pk, reason, signer_id)
        return self.store.get_request(signing_request.pk)

    def _try_reject(self, request_id, reason, signer_id):
        for _ in range(self.max_retries):
            signing_request = self.store.get_request(request_id)
            if not signing_request.is_pending:
                return False
            if self.store.cas_request(
                signing_request,
                SigningRequest.STATUS_PENDING,
                status=SigningRequest.STATUS_REJECTED,
                rejected_at=timezone.now(),
                rejection_reason=reason or '',
            ):
                logger.info(f"Signing request {request_id} rejected by {signer_id[:16]}")
                WebhookService.trigger_event(
                    event_type='signing_request.rejected',
                    payload={
                        'request_id': str(request_id),
                        'rejected_by': signer_id,
                        'reason': reason or '',
                    }
                )
                return True
        raise Conflict(f"Could not reject signing request {request_id}")

    # ----------------------------
    # status
    # ----------------------------
    def status(self, request_id):
        """
        Read-only progress report of a request.

        Returns:
            dict: status, progress, per-signer timeline, current/next signers,
            timestamps, finalization state
        """
        signing_request = self.store.get_request(request_id)
        slots = self.store.get_slots(signing_request.pk)
        current = next((s for s in slots if s.status == SignerSlot.STATUS_PENDING), None)
        sequential = signing_request.signing_type == SigningRequest.SIGNING_SEQUENTIAL
        if not signing_request.is_pending:
            current = None

        next_signers = []
        if sequential and current is not None:
            next_signers = [
                {'signer_id': s.signer_id, 'order': s.order}
                for s in slots
                if s.order > current.order and s.status == SignerSlot.STATUS_PENDING
            ][:3]

        return {
            'request_id': str(signing_request.pk),
            'status': signing_request.status,
            'signing_type': signing_request.signing_type,
            'progress': compute_progress(slots),
            'per_signer': [
                {
                    'signer_id': s.signer_id,
                    'order': s.order,
                    'status': s.status,
                    'signed_at': s.signed_at,
                    'is_current': current is not None and s.pk == current.pk,
                }
                for s in slots
            ],
            'current_signer': (
                {'signer_id': current.signer_id, 'order': current.order}
                if current is not None else None
            ),
            'next_signers': next_signers,
            'timestamps': {
                'created_at': signing_request.created_at,
                'completed_at': signing_request.completed_at,
                'rejected_at': signing_request.rejected_at,
                'finalized_at': signing_request.finalized_at,
            },
            'finalization': {
                'artifact_ref': signing_request.final_artifact_ref,
                'finalized': signing_request.is_finalized,
                'attempts': signing_request.finalization_attempts,
                'error': signing_request.finalization_error or None,
                'stuck': (
                    signing_request.status == SigningRequest.STATUS_COMPLETED
                    and not signing_request.is_finalized
                    and bool(signing_request.finalization_error)
                ),
            },
        }

    # ----------------------------
    # fix_status
    # ----------------------------
    def fix_status(self, request_id):
        """
        Repair a request from its slot states, ignoring the cached status.

        Safe to call any number of times; a completed request that already
        has its artifact is left untouched.

        Returns:
            dict: {request_id, status, previous_status, status_fixed,
                   finalization_queued, message, analysis}
        """
        signing_request = self.store.get_request(request_id)
        slots = self.store.get_slots(signing_request.pk)
        previous_status = signing_request.status

        signed = [s for s in slots if s.status == SignerSlot.STATUS_SIGNED]
        pending = [s for s in slots if s.status == SignerSlot.STATUS_PENDING]
        rejected = [s for s in slots if s.status == SignerSlot.STATUS_REJECTED]
        total = len(slots)
        all_signed = total > 0 and len(signed) == total

        status_fixed = False
        finalization_queued = False

        if signing_request.is_pending and all_signed:
            logger.info(f"Repairing {request_id}: all signers signed but status is pending")
            if self._try_complete(signing_request.pk):
                status_fixed = True
                finalization_queued = True
                message = 'Status fixed: all signers signed, request completed'
            else:
                message = 'Request was completed concurrently'
        elif signing_request.is_pending and rejected:
            logger.info(f"Repairing {request_id}: rejected slot on a pending request")
            status_fixed = self._try_reject(
                signing_request.pk,
                signing_request.rejection_reason or 'Rejected by signer',
                rejected[0].signer_id,
            )
            message = 'Status fixed: request rejected' if status_fixed else 'Request changed concurrently'
        elif signing_request.status == SigningRequest.STATUS_COMPLETED and not all_signed:
            message = 'Warning: Status is completed but not all signers have signed'
        elif (
            signing_request.status == SigningRequest.STATUS_COMPLETED
            and not signing_request.is_finalized
            and self._finalization_in_flight(signing_request)
        ):
            message = 'Finalization in progress, not re-queued'
        elif signing_request.status == SigningRequest.STATUS_COMPLETED and not signing_request.is_finalized:
            logger.info(f"Repairing {request_id}: completed without final artifact")
            self._enqueue_finalization(signing_request.pk)
            finalization_queued = True
            message = 'Final artifact missing, finalization re-queued'
        elif signing_request.status == SigningRequest.STATUS_COMPLETED:
            message = 'Status is already correct: completed'
        elif signing_request.status == SigningRequest.STATUS_REJECTED:
            message = 'Status is already correct: rejected'
        else:
            message = f'Status is correct: {len(pending)} signers still pending'

        current = self.store.get_request(signing_request.pk)
        return {
            'request_id': str(current.pk),
            'status': current.status,
            'previous_status': previous_status,
            'status_fixed': status_fixed,
            'finalization_queued': finalization_queued,
            'message': message,
            'analysis': {
                'total_signers': total,
                'signed_signers': len(signed),
                'pending_signers': len(pending),
                'rejected_signers': len(rejected),
                'all_signed': all_signed,
                'signers': [
                    {
                        'signer_id': s.signer_id,
                        'order': s.order,
                        'status': s.status,
                        'signed_at': s.signed_at,
                    }
                    for s in slots
                ],
            },
        }

    # ----------------------------
    # listing
    # ----------------------------
    def list_requests(self, participant_id=None, status=None):
        """Requests where participant_id is the initiator or a required signer."""
        return self.store.list_requests(participant_id=participant_id, status=status)

    def signing_message(self, request_id, signer_id):
        """The exact bytes a required signer must sign for this request."""
        signing_request = self.store.get_request(request_id)
        self.store.get_slot(signing_request.pk, signer_id)
        return build_signing_message(signing_request.pk, signing_request.document_hash, signer_id)


# Singleton instance
_signing_coordinator = None


def get_signing_coordinator() -> SigningCoordinator:
    """Get singleton instance of the signing coordinator."""
    global _signing_coordinator
    if _signing_coordinator is None:
        _signing_coordinator = SigningCoordinator()
    return _signing_coordinator
