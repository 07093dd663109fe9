"""
Signing request store.

Holds one SigningRequest row per request and one SignerSlot row per
required signer, and exposes the conditionally-atomic mutations the
coordinator and finalizer build on.

Every mutation of a shared row is a compare-and-swap: an
``UPDATE ... WHERE pk = ? AND status = ? AND version = ?`` issued through
``QuerySet.update()``. The returned row count is the outcome; zero rows means
another writer got there first and the caller must re-read.
"""

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Q

from ..exceptions import NotFound
from ..models import SigningRequest, SignerSlot


class SigningRequestStore:
    """Persistence and conditional updates for requests and signer slots."""

    # ----------------------------
    # Creation
    # ----------------------------
    @staticmethod
    def create_request_with_slots(
        initiator_id,
        document_hash,
        signer_ids,
        signing_type=SigningRequest.SIGNING_PARALLEL,
        description='',
        document=None,
        document_name='',
    ):
        """
        Create a request and one pending slot per signer in one transaction.

        Args:
            initiator_id: str
            document_hash: str, SHA256 hex
            signer_ids: list of str, ordered, already validated
            signing_type: 'parallel' or 'sequential'
            description: str
            document: optional django File with the original bytes
            document_name: str

        Returns:
            SigningRequest
        """
        with transaction.atomic():
            signing_request = SigningRequest(
                initiator_id=initiator_id,
                document_hash=document_hash,
                required_signer_ids=list(signer_ids),
                signing_type=signing_type,
                description=description,
                document_name=document_name,
            )
            if document is not None:
                signing_request.document.save(document_name or 'document', document, save=False)
            signing_request.save()

            SignerSlot.objects.bulk_create([
                SignerSlot(request=signing_request, signer_id=signer_id, order=index)
                for index, signer_id in enumerate(signer_ids)
            ])

        return signing_request

    # ----------------------------
    # Reads
    # ----------------------------
    @staticmethod
    def get_request(request_id):
        try:
            return SigningRequest.objects.get(pk=request_id)
        except (SigningRequest.DoesNotExist, ValidationError, ValueError, TypeError):
            raise NotFound(f"Signing request {request_id} not found")

    @staticmethod
    def get_slots(request_id):
        """All slots of a request, ordered by signing order."""
        return list(SignerSlot.objects.filter(request_id=request_id).order_by('order'))

    @staticmethod
    def get_slot(request_id, signer_id):
        try:
            return SignerSlot.objects.get(request_id=request_id, signer_id=signer_id)
        except (SignerSlot.DoesNotExist, ValidationError):
            raise NotFound(f"{signer_id} is not a required signer of request {request_id}")

    @staticmethod
    def refresh_slot(slot):
        return SignerSlot.objects.get(pk=slot.pk)

    @staticmethod
    def list_requests(participant_id=None, status=None):
        """
        Requests visible to a participant (initiator or required signer).
        """
        queryset = SigningRequest.objects.all()
        if participant_id:
            queryset = queryset.filter(
                Q(initiator_id=participant_id) | Q(slots__signer_id=participant_id)
            ).distinct()
        if status:
            queryset = queryset.filter(status=status)
        return queryset.order_by('-created_at')

    @staticmethod
    def find_all_signed_pending():
        """Pending requests whose every slot is signed (crash before completion)."""
        return SigningRequest.objects.filter(
            status=SigningRequest.STATUS_PENDING
        ).exclude(
            slots__status__in=[SignerSlot.STATUS_PENDING, SignerSlot.STATUS_REJECTED]
        )

    @staticmethod
    def find_unfinalized(completed_before):
        """Completed requests with no final artifact, completed before a cutoff."""
        return SigningRequest.objects.filter(
            status=SigningRequest.STATUS_COMPLETED,
            final_artifact_ref__isnull=True,
            completed_at__lt=completed_before,
        )

    # ----------------------------
    # Conditional updates
    # ----------------------------
    @staticmethod
    def cas_slot(slot, expected_status, **changes):
        """
        Update a slot only if its status and version are unchanged since read
        and its request is still pending.

        Returns:
            bool: True if this call performed the update
        """
        updated = SignerSlot.objects.filter(
            pk=slot.pk,
            status=expected_status,
            version=slot.version,
            request__status=SigningRequest.STATUS_PENDING,
        ).update(version=F('version') + 1, **changes)
        return updated == 1

    @staticmethod
    def cas_request(signing_request, expected_status, **changes):
        """
        Update a request only if its status and version are unchanged since read.

        Returns:
            bool: True if this call performed the update
        """
        updated = SigningRequest.objects.filter(
            pk=signing_request.pk,
            status=expected_status,
            version=signing_request.version,
        ).update(version=F('version') + 1, **changes)
        return updated == 1

    @staticmethod
    def set_final_artifact(request_id, artifact_ref, finalized_at):
        """
        Attach the final artifact, guarded so it is written at most once.

        ``completed_at`` is filled in when a repaired request never had it.

        Returns:
            bool: True if this call attached the artifact
        """
        updated = SigningRequest.objects.filter(
            pk=request_id,
            status=SigningRequest.STATUS_COMPLETED,
            final_artifact_ref__isnull=True,
        ).update(
            final_artifact_ref=artifact_ref,
            finalized_at=finalized_at,
            finalization_error='',
            version=F('version') + 1,
        )
        if updated:
            SigningRequest.objects.filter(
                pk=request_id, completed_at__isnull=True
            ).update(completed_at=finalized_at)
        return updated == 1

    @staticmethod
    def record_finalization_failure(request_id, error_message):
        """Keep the last finalization error while no artifact is attached."""
        SigningRequest.objects.filter(
            pk=request_id,
            final_artifact_ref__isnull=True,
        ).update(finalization_error=error_message[:2000])

    @staticmethod
    def record_finalization_attempt(request_id):
        SigningRequest.objects.filter(pk=request_id).update(
            finalization_attempts=F('finalization_attempts') + 1
        )


# Singleton instance
_store = None


def get_signing_request_store() -> SigningRequestStore:
    """Get singleton instance of the signing request store."""
    global _store
    if _store is None:
        _store = SigningRequestStore()
    return _store
