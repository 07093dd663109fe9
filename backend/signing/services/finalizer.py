"""
Finalization of completed signing requests.

Finalization turns a completed request into its final signed artifact
exactly once. It is safe to run any number of times, concurrently or after a
crash:

- a request that already carries ``final_artifact_ref`` short-circuits;
- the artifact row is keyed by ``(request, signature_set_hash)``, so a second
  build of the same signature set resolves to the existing row;
- the ref is attached with an update guarded by ``final_artifact_ref IS NULL``.
"""

import logging

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import AlreadyFinalized, FinalizationFailed, NotCompleted
from ..models import FinalArtifact, SigningRequest, SignerSlot
from .artifact_builder import get_artifact_builder
from .crypto import get_signature_verifier
from .hashing import HashingService
from .store import get_signing_request_store
from .webhook_service import WebhookService

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Blob store for final artifacts, backed by Django's default storage."""

    @staticmethod
    def store(artifact, data) -> str:
        """
        Save artifact bytes under the artifact's upload path.

        Returns:
            str: storage name (the artifact ref)
        """
        artifact.file.save(f'{artifact.signature_set_hash}.pdf', ContentFile(data), save=False)
        return artifact.file.name

    @staticmethod
    def fetch(ref) -> bytes:
        with default_storage.open(ref, 'rb') as f:
            return f.read()

    @staticmethod
    def exists(ref) -> bool:
        return bool(ref) and default_storage.exists(ref)

    @staticmethod
    def discard(ref):
        if ref and default_storage.exists(ref):
            default_storage.delete(ref)


class CeleryFinalizationQueue:
    """Hands finalization to a Celery worker."""

    def enqueue(self, request_id):
        from ..tasks import finalize_signing_request

        logger.info(f"Enqueueing finalization of {request_id}")
        finalize_signing_request.delay(str(request_id))


# Singleton instance
_finalization_queue = None


def get_finalization_queue():
    """Get singleton instance of the finalization queue."""
    global _finalization_queue
    if _finalization_queue is None:
        _finalization_queue = CeleryFinalizationQueue()
    return _finalization_queue


class Finalizer:
    """Service producing the final signed artifact of a completed request."""

    def __init__(self, store=None, verifier=None, builder=None, artifact_store=None):
        self.store = store or get_signing_request_store()
        self.verifier = verifier or get_signature_verifier()
        self.builder = builder or get_artifact_builder()
        self.artifact_store = artifact_store or ArtifactStore()

    def finalize(self, request_id) -> str:
        """
        Produce and attach the final artifact of a completed request.

        Returns:
            str: the artifact ref

        Raises:
            NotFound: unknown request
            AlreadyFinalized: an artifact is already attached (carries its ref)
            NotCompleted: request is not completed
            FinalizationFailed: signatures do not re-verify or the build failed
        """
        signing_request = self.store.get_request(request_id)
        if signing_request.is_finalized:
            raise AlreadyFinalized(signing_request.final_artifact_ref)
        if signing_request.status != SigningRequest.STATUS_COMPLETED:
            raise NotCompleted(f"Signing request is {signing_request.status}")

        logger.info(f"Finalizing signing request {signing_request.pk}")
        slots = self.store.get_slots(signing_request.pk)
        self._check_signatures(signing_request, slots)

        signature_set_hash = HashingService.compute_signature_set_hash(
            signing_request.document_hash,
            [(slot.signer_id, slot.signature) for slot in slots],
        )

        artifact = FinalArtifact.objects.filter(
            request=signing_request, signature_set_hash=signature_set_hash
        ).first()
        if artifact is None:
            artifact = self._build_and_store(signing_request, slots, signature_set_hash)
        else:
            logger.info(f"Reusing artifact {artifact.ref} for {signing_request.pk}")

        if not self.store.set_final_artifact(signing_request.pk, artifact.ref, timezone.now()):
            current = self.store.get_request(signing_request.pk)
            if current.is_finalized:
                raise AlreadyFinalized(current.final_artifact_ref)
            raise self._fail(signing_request, 'Could not attach final artifact')

        logger.info(f"Signing request {signing_request.pk} finalized: {artifact.ref}")
        WebhookService.trigger_event(
            event_type='signing_request.finalized',
            payload={
                'request_id': str(signing_request.pk),
                'artifact_ref': artifact.ref,
                'artifact_sha256': artifact.sha256,
                'signature_set_hash': signature_set_hash,
            }
        )
        return artifact.ref

    def generate_final_artifact(self, request_id):
        """
        Idempotent manual finalization.

        Returns:
            dict: {artifact_ref, already_finalized}
        """
        try:
            artifact_ref = self.finalize(request_id)
        except AlreadyFinalized as e:
            logger.info(f"Signing request {request_id} already finalized")
            return {'artifact_ref': e.artifact_ref, 'already_finalized': True}
        return {'artifact_ref': artifact_ref, 'already_finalized': False}

    def _check_signatures(self, signing_request, slots):
        if len(slots) != len(signing_request.required_signer_ids):
            raise self._fail(signing_request, 'Signer slots do not match required signers')

        for slot in slots:
            if slot.status != SignerSlot.STATUS_SIGNED:
                raise self._fail(signing_request, f'Slot {slot.order} is {slot.status}')
            if not self.verifier.verify_slot_signature(
                signing_request.pk, signing_request.document_hash, slot.signer_id, slot.signature
            ):
                raise self._fail(
                    signing_request, f'Signature of {slot.signer_id[:16]} does not verify'
                )

    def _build_and_store(self, signing_request, slots, signature_set_hash):
        self.store.record_finalization_attempt(signing_request.pk)

        try:
            data = self.builder.build(signing_request, slots, signature_set_hash)
        except Exception as e:
            logger.exception(f"Artifact build failed for {signing_request.pk}")
            raise self._fail(signing_request, f'{type(e).__name__}: {e}') from e

        artifact = FinalArtifact(
            request=signing_request,
            signature_set_hash=signature_set_hash,
            sha256=HashingService.compute_bytes_sha256(data),
            size=len(data),
        )
        try:
            ref = self.artifact_store.store(artifact, data)
        except Exception as e:
            logger.exception(f"Storing artifact failed for {signing_request.pk}")
            raise self._fail(signing_request, f'{type(e).__name__}: {e}') from e

        try:
            with transaction.atomic():
                artifact.save()
        except IntegrityError:
            # A concurrent finalizer stored the same signature set first
            self.artifact_store.discard(ref)
            artifact = FinalArtifact.objects.get(
                request=signing_request, signature_set_hash=signature_set_hash
            )
            logger.info(f"Concurrent artifact for {signing_request.pk} won, reusing {artifact.ref}")
        except Exception as e:
            logger.exception(f"Saving artifact failed for {signing_request.pk}")
            self.artifact_store.discard(ref)
            raise self._fail(signing_request, f'{type(e).__name__}: {e}') from e
        return artifact

    def _fail(self, signing_request, message):
        logger.error(f"Finalization of {signing_request.pk} failed: {message}")
        self.store.record_finalization_failure(signing_request.pk, message)
        WebhookService.trigger_event(
            event_type='signing_request.finalization_failed',
            payload={'request_id': str(signing_request.pk), 'error': message}
        )
        return FinalizationFailed(signing_request.pk, message)


# Singleton instance
_finalizer = None


def get_finalizer() -> Finalizer:
    """Get singleton instance of the finalizer."""
    global _finalizer
    if _finalizer is None:
        _finalizer = Finalizer()
    return _finalizer
