import logging

from ..models import FinalArtifact, SignerSlot
from .crypto import get_signature_verifier
from .finalizer import ArtifactStore
from .hashing import HashingService
from .store import get_signing_request_store

logger = logging.getLogger(__name__)


class VerificationService:
    """
    Read-only audit of a signing request.

    Every signature is re-verified against the message rebuilt from the
    request, and every stored event hash is recomputed from the slot.
    """

    def __init__(self, store=None, verifier=None, artifact_store=None):
        self.store = store or get_signing_request_store()
        self.verifier = verifier or get_signature_verifier()
        self.artifact_store = artifact_store or ArtifactStore()

    def verify_request(self, request_id):
        """
        Verify all signatures and event hashes of a request.

        Returns:
            dict: {request_id, status, valid, document_hash, signed_count,
                   total_count, artifact, per_signer_results}
        """
        signing_request = self.store.get_request(request_id)
        slots = self.store.get_slots(signing_request.pk)

        per_signer_results = [self._verify_slot(signing_request, slot) for slot in slots]
        signed_count = len([s for s in slots if s.status == SignerSlot.STATUS_SIGNED])
        artifact = self._verify_artifact(signing_request)

        valid = (
            bool(slots)
            and signed_count == len(slots)
            and all(r['signature_valid'] and r['event_hash_valid'] for r in per_signer_results)
            and (artifact is None or artifact['hash_valid'])
        )

        if not valid:
            logger.info(f"Verification of {signing_request.pk}: not valid")

        return {
            'request_id': str(signing_request.pk),
            'status': signing_request.status,
            'valid': valid,
            'document_hash': signing_request.document_hash,
            'signed_count': signed_count,
            'total_count': len(slots),
            'artifact': artifact,
            'per_signer_results': per_signer_results,
        }

    def _verify_slot(self, signing_request, slot):
        result = {
            'signer_id': slot.signer_id,
            'order': slot.order,
            'status': slot.status,
            'signature_valid': False,
            'event_hash_valid': False,
            'error': None,
        }
        if slot.status != SignerSlot.STATUS_SIGNED:
            result['error'] = f'Slot is {slot.status}'
            return result

        result['signature_valid'] = self.verifier.verify_slot_signature(
            signing_request.pk, signing_request.document_hash, slot.signer_id, slot.signature
        )
        expected_event_hash = HashingService.compute_slot_event_hash(slot, signing_request.document_hash)
        result['event_hash_valid'] = slot.event_hash == expected_event_hash

        if not result['signature_valid']:
            result['error'] = 'Signature does not verify'
        elif not result['event_hash_valid']:
            result['error'] = 'Event hash mismatch'
        return result

    def _verify_artifact(self, signing_request):
        if not signing_request.final_artifact_ref:
            return None

        artifact = FinalArtifact.objects.filter(
            request=signing_request, file=signing_request.final_artifact_ref
        ).first()
        result = {
            'ref': signing_request.final_artifact_ref,
            'sha256': artifact.sha256 if artifact else None,
            'hash_valid': False,
            'error': None,
        }
        if artifact is None:
            result['error'] = 'Artifact record missing'
            return result
        if not self.artifact_store.exists(artifact.ref):
            result['error'] = 'Artifact file missing'
            return result

        actual = HashingService.compute_bytes_sha256(self.artifact_store.fetch(artifact.ref))
        result['hash_valid'] = actual == artifact.sha256
        if not result['hash_valid']:
            result['error'] = 'Artifact bytes do not match recorded hash'
        return result


# Singleton instance
_verification_service = None


def get_verification_service() -> VerificationService:
    """Get singleton instance of verification service."""
    global _verification_service
    if _verification_service is None:
        _verification_service = VerificationService()
    return _verification_service
