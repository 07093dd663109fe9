from .hashing import HashingService, get_hashing_service
from .crypto import SignatureVerifier, get_signature_verifier
from .store import SigningRequestStore, get_signing_request_store
from .webhook_service import WebhookService
from .artifact_builder import ArtifactBuilder, get_artifact_builder
from .finalizer import ArtifactStore, Finalizer, get_finalization_queue, get_finalizer
from .coordinator import SigningCoordinator, get_signing_coordinator
from .verification_service import VerificationService, get_verification_service

__all__ = [
    'HashingService',
    'get_hashing_service',
    'SignatureVerifier',
    'get_signature_verifier',
    'SigningRequestStore',
    'get_signing_request_store',
    'WebhookService',
    'ArtifactBuilder',
    'get_artifact_builder',
    'ArtifactStore',
    'Finalizer',
    'get_finalization_queue',
    'get_finalizer',
    'SigningCoordinator',
    'get_signing_coordinator',
    'VerificationService',
    'get_verification_service',
]
