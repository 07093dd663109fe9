"""
Test configuration and fixtures
"""
import pytest

from multisign.celery import app as celery_app
from signing.services.coordinator import SigningCoordinator
from signing.services.crypto import (
    build_rejection_message,
    build_signing_message,
    generate_keypair,
    sign_message,
)
from signing.services.hashing import HashingService


class Signer:
    """A test wallet: the public key hex doubles as the signer id."""

    def __init__(self):
        self.private_hex, self.signer_id = generate_keypair()

    def sign(self, signing_request):
        message = build_signing_message(signing_request.pk, signing_request.document_hash, self.signer_id)
        return sign_message(self.private_hex, message)

    def sign_rejection(self, signing_request):
        message = build_rejection_message(signing_request.pk, signing_request.document_hash, self.signer_id)
        return sign_message(self.private_hex, message)


class RecordingQueue:
    """Finalization queue that only records what was enqueued."""

    def __init__(self):
        self.enqueued = []

    def enqueue(self, request_id):
        self.enqueued.append(str(request_id))


@pytest.fixture(autouse=True)
def celery_eager(settings):
    """Run Celery tasks in-process; no broker is needed under test."""
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True
    celery_app.config_from_object('django.conf:settings', namespace='CELERY', force=True)
    yield celery_app


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path / 'media')
    return settings.MEDIA_ROOT


@pytest.fixture
def make_signers():
    def _make(count):
        return [Signer() for _ in range(count)]
    return _make


@pytest.fixture
def signers(make_signers):
    return make_signers(3)


@pytest.fixture
def document_bytes():
    return b'%PDF-1.4\n% multisign test document\n'


@pytest.fixture
def document_hash(document_bytes):
    return HashingService.compute_bytes_sha256(document_bytes)


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def coordinator(queue):
    return SigningCoordinator(queue=queue)


@pytest.fixture
def signing_request(coordinator, signers, document_hash):
    return coordinator.initiate(
        initiator_id='initiator-1',
        document_hash=document_hash,
        signer_ids=[s.signer_id for s in signers],
    )
