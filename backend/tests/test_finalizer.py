"""
Tests for idempotent finalization and the final artifact.
"""
from io import BytesIO

import pytest
from django.core.files.base import ContentFile
from PyPDF2 import PdfReader
from reportlab.pdfgen import canvas

from signing.exceptions import AlreadyFinalized, FinalizationFailed, NotCompleted
from signing.models import FinalArtifact, SigningRequest, SignerSlot
from signing.services.artifact_builder import ArtifactBuilder
from signing.services.finalizer import ArtifactStore, Finalizer
from signing.services.hashing import HashingService
from signing.tasks import finalize_signing_request

pytestmark = pytest.mark.django_db


def make_pdf(pages=2):
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer)
    for number in range(pages):
        pdf.drawString(72, 720, f'Contract page {number + 1}')
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def complete(coordinator, signing_request, signers):
    for signer in signers:
        coordinator.sign(signing_request.pk, signer.signer_id, signer.sign(signing_request))
    signing_request.refresh_from_db()
    return signing_request


class FailingBuilder:
    def __init__(self):
        self.calls = 0

    def build(self, signing_request, slots, signature_set_hash):
        self.calls += 1
        raise ValueError('renderer unavailable')


class BrokenArtifactStore(ArtifactStore):
    @staticmethod
    def store(artifact, data):
        raise OSError('disk full')


class RacingBuilder(ArtifactBuilder):
    """Lets a second finalizer finish first while this build is in flight."""

    def build(self, signing_request, slots, signature_set_hash):
        Finalizer().finalize(signing_request.pk)
        return super().build(signing_request, slots, signature_set_hash)


@pytest.fixture
def completed_request(coordinator, signing_request, signers):
    return complete(coordinator, signing_request, signers)


class TestFinalize:

    def test_produces_and_attaches_artifact(self, completed_request):
        artifact_ref = Finalizer().finalize(completed_request.pk)

        completed_request.refresh_from_db()
        assert completed_request.final_artifact_ref == artifact_ref
        assert completed_request.finalized_at is not None
        assert completed_request.finalization_attempts == 1

        artifact = FinalArtifact.objects.get(request=completed_request)
        data = ArtifactStore.fetch(artifact_ref)
        assert data.startswith(b'%PDF')
        assert artifact.sha256 == HashingService.compute_bytes_sha256(data)
        assert artifact.size == len(data)

    def test_second_finalize_short_circuits_with_same_ref(self, completed_request):
        finalizer = Finalizer()
        artifact_ref = finalizer.finalize(completed_request.pk)

        with pytest.raises(AlreadyFinalized) as excinfo:
            finalizer.finalize(completed_request.pk)

        assert excinfo.value.artifact_ref == artifact_ref
        assert FinalArtifact.objects.filter(request=completed_request).count() == 1

    def test_generate_final_artifact_is_idempotent(self, completed_request):
        finalizer = Finalizer()
        first = finalizer.generate_final_artifact(completed_request.pk)
        second = finalizer.generate_final_artifact(completed_request.pk)

        assert first == {'artifact_ref': first['artifact_ref'], 'already_finalized': False}
        assert second == {'artifact_ref': first['artifact_ref'], 'already_finalized': True}

    def test_pending_request_is_not_finalized(self, signing_request):
        with pytest.raises(NotCompleted):
            Finalizer().finalize(signing_request.pk)

    def test_existing_artifact_reused_after_crash_before_attach(self, completed_request):
        artifact_ref = Finalizer().finalize(completed_request.pk)
        SigningRequest.objects.filter(pk=completed_request.pk).update(final_artifact_ref=None)

        assert Finalizer().finalize(completed_request.pk) == artifact_ref
        assert FinalArtifact.objects.filter(request=completed_request).count() == 1

    def test_concurrent_finalizers_store_one_artifact(self, completed_request):
        finalizer = Finalizer(builder=RacingBuilder())

        result = finalizer.generate_final_artifact(completed_request.pk)

        completed_request.refresh_from_db()
        assert result['already_finalized'] is True
        assert result['artifact_ref'] == completed_request.final_artifact_ref
        assert FinalArtifact.objects.filter(request=completed_request).count() == 1


class TestFinalizationFailure:

    def test_build_error_is_recorded_and_repairable(self, completed_request):
        builder = FailingBuilder()

        with pytest.raises(FinalizationFailed):
            Finalizer(builder=builder).finalize(completed_request.pk)

        completed_request.refresh_from_db()
        assert completed_request.status == SigningRequest.STATUS_COMPLETED
        assert completed_request.final_artifact_ref is None
        assert completed_request.finalization_attempts == 1
        assert 'renderer unavailable' in completed_request.finalization_error

        artifact_ref = Finalizer().finalize(completed_request.pk)
        completed_request.refresh_from_db()
        assert completed_request.final_artifact_ref == artifact_ref
        assert completed_request.finalization_error == ''
        assert completed_request.finalization_attempts == 2

    def test_tampered_signature_blocks_finalization(self, completed_request):
        SignerSlot.objects.filter(request=completed_request, order=0).update(signature='00' * 64)

        with pytest.raises(FinalizationFailed):
            Finalizer().finalize(completed_request.pk)
        assert FinalArtifact.objects.count() == 0

    def test_task_records_failure_without_raising(self, completed_request, monkeypatch):
        monkeypatch.setattr(
            'signing.services.finalizer.get_finalizer',
            lambda: Finalizer(builder=FailingBuilder())
        )

        assert finalize_signing_request.delay(str(completed_request.pk)).get() is None
        completed_request.refresh_from_db()
        assert completed_request.finalization_error

    def test_storage_error_is_recorded_and_repairable(self, completed_request, coordinator):
        with pytest.raises(FinalizationFailed):
            Finalizer(artifact_store=BrokenArtifactStore()).finalize(completed_request.pk)

        completed_request.refresh_from_db()
        assert completed_request.final_artifact_ref is None
        assert completed_request.finalization_attempts == 1
        assert completed_request.finalization_error == 'OSError: disk full'
        assert FinalArtifact.objects.count() == 0
        assert coordinator.status(completed_request.pk)['finalization']['stuck'] is True

        Finalizer().finalize(completed_request.pk)
        completed_request.refresh_from_db()
        assert completed_request.final_artifact_ref

    def test_task_survives_storage_error(self, completed_request, monkeypatch):
        monkeypatch.setattr(
            'signing.services.finalizer.get_finalizer',
            lambda: Finalizer(artifact_store=BrokenArtifactStore())
        )

        assert finalize_signing_request.delay(str(completed_request.pk)).get() is None
        completed_request.refresh_from_db()
        assert 'disk full' in completed_request.finalization_error


class TestFinalizationTask:

    def test_task_runs_in_process_under_test_settings(self, completed_request, celery_eager):
        assert celery_eager.conf.task_always_eager is True

        artifact_ref = finalize_signing_request.delay(str(completed_request.pk)).get()

        completed_request.refresh_from_db()
        assert artifact_ref
        assert completed_request.final_artifact_ref == artifact_ref


class TestArtifactContent:

    def test_original_pdf_pages_kept_and_certificate_appended(self, coordinator, make_signers):
        signers = make_signers(2)
        document = ContentFile(make_pdf(pages=2), name='contract.pdf')
        signing_request = coordinator.initiate(
            'initiator', None, [s.signer_id for s in signers], document=document
        )
        complete(coordinator, signing_request, signers)

        artifact_ref = Finalizer().finalize(signing_request.pk)
        reader = PdfReader(BytesIO(ArtifactStore.fetch(artifact_ref)))

        assert len(reader.pages) == 3
        assert reader.metadata['/MultisignRequestId'] == str(signing_request.pk)
        assert reader.metadata['/MultisignDocumentHash'] == signing_request.document_hash
        assert reader.metadata['/MultisignReference'] == f'MS:{signing_request.pk}'

    def test_certificate_only_without_pdf_document(self, completed_request):
        artifact_ref = Finalizer().finalize(completed_request.pk)
        reader = PdfReader(BytesIO(ArtifactStore.fetch(artifact_ref)))

        assert len(reader.pages) >= 1
        text = reader.pages[0].extract_text()
        assert 'Signature Certificate' in text

    def test_certificate_carries_verification_qr_code(self, completed_request):
        reference = f'MS:{completed_request.pk}'
        drawing = ArtifactBuilder().renderer.qr_drawing(reference)
        assert drawing.contents[0].value == reference

        artifact_ref = Finalizer().finalize(completed_request.pk)
        reader = PdfReader(BytesIO(ArtifactStore.fetch(artifact_ref)))
        assert 'Scan to Verify' in reader.pages[0].extract_text()
