"""
Tests for the signing request store and its conditional updates.
"""
import uuid

import pytest
from django.utils import timezone

from signing.exceptions import NotFound
from signing.models import SigningRequest, SignerSlot
from signing.services.store import SigningRequestStore

pytestmark = pytest.mark.django_db


@pytest.fixture
def stored_request(document_hash):
    return SigningRequestStore.create_request_with_slots(
        initiator_id='initiator',
        document_hash=document_hash,
        signer_ids=['alice', 'bob'],
    )


class TestCreation:

    def test_creates_one_pending_slot_per_signer_in_order(self, stored_request):
        slots = SigningRequestStore.get_slots(stored_request.pk)

        assert [s.signer_id for s in slots] == ['alice', 'bob']
        assert [s.order for s in slots] == [0, 1]
        assert all(s.status == SignerSlot.STATUS_PENDING for s in slots)
        assert stored_request.status == SigningRequest.STATUS_PENDING
        assert stored_request.required_signer_ids == ['alice', 'bob']

    def test_unknown_request_and_slot_raise_not_found(self, stored_request):
        with pytest.raises(NotFound):
            SigningRequestStore.get_request(uuid.uuid4())
        with pytest.raises(NotFound):
            SigningRequestStore.get_request('not-a-uuid')
        with pytest.raises(NotFound):
            SigningRequestStore.get_slot(stored_request.pk, 'mallory')
        with pytest.raises(NotFound):
            SigningRequestStore.get_slot('not-a-uuid', 'alice')


class TestConditionalUpdates:

    def test_slot_update_with_stale_version_loses(self, stored_request):
        first = SigningRequestStore.get_slot(stored_request.pk, 'alice')
        second = SigningRequestStore.get_slot(stored_request.pk, 'alice')

        assert SigningRequestStore.cas_slot(
            first, SignerSlot.STATUS_PENDING, status=SignerSlot.STATUS_SIGNED, signature='aa'
        ) is True
        assert SigningRequestStore.cas_slot(
            second, SignerSlot.STATUS_PENDING, status=SignerSlot.STATUS_SIGNED, signature='bb'
        ) is False

        slot = SigningRequestStore.refresh_slot(first)
        assert slot.signature == 'aa'
        assert slot.version == 1

    def test_slot_update_refused_once_request_closed(self, stored_request):
        slot = SigningRequestStore.get_slot(stored_request.pk, 'alice')
        SigningRequest.objects.filter(pk=stored_request.pk).update(status=SigningRequest.STATUS_REJECTED)

        assert SigningRequestStore.cas_slot(
            slot, SignerSlot.STATUS_PENDING, status=SignerSlot.STATUS_SIGNED
        ) is False

    def test_only_one_completion_succeeds(self, stored_request):
        first = SigningRequestStore.get_request(stored_request.pk)
        second = SigningRequestStore.get_request(stored_request.pk)

        won = [
            SigningRequestStore.cas_request(
                candidate, SigningRequest.STATUS_PENDING,
                status=SigningRequest.STATUS_COMPLETED, completed_at=timezone.now()
            )
            for candidate in (first, second)
        ]
        assert won == [True, False]

    def test_final_artifact_attached_once(self, stored_request):
        SigningRequest.objects.filter(pk=stored_request.pk).update(status=SigningRequest.STATUS_COMPLETED)
        now = timezone.now()

        assert SigningRequestStore.set_final_artifact(stored_request.pk, 'artifacts/a.pdf', now) is True
        assert SigningRequestStore.set_final_artifact(stored_request.pk, 'artifacts/b.pdf', now) is False

        signing_request = SigningRequestStore.get_request(stored_request.pk)
        assert signing_request.final_artifact_ref == 'artifacts/a.pdf'
        assert signing_request.completed_at == now

    def test_final_artifact_requires_completed_status(self, stored_request):
        assert SigningRequestStore.set_final_artifact(
            stored_request.pk, 'artifacts/a.pdf', timezone.now()
        ) is False


class TestQueries:

    def test_list_requests_by_participant(self, stored_request, document_hash):
        other = SigningRequestStore.create_request_with_slots(
            initiator_id='bob', document_hash=document_hash, signer_ids=['carol'],
        )

        as_signer = set(SigningRequestStore.list_requests(participant_id='alice'))
        as_either = set(SigningRequestStore.list_requests(participant_id='bob'))

        assert as_signer == {stored_request}
        assert as_either == {stored_request, other}
        assert list(SigningRequestStore.list_requests(status=SigningRequest.STATUS_COMPLETED)) == []

    def test_find_all_signed_pending(self, stored_request):
        assert list(SigningRequestStore.find_all_signed_pending()) == []

        SignerSlot.objects.filter(request=stored_request).update(status=SignerSlot.STATUS_SIGNED)
        assert list(SigningRequestStore.find_all_signed_pending()) == [stored_request]
