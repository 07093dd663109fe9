"""
Tests for the canonical hasher.
"""
import hashlib
import io
from datetime import datetime, timezone

import pytest

from signing.models import SignerSlot
from signing.services.hashing import HashingService


class TestDocumentHashing:

    def test_bytes_hash_is_lowercase_sha256_hex(self):
        digest = HashingService.compute_bytes_sha256(b'hello')
        assert digest == hashlib.sha256(b'hello').hexdigest()
        assert HashingService.is_valid_hash(digest)

    def test_bytes_hash_rejects_text(self):
        with pytest.raises(TypeError):
            HashingService.compute_bytes_sha256('hello')

    def test_file_hash_matches_bytes_hash_and_restores_position(self):
        data = b'x' * 10000
        file_obj = io.BytesIO(data)
        file_obj.seek(17)

        assert HashingService.compute_file_sha256(file_obj) == HashingService.compute_bytes_sha256(data)
        assert file_obj.tell() == 17

    def test_json_hash_ignores_key_order(self):
        assert HashingService.compute_json_sha256({'a': 1, 'b': 2}) == \
            HashingService.compute_json_sha256({'b': 2, 'a': 1})

    @pytest.mark.parametrize('value,expected', [
        ('a' * 64, True),
        ('A' * 64, False),
        ('a' * 63, False),
        ('g' * 64, False),
        (None, False),
        ('', False),
    ])
    def test_is_valid_hash(self, value, expected):
        assert HashingService.is_valid_hash(value) is expected


class TestSignatureSetHash:

    def test_independent_of_collection_order(self):
        pairs = [('alice', 'aa'), ('bob', 'bb'), ('carol', 'cc')]
        assert HashingService.compute_signature_set_hash('d' * 64, pairs) == \
            HashingService.compute_signature_set_hash('d' * 64, list(reversed(pairs)))

    def test_changes_with_any_signature(self):
        base = HashingService.compute_signature_set_hash('d' * 64, [('alice', 'aa')])
        assert base != HashingService.compute_signature_set_hash('d' * 64, [('alice', 'ab')])
        assert base != HashingService.compute_signature_set_hash('e' * 64, [('alice', 'aa')])


class TestSlotEventHash:

    def test_event_hash_covers_signature_and_time(self):
        signed_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        slot = SignerSlot(request_id='00000000-0000-0000-0000-000000000001',
                          signer_id='alice', order=0, signature='aa', signed_at=signed_at)
        original = HashingService.compute_slot_event_hash(slot, 'd' * 64)

        slot.signature = 'ab'
        assert HashingService.compute_slot_event_hash(slot, 'd' * 64) != original

        slot.signature = 'aa'
        assert HashingService.compute_slot_event_hash(slot, 'd' * 64) == original
