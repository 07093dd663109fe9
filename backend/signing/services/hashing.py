"""
Canonical hashing service for all hash computations.

Every signature in the system is made over a document hash produced here,
so this module is the single source of truth for the hash algorithm and for
the stable serializations that feed it.
"""

import hashlib
import json
import re

_SHA256_HEX = re.compile(r'^[0-9a-f]{64}$')


class HashingService:
    """Service for all file and data hashing operations."""

    @staticmethod
    def compute_bytes_sha256(data):
        """
        Compute SHA256 hash of raw document bytes.

        Args:
            data: bytes

        Returns:
            str: Lowercase hexadecimal SHA256 hash
        """
        if isinstance(data, str):
            raise TypeError('compute_bytes_sha256 expects bytes, not str')
        return hashlib.sha256(bytes(data)).hexdigest()

    @staticmethod
    def compute_file_sha256(file_obj):
        """
        Compute SHA256 hash of a file object.

        Args:
            file_obj: Django File/FieldFile or file-like object

        Returns:
            str: Lowercase hexadecimal SHA256 hash
        """
        sha256_hash = hashlib.sha256()

        # Save current position and seek to start
        current_pos = file_obj.tell() if hasattr(file_obj, 'tell') else 0
        file_obj.seek(0)

        for byte_block in iter(lambda: file_obj.read(4096), b""):
            sha256_hash.update(byte_block)

        file_obj.seek(current_pos)

        return sha256_hash.hexdigest()

    @staticmethod
    def compute_json_sha256(data_dict):
        """
        Compute SHA256 hash of a dictionary (stable JSON serialization).

        Args:
            data_dict: dict to hash

        Returns:
            str: Hexadecimal SHA256 hash
        """
        json_str = json.dumps(data_dict, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_str.encode()).hexdigest()

    @staticmethod
    def compute_signature_set_hash(document_hash, signatures):
        """
        Compute the idempotency key of a finalization.

        The same document hash with the same set of (signer_id, signature)
        pairs always produces the same key, whatever order the pairs were
        collected in.

        Args:
            document_hash: str, SHA256 hex of the original document
            signatures: iterable of (signer_id, signature) tuples

        Returns:
            str: Hexadecimal SHA256 hash
        """
        pairs = sorted([str(signer_id), str(signature)] for signer_id, signature in signatures)
        return HashingService.compute_json_sha256({
            'document_hash': document_hash,
            'signatures': pairs,
        })

    @staticmethod
    def compute_slot_event_hash(slot, document_hash):
        """
        Compute tamper-evident hash for a signer slot's signing event.

        Uses stable JSON serialization of:
        - request id
        - document_hash
        - signer_id and order
        - signature
        - signed_at

        Args:
            slot: SignerSlot instance
            document_hash: str, document hash of the owning request

        Returns:
            str: Hexadecimal SHA256 hash
        """
        hash_input = {
            'request_id': str(slot.request_id),
            'document_hash': document_hash,
            'signer_id': slot.signer_id,
            'order': slot.order,
            'signature': slot.signature,
            'signed_at': slot.signed_at.isoformat() if slot.signed_at else None,
        }
        return HashingService.compute_json_sha256(hash_input)

    @staticmethod
    def normalize_hash(value):
        """Lowercase and strip a hex digest; returns '' for empty input."""
        if not value:
            return ''
        return str(value).strip().lower()

    @staticmethod
    def is_valid_hash(value):
        """True if value is a lowercase 64-char hex SHA256 digest."""
        return isinstance(value, str) and bool(_SHA256_HEX.match(value))


# Singleton instance
_hashing_service = None


def get_hashing_service() -> HashingService:
    """Get singleton instance of hashing service."""
    global _hashing_service
    if _hashing_service is None:
        _hashing_service = HashingService()
    return _hashing_service
