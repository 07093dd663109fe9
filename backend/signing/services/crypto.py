"""
Signature codec and verifier.

Signers hold secp256k1 keys (the wallet layer that produces and protects
them is out of scope). A signature is ECDSA over SHA256, transported as the
64-byte ``r || s`` hex string in canonical low-S form.

The only message a signer ever signs to approve a request is
``request_id || document_hash || signer_id``. Binding all three makes a
signature useless for any other request, document, or signer slot.
"""

import logging

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

_CURVE = ec.SECP256K1()
_CURVE_ORDER = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

REJECTION_PREFIX = b'reject:'


def build_signing_message(request_id, document_hash, signer_id):
    """
    Build the exact message a signer signs to approve a request.

    Args:
        request_id: UUID or str, the signing request id
        document_hash: str, SHA256 hex of the document
        signer_id: str, the signer identity

    Returns:
        bytes: UTF-8 encoded ``request_id || document_hash || signer_id``
    """
    return f'{request_id}{document_hash}{signer_id}'.encode('utf-8')


def build_rejection_message(request_id, document_hash, signer_id):
    """Message a signer signs to reject a request; never accepted by sign."""
    return REJECTION_PREFIX + build_signing_message(request_id, document_hash, signer_id)


def _load_public_key(public_hex):
    raw = bytes.fromhex(public_hex)
    if len(raw) == 64:
        raw = b'\x04' + raw
    if len(raw) not in (33, 65):
        raise ValueError('Public key must be 33, 64 or 65 bytes')
    return ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, raw)


def _public_key_to_hex(public_key):
    numbers = public_key.public_numbers()
    return (numbers.x.to_bytes(32, 'big') + numbers.y.to_bytes(32, 'big')).hex()


def _is_canonical(r, s):
    if not (1 <= r < _CURVE_ORDER):
        return False
    if not (1 <= s < _CURVE_ORDER):
        return False
    return s <= _CURVE_ORDER // 2


def verify_signature(public_identity, message, signature):
    """
    Check a signature against a public identity and message.

    Pure and fail-closed: malformed keys, malformed or non-canonical
    signatures, wrong lengths, and mismatched identities all return False.

    Args:
        public_identity: str, hex encoded secp256k1 public key
        message: bytes, the signed message
        signature: str, hex encoded 64-byte r || s

    Returns:
        bool
    """
    try:
        if not isinstance(public_identity, str) or not isinstance(signature, str):
            return False
        if not isinstance(message, (bytes, bytearray)):
            return False

        public_key = _load_public_key(public_identity.strip().lower().removeprefix('0x'))
        raw_signature = bytes.fromhex(signature.strip().lower().removeprefix('0x'))
        if len(raw_signature) != 64:
            return False

        r = int.from_bytes(raw_signature[:32], 'big')
        s = int.from_bytes(raw_signature[32:], 'big')
        if not _is_canonical(r, s):
            return False

        public_key.verify(encode_dss_signature(r, s), bytes(message), ec.ECDSA(hashes.SHA256()))
        return True
    except (CryptoInvalidSignature, ValueError, TypeError) as e:
        logger.debug(f"Signature rejected: {type(e).__name__}")
        return False


def sign_message(private_hex, message):
    """
    Sign a message with a hex private key (client-side helper).

    Returns:
        str: hex encoded 64-byte r || s in low-S form
    """
    private_key = ec.derive_private_key(int(private_hex, 16), _CURVE)
    r, s = decode_dss_signature(private_key.sign(bytes(message), ec.ECDSA(hashes.SHA256())))
    if s > _CURVE_ORDER // 2:
        s = _CURVE_ORDER - s
    return (r.to_bytes(32, 'big') + s.to_bytes(32, 'big')).hex()


def generate_keypair():
    """
    Generate a secp256k1 key pair.

    Returns:
        tuple: (private_hex, public_hex)
    """
    private_key = ec.generate_private_key(_CURVE)
    private_hex = private_key.private_numbers().private_value.to_bytes(32, 'big').hex()
    return private_hex, _public_key_to_hex(private_key.public_key())


def public_key_identity(signer_id):
    """Default identity resolver: the signer id is the public key itself."""
    return signer_id


def resolve_public_identity(signer_id):
    """
    Map a signer id to the public key its signatures verify against.

    The resolver is configured through ``SIGNING_IDENTITY_RESOLVER`` so the
    wallet/identity layer can plug in its own registry.
    """
    resolver = import_string(settings.SIGNING_IDENTITY_RESOLVER)
    return resolver(signer_id)


class SignatureVerifier:
    """Verifier bound to the configured identity resolver."""

    @staticmethod
    def verify(signer_id, message, signature):
        try:
            public_identity = resolve_public_identity(signer_id)
        except (LookupError, ValueError) as e:
            logger.warning(f"Could not resolve identity for signer {signer_id[:16]}: {e}")
            return False
        if not public_identity:
            return False
        return verify_signature(public_identity, message, signature)

    @staticmethod
    def verify_slot_signature(request_id, document_hash, signer_id, signature):
        """Verify an approval signature for one signer slot."""
        if not signature:
            return False
        message = build_signing_message(request_id, document_hash, signer_id)
        return SignatureVerifier.verify(signer_id, message, signature)

    @staticmethod
    def verify_rejection_signature(request_id, document_hash, signer_id, signature):
        if not signature:
            return False
        message = build_rejection_message(request_id, document_hash, signer_id)
        return SignatureVerifier.verify(signer_id, message, signature)


# Singleton instance
_signature_verifier = None


def get_signature_verifier() -> SignatureVerifier:
    """Get singleton instance of signature verifier."""
    global _signature_verifier
    if _signature_verifier is None:
        _signature_verifier = SignatureVerifier()
    return _signature_verifier
