"""Classical Ed25519 provider backed by ``cryptography``."""

from __future__ import annotations

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .base import KeyPair, SignatureProvider


class Ed25519Provider(SignatureProvider):
    """Ed25519 with raw 32-byte keys (the secret key is the seed)."""

    algorithm = "Ed25519"
    public_key_length = 32
    secret_key_length = 32
    signature_length = 64

    def generate_keypair(self) -> KeyPair:
        private = Ed25519PrivateKey.generate()
        secret_key = private.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_key = private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return KeyPair(public_key=public_key, secret_key=secret_key)

    def sign(self, message: bytes, secret_key: bytes) -> bytes:
        return Ed25519PrivateKey.from_private_bytes(secret_key).sign(message)

    def _verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        except InvalidSignature:
            return False
        return True
