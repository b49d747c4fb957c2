"""Signing helpers for replay verdicts recorded in the CapsLock logbook."""
from __future__ import annotations

import sys

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..constants import KEY_FILE, PUB_FILE


def _pss():
    return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


def _key_paths():
    runtime_mod = sys.modules.get("capslock.monitor")
    return (
        getattr(runtime_mod, "KEY_FILE", KEY_FILE),
        getattr(runtime_mod, "PUB_FILE", PUB_FILE),
    )


def ensure_keypair():
    """Load the signing key, generating a keypair on first use."""
    key_file, pub_file = _key_paths()

    try:
        with open(key_file, "rb") as f:
            return serialization.load_pem_private_key(f.read(), password=None)
    except FileNotFoundError:
        pass

    print("🔐 Generating new CapsLock RSA keypair ...")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with open(key_file, "wb") as f:
        f.write(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
    with open(pub_file, "wb") as f:
        f.write(
            private_key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )
    print(f"  ✓ Keys written to {key_file}, {pub_file}")
    return private_key


def sign_hash(sha256_hex):
    """Sign a SHA256 hex digest with the private key."""
    private_key = ensure_keypair()
    signature = private_key.sign(sha256_hex.encode(), _pss(), hashes.SHA256())
    return signature.hex()


def verify_signature(sha256_hex, signature_hex):
    """Verify a signature against the public key."""
    _, pub_file = _key_paths()

    try:
        with open(pub_file, "rb") as f:
            public_key = serialization.load_pem_public_key(f.read())
    except FileNotFoundError:
        print(f"  ✗ No public key at {pub_file}", file=sys.stderr)
        return False
    try:
        signature = bytes.fromhex(signature_hex)
    except ValueError:
        return False
    try:
        public_key.verify(
            signature,
            sha256_hex.encode(),
            _pss(),
            hashes.SHA256(),
        )
        return True
    except InvalidSignature:
        return False


__all__ = [
    "ensure_keypair",
    "sign_hash",
    "verify_signature",
]
