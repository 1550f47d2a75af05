"""
Asymmetric encryption of secret payloads.

Two key families are supported and detected from the key itself:
- RSA: payload split into chunks, each encrypted with OAEP (SHA-256).
- Ed25519: HKDF(SHA-256) over the public key and a random salt derives a
  ChaCha20-Poly1305 key; the salt and nonce travel with the ciphertext.

Encrypted values are lists of base64 strings (one per chunk).
"""

import base64
import binascii
import logging
import os
from pathlib import Path
from typing import Sequence, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..core.exceptions import CryptoError

logger = logging.getLogger("stackbind.ciphers")

DEFAULT_RSA_KEY_SIZE = 4096
MIN_RSA_KEY_SIZE = 2048

HKDF_INFO = b"ed25519-chacha20poly1305"
SALT_SIZE = 32
NONCE_SIZE = 12
KEY_SIZE = 32

PublicKey = Union[rsa.RSAPublicKey, ed25519.Ed25519PublicKey]
PrivateKey = Union[rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey]
KeyMaterial = Union[str, bytes, Path]


# ===========================================
# Key generation and (de)serialization
# ===========================================


def generate_rsa_key_pair(bits: int = DEFAULT_RSA_KEY_SIZE):
    """Generate a new RSA key pair."""
    if bits < MIN_RSA_KEY_SIZE:
        raise CryptoError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits, got {bits}")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    return private_key, private_key.public_key()


def generate_ed25519_key_pair():
    """Generate a new Ed25519 key pair."""
    private_key = ed25519.Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def private_key_to_pem(private_key: PrivateKey) -> str:
    """PKCS#1 PEM for RSA keys, PKCS#8 PEM for Ed25519 keys."""
    key_format = (
        serialization.PrivateFormat.TraditionalOpenSSL
        if isinstance(private_key, rsa.RSAPrivateKey)
        else serialization.PrivateFormat.PKCS8
    )
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=key_format,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_key_to_ssh(public_key: PublicKey) -> str:
    """Serialize a public key in SSH authorized-key form."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii")


def canonical_public_key(key) -> str:
    """
    SSH form of a public key without its comment.
    The same key written with different aliases, or as PEM, maps to one string.
    """
    return public_key_to_ssh(load_public_key(key))


def _read_material(material: KeyMaterial) -> bytes:
    if isinstance(material, Path):
        return material.read_bytes()
    if isinstance(material, str):
        return material.strip().encode("utf-8")
    return bytes(material).strip()


def load_public_key(key) -> PublicKey:
    """
    Accept a public key object, SSH authorized-key text or PEM text.
    """
    if isinstance(key, (rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        return key
    if isinstance(key, (rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey)):
        return key.public_key()

    data = _read_material(key)
    try:
        if data.startswith(b"ssh-"):
            loaded = serialization.load_ssh_public_key(data)
        else:
            loaded = serialization.load_pem_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Failed to parse public key: {e}") from e
    if not isinstance(loaded, (rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        raise CryptoError(f"Unsupported public key type: {type(loaded).__name__}")
    return loaded


def load_private_key(key) -> PrivateKey:
    """
    Accept a private key object, PEM text (PKCS#1/PKCS#8) or OpenSSH private key text.
    """
    if isinstance(key, (rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey)):
        return key

    data = _read_material(key)
    try:
        if b"OPENSSH PRIVATE KEY" in data:
            loaded = serialization.load_ssh_private_key(data, password=None)
        else:
            loaded = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Failed to parse private key: {e}") from e
    if not isinstance(loaded, (rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey)):
        raise CryptoError(f"Unsupported private key type: {type(loaded).__name__}")
    return loaded


# ===========================================
# Single block RSA helpers
# ===========================================


def _oaep(algorithm: hashes.HashAlgorithm) -> padding.OAEP:
    return padding.OAEP(mgf=padding.MGF1(algorithm=algorithm), algorithm=algorithm, label=None)


def encrypt_with_public_rsa_key(message: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """Encrypt one block with OAEP (SHA-512)."""
    return public_key.encrypt(message, _oaep(hashes.SHA512()))


def decrypt_with_private_rsa_key(ciphertext: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Decrypt one block with OAEP (SHA-512)."""
    try:
        return private_key.decrypt(ciphertext, _oaep(hashes.SHA512()))
    except ValueError as e:
        raise CryptoError("Failed to decrypt RSA block") from e


# ===========================================
# Large payloads
# ===========================================


def encrypt(public_key, plaintext: Union[str, bytes]) -> list[str]:
    """
    Encrypt a payload of any size.

    Args:
        public_key: RSA or Ed25519 public key (object, SSH or PEM text)
        plaintext: str (UTF-8 encoded) or bytes

    Returns:
        List of base64 encoded chunks
    """
    key = load_public_key(public_key)
    data = plaintext.encode("utf-8") if isinstance(plaintext, str) else bytes(plaintext)

    if isinstance(key, rsa.RSAPublicKey):
        chunk_size = (key.key_size // 8) // 2
        chunks = [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)] or [b""]
        result = []
        for chunk in chunks:
            try:
                encrypted = key.encrypt(chunk, _oaep(hashes.SHA256()))
            except ValueError as e:
                raise CryptoError("Failed to encrypt secret") from e
            result.append(base64.b64encode(encrypted).decode("ascii"))
        return result

    return [base64.b64encode(_encrypt_with_ed25519(key, data)).decode("ascii")]


def decrypt(private_key, chunks: Sequence[str]) -> bytes:
    """
    Decrypt chunks produced by encrypt(); the key family is detected from the key.
    """
    key = load_private_key(private_key)
    if isinstance(chunks, str):
        chunks = [chunks]

    if isinstance(key, rsa.RSAPrivateKey):
        parts = []
        for chunk in chunks:
            raw = _b64decode(chunk)
            try:
                parts.append(key.decrypt(raw, _oaep(hashes.SHA256())))
            except ValueError as e:
                raise CryptoError("Failed to decrypt secret with RSA key") from e
        return b"".join(parts)

    if len(chunks) != 1:
        raise CryptoError(f"Ed25519 decryption expects exactly one chunk, got {len(chunks)}")
    return _decrypt_with_ed25519(key, _b64decode(chunks[0]))


def encrypt_string(public_key, value: str) -> list[str]:
    return encrypt(public_key, value)


def decrypt_string(private_key, chunks: Sequence[str]) -> str:
    try:
        return decrypt(private_key, chunks).decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted secret is not valid UTF-8") from e


def _b64decode(chunk: str) -> bytes:
    try:
        return base64.b64decode(chunk, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError("Failed to decode base64 chunk") from e


def _derive_key(public_key: ed25519.Ed25519PublicKey, salt: bytes) -> bytes:
    raw_public = public_key.public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, info=HKDF_INFO)
    return hkdf.derive(raw_public)


def _encrypt_with_ed25519(public_key: ed25519.Ed25519PublicKey, plaintext: bytes) -> bytes:
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    cipher = ChaCha20Poly1305(_derive_key(public_key, salt))
    return salt + nonce + cipher.encrypt(nonce, plaintext, None)


def _decrypt_with_ed25519(private_key: ed25519.Ed25519PrivateKey, payload: bytes) -> bytes:
    if len(payload) < SALT_SIZE + NONCE_SIZE:
        raise CryptoError("Ciphertext too short")

    salt = payload[:SALT_SIZE]
    nonce = payload[SALT_SIZE : SALT_SIZE + NONCE_SIZE]
    encrypted = payload[SALT_SIZE + NONCE_SIZE :]

    cipher = ChaCha20Poly1305(_derive_key(private_key.public_key(), salt))
    try:
        return cipher.decrypt(nonce, encrypted, None)
    except InvalidTag as e:
        raise CryptoError("Failed to decrypt secret with Ed25519 key") from e
