"""
Session Crypto — dh-ietf1024-sha256-aes128-cbc-pkcs7 primitives.

Implements the transport algorithm negotiated by Secret Service clients:
- Key agreement: Diffie-Hellman over the RFC 2409 second Oakley group
- Key derivation: HKDF-SHA256(shared secret, empty salt, empty info) → 16 bytes
- Transport: AES-128-CBC, PKCS#7 padding, random 16-byte IV per message

All integers travel as unsigned big-endian values fixed at 128 bytes.
Peers may omit leading zero bytes; we always emit the full width.

Security Note:
    Never log private exponents, shared secrets, derived keys or plaintext.
"""
import os
import secrets
import logging
from dataclasses import dataclass, field
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .exceptions import InvalidInput

logger = logging.getLogger("bwkeyring.crypto")

# RFC 2409 section 6.2, "Second Oakley Group"
DH_PRIME = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE65381"
    "FFFFFFFFFFFFFFFF",
    16,
)
DH_GENERATOR = 2

DH_KEY_SIZE = 1024 // 8  # public keys and shared secrets on the wire
AES_KEY_SIZE = 128 // 8
AES_BLOCK_SIZE = 16
AES_BLOCK_SIZE_BITS = AES_BLOCK_SIZE * 8


@dataclass
class DHKeyPair:
    """Result of one side of a DH exchange.

    ``private_key`` is only needed while a follow-up peer key may still
    arrive (see :func:`compute_shared_secret`); callers may drop it with
    :meth:`discard_private_key` afterwards.
    """

    public_key: bytes
    shared_key: bytes
    private_key: Optional[int] = field(default=None, repr=False)

    def discard_private_key(self) -> None:
        self.private_key = None


# ---------------------------------------------------------------------------
# Diffie-Hellman
# ---------------------------------------------------------------------------

def _to_wire(value: int) -> bytes:
    return value.to_bytes(DH_KEY_SIZE, "big")


def _parse_peer_key(peer_public_key: bytes) -> int:
    """Decode and range-check a peer public key.

    Keys shorter than 128 bytes are big-endian integers whose leading zero
    bytes were omitted, so they decode to the same value as their padded form.

    Raises:
        InvalidInput: If the key is empty, longer than 128 bytes, or not
            strictly between 1 and p-1.
    """
    if not peer_public_key:
        raise InvalidInput("invalid peer public key: empty")
    if len(peer_public_key) > DH_KEY_SIZE:
        raise InvalidInput(
            f"invalid peer public key size: expected at most {DH_KEY_SIZE}, "
            f"got {len(peer_public_key)}"
        )
    value = int.from_bytes(peer_public_key, "big")
    if value <= 1 or value >= DH_PRIME - 1:
        raise InvalidInput("invalid peer public key: out of range")
    return value


def _random_private_exponent() -> int:
    # uniform over [0, p-2]; a zero draw is remapped to 1
    exponent = secrets.randbelow(DH_PRIME - 1)
    return exponent or 1


def generate_key_pair(peer_public_key: bytes) -> DHKeyPair:
    """Generate a key pair and the shared secret for ``peer_public_key``.

    Args:
        peer_public_key: The peer's public key, 1 to 128 bytes big-endian.

    Returns:
        DHKeyPair with a 128-byte public key and a 128-byte shared key.

    Raises:
        InvalidInput: If the peer key fails validation.
    """
    peer = _parse_peer_key(peer_public_key)
    private = _random_private_exponent()
    return DHKeyPair(
        public_key=_to_wire(pow(DH_GENERATOR, private, DH_PRIME)),
        shared_key=_to_wire(pow(peer, private, DH_PRIME)),
        private_key=private,
    )


def compute_shared_secret(key_pair: DHKeyPair, peer_public_key: bytes) -> bytes:
    """Compute the shared secret for a peer key received after key generation.

    This completes a two-phase exchange: side A generates its pair with a
    placeholder peer key, sends its public key, and once B's public key comes
    back calls this function to reach the same shared secret as B.

    Args:
        key_pair: A pair whose private exponent has not been discarded.
        peer_public_key: The peer's public key, 1 to 128 bytes big-endian.

    Returns:
        128-byte shared secret.

    Raises:
        RuntimeError: If the private exponent was already discarded.
        InvalidInput: If the peer key fails validation.
    """
    if key_pair.private_key is None:
        raise RuntimeError("private key not available")
    peer = _parse_peer_key(peer_public_key)
    return _to_wire(pow(peer, key_pair.private_key, DH_PRIME))


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_aes_key(shared_secret: bytes) -> bytes:
    """Derive the 16-byte AES key from a DH shared secret.

    HKDF-SHA256 with an empty salt and empty info, as required by the
    Secret Service algorithm definition.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE,
        salt=None,
        info=b"",
    )
    return hkdf.derive(shared_secret)


# ---------------------------------------------------------------------------
# AES-128-CBC / PKCS#7
# ---------------------------------------------------------------------------

def _check_key(key: bytes) -> None:
    if len(key) != AES_KEY_SIZE:
        raise InvalidInput(
            f"invalid key size: expected {AES_KEY_SIZE}, got {len(key)}"
        )


def encrypt(plaintext: bytes, key: bytes) -> tuple[bytes, bytes]:
    """Encrypt ``plaintext`` with AES-128-CBC and PKCS#7 padding.

    Block-aligned input gets a full extra block of ``0x10`` padding, so the
    ciphertext is always a positive multiple of 16 bytes.

    Args:
        plaintext: Data to encrypt (may be empty).
        key: 16-byte AES key.

    Returns:
        Tuple of (ciphertext, iv).

    Raises:
        InvalidInput: If the key is not 16 bytes.
    """
    _check_key(key)
    iv = os.urandom(AES_BLOCK_SIZE)
    padder = padding.PKCS7(AES_BLOCK_SIZE_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize(), iv


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """Decrypt AES-128-CBC ciphertext and strip PKCS#7 padding.

    Args:
        ciphertext: Non-empty, block-aligned ciphertext.
        key: 16-byte AES key.
        iv: 16-byte initialisation vector.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        InvalidInput: On wrong key/IV size, misaligned or empty ciphertext,
            or bad padding. Padding failures share a single message.
    """
    _check_key(key)
    if len(iv) != AES_BLOCK_SIZE:
        raise InvalidInput(
            f"invalid IV size: expected {AES_BLOCK_SIZE}, got {len(iv)}"
        )
    if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
        raise InvalidInput(
            f"invalid ciphertext size: must be a multiple of {AES_BLOCK_SIZE}"
        )
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(AES_BLOCK_SIZE_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise InvalidInput("invalid padding") from None
