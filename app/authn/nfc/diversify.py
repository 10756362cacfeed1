"""AES-128 key diversification per NXP AN10922.

NTAG424 DNA and DESFire EV3 tags hold a per-tag key derived from a master
key and the tag's identity:

    M = UID || AID || SystemIdentifier          (1..31 bytes)
    D = 0x01 || M, padded to 32 bytes
    key = CMAC-style CBC-MAC over D under the master key

AN10922 always pads D to two blocks (0x80 then zeros) and XORs subkey K2
into the last block; only when D is already 32 bytes is K1 used. That
differs from a plain CMAC of D, so the final block is assembled here and
the block cipher comes from `cryptography`.
"""

from typing import Tuple

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

BLOCK_SIZE = 16
AES128_KEY_BYTES = 16
DIVERSIFICATION_CONSTANT = b"\x01"
MAX_DIVERSIFICATION_INPUT = 31

_RB = 0x87


def _aes_encrypt_block(key: bytes, block: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(block) + encryptor.finalize()


def _shift_left(block: bytes) -> bytes:
    value = int.from_bytes(block, "big") << 1
    return (value & ((1 << 128) - 1)).to_bytes(BLOCK_SIZE, "big")


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def cmac_subkeys(key: bytes) -> Tuple[bytes, bytes]:
    """Derive the CMAC subkeys K1, K2 (RFC 4493 section 2.3)."""
    l_block = _aes_encrypt_block(key, bytes(BLOCK_SIZE))
    k1 = _shift_left(l_block)
    if l_block[0] & 0x80:
        k1 = k1[:-1] + bytes([k1[-1] ^ _RB])
    k2 = _shift_left(k1)
    if k1[0] & 0x80:
        k2 = k2[:-1] + bytes([k2[-1] ^ _RB])
    return k1, k2


def diversify_key(
    master_key: bytes,
    uid: bytes,
    aid: bytes = b"",
    system_identifier: bytes = b"",
) -> bytes:
    """Derive the per-tag AES-128 key from the master key.

    Args:
        master_key: 16-byte AES master key.
        uid: Tag UID bytes.
        aid: Application identifier (3 bytes for DESFire, may be empty).
        system_identifier: Deployment system identifier (may be empty).

    Returns:
        16-byte diversified key.

    Raises:
        ValueError: Wrong master key length or diversification input
            outside 1..31 bytes.
    """
    if len(master_key) != AES128_KEY_BYTES:
        raise ValueError("master key must be 16 bytes")

    m = uid + aid + system_identifier
    if not 1 <= len(m) <= MAX_DIVERSIFICATION_INPUT:
        raise ValueError("diversification input must be 1..31 bytes")

    k1, k2 = cmac_subkeys(master_key)
    d = DIVERSIFICATION_CONSTANT + m
    if len(d) < 2 * BLOCK_SIZE:
        d = d + b"\x80" + bytes(2 * BLOCK_SIZE - len(d) - 1)
        last_key = k2
    else:
        last_key = k1

    first, last = d[:BLOCK_SIZE], _xor(d[BLOCK_SIZE:], last_key)
    x = _aes_encrypt_block(master_key, first)
    return _aes_encrypt_block(master_key, _xor(x, last))
