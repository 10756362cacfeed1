"""Challenge-response authentication of NFC tags.

The tag answers a challenge with AES-128-CMAC(diversified_key, challenge).
We re-derive the tag's key from the master key and UID, recompute the MAC,
and compare in constant time.

Every failure mode (bad UID, empty challenge, wrong MAC length, derivation
error, mismatch) returns False. Callers cannot tell them apart.
"""

import hmac
import logging
from typing import Optional

from cryptography.hazmat.primitives import cmac
from cryptography.hazmat.primitives.ciphers import algorithms

from app.core.config import CMAC_LENGTH_BYTES, TAG_UID_LENGTHS
from app.authn.exceptions import ConfigurationError
from .diversify import AES128_KEY_BYTES, diversify_key

log = logging.getLogger(__name__)


def parse_tag_uid(tag_uid: str) -> Optional[bytes]:
    """Parse a hex tag UID ("04782E21801D80" or "04:78:2E:21:80:1D:80").

    Returns:
        UID bytes, or None if not hex or not a 4, 7 or 10 byte UID.
    """
    if not isinstance(tag_uid, str):
        return None
    cleaned = tag_uid.strip().replace(":", "")
    if not cleaned:
        return None
    try:
        uid = bytes.fromhex(cleaned)
    except ValueError:
        return None
    if len(uid) not in TAG_UID_LENGTHS:
        return None
    return uid


def compute_cmac(key: bytes, message: bytes) -> bytes:
    """AES-CMAC of message under key."""
    c = cmac.CMAC(algorithms.AES(key))
    c.update(message)
    return c.finalize()


class TagAuthenticator:
    """Verifies tag responses against AN10922-diversified keys."""

    def __init__(
        self,
        master_key: bytes,
        aid: bytes = b"",
        system_identifier: bytes = b"",
    ):
        """
        Raises:
            ConfigurationError: master_key is not a 16-byte AES key.
        """
        if not isinstance(master_key, (bytes, bytearray)) or len(master_key) != AES128_KEY_BYTES:
            raise ConfigurationError("Tag master key must be 16 bytes (AES-128)")
        self._master_key = bytes(master_key)
        self._aid = aid
        self._system_identifier = system_identifier

    def derive_tag_key(self, uid: bytes) -> bytes:
        return diversify_key(self._master_key, uid, self._aid, self._system_identifier)

    def verify_tag_auth(self, tag_uid: str, challenge: bytes, signature: bytes) -> bool:
        """Check the tag's MAC over the challenge.

        Args:
            tag_uid: Hex UID of the tag.
            challenge: Nonce the tag signed; must be non-empty.
            signature: Tag response; must be exactly 16 bytes.

        Returns:
            True only if the recomputed MAC equals signature.
        """
        uid = parse_tag_uid(tag_uid)
        if uid is None:
            return False
        if not isinstance(challenge, (bytes, bytearray)) or len(challenge) == 0:
            return False
        if not isinstance(signature, (bytes, bytearray)) or len(signature) != CMAC_LENGTH_BYTES:
            return False

        try:
            expected = compute_cmac(self.derive_tag_key(uid), bytes(challenge))
        except Exception:
            log.warning("tag key derivation failed", exc_info=True)
            return False

        return hmac.compare_digest(expected, bytes(signature))
