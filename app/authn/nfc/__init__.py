"""NFC tag authentication (NTAG424 DNA / DESFire EV3, AES-128)."""

from .diversify import cmac_subkeys, diversify_key
from .authenticator import TagAuthenticator, compute_cmac, parse_tag_uid

__all__ = [
    "cmac_subkeys",
    "diversify_key",
    "TagAuthenticator",
    "compute_cmac",
    "parse_tag_uid",
]
