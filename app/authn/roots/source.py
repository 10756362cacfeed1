"""Remote trust-root source.

Fetches a signed trust bundle from the issuer's trust store over HTTP and
publishes it into a RootRegistry snapshot. Lookups stay in-memory; only
refresh() touches the network.
"""

import logging
from typing import Optional

import httpx

from app.authn.exceptions import ConfigurationError, RootSourceUnavailableError
from .registry import RootRegistry, parse_root_bundle

log = logging.getLogger(__name__)


class RemoteRootRegistry(RootRegistry):
    """RootRegistry refreshed from a remote trust bundle.

    Until the first successful refresh, is_valid_root raises
    RootSourceUnavailableError: an unreachable trust source means the
    service cannot decide, which is not the same as "root unknown".
    A failed refresh keeps serving the last good snapshot.
    """

    def __init__(
        self,
        url: str,
        issuer_public_key: Optional[bytes] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(issuer_public_key=issuer_public_key)
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def is_valid_root(self, root: str, circuit_version: Optional[str] = None) -> bool:
        if not self._loaded:
            raise RootSourceUnavailableError(f"Trust roots not loaded from {self.url}")
        return super().is_valid_root(root, circuit_version)

    async def refresh(self) -> int:
        """Fetch the bundle and publish it.

        Returns:
            Number of trusted roots after the refresh.

        Raises:
            RootSourceUnavailableError: Fetch failed or bundle unusable.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url)
            if response.status_code != 200:
                raise RootSourceUnavailableError(
                    f"Trust source returned HTTP {response.status_code}"
                )
            data = response.json()
        except httpx.HTTPError as e:
            log.error(f"trust source fetch failed url={self.url}: {type(e).__name__}")
            raise RootSourceUnavailableError(f"Trust source unreachable: {type(e).__name__}")
        except ValueError:
            raise RootSourceUnavailableError("Trust source returned invalid JSON")

        try:
            records, revoked = parse_root_bundle(data, self._issuer_public_key)
        except ConfigurationError as e:
            raise RootSourceUnavailableError(f"Trust source bundle unusable: {e.message}")

        self.replace_all(records, revoked)
        self._loaded = True
        count = self.size()
        log.info(f"trust roots refreshed url={self.url} roots={count} revoked={len(self.revoked_roots())}")
        return count
