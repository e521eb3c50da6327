"""Capability gate: platform permissions required before radio/network work."""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from matlink.models.errors import PermissionDenied
from matlink.models.status import Capability
from matlink.transports.base import PermissionProvider


class StaticPermissionProvider:
    """Provider for platforms without runtime capability grants.

    Grants exactly the configured set (all capabilities by default).
    """

    def __init__(self, granted: Optional[Iterable[Capability]] = None):
        self.granted = set(Capability) if granted is None else set(granted)

    async def request(self, capabilities: List[Capability]) -> Dict[Capability, bool]:
        return {capability: capability in self.granted for capability in capabilities}


class CapabilityGate:
    """Resolves the capabilities an operation needs, in one batch.

    A partial grant counts as a denial. Denials are reported to the
    ``on_denied`` hook (the user-facing prompt) once per call and are never
    retried automatically.
    """

    def __init__(
        self,
        provider: Optional[PermissionProvider] = None,
        on_denied: Optional[Callable[[List[Capability]], None]] = None,
    ):
        self.logger = logging.getLogger("matlink.capabilities")
        self.provider = provider or StaticPermissionProvider()
        self.on_denied = on_denied

    async def ensure_capabilities(self, required: Iterable[Capability]) -> bool:
        """Request every capability in ``required``.

        Returns:
            True only if all were granted
        """
        capabilities = sorted(set(required), key=lambda c: c.value)
        if not capabilities:
            return True

        try:
            results = await self.provider.request(capabilities)
        except Exception as e:
            self.logger.error(f"Capability request failed: {e}", exc_info=True)
            results = {}

        denied = [c for c in capabilities if not results.get(c, False)]
        if not denied:
            self.logger.debug(f"Capabilities granted: {[c.value for c in capabilities]}")
            return True

        self.logger.warning(f"Capabilities denied: {[c.value for c in denied]}")
        if self.on_denied:
            try:
                self.on_denied(denied)
            except Exception as e:
                self.logger.error(f"Denied-capability prompt failed: {e}")
        return False

    async def require(self, required: Iterable[Capability]) -> None:
        """Like ensure_capabilities, but raise PermissionDenied on failure."""
        required = list(required)
        if not await self.ensure_capabilities(required):
            names = ", ".join(sorted(c.value for c in set(required)))
            raise PermissionDenied(f"Required capabilities not granted: {names}")
