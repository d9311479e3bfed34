"""Conflict tracking for external ports.

The router exposes one rule per external port and protocol, shared by every
Service in the cluster. The tracker records which Service owns each of them so
that two Services can never claim the same port.
"""

import logging
import threading

from kube_port_forward.routers.base import PortForwardRule
from kube_port_forward.routers.protocol import TCP_UDP, ProtocolNormalizer

logger = logging.getLogger(__name__)

PortKey = tuple[int, str]


class ConflictTracker:
    """Thread-safe registry of (external port, protocol) -> service key claims."""

    def __init__(self, normalizer: ProtocolNormalizer | None = None):
        self._lock = threading.RLock()
        self._normalizer = normalizer or ProtocolNormalizer()
        self._claims: dict[PortKey, str] = {}

    def _key(self, port: int, protocol: str) -> PortKey:
        return port, self._normalizer.normalize(protocol)

    def _overlapping(self, key: PortKey) -> list[PortKey]:
        port, protocol = key
        if protocol == TCP_UDP:
            return [claimed for claimed in self._claims if claimed[0] == port]
        return [claimed for claimed in ((port, protocol), (port, TCP_UDP)) if claimed in self._claims]

    def try_claim(self, port: int, protocol: str, service_key: str) -> tuple[bool, str]:
        """Claim an external port for a service.

        Claiming a port the service already owns succeeds without change.
        "tcp_udp" overlaps both "tcp" and "udp" on the same port.

        Args:
            port: External port.
            protocol: Protocol of the rule.
            service_key: Claiming service, "namespace/name".

        Returns:
            Whether the claim succeeded, and the owner of the first
            conflicting claim ("" on success).
        """
        key = self._key(port, protocol)
        with self._lock:
            for claimed in self._overlapping(key):
                owner = self._claims[claimed]
                if owner != service_key:
                    return False, owner

            if key not in self._claims:
                self._claims[key] = service_key
                logger.debug(f"Service {service_key} claimed port {port}/{key[1]}")
            return True, ""

    def release(self, service_key: str) -> list[PortKey]:
        """Release every port claimed by a service.

        Returns:
            The released (port, protocol) keys.
        """
        with self._lock:
            released = [key for key, owner in self._claims.items() if owner == service_key]
            for key in released:
                del self._claims[key]

        if released:
            logger.debug(f"Released {len(released)} port(s) of service {service_key}")
        return released

    def release_port(self, port: int, protocol: str, service_key: str) -> bool:
        """Release a single port if it is owned by the service.

        Returns:
            Whether a claim was released.
        """
        key = self._key(port, protocol)
        with self._lock:
            if self._claims.get(key) != service_key:
                return False
            del self._claims[key]
        logger.debug(f"Service {service_key} released port {port}/{key[1]}")
        return True

    def claims_for(self, service_key: str) -> list[PortKey]:
        with self._lock:
            return sorted(key for key, owner in self._claims.items() if owner == service_key)

    def owner_of(self, port: int, protocol: str) -> str:
        """Get the owner of a port, "" if unclaimed."""
        with self._lock:
            return self._claims.get(self._key(port, protocol), "")

    def snapshot(self) -> dict[PortKey, str]:
        with self._lock:
            return dict(self._claims)

    def service_keys(self) -> set[str]:
        with self._lock:
            return set(self._claims.values())

    def seed_from_rules(self, rules: list[PortForwardRule]) -> int:
        """Rebuild claims from the managed rules present on the router.

        Unmanaged rules and rules that fail to claim are skipped.

        Args:
            rules: Router rules as returned by list_all_port_forwards.

        Returns:
            The number of claims recorded.
        """
        seeded = 0
        for rule in rules:
            if not rule.is_managed:
                continue
            if not self._normalizer.is_valid(rule.protocol):
                logger.warning(f"Skipping rule {rule.name}: unknown protocol '{rule.protocol}'")
                continue

            ok, owner = self.try_claim(rule.dst_port, rule.protocol, rule.service_key)
            if ok:
                seeded += 1
            else:
                logger.warning(
                    f"Rule {rule.name} on port {rule.dst_port}/{rule.protocol} conflicts with service {owner}"
                )

        logger.info(f"Seeded conflict tracker with {seeded} claim(s) from {len(rules)} router rule(s)")
        return seeded

    def clear(self) -> None:
        with self._lock:
            self._claims.clear()
