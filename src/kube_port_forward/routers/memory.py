"""In-memory router.

This module provides a router backend that keeps its rules in process memory.
It backs dry runs of the controller and serves as the router double in tests.
"""

import itertools
import logging
import threading

from kube_port_forward.errors import RouterCallContext, RouterError
from kube_port_forward.routers.base import PortConfig, PortForwardRule, Router
from kube_port_forward.routers.protocol import ProtocolNormalizer

logger = logging.getLogger(__name__)


class InMemoryRouter(Router):
    """Router backend storing rules in a dictionary keyed by (dst_port, protocol)."""

    def __init__(self, rules: list[PortForwardRule] | None = None):
        """Initialize the router.

        Args:
            rules: Optional rules to start with.
        """
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._normalizer = ProtocolNormalizer()
        self._rules: dict[tuple[int, str], PortForwardRule] = {}
        for rule in rules or []:
            self._rules[self._key(rule.dst_port, rule.protocol)] = rule

    def _key(self, port: int, protocol: str) -> tuple[int, str]:
        return port, self._normalizer.normalize(protocol)

    def _rule_from_config(self, rule_id: str, config: PortConfig) -> PortForwardRule:
        return PortForwardRule(
            id=rule_id,
            name=config.name,
            dst_port=config.dst_port,
            fwd_port=config.fwd_port,
            dst_ip=config.dst_ip,
            protocol=config.protocol,
            enabled=config.enabled,
            interface=config.interface,
            src_ip=config.src_ip,
        )

    def add_port(self, config: PortConfig) -> None:
        if not config.dst_ip:
            raise RouterError(
                "forward IP was empty, refusing to create rule",
                operation="add_port",
                resource=config.name,
                context=RouterCallContext("add_port", config.dst_port, config.protocol, config.name),
            )

        key = self._key(config.dst_port, config.protocol)
        with self._lock:
            if key in self._rules:
                raise RouterError(
                    f"rule for port {config.dst_port}/{config.protocol} already exists",
                    operation="add_port",
                    resource=config.name,
                    context=RouterCallContext("add_port", config.dst_port, config.protocol, config.name),
                )
            self._rules[key] = self._rule_from_config(str(next(self._ids)), config)
        logger.info(f"Created port forward rule {config}")

    def update_port(self, external_port: int, config: PortConfig) -> None:
        key = self._key(external_port, config.protocol)
        with self._lock:
            existing = self._rules.get(key)
            if existing is None:
                logger.debug(f"No rule on port {external_port}/{config.protocol} to update")
                return
            del self._rules[key]
            self._rules[self._key(config.dst_port, config.protocol)] = self._rule_from_config(existing.id, config)
        logger.info(f"Updated port forward rule {config}")

    def check_port(self, external_port: int, protocol: str) -> tuple[PortForwardRule | None, bool]:
        with self._lock:
            rule = self._rules.get(self._key(external_port, protocol))
        return rule, rule is not None

    def remove_port(self, config: PortConfig) -> None:
        with self._lock:
            removed = self._rules.pop(self._key(config.dst_port, config.protocol), None)
        if removed is not None:
            logger.info(f"Removed port forward rule {removed.name} on port {config.dst_port}/{config.protocol}")

    def list_all_port_forwards(self) -> list[PortForwardRule]:
        with self._lock:
            return list(self._rules.values())
