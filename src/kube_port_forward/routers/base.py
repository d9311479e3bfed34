"""Base module for routers.

This module defines the router-side data types and the abstract interface
every router backend implements.
"""

import abc
from dataclasses import dataclass

from kube_port_forward.routers.protocol import ProtocolNormalizer

DEFAULT_INTERFACE = "wan"
ANY_SOURCE = "any"

_normalizer = ProtocolNormalizer()


@dataclass(frozen=True)
class PortConfig:
    """Desired state of one port forward rule.

    Attributes:
        name: Rule name, "{namespace}/{service}:{portName}".
        enabled: Whether the rule is active.
        interface: Router interface the rule listens on.
        src_port: Unused by the router; mirrors dst_port.
        dst_port: External port users connect to.
        fwd_port: Internal port the Service listens on.
        src_ip: Allowed source, always "any".
        dst_ip: Load-balancer IP traffic is forwarded to.
        protocol: Normalized protocol.
    """

    name: str
    dst_port: int
    fwd_port: int
    dst_ip: str
    protocol: str
    enabled: bool = True
    interface: str = DEFAULT_INTERFACE
    src_port: int = 0
    src_ip: str = ANY_SOURCE

    @property
    def port_key(self) -> tuple[int, str]:
        return self.dst_port, self.protocol

    def __str__(self) -> str:
        return f"{self.name} {self.dst_port} -> {self.dst_ip}:{self.fwd_port} ({self.protocol})"


@dataclass(frozen=True)
class PortForwardRule:
    """A port forward rule as it exists on the router."""

    id: str
    name: str
    dst_port: int
    fwd_port: int
    dst_ip: str
    protocol: str
    enabled: bool = True
    interface: str = DEFAULT_INTERFACE
    src_ip: str = ANY_SOURCE

    @property
    def port_key(self) -> tuple[int, str]:
        return self.dst_port, self.protocol

    @property
    def is_managed(self) -> bool:
        """Check if the rule name follows the "namespace/service:port" pattern."""
        return owner_of_rule_name(self.name) != ""

    @property
    def service_key(self) -> str:
        return owner_of_rule_name(self.name)

    def to_port_config(self) -> PortConfig:
        """Convert the rule back into a port config."""
        return PortConfig(
            name=self.name,
            dst_port=self.dst_port,
            fwd_port=self.fwd_port,
            dst_ip=self.dst_ip,
            protocol=self.protocol,
            enabled=self.enabled,
            interface=self.interface,
            src_port=self.dst_port,
            src_ip=self.src_ip,
        )

    def differs_from(self, config: PortConfig) -> list[str]:
        """List the fields in which this rule differs from a desired config.

        Args:
            config: The desired port config.

        Returns:
            Names of the differing fields, empty when the rule is up to date.
        """
        differences = []
        if self.name != config.name:
            differences.append("name")
        if self.fwd_port != config.fwd_port:
            differences.append("fwd_port")
        if self.dst_ip != config.dst_ip:
            differences.append("dst_ip")
        if self.enabled != config.enabled:
            differences.append("enabled")
        if not _same_protocol(self.protocol, config.protocol):
            differences.append("protocol")
        return differences


def _same_protocol(first: str, second: str) -> bool:
    if not _normalizer.is_valid(first) or not _normalizer.is_valid(second):
        return first == second
    return _normalizer.normalize(first) == _normalizer.normalize(second)


def owner_of_rule_name(rule_name: str) -> str:
    """Extract the owning service key from a managed rule name.

    Args:
        rule_name: A rule name such as "default/web:http".

    Returns:
        The service key ("default/web"), or "" when the rule is not managed.
    """
    service_part, sep, _ = rule_name.partition(":")
    if not sep:
        return ""
    namespace, slash, name = service_part.partition("/")
    if not slash or not namespace or not name:
        return ""
    return service_part


def rule_belongs_to_service(rule_name: str, service_key: str) -> bool:
    """Check if a rule is owned by a service by exact key match."""
    return owner_of_rule_name(rule_name) == service_key


class Router(abc.ABC):
    """Abstract CRUD over router port forward rules.

    Implementations perform blocking network I/O; their timeouts are governed
    by their own configuration.
    """

    @abc.abstractmethod
    def add_port(self, config: PortConfig) -> None:
        """Create a port forward rule.

        Args:
            config: The rule to create.
        """
        pass

    @abc.abstractmethod
    def update_port(self, external_port: int, config: PortConfig) -> None:
        """Update the rule listening on an external port.

        Args:
            external_port: The external port of the existing rule.
            config: The desired state of the rule.
        """
        pass

    @abc.abstractmethod
    def check_port(self, external_port: int, protocol: str) -> tuple[PortForwardRule | None, bool]:
        """Look up the rule for an external port and protocol.

        Args:
            external_port: The external port to look up.
            protocol: The protocol of the rule.

        Returns:
            The rule (or None) and whether it exists.
        """
        pass

    @abc.abstractmethod
    def remove_port(self, config: PortConfig) -> None:
        """Remove the rule matching a port config's external port and protocol.

        Args:
            config: The rule to remove.
        """
        pass

    @abc.abstractmethod
    def list_all_port_forwards(self) -> list[PortForwardRule]:
        """List every port forward rule on the router.

        Returns:
            All rules, managed or not.
        """
        pass
