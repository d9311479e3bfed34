"""Service access.

This module provides the read-only view of Kubernetes Services the controller
reconciles from, along with the helpers to interpret them.
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException

from kube_port_forward.errors import ConfigurationError, NetworkError, ServiceLookupContext
from kube_port_forward.kubernetes.connection import KubernetesConnection

logger = logging.getLogger(__name__)

NOT_FOUND = 404

_SET_REQUIREMENT_RE = re.compile(r"^([^\s!=()]+)\s+(in|notin)\s+\(([^()]*)\)$")
_EQUALITY_REQUIREMENT_RE = re.compile(r"^([^\s!=()]+)\s*(==|!=|=)\s*([^\s!=()]*)$")
_KEY_RE = re.compile(r"^(!?)\s*([^\s!=()]+)$")


class ServiceSource(Protocol):
    """Read access to Services."""

    def get_service(self, namespace: str, name: str) -> client.V1Service | None:
        ...

    def list_services(self, namespace: str | None = None, label_selector: str | None = None) -> Iterator[client.V1Service]:
        ...


class KubernetesServiceSource:
    """Service source backed by the CoreV1 API."""

    def __init__(self, connection: KubernetesConnection, batch_size: int = 100):
        """Initialize the source.

        Args:
            connection: The Kubernetes connection to use.
            batch_size: Number of Services to fetch per list call.
        """
        self.connection = connection
        self.batch_size = batch_size

    def get_service(self, namespace: str, name: str) -> client.V1Service | None:
        """Get a Service by namespace and name.

        Returns:
            The Service, or None if it does not exist.

        Raises:
            NetworkError: If the API call fails for any other reason.
        """
        try:
            return self.connection.core_v1_api.read_namespaced_service(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == NOT_FOUND:
                logger.debug(f"Service {namespace}/{name} not found")
                return None
            raise NetworkError(
                f"failed to get service: {e.reason}",
                operation="get_service",
                resource=f"{namespace}/{name}",
                cause=e,
                context=ServiceLookupContext(namespace=namespace, name=name),
            ) from e

    def list_services(self, namespace: str | None = None, label_selector: str | None = None) -> Iterator[client.V1Service]:
        """Iterate over Services in a namespace or across all namespaces.

        Uses pagination to fetch Services in batches.

        Args:
            namespace: Namespace to list, or None for all namespaces.
            label_selector: Optional label selector applied by the API server.

        Yields:
            Services, one at a time.

        Raises:
            NetworkError: If a list call fails.
        """
        continue_token = None
        kwargs = {"limit": self.batch_size}
        if label_selector:
            kwargs["label_selector"] = label_selector

        try:
            while True:
                if namespace:
                    result = self.connection.core_v1_api.list_namespaced_service(
                        namespace, _continue=continue_token, **kwargs
                    )
                else:
                    result = self.connection.core_v1_api.list_service_for_all_namespaces(
                        _continue=continue_token, **kwargs
                    )

                yield from result.items

                continue_token = result.metadata._continue
                if not continue_token:
                    break
        except ApiException as e:
            raise NetworkError(
                f"failed to list services: {e.reason}", operation="list_services", resource=namespace or "", cause=e
            ) from e


def service_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def get_load_balancer_ip(service: client.V1Service) -> str:
    """Get the first IP assigned to a Service by its load balancer.

    Returns:
        The IP, or "" while none is assigned.
    """
    status = service.status
    if status is None or status.load_balancer is None:
        return ""
    for ingress in status.load_balancer.ingress or []:
        if ingress.ip:
            return ingress.ip
    return ""


@dataclass(frozen=True)
class Requirement:
    """One requirement of a label selector."""

    key: str
    operator: str
    values: tuple[str, ...] = ()

    def matches(self, labels: dict[str, str]) -> bool:
        present = self.key in labels
        value = labels.get(self.key)
        if self.operator == "exists":
            return present
        if self.operator == "!":
            return not present
        if self.operator in ("=", "=="):
            return present and value == self.values[0]
        if self.operator == "!=":
            return not present or value != self.values[0]
        if self.operator == "in":
            return present and value in self.values
        if self.operator == "notin":
            return not present or value not in self.values
        return False


def _split_requirements(selector: str) -> list[str]:
    parts = []
    depth = 0
    current = ""
    for char in selector:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += char
    parts.append(current.strip())
    return parts


def parse_label_selector(selector: str | None) -> list[Requirement]:
    """Parse a label selector string.

    Supports "k=v", "k==v", "k!=v", "k", "!k", "k in (a,b)" and "k notin (a,b)".

    Raises:
        ConfigurationError: If the selector is malformed.
    """
    if not selector or not selector.strip():
        return []

    requirements = []
    for part in _split_requirements(selector):
        match = _SET_REQUIREMENT_RE.match(part)
        if match:
            values = tuple(value.strip() for value in match.group(3).split(",") if value.strip())
            requirements.append(Requirement(match.group(1), match.group(2), values))
            continue

        match = _EQUALITY_REQUIREMENT_RE.match(part)
        if match:
            requirements.append(Requirement(match.group(1), match.group(2), (match.group(3),)))
            continue

        match = _KEY_RE.match(part)
        if match:
            requirements.append(Requirement(match.group(2), "!" if match.group(1) else "exists"))
            continue

        raise ConfigurationError(
            f"invalid label selector '{selector}': cannot parse requirement '{part}'",
            operation="parse_label_selector",
        )
    return requirements


def matches_label_selector(labels: dict[str, str] | None, selector: str | None) -> bool:
    """Check if a set of labels satisfies a label selector.

    An empty selector matches everything.
    """
    labels = labels or {}
    return all(requirement.matches(labels) for requirement in parse_label_selector(selector))
