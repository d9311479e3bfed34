"""Port config building.

This module turns an annotated LoadBalancer Service into the list of port
configs the router should hold for it, claiming the external ports on the way.
"""

import logging

from kubernetes import client

from kube_port_forward.errors import (
    NotFoundError,
    PortForwardAlternative,
    PortLookupContext,
    ValidationError,
    ValidationIssue,
    port_suggestions,
)
from kube_port_forward.kubernetes.services import service_key
from kube_port_forward.mapping import PortMapping, parse_port_mappings
from kube_port_forward.routers.base import DEFAULT_INTERFACE, PortConfig
from kube_port_forward.routers.protocol import ProtocolNormalizer
from kube_port_forward.tracker import ConflictTracker, PortKey
from kube_port_forward.validation import (
    DEFAULT_SERVICE_PROTOCOL,
    validate_port_config,
    validate_port_configs,
    validate_service,
)

logger = logging.getLogger(__name__)

OPERATION = "build_port_configs"


class PortConfigBuilder:
    """Builds router port configs from annotated Services."""

    def __init__(
        self,
        tracker: ConflictTracker,
        interface: str = DEFAULT_INTERFACE,
        normalizer: ProtocolNormalizer | None = None,
    ):
        """Initialize the builder.

        Args:
            tracker: Conflict tracker shared by every reconcile.
            interface: Router interface of the created rules.
            normalizer: Protocol normalizer, the default alias table if omitted.
        """
        self.tracker = tracker
        self.interface = interface
        self.normalizer = normalizer or ProtocolNormalizer()

    def build(
        self, service: client.V1Service, load_balancer_ip: str, filter_annotation_key: str
    ) -> list[PortConfig]:
        """Build the port configs of a Service.

        Either every external port is claimed and every config returned, or
        the claims made by this call are released and an error raised.

        Args:
            service: The Service to expose.
            load_balancer_ip: IP assigned to the Service by the load balancer.
            filter_annotation_key: Key of the port mapping annotation.

        Returns:
            One port config per annotation mapping, in annotation order.

        Raises:
            NotFoundError: If the annotation is missing, references an unknown
                port, or an external port is owned by another Service.
            ValidationError: If the annotation or the Service is invalid.
        """
        key = service_key(service.metadata.namespace, service.metadata.name)
        annotations = service.metadata.annotations or {}
        if filter_annotation_key not in annotations:
            raise NotFoundError("no port annotation found", operation=OPERATION, resource=key)

        mappings = parse_port_mappings(annotations[filter_annotation_key], resource=key)
        validate_service(service, filter_annotation_key)

        held_before = set(self.tracker.claims_for(key))
        claimed: list[PortKey] = []
        try:
            configs = self._build_configs(service, key, mappings, load_balancer_ip, claimed)
            validate_port_configs(configs)
        except Exception:
            for port, protocol in claimed:
                if (port, protocol) not in held_before:
                    self.tracker.release_port(port, protocol, key)
            raise

        logger.debug(f"Built {len(configs)} port config(s) for service {key}")
        return configs

    def _build_configs(
        self,
        service: client.V1Service,
        key: str,
        mappings: list[PortMapping],
        load_balancer_ip: str,
        claimed: list[PortKey],
    ) -> list[PortConfig]:
        ports_by_name = {port.name: port for port in service.spec.ports or [] if port.name}
        configs = []
        used_external: dict[int, str] = {}

        for mapping in mappings:
            service_port = ports_by_name.get(mapping.port_name)
            if service_port is None:
                available = ", ".join(sorted(ports_by_name)) or "none"
                raise NotFoundError(
                    f"port mapping references non-existent port '{mapping.port_name}' "
                    f"(available ports: {available})",
                    operation=OPERATION,
                    resource=key,
                )

            external_port = mapping.external_port if mapping.external_port is not None else service_port.port
            if external_port in used_external:
                raise ValidationError.from_issues(
                    OPERATION,
                    [ValidationIssue(
                        f"mapping[{mapping.port_name}].external_port",
                        external_port,
                        f"external port {external_port} is already used by port '{used_external[external_port]}'",
                    )],
                    resource=key,
                )
            used_external[external_port] = mapping.port_name

            protocol = self.normalizer.normalize(service_port.protocol or DEFAULT_SERVICE_PROTOCOL)
            self._claim(external_port, protocol, key)
            claimed.append((external_port, protocol))

            config = PortConfig(
                name=f"{key}:{mapping.port_name}",
                dst_port=external_port,
                fwd_port=service_port.port,
                dst_ip=load_balancer_ip,
                protocol=protocol,
                interface=self.interface,
                src_port=external_port,
            )
            validate_port_config(config)
            configs.append(config)

        return configs

    def _claim(self, port: int, protocol: str, key: str) -> None:
        ok, owner = self.tracker.try_claim(port, protocol, key)
        if ok:
            return

        alternatives = [
            PortForwardAlternative(port=claimed_port, protocol=claimed_protocol, service_key=claimed_owner)
            for (claimed_port, claimed_protocol), claimed_owner in sorted(self.tracker.snapshot().items())
        ]
        raise NotFoundError(
            f"port {port}/{protocol} is already used by service {owner}",
            operation=OPERATION,
            resource=key,
            context=PortLookupContext(
                port=port,
                protocol=protocol,
                service_key=key,
                owner=owner,
                alternatives=tuple(alternatives),
                suggestions=tuple(port_suggestions(port, protocol, alternatives)),
            ),
        )
