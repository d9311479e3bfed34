"""Structural validation of port configs, Services and annotations.

Validators are pure: they return None when the input is valid, or raise a
single ValidationError listing every violated field.
"""

import ipaddress

from kubernetes import client

from kube_port_forward.errors import ValidationError, ValidationIssue
from kube_port_forward.mapping import annotation_issues, is_valid_port, split_segments
from kube_port_forward.routers.base import PortConfig
from kube_port_forward.routers.protocol import VALID_PROTOCOLS, default_normalizer

LOAD_BALANCER = "LoadBalancer"

# Kubernetes fills in TCP when a Service port omits its protocol
DEFAULT_SERVICE_PROTOCOL = "TCP"


def _port_range_message(port) -> str:
    return f"port {port} is out of valid range (1-65535)"


def is_valid_ipv4(address: str) -> bool:
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


def port_config_issues(config: PortConfig, prefix: str = "") -> list[ValidationIssue]:
    """Collect the issues of a single port config without raising."""
    issues = []

    if not config.name:
        issues.append(ValidationIssue(f"{prefix}name", config.name, "name cannot be empty"))
    if not is_valid_port(config.dst_port):
        issues.append(ValidationIssue(f"{prefix}dst_port", config.dst_port, _port_range_message(config.dst_port)))
    if not is_valid_port(config.fwd_port):
        issues.append(ValidationIssue(f"{prefix}fwd_port", config.fwd_port, _port_range_message(config.fwd_port)))

    if not config.dst_ip:
        issues.append(ValidationIssue(f"{prefix}dst_ip", config.dst_ip, "destination IP cannot be empty"))
    elif not is_valid_ipv4(config.dst_ip):
        issues.append(ValidationIssue(f"{prefix}dst_ip", config.dst_ip, "destination IP is not a valid IPv4 address"))

    if not default_normalizer.is_valid(config.protocol):
        issues.append(ValidationIssue(
            f"{prefix}protocol", config.protocol, f"protocol must be one of {', '.join(VALID_PROTOCOLS)}"
        ))
    if not config.interface:
        issues.append(ValidationIssue(f"{prefix}interface", config.interface, "interface cannot be empty"))

    return issues


def validate_port_config(config: PortConfig) -> None:
    """Validate a single port config.

    Args:
        config: The port config to validate.

    Raises:
        ValidationError: If any field is invalid.
    """
    issues = port_config_issues(config)
    if issues:
        raise ValidationError.from_issues("validate_port_config", issues, resource=config.name)


def validate_port_configs(configs: list[PortConfig]) -> None:
    """Validate a batch of port configs.

    The batch must be non-empty, every config valid, and no two configs may
    share an external port and protocol.

    Raises:
        ValidationError: If the batch is invalid.
    """
    if not configs:
        raise ValidationError.from_issues(
            "validate_port_configs", [ValidationIssue("configs", 0, "at least one port config is required")]
        )

    issues = []
    seen: dict[tuple[int, str], int] = {}
    for index, config in enumerate(configs):
        issues.extend(port_config_issues(config, prefix=f"configs[{index}]."))

        key = (config.dst_port, config.protocol)
        if key in seen:
            issues.append(ValidationIssue(
                f"configs[{index}].dst_port",
                config.dst_port,
                f"duplicate port {config.dst_port}/{config.protocol}, already used by configs[{seen[key]}]",
            ))
        else:
            seen[key] = index

    if issues:
        raise ValidationError.from_issues("validate_port_configs", issues)


def _target_port_issue(field: str, target_port) -> ValidationIssue | None:
    if target_port is None or target_port == "":
        return ValidationIssue(field, target_port, "target port must be specified")
    # Named target ports resolve on the pods and are accepted as is
    if isinstance(target_port, int) and not is_valid_port(target_port):
        return ValidationIssue(field, target_port, _port_range_message(target_port))
    return None


def validate_service(service: client.V1Service, filter_annotation: str) -> None:
    """Validate that a Service can be exposed through the router.

    Args:
        service: The Service to validate.
        filter_annotation: Key of the port mapping annotation.

    Raises:
        ValidationError: If the Service is not a well formed LoadBalancer Service.
    """
    issues = []
    metadata = service.metadata or client.V1ObjectMeta()
    spec = service.spec or client.V1ServiceSpec()

    if not metadata.name:
        issues.append(ValidationIssue("metadata.name", metadata.name, "service name cannot be empty"))
    if not metadata.namespace:
        issues.append(ValidationIssue("metadata.namespace", metadata.namespace, "service namespace cannot be empty"))

    if spec.type != LOAD_BALANCER:
        issues.append(ValidationIssue("spec.type", spec.type, f"service type must be {LOAD_BALANCER}"))

    ports = spec.ports or []
    if not ports:
        issues.append(ValidationIssue("spec.ports", 0, "service must define at least one port"))

    for index, port in enumerate(ports):
        field = f"spec.ports[{index}]"
        if not is_valid_port(port.port):
            issues.append(ValidationIssue(f"{field}.port", port.port, _port_range_message(port.port)))

        target_issue = _target_port_issue(f"{field}.target_port", port.target_port)
        if target_issue is not None:
            issues.append(target_issue)

        protocol = port.protocol or DEFAULT_SERVICE_PROTOCOL
        if not default_normalizer.is_valid(protocol):
            issues.append(ValidationIssue(
                f"{field}.protocol", port.protocol, f"protocol must be one of {', '.join(VALID_PROTOCOLS)}"
            ))

    annotation = (metadata.annotations or {}).get(filter_annotation)
    if annotation is not None:
        for issue in annotation_issues(annotation):
            issues.append(ValidationIssue(
                f"metadata.annotations[{filter_annotation}].{issue.field}", issue.value, issue.message
            ))

    if issues:
        resource = f"{metadata.namespace}/{metadata.name}"
        raise ValidationError.from_issues("validate_service", issues, resource=resource)


def validate_annotation(annotation: str) -> None:
    """Validate the syntax of a port mapping annotation.

    Raises:
        ValidationError: If the annotation is empty or any segment is malformed.
    """
    if not split_segments(annotation or ""):
        raise ValidationError.from_issues(
            "validate_annotation", [ValidationIssue("annotation", annotation, "annotation cannot be empty")]
        )

    issues = annotation_issues(annotation)
    if issues:
        raise ValidationError.from_issues("validate_annotation", issues)
