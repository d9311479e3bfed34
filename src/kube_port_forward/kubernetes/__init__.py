"""Kubernetes package for kube-port-forward.

This package handles all interactions with the Kubernetes API.
"""

from kube_port_forward.kubernetes.connection import KubernetesConnection
from kube_port_forward.kubernetes.events import EventPublisher
from kube_port_forward.kubernetes.services import (
    KubernetesServiceSource,
    ServiceSource,
    get_load_balancer_ip,
    matches_label_selector,
    service_key,
)

__all__ = [
    "EventPublisher",
    "KubernetesConnection",
    "KubernetesServiceSource",
    "ServiceSource",
    "get_load_balancer_ip",
    "matches_label_selector",
    "service_key",
]
