"""Kubernetes events handling module.

This module publishes events on Services to report port forward sync outcomes.
"""

import logging
from datetime import UTC, datetime

from kubernetes import client

from kube_port_forward.kubernetes.connection import KubernetesConnection

logger = logging.getLogger(__name__)

# Constants for event types
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

# Constants for event reasons
EVENT_REASON_SYNCED = "PortForwardSynced"
EVENT_REASON_FAILED = "PortForwardFailed"

EVENT_ACTION_RECONCILE = "Reconcile"

# Component name for events
EVENT_COMPONENT = "kube-port-forward-controller"

SERVICE_API_VERSION = "v1"
SERVICE_KIND = "Service"


class EventPublisher:
    """Publishes port forward events on Services."""

    def __init__(self, connection: KubernetesConnection):
        self.connection = connection

    def publish_synced(self, service: client.V1Service, message: str) -> None:
        """Publish a Normal event after the router rules of a Service changed.

        Args:
            service: The reconciled Service
            message: Summary of the applied changes
        """
        self._create_event(service, EVENT_TYPE_NORMAL, EVENT_REASON_SYNCED, message)

    def publish_failed(self, service: client.V1Service, message: str) -> None:
        """Publish a Warning event after a reconcile of a Service failed.

        Args:
            service: The Service that failed to reconcile
            message: The error message
        """
        self._create_event(service, EVENT_TYPE_WARNING, EVENT_REASON_FAILED, message)

    def _create_event(self, service: client.V1Service, event_type: str, reason: str, message: str) -> None:
        """Create a Kubernetes event regarding a Service.

        Failures are logged and never raised.

        Args:
            service: The Service the event is about
            event_type: Type of event (Normal or Warning)
            reason: Short reason for the event
            message: Detailed message for the event
        """
        metadata = service.metadata
        name = metadata.name if metadata else ""
        namespace = metadata.namespace if metadata else ""

        if not name or not namespace:
            logger.warning(f"Cannot create event for {SERVICE_KIND} without name and namespace")
            return

        try:
            body = client.EventsV1Event(
                metadata=client.V1ObjectMeta(generate_name=f"{name}-", namespace=namespace),
                reason=reason,
                note=message,
                type=event_type,
                reporting_controller=EVENT_COMPONENT,
                reporting_instance=self.connection.instance_id,
                action=EVENT_ACTION_RECONCILE,
                regarding=client.V1ObjectReference(
                    api_version=SERVICE_API_VERSION, kind=SERVICE_KIND, name=name, namespace=namespace,
                    uid=metadata.uid,
                ),
                event_time=datetime.now(UTC),
            )

            self.connection.events_v1_api.create_namespaced_event(namespace=namespace, body=body)
            logger.debug(f"Created {reason} event for {SERVICE_KIND} {namespace}/{name}")

        except Exception as e:
            logger.warning(f"Failed to create event for {SERVICE_KIND} {namespace}/{name}: {e}")
