"""Kubernetes connection management.

This module handles the connection to the Kubernetes API.
"""
import logging
import os
import socket

from kubernetes import client, config

from kube_port_forward.errors import ConfigurationError

logger = logging.getLogger(__name__)


class KubernetesConnection:
    """Connection manager for the Kubernetes API.

    Holds the API clients shared by the Service source and the event publisher.
    """

    def __init__(self):
        """Initialize the Kubernetes connection.

        Attempts to connect to the Kubernetes API using in-cluster config first,
        falling back to kubeconfig for local development.
        """
        self._setup_connection()
        # Reported as the instance in published events
        self.hostname = socket.gethostname()
        self.instance_id = os.environ.get("HOSTNAME", self.hostname)

    def _setup_connection(self) -> None:
        """Set up the connection to the Kubernetes API."""
        try:
            config.load_incluster_config()
            logger.info("Using in-cluster configuration")
        except config.ConfigException:
            try:
                config.load_kube_config()
                logger.info("Using kubeconfig configuration")
            except config.ConfigException as e:
                logger.error(
                    "Failed to load Kubernetes configuration. Ensure that the kubeconfig file is available and valid."
                )
                raise ConfigurationError(
                    "kubeconfig file is missing or invalid", operation="connect", cause=e
                ) from e

        self.core_v1_api = client.CoreV1Api()
        self.events_v1_api = client.EventsV1Api()
        self.host = self.core_v1_api.api_client.configuration.host
        logger.debug(f"Connected to Kubernetes API at {self.host}")
