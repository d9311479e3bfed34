"""Tests for the Kubernetes Service source and helpers."""

import unittest
from unittest import mock

from kubernetes import client
from kubernetes.client.rest import ApiException
from service_factory import make_service

from kube_port_forward.errors import ConfigurationError, NetworkError
from kube_port_forward.kubernetes.connection import KubernetesConnection
from kube_port_forward.kubernetes.services import (
    KubernetesServiceSource,
    get_load_balancer_ip,
    matches_label_selector,
    parse_label_selector,
    service_key,
)


class TestKubernetesServiceSource(unittest.TestCase):
    """Test cases for KubernetesServiceSource."""

    def setUp(self):
        """Set up test fixtures."""
        self.connection = mock.Mock(spec=KubernetesConnection)
        self.connection.core_v1_api = mock.Mock()
        self.source = KubernetesServiceSource(self.connection, batch_size=2)

    def test_get_service(self):
        """Test reading a Service."""
        service = make_service()
        self.connection.core_v1_api.read_namespaced_service.return_value = service

        self.assertIs(self.source.get_service("default", "web"), service)
        self.connection.core_v1_api.read_namespaced_service.assert_called_once_with(name="web", namespace="default")

    def test_get_missing_service(self):
        """Test that a 404 means the Service is gone."""
        self.connection.core_v1_api.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")
        self.assertIsNone(self.source.get_service("default", "web"))

    def test_get_service_api_error(self):
        """Test that other API errors are transient network errors."""
        self.connection.core_v1_api.read_namespaced_service.side_effect = ApiException(status=500, reason="Boom")
        with self.assertRaises(NetworkError) as ctx:
            self.source.get_service("default", "web")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.resource, "default/web")

    def test_list_services_paginates(self):
        """Test that every page is fetched."""
        first, second, third = make_service(name="a"), make_service(name="b"), make_service(name="c")
        self.connection.core_v1_api.list_service_for_all_namespaces.side_effect = [
            client.V1ServiceList(items=[first, second], metadata=client.V1ListMeta(_continue="token")),
            client.V1ServiceList(items=[third], metadata=client.V1ListMeta()),
        ]

        services = list(self.source.list_services())

        self.assertEqual(services, [first, second, third])
        calls = self.connection.core_v1_api.list_service_for_all_namespaces.call_args_list
        self.assertEqual(calls[0], mock.call(_continue=None, limit=2))
        self.assertEqual(calls[1], mock.call(_continue="token", limit=2))

    def test_list_namespaced_services_with_selector(self):
        """Test listing a namespace with a label selector."""
        self.connection.core_v1_api.list_namespaced_service.return_value = client.V1ServiceList(
            items=[], metadata=client.V1ListMeta()
        )

        self.assertEqual(list(self.source.list_services("default", "app=web")), [])
        self.connection.core_v1_api.list_namespaced_service.assert_called_once_with(
            "default", _continue=None, limit=2, label_selector="app=web"
        )

    def test_list_services_api_error(self):
        """Test that list failures raise network errors."""
        self.connection.core_v1_api.list_service_for_all_namespaces.side_effect = ApiException(status=503)
        with self.assertRaises(NetworkError):
            list(self.source.list_services())


class TestServiceHelpers(unittest.TestCase):
    """Test cases for the Service helper functions."""

    def test_service_key(self):
        """Test the service key format."""
        self.assertEqual(service_key("default", "web"), "default/web")

    def test_get_load_balancer_ip(self):
        """Test reading the load balancer IP."""
        self.assertEqual(get_load_balancer_ip(make_service(lb_ip="10.0.0.5")), "10.0.0.5")
        self.assertEqual(get_load_balancer_ip(make_service(lb_ip=None)), "")

    def test_get_load_balancer_ip_skips_hostnames(self):
        """Test that hostname-only ingress entries are skipped."""
        service = make_service()
        service.status.load_balancer.ingress = [
            client.V1LoadBalancerIngress(hostname="lb.example.com"),
            client.V1LoadBalancerIngress(ip="10.0.0.6"),
        ]
        self.assertEqual(get_load_balancer_ip(service), "10.0.0.6")

    def test_get_load_balancer_ip_without_status(self):
        """Test a Service without status."""
        service = make_service()
        service.status = None
        self.assertEqual(get_load_balancer_ip(service), "")


class TestLabelSelector(unittest.TestCase):
    """Test cases for label selector matching."""

    def test_empty_selector_matches_everything(self):
        """Test that no selector means no filtering."""
        self.assertTrue(matches_label_selector({}, None))
        self.assertTrue(matches_label_selector({"app": "web"}, ""))

    def test_equality(self):
        """Test equality requirements."""
        labels = {"app": "web", "tier": "front"}
        self.assertTrue(matches_label_selector(labels, "app=web"))
        self.assertTrue(matches_label_selector(labels, "app==web,tier=front"))
        self.assertFalse(matches_label_selector(labels, "app=api"))
        self.assertTrue(matches_label_selector(labels, "app!=api"))
        self.assertTrue(matches_label_selector(labels, "env!=prod"))

    def test_existence(self):
        """Test existence requirements."""
        labels = {"app": "web"}
        self.assertTrue(matches_label_selector(labels, "app"))
        self.assertFalse(matches_label_selector(labels, "!app"))
        self.assertTrue(matches_label_selector(labels, "!expose"))

    def test_set_based(self):
        """Test set based requirements."""
        labels = {"env": "staging"}
        self.assertTrue(matches_label_selector(labels, "env in (staging, prod)"))
        self.assertFalse(matches_label_selector(labels, "env notin (staging,prod)"))
        self.assertTrue(matches_label_selector({}, "env notin (prod)"))
        self.assertFalse(matches_label_selector({}, "env in (prod)"))

    def test_mixed_requirements(self):
        """Test commas inside and between requirements."""
        requirements = parse_label_selector("env in (a,b),app=web,!legacy")
        self.assertEqual([r.operator for r in requirements], ["in", "=", "!"])
        self.assertEqual(requirements[0].values, ("a", "b"))

    def test_invalid_selector(self):
        """Test that malformed selectors are rejected."""
        for selector in ("app=web,,tier=x", "app in prod", "a=b=c"):
            with self.subTest(selector=selector):
                with self.assertRaises(ConfigurationError):
                    parse_label_selector(selector)
