"""Tests for the port config builder."""

import unittest

from service_factory import ANNOTATION, LB_IP, make_service

from kube_port_forward.builder import PortConfigBuilder
from kube_port_forward.errors import NotFoundError, PortLookupContext, ValidationError
from kube_port_forward.tracker import ConflictTracker


class TestPortConfigBuilder(unittest.TestCase):
    """Test cases for PortConfigBuilder."""

    def setUp(self):
        """Set up test fixtures."""
        self.tracker = ConflictTracker()
        self.builder = PortConfigBuilder(self.tracker)

    def test_default_mapping(self):
        """Test that default mappings reuse the Service port numbers."""
        configs = self.builder.build(make_service(annotation="http,https"), LB_IP, ANNOTATION)

        self.assertEqual([c.dst_port for c in configs], [80, 443])
        self.assertEqual([c.fwd_port for c in configs], [80, 443])
        first = configs[0]
        self.assertEqual(first.name, "default/web:http")
        self.assertEqual(first.dst_ip, LB_IP)
        self.assertEqual(first.protocol, "tcp")
        self.assertEqual(first.src_ip, "any")
        self.assertEqual(first.interface, "wan")
        self.assertTrue(first.enabled)
        self.assertEqual(self.tracker.claims_for("default/web"), [(80, "tcp"), (443, "tcp")])

    def test_custom_mapping(self):
        """Test explicit external ports."""
        service = make_service(
            annotation="http:8080,https:8443,metrics:9090",
            ports=[("http", 80, "TCP"), ("https", 443, "TCP"), ("metrics", 9100, "TCP")],
        )

        configs = self.builder.build(service, LB_IP, ANNOTATION)

        self.assertEqual({c.dst_port for c in configs}, {8080, 8443, 9090})
        self.assertEqual([c.fwd_port for c in configs], [80, 443, 9100])

    def test_interface_from_configuration(self):
        """Test that the configured interface is used."""
        builder = PortConfigBuilder(self.tracker, interface="wan2")
        configs = builder.build(make_service(annotation="http"), LB_IP, ANNOTATION)
        self.assertEqual(configs[0].interface, "wan2")

    def test_protocol_is_normalized(self):
        """Test that Service protocols are normalized, defaulting to tcp."""
        service = make_service(annotation="dns,web", ports=[("dns", 53, "UDP"), ("web", 80, None)])
        configs = self.builder.build(service, LB_IP, ANNOTATION)
        self.assertEqual([c.protocol for c in configs], ["udp", "tcp"])

    def test_missing_annotation(self):
        """Test a Service without the annotation."""
        with self.assertRaises(NotFoundError) as ctx:
            self.builder.build(make_service(annotation=None), LB_IP, ANNOTATION)
        self.assertIn("no port annotation found", str(ctx.exception))

    def test_non_existent_port(self):
        """Test a mapping referencing an unknown port."""
        with self.assertRaises(NotFoundError) as ctx:
            self.builder.build(make_service(annotation="nonexistent:8080"), LB_IP, ANNOTATION)
        self.assertIn("non-existent port", str(ctx.exception))
        self.assertIn("available ports: http, https", str(ctx.exception))

    def test_invalid_syntax(self):
        """Test that parse errors propagate."""
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(make_service(annotation="http:invalid_port"), LB_IP, ANNOTATION)
        self.assertIn("invalid external port", str(ctx.exception))

    def test_duplicate_external_port(self):
        """Test two mappings resolving to the same external port."""
        with self.assertRaises(ValidationError) as ctx:
            self.builder.build(make_service(annotation="http:8080,https:8080"), LB_IP, ANNOTATION)
        self.assertIn("already used by port 'http'", str(ctx.exception))
        self.assertEqual(self.tracker.snapshot(), {})

    def test_invalid_service(self):
        """Test that the Service is validated."""
        service = make_service(annotation="http")
        service.spec.ports[0].target_port = None
        with self.assertRaises(ValidationError):
            self.builder.build(service, LB_IP, ANNOTATION)

    def test_invalid_load_balancer_ip(self):
        """Test that built configs are validated and claims rolled back."""
        with self.assertRaises(ValidationError):
            self.builder.build(make_service(annotation="http"), "not-an-ip", ANNOTATION)
        self.assertEqual(self.tracker.snapshot(), {})

    def test_conflict_with_other_service(self):
        """Test claiming a port owned by another Service."""
        self.builder.build(make_service(name="first", annotation="http:8080"), LB_IP, ANNOTATION)

        with self.assertRaises(NotFoundError) as ctx:
            self.builder.build(make_service(name="second", annotation="http:8080"), LB_IP, ANNOTATION)

        error = ctx.exception
        self.assertIn("already used by service default/first", str(error))
        self.assertIsInstance(error.context, PortLookupContext)
        self.assertEqual(error.context.owner, "default/first")
        self.assertEqual(error.context.port, 8080)
        self.assertEqual([alt.service_key for alt in error.context.alternatives], ["default/first"])

    def test_conflict_is_all_or_nothing(self):
        """Test that a failed build releases the ports it claimed."""
        self.builder.build(make_service(name="first", annotation="https"), LB_IP, ANNOTATION)

        with self.assertRaises(NotFoundError):
            self.builder.build(make_service(name="second", annotation="http,https"), LB_IP, ANNOTATION)

        self.assertEqual(self.tracker.claims_for("default/second"), [])
        self.assertEqual(self.tracker.owner_of(80, "tcp"), "")

    def test_failed_rebuild_keeps_previous_claims(self):
        """Test that claims held before a failed build survive it."""
        self.builder.build(make_service(name="first", annotation="https"), LB_IP, ANNOTATION)
        self.builder.build(make_service(name="second", annotation="http"), LB_IP, ANNOTATION)

        with self.assertRaises(NotFoundError):
            self.builder.build(make_service(name="second", annotation="http,https"), LB_IP, ANNOTATION)

        self.assertEqual(self.tracker.claims_for("default/second"), [(80, "tcp")])

    def test_rebuild_is_idempotent(self):
        """Test that building twice gives the same configs and claims."""
        service = make_service()
        first = self.builder.build(service, LB_IP, ANNOTATION)
        claims = self.tracker.snapshot()

        self.assertEqual(self.builder.build(service, LB_IP, ANNOTATION), first)
        self.assertEqual(self.tracker.snapshot(), claims)
