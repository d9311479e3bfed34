"""Tests for the configuration module."""

import os
import unittest
from unittest import mock

from kube_port_forward.config import (
    DEFAULT_FILTER_ANNOTATION,
    DEFAULT_ROUTER_FACTORY,
    ControllerConfig,
    LogLevel,
    OutputFormat,
)


class TestControllerConfig(unittest.TestCase):
    """Test cases for ControllerConfig."""

    def test_default_values(self):
        """Test that default values are set correctly."""
        config = ControllerConfig()
        self.assertEqual(config.filter_annotation, DEFAULT_FILTER_ANNOTATION)
        self.assertIsNone(config.namespace)
        self.assertIsNone(config.label_selector)
        self.assertEqual(config.interface, "wan")
        self.assertEqual(config.poll_interval, 60)
        self.assertEqual(config.retry_delay, 30)
        self.assertEqual(config.workers, 4)
        self.assertEqual(config.history_size, 10)
        self.assertEqual(config.log_level, LogLevel.INFO)
        self.assertEqual(config.output_format, OutputFormat.TEXT)
        self.assertEqual(config.router_factory, DEFAULT_ROUTER_FACTORY)
        self.assertFalse(config.publish_events)

    def test_annotation_key_validation(self):
        """Test that annotation keys are validated."""
        ControllerConfig(filter_annotation="example.com/ports")
        ControllerConfig(filter_annotation="ports")
        with self.assertRaises(ValueError):
            ControllerConfig(filter_annotation="not a key")
        with self.assertRaises(ValueError):
            ControllerConfig(filter_annotation="example.com/")

    def test_positive_values(self):
        """Test that intervals and workers must be positive."""
        for field in ("poll_interval", "retry_delay", "workers"):
            with self.subTest(field=field):
                with self.assertRaises(ValueError):
                    ControllerConfig(**{field: 0})

    def test_history_size_validation(self):
        """Test that the history size cannot be negative."""
        ControllerConfig(history_size=0)
        with self.assertRaises(ValueError):
            ControllerConfig(history_size=-1)

    def test_label_selector_validation(self):
        """Test that the label selector must parse."""
        ControllerConfig(label_selector="app=web,env in (prod)")
        with self.assertRaises(ValueError):
            ControllerConfig(label_selector="app in prod")

    def test_log_level_and_format(self):
        """Test enum fields, case insensitively."""
        config = ControllerConfig(log_level="DEBUG", output_format="JSON")
        self.assertEqual(config.log_level, LogLevel.DEBUG)
        self.assertEqual(config.output_format, OutputFormat.JSON)
        with self.assertRaises(ValueError):
            ControllerConfig(log_level="verbose")
        with self.assertRaises(ValueError):
            ControllerConfig(output_format="xml")

    def test_router_factory_validation(self):
        """Test the router factory path form."""
        with self.assertRaises(ValueError):
            ControllerConfig(router_factory="kube_port_forward.routers.memory")

    def test_empty_interface(self):
        """Test that the interface cannot be blank."""
        with self.assertRaises(ValueError):
            ControllerConfig(interface=" ")

    @mock.patch.dict(
        os.environ,
        {
            "KPF_FILTER_ANNOTATION": "example.com/ports",
            "KPF_NAMESPACE": "production",
            "KPF_LABEL_SELECTOR": "expose=true",
            "KPF_INTERFACE": "wan2",
            "KPF_POLL_INTERVAL": "120",
            "KPF_RETRY_DELAY": "5",
            "KPF_WORKERS": "8",
            "KPF_HISTORY_SIZE": "50",
            "KPF_LOG_LEVEL": "warning",
            "KPF_OUTPUT_FORMAT": "json",
            "KPF_PUBLISH_EVENTS": "true",
        },
    )
    def test_from_env(self):
        """Test creating config from environment variables."""
        config = ControllerConfig.from_env()
        self.assertEqual(config.filter_annotation, "example.com/ports")
        self.assertEqual(config.namespace, "production")
        self.assertEqual(config.label_selector, "expose=true")
        self.assertEqual(config.interface, "wan2")
        self.assertEqual(config.poll_interval, 120)
        self.assertEqual(config.retry_delay, 5)
        self.assertEqual(config.workers, 8)
        self.assertEqual(config.history_size, 50)
        self.assertEqual(config.log_level, LogLevel.WARNING)
        self.assertEqual(config.output_format, OutputFormat.JSON)
        self.assertTrue(config.publish_events)

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_from_env_defaults(self):
        """Test that from_env falls back to defaults."""
        self.assertEqual(ControllerConfig.from_env(), ControllerConfig())

    @mock.patch.dict(os.environ, {"KPF_POLL_INTERVAL": "soon"}, clear=True)
    def test_from_env_invalid_number(self):
        """Test that non numeric values are rejected."""
        with self.assertRaises(ValueError):
            ControllerConfig.from_env()
