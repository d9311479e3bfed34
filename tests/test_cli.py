"""Tests for the command-line interface."""

import json
import logging
import os
import unittest
from unittest import mock

from kube_port_forward import __version__
from kube_port_forward.cli import JsonFormatter, build_config, main, parse_args, setup_logging
from kube_port_forward.config import LogLevel, OutputFormat
from kube_port_forward.errors import ConfigurationError


class TestParseArgs(unittest.TestCase):
    """Test cases for argument parsing and config overrides."""

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_overrides(self):
        """Test that command-line arguments override the environment."""
        args = parse_args([
            "--namespace", "production",
            "--label-selector", "expose=true",
            "--annotation", "example.com/ports",
            "--interval", "30",
            "--log-level", "warning",
            "--output", "json",
            "--router-factory", "my_router:Router",
        ])
        config = build_config(args)
        self.assertEqual(config.namespace, "production")
        self.assertEqual(config.label_selector, "expose=true")
        self.assertEqual(config.filter_annotation, "example.com/ports")
        self.assertEqual(config.poll_interval, 30)
        self.assertEqual(config.log_level, LogLevel.WARNING)
        self.assertEqual(config.output_format, OutputFormat.JSON)
        self.assertEqual(config.router_factory, "my_router:Router")

    @mock.patch.dict(os.environ, {"KPF_NAMESPACE": "staging"}, clear=True)
    def test_environment_kept_without_overrides(self):
        """Test that unset arguments keep environment values."""
        config = build_config(parse_args([]))
        self.assertEqual(config.namespace, "staging")
        self.assertFalse(parse_args([]).reconcile_once)

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_verbose_sets_debug(self):
        """Test the verbose flag."""
        config = build_config(parse_args(["-v", "--log-level", "error"]))
        self.assertEqual(config.log_level, LogLevel.DEBUG)

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_invalid_override(self):
        """Test that overrides are validated."""
        with self.assertRaises(ValueError):
            build_config(parse_args(["--interval", "0"]))

    def test_version(self):
        """Test the version flag."""
        with mock.patch("sys.stdout") as stdout:
            with self.assertRaises(SystemExit) as ctx:
                parse_args(["--version"])
        self.assertEqual(ctx.exception.code, 0)
        written = "".join(call.args[0] for call in stdout.write.call_args_list)
        self.assertIn(__version__, written)


class TestLogging(unittest.TestCase):
    """Test cases for logging setup."""

    def tearDown(self):
        """Restore the root logger."""
        logging.basicConfig(level=logging.WARNING, handlers=[logging.NullHandler()], force=True)

    def test_text_logging(self):
        """Test the text format."""
        setup_logging("debug", "text")
        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertNotIsInstance(root.handlers[0].formatter, JsonFormatter)

    def test_json_logging(self):
        """Test the JSON format."""
        setup_logging("info", "json")
        root = logging.getLogger()
        self.assertEqual(root.level, logging.INFO)
        self.assertIsInstance(root.handlers[0].formatter, JsonFormatter)

    def test_json_formatter(self):
        """Test that records are rendered as JSON objects."""
        record = logging.LogRecord("kube_port_forward.test", logging.WARNING, __file__, 1, "port %s", (80,), None)
        entry = json.loads(JsonFormatter().format(record))
        self.assertEqual(entry["level"], "WARNING")
        self.assertEqual(entry["logger"], "kube_port_forward.test")
        self.assertEqual(entry["message"], "port 80")


class TestMain(unittest.TestCase):
    """Test cases for the main entry point."""

    def tearDown(self):
        """Restore the root logger."""
        logging.basicConfig(level=logging.WARNING, handlers=[logging.NullHandler()], force=True)

    @mock.patch.dict(os.environ, {}, clear=True)
    @mock.patch("kube_port_forward.cli.build_scheduler")
    def test_reconcile_once(self, build_scheduler_mock):
        """Test a single reconciliation run."""
        scheduler = build_scheduler_mock.return_value
        scheduler.reconcile.return_value = {}

        self.assertEqual(main(["--reconcile-once"]), 0)

        scheduler.reconcile.assert_called_once()
        scheduler.run_reconciliation_loop.assert_not_called()

    @mock.patch.dict(os.environ, {}, clear=True)
    @mock.patch("kube_port_forward.cli.build_scheduler")
    def test_loop(self, build_scheduler_mock):
        """Test continuous reconciliation."""
        self.assertEqual(main([]), 0)
        build_scheduler_mock.return_value.run_reconciliation_loop.assert_called_once()

    @mock.patch.dict(os.environ, {"KPF_WORKERS": "-1"}, clear=True)
    def test_invalid_configuration(self):
        """Test that configuration errors exit with 1."""
        self.assertEqual(main([]), 1)

    @mock.patch.dict(os.environ, {}, clear=True)
    @mock.patch("kube_port_forward.cli.build_scheduler")
    def test_connection_failure(self, build_scheduler_mock):
        """Test that Kubernetes configuration errors exit with 1."""
        build_scheduler_mock.side_effect = ConfigurationError("kubeconfig missing", operation="connect")
        self.assertEqual(main([]), 1)

    @mock.patch.dict(os.environ, {}, clear=True)
    @mock.patch("kube_port_forward.cli.load_router")
    @mock.patch("kube_port_forward.cli.KubernetesConnection")
    def test_build_scheduler_wiring(self, connection_mock, load_router_mock):
        """Test that the scheduler is wired from the configuration."""
        from kube_port_forward.cli import build_scheduler
        from kube_port_forward.config import ControllerConfig

        scheduler = build_scheduler(ControllerConfig(interface="wan2", publish_events=True))

        load_router_mock.assert_called_once_with("kube_port_forward.routers.memory:InMemoryRouter")
        self.assertIs(scheduler.router, load_router_mock.return_value)
        self.assertIs(scheduler.controller.tracker, scheduler.tracker)
        self.assertEqual(scheduler.controller.builder.interface, "wan2")
        self.assertIsNotNone(scheduler.controller.event_publisher)
