"""Command-line interface for kube-port-forward.

This module serves as the entrypoint for the kube-port-forward controller.
"""

import argparse
import json
import logging
import sys

from kube_port_forward import __description__, __version__
from kube_port_forward.builder import PortConfigBuilder
from kube_port_forward.config import ControllerConfig
from kube_port_forward.controller import ReconcileController
from kube_port_forward.errors import ConfigurationError
from kube_port_forward.kubernetes import EventPublisher, KubernetesConnection, KubernetesServiceSource
from kube_port_forward.routers import load_router
from kube_port_forward.scheduler import Scheduler
from kube_port_forward.tracker import ConflictTracker

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: str = "info", output_format: str = "text") -> None:
    """Set up logging configuration.

    Args:
        level: Name of the minimum log level.
        output_format: "text" or "json".
    """
    handler = logging.StreamHandler(sys.stdout)
    if output_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler], force=True)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, sys.argv will be used.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(prog="kube-port-forward", description=__description__)

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("--namespace", help="Specific namespace to manage (overrides KPF_NAMESPACE)")

    parser.add_argument("--label-selector", help="Only manage matching Services (overrides KPF_LABEL_SELECTOR)")

    parser.add_argument(
        "--annotation", help="Annotation listing the ports to forward (overrides KPF_FILTER_ANNOTATION)"
    )

    parser.add_argument(
        "--interval", type=int, help="Reconciliation interval in seconds (overrides KPF_POLL_INTERVAL)"
    )

    parser.add_argument(
        "--log-level", choices=["debug", "info", "warning", "error"], help="Log level (overrides KPF_LOG_LEVEL)"
    )

    parser.add_argument("--output", choices=["text", "json"], help="Log output format (overrides KPF_OUTPUT_FORMAT)")

    parser.add_argument(
        "--router-factory",
        help="Router backend as 'module:attribute' (overrides KPF_ROUTER_FACTORY)",
    )

    parser.add_argument("--reconcile-once", action="store_true", help="Run reconciliation once and exit")

    return parser.parse_args(args)


def build_config(parsed_args: argparse.Namespace) -> ControllerConfig:
    """Create the configuration from environment variables and command-line overrides.

    Raises:
        ValueError: If the resulting configuration is invalid.
    """
    config = ControllerConfig.from_env()
    overrides = {
        "namespace": parsed_args.namespace,
        "label_selector": parsed_args.label_selector,
        "filter_annotation": parsed_args.annotation,
        "poll_interval": parsed_args.interval,
        "log_level": "debug" if parsed_args.verbose else parsed_args.log_level,
        "output_format": parsed_args.output,
        "router_factory": parsed_args.router_factory,
    }
    values = config.model_dump()
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ControllerConfig(**values)


def build_scheduler(config: ControllerConfig) -> Scheduler:
    """Wire the controller components together."""
    connection = KubernetesConnection()
    router = load_router(config.router_factory)
    tracker = ConflictTracker()
    service_source = KubernetesServiceSource(connection)
    controller = ReconcileController(
        service_source=service_source,
        router=router,
        tracker=tracker,
        builder=PortConfigBuilder(tracker, interface=config.interface),
        filter_annotation=config.filter_annotation,
        namespace=config.namespace,
        label_selector=config.label_selector,
        retry_delay=config.retry_delay,
        event_publisher=EventPublisher(connection) if config.publish_events else None,
    )
    return Scheduler(
        config=config, controller=controller, service_source=service_source, router=router, tracker=tracker
    )


def main(args: list[str] | None = None) -> int:
    """Main entry point for the kube-port-forward controller.

    Args:
        args: Command-line arguments. If None, sys.argv will be used.

    Returns:
        Exit code.
    """
    try:
        parsed_args = parse_args(args)
        config = build_config(parsed_args)
        setup_logging(config.log_level.value, config.output_format.value)
        logger = logging.getLogger(__name__)
        logger.info(f"Starting kube-port-forward {__version__}")

        logger.info(
            f"Configuration: annotation={config.filter_annotation}, "
            f"namespace={config.namespace or 'all'}, "
            f"label_selector={config.label_selector or 'none'}, "
            f"interface={config.interface}, "
            f"interval={config.poll_interval}s, "
            f"workers={config.workers}, "
            f"router={config.router_factory}"
        )

        scheduler = build_scheduler(config)

        if parsed_args.reconcile_once:
            logger.info("Running reconciliation once")
            results = scheduler.reconcile()
            if any(result.error is not None for result in results.values()):
                logger.warning("Some services failed to reconcile")
        else:
            logger.info("Running continuous reconciliation")
            scheduler.run_reconciliation_loop()

    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted by user")
    except (ValueError, ConfigurationError) as e:
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logging.getLogger(__name__).error(f"An unexpected error occurred: {e}")
        return 1

    logging.getLogger(__name__).info("kube-port-forward exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
