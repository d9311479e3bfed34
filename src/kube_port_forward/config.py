"""Configuration module for kube-port-forward.

This module handles the configuration of the controller through environment variables.
"""
import os
import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from kube_port_forward.errors import ConfigurationError
from kube_port_forward.kubernetes.services import parse_label_selector

DEFAULT_FILTER_ANNOTATION = "kube-port-forward-controller/ports"
DEFAULT_ROUTER_FACTORY = "kube_port_forward.routers.memory:InMemoryRouter"

ENV_PREFIX = "KPF_"

# Annotation keys: optional DNS subdomain prefix, then a name segment
_ANNOTATION_KEY_RE = re.compile(
    r"^([a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*/)?"
    r"[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$"
)

_TRUE_VALUES = ("1", "true", "yes", "on")


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class OutputFormat(str, Enum):
    """Supported log output formats."""
    TEXT = "text"
    JSON = "json"


class ControllerConfig(BaseModel):
    """Configuration class for kube-port-forward.

    Attributes:
        filter_annotation: Key of the annotation listing the ports to forward.
        namespace: Namespace to watch, all namespaces if None.
        label_selector: Only manage Services matching this label selector.
        interface: Router interface the rules are created on.
        poll_interval: Seconds between two full reconciliations.
        retry_delay: Seconds before retrying a transient failure.
        workers: Number of Services reconciled concurrently.
        history_size: Number of recent reconcile outcomes kept for debugging.
        log_level: Minimum level of emitted logs.
        output_format: Log output format, text or json.
        router_factory: "module:attribute" path of the router backend.
        publish_events: Whether to publish Kubernetes events on Services.
    """
    filter_annotation: str = Field(default=DEFAULT_FILTER_ANNOTATION, env="KPF_FILTER_ANNOTATION")
    namespace: str | None = Field(default=None, env="KPF_NAMESPACE")
    label_selector: str | None = Field(default=None, env="KPF_LABEL_SELECTOR")
    interface: str = Field(default="wan", env="KPF_INTERFACE")
    poll_interval: int = Field(default=60, env="KPF_POLL_INTERVAL")
    retry_delay: int = Field(default=30, env="KPF_RETRY_DELAY")
    workers: int = Field(default=4, env="KPF_WORKERS")
    history_size: int = Field(default=10, env="KPF_HISTORY_SIZE")
    log_level: LogLevel = Field(default=LogLevel.INFO, env="KPF_LOG_LEVEL")
    output_format: OutputFormat = Field(default=OutputFormat.TEXT, env="KPF_OUTPUT_FORMAT")
    router_factory: str = Field(default=DEFAULT_ROUTER_FACTORY, env="KPF_ROUTER_FACTORY")
    publish_events: bool = Field(default=False, env="KPF_PUBLISH_EVENTS")

    @field_validator("filter_annotation")
    def validate_annotation_key(cls, v):
        """Validate the annotation key syntax"""
        if not _ANNOTATION_KEY_RE.match(v):
            raise ValueError(f"Invalid annotation key: {v}")
        return v

    @field_validator("label_selector")
    def validate_label_selector(cls, v):
        """Validate that the label selector parses"""
        try:
            parse_label_selector(v)
        except ConfigurationError as e:
            raise ValueError(e.message)
        return v

    @field_validator("interface")
    def validate_interface(cls, v):
        """Validate that the interface is set"""
        if not v.strip():
            raise ValueError("Interface cannot be empty")
        return v

    @field_validator("poll_interval", "retry_delay", "workers")
    def validate_positive(cls, v):
        """Validate that intervals and worker counts are positive"""
        if v <= 0:
            raise ValueError("Value must be greater than 0")
        return v

    @field_validator("history_size")
    def validate_history_size(cls, v):
        """Validate that the history size is not negative"""
        if v < 0:
            raise ValueError("History size cannot be negative")
        return v

    @field_validator("log_level", "output_format", mode="before")
    def lowercase(cls, v):
        """Accept values in any case"""
        return v.lower() if isinstance(v, str) else v

    @field_validator("router_factory")
    def validate_router_factory(cls, v):
        """Validate the module:attribute form of the router factory"""
        module_name, sep, attribute = v.partition(":")
        if not sep or not module_name or not attribute:
            raise ValueError(f"Router factory must have the form 'module:attribute', got: {v}")
        return v

    @classmethod
    def from_env(cls):
        """Create a config instance from environment variables."""
        return cls(
            filter_annotation=os.getenv(f"{ENV_PREFIX}FILTER_ANNOTATION", DEFAULT_FILTER_ANNOTATION),
            namespace=os.getenv(f"{ENV_PREFIX}NAMESPACE") or None,
            label_selector=os.getenv(f"{ENV_PREFIX}LABEL_SELECTOR") or None,
            interface=os.getenv(f"{ENV_PREFIX}INTERFACE", "wan"),
            poll_interval=int(os.getenv(f"{ENV_PREFIX}POLL_INTERVAL", "60")),
            retry_delay=int(os.getenv(f"{ENV_PREFIX}RETRY_DELAY", "30")),
            workers=int(os.getenv(f"{ENV_PREFIX}WORKERS", "4")),
            history_size=int(os.getenv(f"{ENV_PREFIX}HISTORY_SIZE", "10")),
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "info"),
            output_format=os.getenv(f"{ENV_PREFIX}OUTPUT_FORMAT", "text"),
            router_factory=os.getenv(f"{ENV_PREFIX}ROUTER_FACTORY", DEFAULT_ROUTER_FACTORY),
            publish_events=os.getenv(f"{ENV_PREFIX}PUBLISH_EVENTS", "false").lower() in _TRUE_VALUES,
        )
