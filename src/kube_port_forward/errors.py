"""Error model for kube-port-forward.

This module defines the typed error taxonomy shared by every component. Each
error carries a type, a severity and a structured context; the severity alone
decides whether the caller should retry.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Category of a controller error."""

    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    ROUTER = "ROUTER"
    NETWORK = "NETWORK"
    CONFIGURATION = "CONFIGURATION"
    STATE = "STATE"


class Severity(str, Enum):
    """Impact level of an error.

    Only transient errors are retryable.
    """

    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"
    WARNING = "WARNING"


@dataclass(frozen=True)
class PortForwardAlternative:
    """A currently known port forward, offered as a diagnostic alternative."""

    port: int
    protocol: str
    service_key: str
    name: str = ""
    destination_ip: str = ""
    enabled: bool = True

    @property
    def id(self) -> str:
        return f"{self.port}/{self.protocol}"

    def describe(self) -> str:
        parts = [f"port:{self.port}", f"proto:{self.protocol}"]
        if self.service_key:
            parts.append(f"service:{self.service_key}")
        if self.destination_ip:
            parts.append(f"dst:{self.destination_ip}")
        return ", ".join(parts)


@dataclass(frozen=True)
class ValidationIssue:
    """A single field validation failure."""

    field: str
    value: Any
    message: str

    def __str__(self) -> str:
        return f"validation failed for field '{self.field}' with value '{self.value}': {self.message}"


@dataclass(frozen=True)
class PortLookupContext:
    """Context of a failed port lookup or claim."""

    port: int
    protocol: str
    service_key: str
    owner: str = ""
    alternatives: tuple[PortForwardAlternative, ...] = ()
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationContext:
    """Context of a validation failure, listing every violated field."""

    issues: tuple[ValidationIssue, ...] = ()


@dataclass(frozen=True)
class ServiceLookupContext:
    """Context of a failed Service lookup."""

    namespace: str
    name: str
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class RouterCallContext:
    """Context of a failed router call."""

    operation: str
    port: int | None = None
    protocol: str = ""
    rule_name: str = ""


ErrorContext = PortLookupContext | ValidationContext | ServiceLookupContext | RouterCallContext | None


class ControllerError(Exception):
    """Base class for all errors raised by the controller.

    Attributes:
        error_type: Category of the error.
        severity: Impact level; decides retryability.
        operation: The operation that failed (e.g. "build_port_configs").
        resource: The resource the operation worked on, if any.
        cause: The underlying exception, if any.
        context: Structured context specific to the error kind.
        timestamp: When the error was created.
    """

    ERROR_TYPE: ErrorType = ErrorType.ROUTER
    DEFAULT_SEVERITY: Severity = Severity.TRANSIENT

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        resource: str = "",
        cause: BaseException | None = None,
        context: ErrorContext = None,
        severity: Severity | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = self.ERROR_TYPE
        self.severity = severity or self.DEFAULT_SEVERITY
        self.operation = operation
        self.resource = resource
        self.cause = cause
        self.context = context
        self.timestamp = datetime.now(UTC)

    @property
    def retryable(self) -> bool:
        return self.severity == Severity.TRANSIENT

    def __str__(self) -> str:
        if self.resource:
            return f"{self.error_type.value} error in {self.operation} operation on {self.resource}: {self.message}"
        return f"{self.error_type.value} error in {self.operation} operation: {self.message}"

    def detailed_message(self) -> str:
        """Render the error with its diagnostic context, if any."""
        return str(self)


class NotFoundError(ControllerError):
    """A resource or port-mapping target is missing."""

    ERROR_TYPE = ErrorType.NOT_FOUND
    DEFAULT_SEVERITY = Severity.PERMANENT

    def detailed_message(self) -> str:
        """Render the error with its search criteria, alternatives and suggestions."""
        lines = [str(self)]
        ctx = self.context
        if isinstance(ctx, PortLookupContext):
            lines.append("Search criteria:")
            lines.append(f"  port: {ctx.port}")
            lines.append(f"  protocol: {ctx.protocol}")
            lines.append(f"  service: {ctx.service_key}")
            if ctx.alternatives:
                lines.append(f"Available port_forwards ({len(ctx.alternatives)} total):")
                lines.extend(f"  - {alt.id}: {alt.describe()}" for alt in ctx.alternatives)
            if ctx.suggestions:
                lines.append("Suggestions:")
                lines.extend(f"  - {suggestion}" for suggestion in ctx.suggestions)
        elif isinstance(ctx, ServiceLookupContext) and ctx.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in ctx.suggestions)
        return "\n".join(lines)


class ValidationError(ControllerError):
    """Structural violation of an annotation, a port config or a Service."""

    ERROR_TYPE = ErrorType.VALIDATION
    DEFAULT_SEVERITY = Severity.PERMANENT

    @classmethod
    def from_issues(cls, operation: str, issues: list[ValidationIssue], resource: str = "") -> "ValidationError":
        """Aggregate field issues into a single error."""
        summary = "; ".join(str(issue) for issue in issues)
        return cls(
            f"validation failed with {len(issues)} errors: {summary}",
            operation=operation,
            resource=resource,
            context=ValidationContext(issues=tuple(issues)),
        )

    @property
    def issues(self) -> tuple[ValidationIssue, ...]:
        if isinstance(self.context, ValidationContext):
            return self.context.issues
        return ()


class ProtocolValidationError(ValidationError):
    """A protocol string could not be normalized."""

    def __init__(self, protocol: str, message: str, valid_options: list[str], suggestions: list[str]):
        super().__init__(
            message,
            operation="normalize_protocol",
            context=ValidationContext(issues=(ValidationIssue("protocol", protocol, message),)),
        )
        self.protocol = protocol
        self.valid_options = valid_options
        self.suggestions = suggestions

    def detailed_message(self) -> str:
        lines = [f"Protocol '{self.protocol}' is invalid. {self.message}", "Valid options:"]
        lines.extend(f"  - {option}" for option in self.valid_options)
        if self.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in self.suggestions)
        return "\n".join(lines)


class RouterError(ControllerError):
    """The underlying router call failed."""

    ERROR_TYPE = ErrorType.ROUTER
    DEFAULT_SEVERITY = Severity.TRANSIENT


class NetworkError(ControllerError):
    """Transport-level failure."""

    ERROR_TYPE = ErrorType.NETWORK
    DEFAULT_SEVERITY = Severity.TRANSIENT


class ConfigurationError(ControllerError):
    """The controller was given misconfigured inputs."""

    ERROR_TYPE = ErrorType.CONFIGURATION
    DEFAULT_SEVERITY = Severity.PERMANENT


class StateError(ControllerError):
    """An internal invariant was violated."""

    ERROR_TYPE = ErrorType.STATE
    DEFAULT_SEVERITY = Severity.PERMANENT


def is_transient(err: BaseException | None) -> bool:
    """Check if an error is transient (retryable)."""
    return isinstance(err, ControllerError) and err.severity == Severity.TRANSIENT


def is_permanent(err: BaseException | None) -> bool:
    """Check if an error is permanent (not retryable)."""
    return isinstance(err, ControllerError) and err.severity == Severity.PERMANENT


def is_port_conflict(err: BaseException | None) -> bool:
    """Check if an error reports an external port owned by another Service.

    A conflict clears once the owner releases the port, without any change to
    the blocked Service.
    """
    return (
        isinstance(err, NotFoundError)
        and isinstance(err.context, PortLookupContext)
        and bool(err.context.owner)
    )


def classify_exception(
    exc: BaseException,
    operation: str,
    resource: str = "",
    context: RouterCallContext | None = None,
) -> ControllerError:
    """Wrap an exception raised by a collaborator into the error taxonomy.

    Controller errors pass through unchanged. Transport failures become
    transient network errors, anything else a transient router error.

    Args:
        exc: The exception to classify.
        operation: The operation that raised it.
        resource: The resource the operation worked on.
        context: Optional router call context.

    Returns:
        A controller error wrapping the exception.
    """
    if isinstance(exc, ControllerError):
        return exc
    # TimeoutError and ConnectionError are both OSError subclasses
    if isinstance(exc, OSError):
        return NetworkError(str(exc) or exc.__class__.__name__, operation=operation, resource=resource,
                            cause=exc, context=context)
    return RouterError(str(exc) or exc.__class__.__name__, operation=operation, resource=resource,
                       cause=exc, context=context)


def port_suggestions(port: int, protocol: str, alternatives: list[PortForwardAlternative]) -> list[str]:
    """Build operator hints for a port lookup that failed.

    Args:
        port: The searched external port.
        protocol: The searched protocol.
        alternatives: Currently known port forwards.

    Returns:
        Human-readable suggestions.
    """
    suggestions = []

    for alt in alternatives:
        if alt.port == port and alt.protocol != protocol:
            suggestions.append(
                f"Port {port} exists with protocol '{alt.protocol}' - try protocol '{alt.protocol}' "
                f"instead of '{protocol}'"
            )

    closest = _closest_port(port, protocol, alternatives)
    if closest is not None:
        suggestions.append(f"Port {closest} is close to searched port {port} - check if this is the correct port")

    if alternatives:
        listed = ", ".join(alt.id for alt in alternatives)
        suggestions.append(f"Available ports: {listed}")

    if not suggestions:
        suggestions.append("Port forward rule may need to be created first before updating")

    return suggestions


def _closest_port(port: int, protocol: str, alternatives: list[PortForwardAlternative]) -> int | None:
    closest = None
    min_diff = 1000
    for alt in alternatives:
        if alt.protocol != protocol:
            continue
        diff = abs(alt.port - port)
        if 0 < diff < min_diff:
            min_diff = diff
            closest = alt.port
    return closest


__all__ = [
    "ControllerError",
    "ConfigurationError",
    "ErrorContext",
    "ErrorType",
    "NetworkError",
    "NotFoundError",
    "PortForwardAlternative",
    "PortLookupContext",
    "ProtocolValidationError",
    "RouterCallContext",
    "RouterError",
    "ServiceLookupContext",
    "Severity",
    "StateError",
    "ValidationContext",
    "ValidationError",
    "ValidationIssue",
    "classify_exception",
    "is_permanent",
    "is_port_conflict",
    "is_transient",
    "port_suggestions",
]
