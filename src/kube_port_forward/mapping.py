"""Port mapping annotation parsing.

The mapping annotation lists the Service ports to expose, optionally with the
external port to use:

    http,https            expose "http" and "https" on their Service ports
    http:8080,https:8443  expose them on external ports 8080 and 8443
"""

import re
from dataclasses import dataclass

from kube_port_forward.errors import NotFoundError, ValidationError, ValidationIssue

MIN_PORT = 1
MAX_PORT = 65535

FORMAT_HINT = "Valid format: 'portname' or 'portname:externalPort'. Example: 'http:8080,https:8443'"

_DECIMAL_RE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class PortMapping:
    """A parsed annotation segment.

    Attributes:
        port_name: Name of the Service port to expose.
        external_port: External port, or None to reuse the Service port number.
    """

    port_name: str
    external_port: int | None = None

    @property
    def is_default(self) -> bool:
        return self.external_port is None


class MappingSyntaxError(ValueError):
    """A single annotation segment is malformed."""

    def __init__(self, index: int, segment: str, field: str, value: str, message: str):
        super().__init__(message)
        self.index = index
        self.segment = segment
        self.field = field
        self.value = value
        self.message = message

    def to_issue(self) -> ValidationIssue:
        return ValidationIssue(field=self.field, value=self.value, message=self.message)


def is_valid_port(port: int | None) -> bool:
    return port is not None and MIN_PORT <= port <= MAX_PORT


def split_segments(annotation: str) -> list[tuple[int, str]]:
    """Split an annotation into indexed, trimmed, non-empty segments."""
    segments = []
    for index, part in enumerate(annotation.split(",")):
        part = part.strip()
        if part:
            segments.append((index, part))
    return segments


def parse_segment(segment: str, index: int) -> PortMapping:
    """Parse one annotation segment.

    Args:
        segment: The trimmed segment, e.g. "http" or "http:8080".
        index: Position of the segment in the annotation.

    Returns:
        The parsed mapping.

    Raises:
        MappingSyntaxError: If the segment is malformed.
    """
    parts = segment.split(":")
    field = f"mapping[{index}]"

    if len(parts) > 2:
        raise MappingSyntaxError(index, segment, field, segment,
                                 f"invalid mapping format: too many colons in '{segment}'")

    port_name = parts[0].strip()
    if not port_name:
        raise MappingSyntaxError(index, segment, field, segment, "port name cannot be empty")

    if len(parts) == 1:
        return PortMapping(port_name=port_name)

    raw_port = parts[1].strip()
    if not _DECIMAL_RE.match(raw_port):
        raise MappingSyntaxError(index, segment, f"{field}.external_port", raw_port,
                                 f"invalid external port '{raw_port}': must be an integer between 1 and 65535")

    external_port = int(raw_port)
    if not is_valid_port(external_port):
        raise MappingSyntaxError(index, segment, f"{field}.external_port", raw_port,
                                 f"invalid external port {external_port}: out of valid range (1-65535)")

    return PortMapping(port_name=port_name, external_port=external_port)


def parse_port_mappings(annotation: str | None, resource: str = "") -> list[PortMapping]:
    """Parse a mapping annotation into port mappings, in annotation order.

    Args:
        annotation: The raw annotation value.
        resource: Service key used in error messages.

    Returns:
        The parsed mappings.

    Raises:
        NotFoundError: If the annotation is absent or empty.
        ValidationError: If any segment is malformed or a port name repeats.
    """
    segments = split_segments(annotation or "")
    if not segments:
        raise NotFoundError("no port annotation found", operation="parse_annotation", resource=resource)

    mappings = []
    seen_names: dict[str, int] = {}
    for index, segment in segments:
        try:
            mapping = parse_segment(segment, index)
        except MappingSyntaxError as e:
            error = ValidationError.from_issues("parse_annotation", [e.to_issue()], resource=resource)
            error.message = f"invalid port mapping '{segment}' at index {index}: {e.message}. {FORMAT_HINT}"
            raise error from e

        if mapping.port_name in seen_names:
            raise ValidationError.from_issues(
                "parse_annotation",
                [ValidationIssue(f"mapping[{index}]", segment,
                                 f"port '{mapping.port_name}' is already mapped at index {seen_names[mapping.port_name]}")],
                resource=resource,
            )
        seen_names[mapping.port_name] = index
        mappings.append(mapping)

    return mappings


def annotation_issues(annotation: str) -> list[ValidationIssue]:
    """Collect the syntax issues of every segment of an annotation.

    Unlike parse_port_mappings this does not stop at the first bad segment.
    """
    issues = []
    for index, segment in split_segments(annotation):
        try:
            parse_segment(segment, index)
        except MappingSyntaxError as e:
            issues.append(e.to_issue())
    return issues
