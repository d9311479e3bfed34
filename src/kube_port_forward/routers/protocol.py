"""Protocol normalization.

Router rules, Service ports and annotations spell protocols in many ways. This
module folds them into one of three canonical values.
"""

from kube_port_forward.errors import ProtocolValidationError

TCP = "tcp"
UDP = "udp"
TCP_UDP = "tcp_udp"

VALID_PROTOCOLS = [TCP, UDP, TCP_UDP]

# Keys are in the cleaned form: upper case, "/" and "-" replaced by "_"
PROTOCOL_ALIASES = {
    "TCP": TCP,
    "UDP": UDP,
    "TCP_UDP": TCP_UDP,
    "TCPV4": TCP,
    "UDPV4": UDP,
    "IPV4_TCP": TCP,
    "IPV4_UDP": UDP,
}


class ProtocolNormalizer:
    """Normalizes and compares protocol strings."""

    def __init__(self, aliases: dict[str, str] | None = None):
        self.aliases = dict(PROTOCOL_ALIASES)
        if aliases:
            self.aliases.update({self._clean(key): value for key, value in aliases.items()})

    @staticmethod
    def _clean(protocol: str) -> str:
        return protocol.strip().upper().replace("/", "_").replace("-", "_")

    def normalize(self, protocol: str | None) -> str:
        """Normalize a protocol string.

        Args:
            protocol: The raw protocol, e.g. "TCP", "tcp/udp" or "TCPv4".

        Returns:
            One of "tcp", "udp" or "tcp_udp".

        Raises:
            ProtocolValidationError: If the protocol is empty or unknown.
        """
        if not protocol or not protocol.strip():
            raise ProtocolValidationError(
                protocol=protocol or "",
                message="protocol cannot be empty",
                valid_options=list(VALID_PROTOCOLS),
                suggestions=["Use 'tcp', 'udp', or 'tcp_udp'"],
            )

        cleaned = self._clean(protocol)
        if cleaned in self.aliases:
            return self.aliases[cleaned]

        if cleaned.lower() in VALID_PROTOCOLS:
            return cleaned.lower()

        raise ProtocolValidationError(
            protocol=protocol,
            message=f"protocol '{protocol}' is not supported",
            valid_options=list(VALID_PROTOCOLS),
            suggestions=generate_protocol_suggestions(protocol),
        )

    def is_valid(self, protocol: str | None) -> bool:
        """Check whether a protocol can be normalized."""
        try:
            self.normalize(protocol)
        except ProtocolValidationError:
            return False
        return True

    def are_compatible(self, first: str, second: str) -> bool:
        """Check if two protocols overlap on the router.

        "tcp_udp" is compatible with both "tcp" and "udp". Protocols that
        cannot be normalized are never compatible.
        """
        try:
            norm_first = self.normalize(first)
            norm_second = self.normalize(second)
        except ProtocolValidationError:
            return False

        if norm_first == norm_second:
            return True
        return TCP_UDP in (norm_first, norm_second)


def generate_protocol_suggestions(invalid_protocol: str) -> list[str]:
    """Create hints for an invalid protocol string."""
    invalid_upper = invalid_protocol.upper()
    suggestions = [
        "Use 'tcp' for TCP traffic",
        "Use 'udp' for UDP traffic",
        "Use 'tcp_udp' for both TCP and UDP traffic",
    ]

    if "TCP" in invalid_upper and "UDP" in invalid_upper:
        suggestions.append("For both TCP and UDP, use 'tcp_udp'")
    elif "TCP" in invalid_upper:
        suggestions.append("For TCP traffic, use 'tcp'")
    elif "UDP" in invalid_upper:
        suggestions.append("For UDP traffic, use 'udp'")

    if "/" in invalid_protocol:
        suggestions.append("Use underscore '_' instead of slash '/'")
    if "-" in invalid_protocol:
        suggestions.append("Use underscore '_' instead of dash '-'")

    return suggestions


# Shared stateless instance
default_normalizer = ProtocolNormalizer()


def normalize_protocol(protocol: str | None) -> str:
    """Normalize a protocol with the default alias table."""
    return default_normalizer.normalize(protocol)
