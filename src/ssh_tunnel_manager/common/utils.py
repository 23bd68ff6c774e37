"""Utility functions shared across the tunnel manager."""

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

# Dynamic/private range used for local tunnel ports
DYNAMIC_MIN_PORT = 49152
DYNAMIC_MAX_PORT = 65535


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if (
        not isinstance(port, int)
        or isinstance(port, bool)
        or not (MIN_PORT <= port <= MAX_PORT)
    ):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def parse_host_port(value: str, field_name: str = "Endpoint") -> tuple[str, int]:
    """Split a ``host:port`` string.

    Args:
        value: String in ``host:port`` form
        field_name: Name of the field for error messages

    Returns:
        Tuple of (host, port)

    Raises:
        ValueError: If the string is not a valid ``host:port`` pair
    """
    host, sep, port_str = validate_non_empty_string(value, field_name).rpartition(":")
    if not sep or not host:
        raise ValueError(f"{field_name} must be in host:port form, got '{value}'")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"{field_name} has a non-numeric port: '{port_str}'") from None
    validate_port(port, f"{field_name} port")
    return host, port
