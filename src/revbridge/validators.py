"""
Input validation functions for revbridge.

Checks server paths and relative item paths before they reach the target
system.
"""

import re

_INVALID_CHARS = re.compile(r'[<>|"\x00-\x1f*?]')


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Server path")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_server_path(server_path: str) -> tuple[bool, str]:
    """
    Validate a target server path such as ``$/Project/Main``.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Must start with '$/'
        - Cannot be the server root itself
        - Cannot contain '..' segments or empty segments
        - Cannot contain wildcard or control characters
    """
    if not server_path or not server_path.strip():
        return (False, format_validation_error("Server path", "cannot be empty"))

    if not server_path.startswith("$/"):
        return (
            False,
            format_validation_error("Server path", "must start with '$/'"),
        )

    segments = server_path[2:].rstrip("/").split("/")
    if segments == [""]:
        return (
            False,
            format_validation_error(
                "Server path", "cannot be the server root"
            ),
        )

    return _validate_segments("Server path", segments)


def validate_relative_path(path: str) -> tuple[bool, str]:
    """
    Validate a path relative to the bridged folder (``dir/file.txt``).

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not path:
        return (False, format_validation_error("Path", "cannot be empty"))

    if path.startswith("/") or path.startswith("$"):
        return (False, format_validation_error("Path", "must be relative"))

    return _validate_segments("Path", path.split("/"))


def _validate_segments(field_name: str, segments: list[str]) -> tuple[bool, str]:
    for segment in segments:
        if not segment:
            return (
                False,
                format_validation_error(
                    field_name, "cannot have empty path segments"
                ),
            )
        if segment in (".", ".."):
            return (
                False,
                format_validation_error(
                    field_name, "cannot contain '.' or '..' segments"
                ),
            )
        if _INVALID_CHARS.search(segment):
            return (
                False,
                format_validation_error(
                    field_name, f"has invalid characters in {segment!r}"
                ),
            )
    return (True, "")
