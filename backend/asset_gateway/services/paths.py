import re
from collections.abc import Sequence
from typing import Any

from asset_gateway.core.errors import InvalidPath

KEY_SEPARATOR = "/"

_FORBIDDEN_CHARS = re.compile(r"[/\\\x00-\x1f\x7f]")
_RESERVED_SEGMENTS = frozenset({".", ".."})


def validate_segments(raw_path: Any) -> tuple[str, ...]:
    """Check a logical path and return its segments in order.

    The first segment is the outermost folder and the last one is the file
    name. Segments are returned exactly as given; whitespace only matters
    for the emptiness check.
    """
    if isinstance(raw_path, (str, bytes)) or not isinstance(raw_path, Sequence):
        raise InvalidPath("path must be a non-empty array")
    if len(raw_path) == 0:
        raise InvalidPath("path must be a non-empty array")

    for segment in raw_path:
        if not isinstance(segment, str) or not segment.strip():
            raise InvalidPath("All path segments must be non-empty strings")

    for segment in raw_path:
        if _FORBIDDEN_CHARS.search(segment):
            raise InvalidPath(
                "Path segments must not contain '/', '\\' or control characters",
                details=repr(segment),
            )
        if segment in _RESERVED_SEGMENTS:
            raise InvalidPath("Path segments must not be '.' or '..'", details=segment)

    return tuple(raw_path)


def join_segments(segments: Sequence[str]) -> str:
    return KEY_SEPARATOR.join(segments)


def build_object_key(raw_path: Any) -> str:
    return join_segments(validate_segments(raw_path))
