from typing import Any, NamedTuple, Optional
from urllib.parse import unquote
import re

DEFAULT_NAMESPACE = "/memories"

_TRAVERSAL_PATTERNS = (
    re.compile(r"\.\."),
    re.compile(r"%2e%2e", re.IGNORECASE),
    re.compile(r"%252e%252e", re.IGNORECASE),
)


class PathValidation(NamedTuple):
    valid: bool
    normalized: str = ""
    is_directory: bool = False
    error: Optional[str] = None


def _rejected(error: str) -> PathValidation:
    return PathValidation(False, "", False, error)


def contains_traversal(path: str) -> bool:
    """Check the raw, once-decoded and twice-decoded forms for `..`"""
    once = unquote(path)
    twice = unquote(once)
    return any(
        pattern.search(candidate)
        for candidate in (path, once, twice)
        for pattern in _TRAVERSAL_PATTERNS
    )


def validate_path(path: Any, namespace: str = DEFAULT_NAMESPACE) -> PathValidation:
    """Normalize a memory path and reject anything outside the namespace"""
    if not path or not isinstance(path, str):
        return _rejected("Path is required")

    if contains_traversal(path):
        return _rejected("Path traversal detected")

    normalized = unquote(path).replace("\\", "/")
    normalized = re.sub(r"/+", "/", normalized)

    if normalized != namespace and not normalized.startswith(namespace + "/"):
        if normalized.startswith("/"):
            return _rejected(f"Path must start with {namespace}")
        normalized = f"{namespace}/{normalized}"

    is_directory = normalized == namespace or normalized.endswith("/")
    if normalized != namespace and normalized.endswith("/"):
        normalized = normalized.rstrip("/")
        if not normalized or normalized == namespace:
            normalized = namespace

    return PathValidation(True, normalized, is_directory)


def is_under(path: str, directory: str) -> bool:
    """True if `path` is `directory` itself or lies beneath it"""
    return path == directory or path.startswith(directory + "/")
