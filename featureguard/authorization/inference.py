"""
Feature and permission inference from an HTTP method and path.
"""

from typing import Tuple

DEFAULT_FEATURE = "default"


def infer_feature(path: str) -> str:
    """Return the first non-empty path segment, or ``default``."""
    for segment in path.split("/"):
        if segment:
            return segment
    return DEFAULT_FEATURE


def infer_permission(method: str, path: str) -> str:
    """
    Map a request to the permission it needs.

    ``/sudo`` anywhere in the path always requires ``sudo``. Otherwise the
    method decides, with POST refined by action words in the path.
    """
    if "/sudo" in path:
        return "sudo"

    method = method.upper()
    if method == "GET":
        return "read"
    if method == "POST":
        if "/delete" in path or "/remove" in path:
            return "delete"
        if "/update" in path or "/edit" in path:
            return "update"
        if "/create" in path or "/add" in path:
            return "create"
        return "create"
    if method in ("PUT", "PATCH"):
        return "update"
    if method == "DELETE":
        return "delete"
    return "read"


def infer_feature_permission(method: str, path: str) -> Tuple[str, str]:
    """
    Derive the ``(feature, permission)`` pair a request is checked against.

    Example:
        >>> infer_feature_permission("POST", "/billing/delete/42")
        ('billing', 'delete')
    """
    return infer_feature(path), infer_permission(method, path)
