"""Exceptions for the XRD catalog engine."""

from __future__ import annotations


class CatalogError(Exception):
    """Base exception for all catalog engine errors."""

    pass


class ConfigurationError(CatalogError):
    """Invalid configuration detected at startup.

    Raised before any background task runs; the process refuses to start.
    """

    pass


class AuthenticationError(CatalogError):
    """Cluster credentials were rejected or could not be loaded."""

    pass


class ClusterError(CatalogError):
    """Base exception for failures talking to a cluster API server."""

    def __init__(self, cluster: str, message: str) -> None:
        self.cluster = cluster
        super().__init__(f"[{cluster}] {message}")


class TransientClusterError(ClusterError):
    """Retryable failure: timeout, rate limit, 5xx, expired token."""

    pass


class ClusterUnreachableError(ClusterError):
    """The cluster is marked unreachable after exhausting retries."""

    pass


class NotFoundError(CatalogError):
    """Resource not found."""

    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        if namespace:
            message = f"{kind} '{name}' not found in namespace '{namespace}'"
        else:
            message = f"{kind} '{name}' not found"
        super().__init__(message)


class EntityNotFoundError(CatalogError):
    """Catalog entity not found or not visible to the caller.

    The message never distinguishes between the two cases.
    """

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Entity not found: {identifier}")


class SchemaTransformError(CatalogError):
    """The XRD schema could not be transformed at all."""

    pass


class PermissionResolutionError(CatalogError):
    """No permission decision could be obtained for a caller."""

    pass
