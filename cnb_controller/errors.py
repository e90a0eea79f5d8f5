"""Error types raised by the resource stores.

Every error carries a stable ``code`` for structured handling by callers.
All of them are retryable from a dispatcher's point of view.
"""


class StoreError(Exception):
    """Base error for resource store operations."""

    def __init__(self, message: str, code: str = "store_error") -> None:
        super().__init__(message)
        self.code = code


class ResourceNotFoundError(StoreError):
    """Raised when a keyed resource is not present in a store."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} not found: {namespace}/{name}", code="not_found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(StoreError):
    """Raised when creating a resource whose key is already taken."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(
            f"{kind} already exists: {namespace}/{name}", code="already_exists"
        )
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(StoreError):
    """Raised when a write is based on a stale resource version."""

    def __init__(self, kind: str, namespace: str, name: str, version: int) -> None:
        super().__init__(
            f"Conflict writing {kind} {namespace}/{name}: "
            f"resource version {version} is stale",
            code="conflict",
        )
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.version = version


__all__ = [
    "AlreadyExistsError",
    "ConflictError",
    "ResourceNotFoundError",
    "StoreError",
]
