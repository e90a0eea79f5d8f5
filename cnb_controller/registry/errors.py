"""Error types for registry access and build metadata retrieval."""


class RegistryAccessError(Exception):
    """Raised when an image cannot be opened or read from its registry.

    Attributes:
        repo_name: Repository name of the image being accessed.
        code: Stable error code.
    """

    def __init__(
        self, repo_name: str, message: str, code: str = "registry_access_error"
    ) -> None:
        super().__init__(f"could not access remote image {repo_name}: {message}")
        self.repo_name = repo_name
        self.code = code


class KeychainError(RegistryAccessError):
    """Raised when registry credentials cannot be resolved for an image."""

    def __init__(self, repo_name: str, message: str) -> None:
        super().__init__(repo_name, message, code="keychain_error")


class MalformedMetadataError(Exception):
    """Raised when the build metadata label is missing or cannot be decoded."""

    def __init__(self, repo_name: str, message: str) -> None:
        super().__init__(f"malformed build metadata on {repo_name}: {message}")
        self.repo_name = repo_name
        self.code = "malformed_metadata"


__all__ = ["KeychainError", "MalformedMetadataError", "RegistryAccessError"]
