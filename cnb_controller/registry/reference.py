"""Image reference parsing.

Splits a repository name such as ``gcr.io/project/app:v1`` or
``busybox@sha256:...`` into registry host, repository path and tag or
digest, applying Docker Hub defaults for short names.
"""

import re
from dataclasses import dataclass

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

# Hostnames that Docker Hub is also known by
_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}

_REPOSITORY_PATTERN = re.compile(r"^[a-z0-9]+(?:[._\-/][a-z0-9]+)*$")
_DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[+._\-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")
_TAG_PATTERN = re.compile(r"^[\w][\w.\-]{0,127}$")


class InvalidReferenceError(ValueError):
    """Raised when a repository name cannot be parsed."""

    def __init__(self, repo_name: str, reason: str) -> None:
        super().__init__(f"invalid image reference {repo_name!r}: {reason}")
        self.repo_name = repo_name
        self.code = "invalid_reference"


@dataclass(frozen=True)
class ParsedReference:
    """A fully qualified image reference.

    Attributes:
        registry: Registry host, including port if any.
        repository: Repository path within the registry.
        reference: Tag or digest identifying the manifest.
    """

    registry: str
    repository: str
    reference: str

    @property
    def is_digest(self) -> bool:
        """Whether the reference pins a digest rather than a tag."""
        return ":" in self.reference

    @property
    def api_host(self) -> str:
        """Host serving the registry API."""
        if self.registry == DEFAULT_REGISTRY:
            return "registry-1.docker.io"
        return self.registry

    def __str__(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.registry}/{self.repository}{separator}{self.reference}"


def _looks_like_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_reference(repo_name: str) -> ParsedReference:
    """Parse a repository name into its parts.

    Args:
        repo_name: Image name, optionally with registry, tag or digest.

    Returns:
        ParsedReference with defaults applied.

    Raises:
        InvalidReferenceError: If the name is malformed.
    """
    name = repo_name.strip()
    if not name:
        raise InvalidReferenceError(repo_name, "empty name")

    reference = DEFAULT_TAG
    if "@" in name:
        name, reference = name.split("@", 1)
        if not _DIGEST_PATTERN.match(reference):
            raise InvalidReferenceError(repo_name, "malformed digest")
    else:
        last_slash = name.rfind("/")
        colon = name.rfind(":")
        # A colon after the last slash separates the tag; before it, a port
        if colon > last_slash:
            name, reference = name[:colon], name[colon + 1 :]
            if not _TAG_PATTERN.match(reference):
                raise InvalidReferenceError(repo_name, "malformed tag")

    first, _, rest = name.partition("/")
    if rest and _looks_like_host(first):
        registry, repository = first, rest
    else:
        registry, repository = DEFAULT_REGISTRY, name

    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
        if "/" not in repository:
            repository = f"library/{repository}"

    if not _REPOSITORY_PATTERN.match(repository):
        raise InvalidReferenceError(repo_name, "malformed repository")

    return ParsedReference(
        registry=registry, repository=repository, reference=reference
    )


__all__ = [
    "DEFAULT_REGISTRY",
    "DEFAULT_TAG",
    "InvalidReferenceError",
    "ParsedReference",
    "parse_reference",
]
