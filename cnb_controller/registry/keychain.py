"""Registry credential resolution.

A keychain maps an image reference, which carries the namespace and
service account it is accessed on behalf of, to the credential used to
authenticate against the image's registry.

Credentials for a service account are read from a Docker config file at
``<secrets_dir>/<namespace>/<service_account>/config.json``, the layout
produced by mounting the account's image pull secrets.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from cnb_controller.registry.errors import KeychainError
from cnb_controller.registry.reference import DEFAULT_REGISTRY, parse_reference

if TYPE_CHECKING:
    from cnb_controller.registry.image import ImageRef

logger = logging.getLogger(__name__)

DOCKER_CONFIG_FILENAME = "config.json"

_DOCKER_HUB_KEYS = {"docker.io", "index.docker.io", "registry-1.docker.io"}


@dataclass(frozen=True)
class Credential:
    """Credential for a single registry.

    Attributes:
        username: Basic auth user name.
        password: Basic auth password.
        identity_token: Refresh token exchanged for a bearer token.
    """

    username: str = ""
    password: str = ""
    identity_token: str = ""

    @classmethod
    def anonymous(cls) -> Credential:
        """Return the credential used for public reads."""
        return cls()

    @property
    def is_anonymous(self) -> bool:
        """Whether this credential carries no secret at all."""
        return not (self.username or self.password or self.identity_token)


class Keychain(Protocol):
    """Resolves the credential to use for an image reference."""

    def resolve(self, image_ref: ImageRef) -> Credential: ...


class AnonymousKeychain:
    """Keychain that always resolves to anonymous access."""

    def resolve(self, image_ref: ImageRef) -> Credential:
        return Credential.anonymous()


def normalize_registry_key(key: str) -> str:
    """Reduce a Docker config ``auths`` key to a bare registry host.

    Keys may carry a scheme and path, e.g. ``https://index.docker.io/v1/``.
    """
    host = key.strip()
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.split("/", 1)[0]
    if host in _DOCKER_HUB_KEYS:
        return DEFAULT_REGISTRY
    return host


def parse_docker_config(data: dict[str, Any]) -> dict[str, Credential]:
    """Parse a Docker config document into credentials by registry host.

    Args:
        data: Parsed ``config.json`` content.

    Returns:
        Mapping of registry host to Credential.

    Raises:
        ValueError: If an entry is malformed.
    """
    auths = data.get("auths", {})
    if not isinstance(auths, dict):
        raise ValueError("'auths' must be a mapping")

    credentials: dict[str, Credential] = {}
    for key, entry in auths.items():
        if not isinstance(entry, dict):
            raise ValueError(f"auth entry for {key!r} must be a mapping")

        username = entry.get("username") or ""
        password = entry.get("password") or ""
        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"], validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise ValueError(f"auth entry for {key!r} is not valid base64") from e
            if ":" not in decoded:
                raise ValueError(f"auth entry for {key!r} is not 'user:password'")
            username, password = decoded.split(":", 1)

        credentials[normalize_registry_key(key)] = Credential(
            username=username,
            password=password,
            identity_token=entry.get("identitytoken") or "",
        )
    return credentials


class DockerConfigKeychain:
    """Keychain reading per service account Docker config files.

    References without a namespace or service account resolve to anonymous
    access, as do service accounts with no config file or no entry for the
    image's registry.
    """

    def __init__(self, secrets_dir: Path) -> None:
        """Initialize the keychain.

        Args:
            secrets_dir: Root of the per-namespace credential tree.
        """
        self.secrets_dir = secrets_dir

    def config_path(self, namespace: str, service_account: str) -> Path:
        """Return the Docker config path for a service account."""
        return self.secrets_dir / namespace / service_account / DOCKER_CONFIG_FILENAME

    def resolve(self, image_ref: ImageRef) -> Credential:
        """Resolve the credential for an image reference.

        Args:
            image_ref: Reference to resolve.

        Returns:
            Credential for the image's registry.

        Raises:
            KeychainError: If the reference or the config file is malformed.
        """
        if not image_ref.namespace or not image_ref.service_account:
            return Credential.anonymous()

        try:
            registry = parse_reference(image_ref.repo_name).registry
        except ValueError as e:
            raise KeychainError(image_ref.repo_name, str(e)) from e

        path = self.config_path(image_ref.namespace, image_ref.service_account)
        if not path.is_file():
            logger.debug(
                "No registry credentials for %s/%s, using anonymous access",
                image_ref.namespace,
                image_ref.service_account,
            )
            return Credential.anonymous()

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            credentials = parse_docker_config(data)
        except (OSError, ValueError) as e:
            raise KeychainError(
                image_ref.repo_name, f"unreadable credentials in {path}: {e}"
            ) from e

        return credentials.get(registry, Credential.anonymous())


__all__ = [
    "AnonymousKeychain",
    "Credential",
    "DockerConfigKeychain",
    "Keychain",
    "normalize_registry_key",
    "parse_docker_config",
]
