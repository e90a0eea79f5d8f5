"""Read-only access to remote images.

This module handles:
- Image references bound to a namespace and service account (or none)
- Registry authentication challenges (Bearer token and Basic)
- Manifest resolution, including multi-platform indexes
- Exposing digest, creation time, labels and environment of an image

Images are read over the OCI distribution HTTP API; nothing is pulled
beyond the manifest and the config blob.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from cnb_controller.registry.errors import RegistryAccessError
from cnb_controller.registry.keychain import Credential, Keychain
from cnb_controller.registry.reference import ParsedReference, parse_reference

logger = logging.getLogger(__name__)

# Timeout for registry requests (seconds)
REGISTRY_TIMEOUT = 30.0

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

MANIFEST_ACCEPT = ", ".join(
    [OCI_MANIFEST, DOCKER_MANIFEST, OCI_INDEX, DOCKER_MANIFEST_LIST]
)
INDEX_MEDIA_TYPES = {OCI_INDEX, DOCKER_MANIFEST_LIST}

# Platform picked out of multi-platform indexes
DEFAULT_PLATFORM = ("linux", "amd64")

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_FRACTION = re.compile(r"\.(\d+)")


class ImageRef(Protocol):
    """An image name plus the identity its registry is accessed as."""

    @property
    def repo_name(self) -> str: ...

    @property
    def namespace(self) -> str: ...

    @property
    def service_account(self) -> str: ...


@dataclass(frozen=True)
class ServiceAccountImageRef:
    """Image reference accessed with a service account's credentials."""

    repo_name: str
    namespace: str
    service_account: str


@dataclass(frozen=True)
class NoAuthImageRef:
    """Image reference accessed anonymously."""

    repo_name: str
    namespace: str = field(default="", init=False)
    service_account: str = field(default="", init=False)


class RemoteImage(Protocol):
    """Read-only handle on an image in a registry."""

    def digest(self) -> str: ...

    def created_at(self) -> datetime: ...

    def label(self, name: str) -> str | None: ...

    def env(self, key: str) -> str | None: ...


class RemoteImageFactory(Protocol):
    """Opens remote images."""

    def new_remote(self, image_ref: ImageRef) -> RemoteImage: ...


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as written in image configs.

    Fractional seconds beyond microseconds are truncated.

    Raises:
        ValueError: If the value is not a timestamp.
    """
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Parse a WWW-Authenticate header into scheme and parameters.

    Args:
        header: Header value, e.g. 'Bearer realm="...",service="..."'.

    Returns:
        Tuple of (lower-cased scheme, parameters).
    """
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistryImage:
    """A remote image whose manifest and config have been fetched."""

    def __init__(self, repo_name: str, digest: str, config: dict[str, Any]) -> None:
        """Initialize RegistryImage.

        Args:
            repo_name: Repository name the image was opened from.
            digest: Manifest digest.
            config: Parsed image config blob.
        """
        self.repo_name = repo_name
        self._digest = digest
        self._config = config

    def __repr__(self) -> str:
        return f"<RegistryImage({self.repo_name}@{self._digest})>"

    @property
    def _container_config(self) -> dict[str, Any]:
        container_config = self._config.get("config")
        return container_config if isinstance(container_config, dict) else {}

    def digest(self) -> str:
        """Return the manifest digest, e.g. 'sha256:...'."""
        return self._digest

    def created_at(self) -> datetime:
        """Return the image creation time.

        Raises:
            RegistryAccessError: If the config has no valid creation time.
        """
        created = self._config.get("created")
        if not created or not isinstance(created, str):
            raise RegistryAccessError(
                self.repo_name, "image config has no creation time"
            )
        try:
            return parse_timestamp(created)
        except ValueError as e:
            raise RegistryAccessError(
                self.repo_name, f"invalid creation time {created!r}"
            ) from e

    def label(self, name: str) -> str | None:
        """Return a label value, or None if the image lacks the label."""
        labels = self._container_config.get("Labels")
        if not isinstance(labels, dict):
            return None
        value = labels.get(name)
        return value if isinstance(value, str) else None

    def env(self, key: str) -> str | None:
        """Return an environment variable value, or None if unset."""
        for entry in self._container_config.get("Env") or []:
            name, sep, value = entry.partition("=")
            if sep and name == key:
                return value
        return None


class _RegistrySession:
    """Authenticated requests against one repository of one registry."""

    def __init__(
        self,
        client: httpx.Client,
        parsed: ParsedReference,
        credential: Credential,
        repo_name: str,
        insecure: bool = False,
        timeout: float = REGISTRY_TIMEOUT,
    ) -> None:
        self.client = client
        self.parsed = parsed
        self.credential = credential
        self.repo_name = repo_name
        self.timeout = timeout
        scheme = "http" if insecure else "https"
        self.base_url = f"{scheme}://{parsed.api_host}/v2/{parsed.repository}"
        self._authorization: str | None = None

    def _basic_auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.credential.username, self.credential.password)

    def _basic_header(self) -> str:
        raw = f"{self.credential.username}:{self.credential.password}"
        return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def _fetch_token(self, params: dict[str, str]) -> str:
        realm = params.get("realm")
        if not realm:
            raise RegistryAccessError(self.repo_name, "bearer challenge without realm")

        scope = f"repository:{self.parsed.repository}:pull"
        query = {"scope": scope}
        if "service" in params:
            query["service"] = params["service"]

        logger.debug("Requesting registry token from %s for %s", realm, scope)
        if self.credential.identity_token:
            response = self.client.post(
                realm,
                data={
                    **query,
                    "grant_type": "refresh_token",
                    "refresh_token": self.credential.identity_token,
                    "client_id": "cnb-controller",
                },
                timeout=self.timeout,
            )
        elif self.credential.is_anonymous:
            response = self.client.get(realm, params=query, timeout=self.timeout)
        else:
            response = self.client.get(
                realm, params=query, auth=self._basic_auth(), timeout=self.timeout
            )

        if response.status_code != 200:
            raise RegistryAccessError(
                self.repo_name,
                f"token request failed with HTTP {response.status_code}",
                code="unauthorized",
            )
        body = _json_object(self.repo_name, response, "token response")
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryAccessError(self.repo_name, "token response had no token")
        return f"Bearer {token}"

    def _authorize(self, challenge: str) -> str:
        scheme, params = parse_challenge(challenge)
        if scheme == "bearer":
            return self._fetch_token(params)
        if scheme == "basic" and not self.credential.is_anonymous:
            return self._basic_header()
        raise RegistryAccessError(
            self.repo_name,
            f"cannot satisfy {scheme or 'unknown'} authentication challenge",
            code="unauthorized",
        )

    def get(self, path: str, accept: str | None = None) -> httpx.Response:
        """GET a path below the repository, answering auth challenges once.

        Raises:
            RegistryAccessError: On transport errors or non-success status.
        """
        url = f"{self.base_url}/{path}"
        headers: dict[str, str] = {}
        if accept:
            headers["Accept"] = accept

        try:
            if self._authorization:
                headers["Authorization"] = self._authorization
            response = self.client.get(
                url, headers=headers, timeout=self.timeout, follow_redirects=True
            )
            if response.status_code == 401 and not self._authorization:
                challenge = response.headers.get("WWW-Authenticate", "")
                logger.debug("Registry challenge for %s: %s", url, challenge)
                self._authorization = self._authorize(challenge)
                headers["Authorization"] = self._authorization
                response = self.client.get(
                    url, headers=headers, timeout=self.timeout, follow_redirects=True
                )
        except httpx.TimeoutException as e:
            raise RegistryAccessError(
                self.repo_name, f"timeout fetching {url}", code="timeout"
            ) from e
        except httpx.HTTPError as e:
            raise RegistryAccessError(
                self.repo_name, f"request to {url} failed: {e}", code="network_error"
            ) from e

        if response.status_code == 404:
            raise RegistryAccessError(
                self.repo_name, f"{path} not found", code="not_found"
            )
        if response.status_code in (401, 403):
            raise RegistryAccessError(
                self.repo_name,
                f"access to {path} denied (HTTP {response.status_code})",
                code="unauthorized",
            )
        if response.status_code >= 400:
            raise RegistryAccessError(
                self.repo_name,
                f"HTTP {response.status_code} fetching {path}",
                code="http_error",
            )
        return response


def _json_object(
    repo_name: str, response: httpx.Response, what: str
) -> dict[str, Any]:
    try:
        document = response.json()
    except ValueError as e:
        raise RegistryAccessError(repo_name, f"{what} is not JSON") from e
    if not isinstance(document, dict):
        raise RegistryAccessError(repo_name, f"{what} is not a JSON object")
    return document


def _media_type(response: httpx.Response, document: dict[str, Any]) -> str:
    content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
    return document.get("mediaType") or content_type


def _select_platform(repo_name: str, index: dict[str, Any]) -> str:
    manifests = index.get("manifests") or []
    if not manifests:
        raise RegistryAccessError(repo_name, "image index lists no manifests")
    if not isinstance(manifests, list) or not all(
        isinstance(d, dict) for d in manifests
    ):
        raise RegistryAccessError(repo_name, "image index manifests are malformed")

    selected = manifests[0]
    for descriptor in manifests:
        platform = descriptor.get("platform")
        if not isinstance(platform, dict):
            continue
        if (platform.get("os"), platform.get("architecture")) == DEFAULT_PLATFORM:
            selected = descriptor
            break

    digest = selected.get("digest")
    if not digest:
        raise RegistryAccessError(repo_name, "image index entry has no digest")
    return str(digest)


class ImageFactory:
    """Opens remote images with credentials from a keychain."""

    def __init__(
        self,
        keychain: Keychain,
        client: httpx.Client | None = None,
        timeout: float = REGISTRY_TIMEOUT,
        insecure_registries: list[str] | None = None,
    ) -> None:
        """Initialize ImageFactory.

        Args:
            keychain: Resolves credentials for image references.
            client: HTTPX client; a new one is created if not provided.
            timeout: Request timeout in seconds.
            insecure_registries: Registry hosts reached over plain HTTP.
        """
        self.keychain = keychain
        self.client = client if client is not None else httpx.Client()
        self.timeout = timeout
        self.insecure_registries = set(insecure_registries or [])

    def new_remote(self, image_ref: ImageRef) -> RegistryImage:
        """Open a remote image.

        Args:
            image_ref: Reference to open.

        Returns:
            RegistryImage for the reference.

        Raises:
            RegistryAccessError: If credentials cannot be resolved or the
                image cannot be read from its registry.
        """
        repo_name = image_ref.repo_name
        try:
            parsed = parse_reference(repo_name)
        except ValueError as e:
            raise RegistryAccessError(
                repo_name, str(e), code="invalid_reference"
            ) from e

        # KeychainError is itself a RegistryAccessError
        credential = self.keychain.resolve(image_ref)

        session = _RegistrySession(
            self.client,
            parsed,
            credential,
            repo_name,
            insecure=parsed.registry in self.insecure_registries,
            timeout=self.timeout,
        )

        digest, manifest = self._fetch_manifest(session, parsed.reference)
        config_descriptor = manifest.get("config")
        if not isinstance(config_descriptor, dict):
            config_descriptor = {}
        config_digest = config_descriptor.get("digest")
        if not config_digest:
            raise RegistryAccessError(repo_name, "manifest has no config descriptor")

        config = _json_object(
            repo_name, session.get(f"blobs/{config_digest}"), "image config"
        )

        logger.debug("Opened remote image %s at %s", repo_name, digest)
        return RegistryImage(repo_name, digest, config)

    def _fetch_manifest(
        self, session: _RegistrySession, reference: str, resolve_index: bool = True
    ) -> tuple[str, dict[str, Any]]:
        response = session.get(f"manifests/{reference}", accept=MANIFEST_ACCEPT)
        manifest = _json_object(session.repo_name, response, "manifest")

        if _media_type(response, manifest) in INDEX_MEDIA_TYPES:
            if not resolve_index:
                raise RegistryAccessError(session.repo_name, "nested image index")
            platform_digest = _select_platform(session.repo_name, manifest)
            logger.debug("Resolved image index %s to %s", reference, platform_digest)
            return self._fetch_manifest(
                session, platform_digest, resolve_index=False
            )

        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            digest = "sha256:" + hashlib.sha256(response.content).hexdigest()
        return digest, manifest


__all__ = [
    "ImageFactory",
    "ImageRef",
    "NoAuthImageRef",
    "RegistryImage",
    "RemoteImage",
    "RemoteImageFactory",
    "ServiceAccountImageRef",
    "parse_challenge",
    "parse_timestamp",
]
