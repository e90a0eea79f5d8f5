"""Tests for remote image access."""

import hashlib
import json
from datetime import datetime, timezone

import httpx
import pytest
import respx

from cnb_controller.registry.errors import RegistryAccessError
from cnb_controller.registry.image import (
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_INDEX,
    OCI_MANIFEST,
    ImageFactory,
    NoAuthImageRef,
    RegistryImage,
    ServiceAccountImageRef,
    parse_challenge,
    parse_timestamp,
)
from cnb_controller.registry.keychain import AnonymousKeychain, Credential

REGISTRY = "https://registry.example.com/v2/team/app"
CONFIG_DIGEST = "sha256:" + "c" * 64
MANIFEST_DIGEST = "sha256:" + "d" * 64
TOKEN_CHALLENGE = 'Bearer realm="https://auth.example.com/token"'
OAUTH_CHALLENGE = 'Bearer realm="https://auth.example.com/oauth2/token"'

MANIFEST = {
    "schemaVersion": 2,
    "mediaType": DOCKER_MANIFEST,
    "config": {
        "mediaType": "application/vnd.docker.container.image.v1+json",
        "digest": CONFIG_DIGEST,
    },
    "layers": [],
}

CONFIG = {
    "created": "2019-05-01T10:20:30.123456789Z",
    "config": {
        "Env": ["PATH=/usr/bin", "CNB_STACK_ID=io.buildpacks.stacks.bionic"],
        "Labels": {"io.buildpacks.lifecycle.metadata": '{"buildpacks":[]}'},
    },
}


class StaticKeychain:
    """Keychain returning one fixed credential."""

    def __init__(self, credential: Credential) -> None:
        self.credential = credential
        self.resolved: list = []

    def resolve(self, image_ref) -> Credential:
        self.resolved.append(image_ref)
        return self.credential


def mock_image(base: str = REGISTRY, reference: str = "v1") -> respx.Route:
    """Mock manifest and config blob endpoints for a single image."""
    route = respx.get(f"{base}/manifests/{reference}").mock(
        return_value=httpx.Response(
            200, json=MANIFEST, headers={"Docker-Content-Digest": MANIFEST_DIGEST}
        )
    )
    respx.get(f"{base}/blobs/{CONFIG_DIGEST}").mock(
        return_value=httpx.Response(200, json=CONFIG)
    )
    return route


def open_image(
    repo_name: str = "registry.example.com/team/app:v1",
    credential: Credential | None = None,
    **kwargs,
) -> RegistryImage:
    keychain = StaticKeychain(credential or Credential.anonymous())
    factory = ImageFactory(keychain, client=httpx.Client(), **kwargs)
    return factory.new_remote(NoAuthImageRef(repo_name))


class TestParseTimestamp:
    """Test parse_timestamp."""

    def test_nanoseconds_are_truncated(self) -> None:
        assert parse_timestamp("2019-05-01T10:20:30.123456789Z") == datetime(
            2019, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc
        )

    def test_short_fraction_is_padded(self) -> None:
        parsed = parse_timestamp("2019-05-01T10:20:30.5+02:00")
        assert parsed.microsecond == 500000
        assert parsed.utcoffset() is not None

    def test_no_fraction(self) -> None:
        assert parse_timestamp("1980-01-01T00:00:01Z") == datetime(
            1980, 1, 1, 0, 0, 1, tzinfo=timezone.utc
        )

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestParseChallenge:
    """Test parse_challenge."""

    def test_bearer(self) -> None:
        scheme, params = parse_challenge(
            'Bearer realm="https://auth.example.com/token",'
            'service="registry.example.com",scope="repository:team/app:pull"'
        )
        assert scheme == "bearer"
        assert params == {
            "realm": "https://auth.example.com/token",
            "service": "registry.example.com",
            "scope": "repository:team/app:pull",
        }

    def test_basic(self) -> None:
        assert parse_challenge('Basic realm="Registry"') == (
            "basic",
            {"realm": "Registry"},
        )

    def test_empty(self) -> None:
        assert parse_challenge("") == ("", {})


class TestRegistryImage:
    """Test RegistryImage accessors."""

    def test_accessors(self) -> None:
        image = RegistryImage("team/app", MANIFEST_DIGEST, CONFIG)

        assert image.digest() == MANIFEST_DIGEST
        assert image.created_at() == datetime(
            2019, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc
        )
        assert image.label("io.buildpacks.lifecycle.metadata") == '{"buildpacks":[]}'
        assert image.env("CNB_STACK_ID") == "io.buildpacks.stacks.bionic"

    def test_missing_label_and_env(self) -> None:
        image = RegistryImage("team/app", MANIFEST_DIGEST, CONFIG)
        assert image.label("missing") is None
        assert image.env("MISSING") is None

    def test_empty_config(self) -> None:
        image = RegistryImage("team/app", MANIFEST_DIGEST, {})
        assert image.label("any") is None
        assert image.env("ANY") is None

    def test_env_value_with_equals(self) -> None:
        image = RegistryImage(
            "team/app", MANIFEST_DIGEST, {"config": {"Env": ["OPTS=a=b"]}}
        )
        assert image.env("OPTS") == "a=b"

    def test_missing_created_raises(self) -> None:
        image = RegistryImage("team/app", MANIFEST_DIGEST, {})
        with pytest.raises(RegistryAccessError):
            image.created_at()

    def test_invalid_created_raises(self) -> None:
        image = RegistryImage("team/app", MANIFEST_DIGEST, {"created": "never"})
        with pytest.raises(RegistryAccessError, match="invalid creation time"):
            image.created_at()

    def test_non_string_created_raises(self) -> None:
        image = RegistryImage("team/app", MANIFEST_DIGEST, {"created": 1556706030})
        with pytest.raises(RegistryAccessError):
            image.created_at()

    def test_malformed_labels_are_missing(self) -> None:
        image = RegistryImage(
            "team/app", MANIFEST_DIGEST, {"config": {"Labels": ["a=b"]}}
        )
        assert image.label("a") is None


class TestImageFactory:
    """Test ImageFactory.new_remote against a mocked registry."""

    @respx.mock
    def test_opens_public_image(self) -> None:
        route = mock_image()

        image = open_image()

        assert image.digest() == MANIFEST_DIGEST
        assert image.created_at().year == 2019
        assert image.env("PATH") == "/usr/bin"
        accept = route.calls.last.request.headers["Accept"]
        assert OCI_MANIFEST in accept
        assert DOCKER_MANIFEST_LIST in accept

    @respx.mock
    def test_docker_hub_short_name(self) -> None:
        mock_image(
            base="https://registry-1.docker.io/v2/library/busybox",
            reference="latest",
        )

        image = open_image("busybox")

        assert image.digest() == MANIFEST_DIGEST

    @respx.mock
    def test_insecure_registry_uses_http(self) -> None:
        mock_image(base="http://localhost:5000/v2/app", reference="latest")

        image = open_image(
            "localhost:5000/app", insecure_registries=["localhost:5000"]
        )

        assert image.digest() == MANIFEST_DIGEST

    @respx.mock
    def test_digest_falls_back_to_body_hash(self) -> None:
        body = json.dumps(MANIFEST).encode()
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                200, content=body, headers={"Content-Type": DOCKER_MANIFEST}
            )
        )
        respx.get(f"{REGISTRY}/blobs/{CONFIG_DIGEST}").mock(
            return_value=httpx.Response(200, json=CONFIG)
        )

        image = open_image()

        assert image.digest() == "sha256:" + hashlib.sha256(body).hexdigest()

    @respx.mock
    def test_resolves_index_to_linux_amd64(self) -> None:
        arm = "sha256:" + "a" * 64
        amd = "sha256:" + "b" * 64
        index = {
            "schemaVersion": 2,
            "mediaType": OCI_INDEX,
            "manifests": [
                {"digest": arm, "platform": {"os": "linux", "architecture": "arm64"}},
                {"digest": amd, "platform": {"os": "linux", "architecture": "amd64"}},
            ],
        }
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(200, json=index)
        )
        mock_image(reference=amd)

        image = open_image()

        assert image.digest() == MANIFEST_DIGEST

    @respx.mock
    def test_index_without_match_uses_first_entry(self) -> None:
        first = "sha256:" + "e" * 64
        index = {
            "manifests": [
                {
                    "digest": first,
                    "platform": {"os": "windows", "architecture": "amd64"},
                },
            ],
        }
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                200, json=index, headers={"Content-Type": DOCKER_MANIFEST_LIST}
            )
        )
        mock_image(reference=first)

        assert open_image().digest() == MANIFEST_DIGEST

    @respx.mock
    def test_empty_index_raises(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                200, json={"mediaType": OCI_INDEX, "manifests": []}
            )
        )

        with pytest.raises(RegistryAccessError, match="no manifests"):
            open_image()

    @respx.mock
    def test_bearer_token_flow(self) -> None:
        challenge = (
            'Bearer realm="https://auth.example.com/token",'
            'service="registry.example.com"'
        )
        manifest_route = respx.get(f"{REGISTRY}/manifests/v1").mock(
            side_effect=[
                httpx.Response(401, headers={"WWW-Authenticate": challenge}),
                httpx.Response(
                    200,
                    json=MANIFEST,
                    headers={"Docker-Content-Digest": MANIFEST_DIGEST},
                ),
            ]
        )
        blob_route = respx.get(f"{REGISTRY}/blobs/{CONFIG_DIGEST}").mock(
            return_value=httpx.Response(200, json=CONFIG)
        )
        token_route = respx.get(host="auth.example.com", path="/token").mock(
            return_value=httpx.Response(200, json={"token": "abc123"})
        )

        image = open_image(credential=Credential(username="u", password="p"))

        assert image.digest() == MANIFEST_DIGEST
        token_request = token_route.calls.last.request
        assert token_request.url.params["scope"] == "repository:team/app:pull"
        assert token_request.url.params["service"] == "registry.example.com"
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert manifest_route.calls.last.request.headers["Authorization"] == (
            "Bearer abc123"
        )
        assert blob_route.calls.last.request.headers["Authorization"] == (
            "Bearer abc123"
        )
        assert token_route.call_count == 1

    @respx.mock
    def test_anonymous_bearer_token(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            side_effect=[
                httpx.Response(
                    401,
                    headers={"WWW-Authenticate": TOKEN_CHALLENGE},
                ),
                httpx.Response(200, json=MANIFEST),
            ]
        )
        respx.get(f"{REGISTRY}/blobs/{CONFIG_DIGEST}").mock(
            return_value=httpx.Response(200, json=CONFIG)
        )
        token_route = respx.get(host="auth.example.com", path="/token").mock(
            return_value=httpx.Response(200, json={"access_token": "anon"})
        )

        open_image()

        assert "Authorization" not in token_route.calls.last.request.headers

    @respx.mock
    def test_identity_token_is_exchanged(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            side_effect=[
                httpx.Response(
                    401,
                    headers={"WWW-Authenticate": OAUTH_CHALLENGE},
                ),
                httpx.Response(200, json=MANIFEST),
            ]
        )
        respx.get(f"{REGISTRY}/blobs/{CONFIG_DIGEST}").mock(
            return_value=httpx.Response(200, json=CONFIG)
        )
        token_route = respx.post("https://auth.example.com/oauth2/token").mock(
            return_value=httpx.Response(200, json={"access_token": "exchanged"})
        )

        open_image(credential=Credential(identity_token="refresh-me"))

        body = token_route.calls.last.request.content.decode()
        assert "grant_type=refresh_token" in body
        assert "refresh_token=refresh-me" in body

    @respx.mock
    def test_token_request_denied(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                401,
                headers={"WWW-Authenticate": TOKEN_CHALLENGE},
            )
        )
        respx.get(host="auth.example.com", path="/token").mock(
            return_value=httpx.Response(403)
        )

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image(credential=Credential(username="u", password="wrong"))
        assert exc_info.value.code == "unauthorized"

    @respx.mock
    def test_basic_challenge(self) -> None:
        route = respx.get(f"{REGISTRY}/manifests/v1").mock(
            side_effect=[
                httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="r"'}),
                httpx.Response(200, json=MANIFEST),
            ]
        )
        respx.get(f"{REGISTRY}/blobs/{CONFIG_DIGEST}").mock(
            return_value=httpx.Response(200, json=CONFIG)
        )

        open_image(credential=Credential(username="user", password="pass"))

        # base64("user:pass")
        assert route.calls.last.request.headers["Authorization"] == (
            "Basic dXNlcjpwYXNz"
        )

    @respx.mock
    def test_basic_challenge_without_credential(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                401, headers={"WWW-Authenticate": 'Basic realm="r"'}
            )
        )

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image()
        assert exc_info.value.code == "unauthorized"

    @respx.mock
    def test_repeated_401_raises(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                401, headers={"WWW-Authenticate": 'Basic realm="r"'}
            )
        )

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image(credential=Credential(username="u", password="p"))
        assert exc_info.value.code == "unauthorized"

    @respx.mock
    def test_not_found(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(return_value=httpx.Response(404))

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image()
        assert exc_info.value.code == "not_found"
        assert "registry.example.com/team/app:v1" in str(exc_info.value)

    @respx.mock
    def test_server_error(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(return_value=httpx.Response(500))

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image()
        assert exc_info.value.code == "http_error"

    @respx.mock
    def test_timeout(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            side_effect=httpx.ConnectTimeout("timed out")
        )

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image()
        assert exc_info.value.code == "timeout"

    @respx.mock
    def test_network_error(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(RegistryAccessError) as exc_info:
            open_image()
        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_manifest_without_config(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(200, json={"mediaType": OCI_MANIFEST})
        )

        with pytest.raises(RegistryAccessError, match="no config"):
            open_image()

    @respx.mock
    def test_manifest_not_an_object(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(200, json=["x"])
        )

        with pytest.raises(RegistryAccessError, match="manifest is not a JSON object"):
            open_image()

    @respx.mock
    def test_config_blob_not_an_object(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(200, json=MANIFEST)
        )
        respx.get(f"{REGISTRY}/blobs/{CONFIG_DIGEST}").mock(
            return_value=httpx.Response(200, json="config")
        )

        with pytest.raises(RegistryAccessError, match="image config"):
            open_image()

    @respx.mock
    def test_token_response_not_an_object(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                401, headers={"WWW-Authenticate": TOKEN_CHALLENGE}
            )
        )
        respx.get(host="auth.example.com", path="/token").mock(
            return_value=httpx.Response(200, json=["abc123"])
        )

        with pytest.raises(RegistryAccessError, match="token response"):
            open_image()

    @respx.mock
    def test_index_entry_without_digest(self) -> None:
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(
                200,
                json={
                    "mediaType": OCI_INDEX,
                    "manifests": [{"platform": {"os": "linux"}}],
                },
            )
        )

        with pytest.raises(RegistryAccessError, match="no digest"):
            open_image()

    @respx.mock
    def test_nested_index_raises(self) -> None:
        nested = "sha256:" + "9" * 64
        index = {"mediaType": OCI_INDEX, "manifests": [{"digest": nested}]}
        respx.get(f"{REGISTRY}/manifests/v1").mock(
            return_value=httpx.Response(200, json=index)
        )
        nested_route = respx.get(f"{REGISTRY}/manifests/{nested}").mock(
            return_value=httpx.Response(200, json=index)
        )

        with pytest.raises(RegistryAccessError, match="nested image index"):
            open_image()
        assert nested_route.call_count == 1

    def test_invalid_reference(self) -> None:
        with pytest.raises(RegistryAccessError) as exc_info:
            open_image("Not A Valid Name")
        assert exc_info.value.code == "invalid_reference"

    @respx.mock
    def test_keychain_is_consulted_with_ref(self) -> None:
        mock_image()
        keychain = StaticKeychain(Credential.anonymous())
        factory = ImageFactory(keychain, client=httpx.Client())
        ref = ServiceAccountImageRef(
            "registry.example.com/team/app:v1", "default", "builder"
        )

        factory.new_remote(ref)

        assert keychain.resolved == [ref]

    def test_anonymous_keychain_satisfies_factory(self) -> None:
        factory = ImageFactory(AnonymousKeychain(), client=httpx.Client(), timeout=5)
        assert factory.timeout == 5
