"""CNBBuild manifest import/export.

This module provides helpers for loading CNBBuild manifests from YAML/JSON
files, in the apiVersion/kind/metadata/spec layout used by Kubernetes, and
rendering stored CNBBuilds back to that layout.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from cnb_controller.builds.schema import KIND, CNBBuild

# Namespace for manifests that do not name one
DEFAULT_NAMESPACE = "default"


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the content is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_cnbbuild_data(data: dict[str, Any]) -> CNBBuild:
    """Parse and validate a CNBBuild manifest.

    Status in the manifest is ignored; it is owned by the controller. A
    manifest without a namespace is placed in the default namespace.

    Args:
        data: Manifest mapping.

    Returns:
        Validated CNBBuild.

    Raises:
        pydantic.ValidationError: If data does not match the schema.
        ValueError: If the manifest is for another kind of resource.
    """
    kind = data.get("kind", KIND)
    if kind != KIND:
        raise ValueError(f"Expected kind {KIND}, got {kind}")
    data = {k: v for k, v in data.items() if k != "status"}
    metadata = dict(data.get("metadata") or {})
    metadata.setdefault("namespace", DEFAULT_NAMESPACE)
    data["metadata"] = metadata
    return CNBBuild.model_validate(data)


def load_cnbbuild(path: Path) -> CNBBuild:
    """Load a CNBBuild manifest, choosing the format by file extension.

    Args:
        path: Path to a .yaml, .yml or .json file.

    Returns:
        Validated CNBBuild.

    Raises:
        ValueError: If the extension is not supported or validation fails.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return parse_cnbbuild_data(load_yaml(path))
    if suffix == ".json":
        return parse_cnbbuild_data(load_json(path))
    raise ValueError(f"Unsupported file extension: {suffix}")


def cnbbuild_to_dict(build: CNBBuild, include_status: bool = True) -> dict[str, Any]:
    """Render a CNBBuild as a manifest mapping with camelCase keys.

    Args:
        build: CNBBuild to render.
        include_status: Whether to include the status section.

    Returns:
        JSON-compatible dictionary.
    """
    exclude = None if include_status else {"status"}
    return build.model_dump(mode="json", by_alias=True, exclude=exclude)


__all__ = [
    "DEFAULT_NAMESPACE",
    "cnbbuild_to_dict",
    "load_cnbbuild",
    "load_json",
    "load_yaml",
    "parse_cnbbuild_data",
]
