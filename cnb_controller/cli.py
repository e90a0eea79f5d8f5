"""Thin CLI wrapper for cnb_controller.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.markup import escape

from cnb_controller import __version__
from cnb_controller.config import Settings, get_settings, print_settings_json

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

app = typer.Typer(
    name="cnbctl",
    help="CNB Build Controller - reconcile CNBBuilds into Knative builds",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"cnb-controller version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """CNB Build Controller - reconcile CNBBuilds into Knative builds."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_document(text: str) -> None:
    # Machine-readable output must not be wrapped or styled
    console.print(text, soft_wrap=True, markup=False, highlight=False)


def _session_factory(settings: Settings) -> "sessionmaker[Session]":
    from cnb_controller.db import create_all_tables, get_engine, get_session_factory

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


def _parse_key_or_exit(key: str) -> tuple[str, str]:
    from cnb_controller.types import split_key

    try:
        return split_key(key)
    except ValueError:
        console.print(f"[red]Invalid key: {key} (expected NAMESPACE/NAME)[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        _print_document(print_settings_json(settings))
    else:
        insecure = ", ".join(settings.insecure_registries) or "(none)"
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Storage:[/bold]")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Build template:      {settings.build_template}")
        console.print()
        console.print("[bold]Registry:[/bold]")
        console.print(f"  Secrets directory:   {settings.secrets_dir}")
        console.print(f"  Insecure registries: {insecure}")
        console.print(f"  Timeout (seconds):   {settings.registry_timeout}")


builds_app = typer.Typer(help="Manage CNBBuild resources")
app.add_typer(builds_app, name="builds")


@builds_app.command("apply")
def builds_apply(
    path: Annotated[str, typer.Argument(help="Path to a CNBBuild manifest")],
) -> None:
    """Create a CNBBuild from a manifest, or update its spec if it exists."""
    from pathlib import Path

    from pydantic import ValidationError

    from cnb_controller.builds.io import load_cnbbuild
    from cnb_controller.builds.store import CNBBuildStore
    from cnb_controller.errors import ResourceNotFoundError, StoreError

    file_path = Path(path)
    if not file_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    try:
        manifest = load_cnbbuild(file_path)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid manifest: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    store = CNBBuildStore(_session_factory(get_settings()))
    namespace, name = manifest.metadata.namespace, manifest.metadata.name

    try:
        try:
            existing = store.get(namespace, name)
        except ResourceNotFoundError:
            created = store.create(manifest)
            console.print(f"[green]Created CNBBuild {namespace}/{name}[/green]")
            console.print(f"  Generation: {created.metadata.generation}")
            return

        existing.spec = manifest.spec
        updated = store.update(existing)
    except StoreError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    if updated.metadata.generation == existing.metadata.generation:
        console.print(f"[yellow]CNBBuild {namespace}/{name} unchanged[/yellow]")
    else:
        console.print(f"[green]Updated CNBBuild {namespace}/{name}[/green]")
        console.print(f"  Generation: {updated.metadata.generation}")


@builds_app.command("list")
def builds_list(
    namespace: Annotated[
        str | None,
        typer.Option("--namespace", "-n", help="Filter by namespace"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List CNBBuilds."""
    from cnb_controller.builds.io import cnbbuild_to_dict
    from cnb_controller.builds.store import CNBBuildStore
    from cnb_controller.types import CONDITION_SUCCEEDED

    store = CNBBuildStore(_session_factory(get_settings()))
    builds = store.list(namespace=namespace)

    if not builds:
        if json_output:
            _print_document("[]")
        else:
            console.print("[yellow]No CNBBuilds found[/yellow]")
        return

    if json_output:
        _print_document(json.dumps([cnbbuild_to_dict(b) for b in builds], indent=2))
        return

    console.print(f"[bold]Found {len(builds)} CNBBuild(s):[/bold]")
    console.print()
    for b in builds:
        succeeded = b.status.get_condition(CONDITION_SUCCEEDED)
        state = succeeded.status.value if succeeded else "Unknown"
        color = {"True": "green", "False": "red"}.get(state, "yellow")
        console.print(f"  [{color}]{b.metadata.namespace}/{b.metadata.name}[/{color}]")
        console.print(f"    Image: {b.spec.image}")
        console.print(f"    Succeeded: {state}")
        if b.status.sha:
            console.print(f"    SHA: {b.status.sha}")
        console.print()


@builds_app.command("show")
def builds_show(
    key: Annotated[str, typer.Argument(help="CNBBuild key (NAMESPACE/NAME)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show a CNBBuild with its status."""
    import yaml

    from cnb_controller.builds.io import cnbbuild_to_dict
    from cnb_controller.builds.store import CNBBuildStore
    from cnb_controller.errors import ResourceNotFoundError

    namespace, name = _parse_key_or_exit(key)
    store = CNBBuildStore(_session_factory(get_settings()))

    try:
        build = store.get(namespace, name)
    except ResourceNotFoundError:
        console.print(f"[red]CNBBuild not found: {key}[/red]")
        raise typer.Exit(code=1) from None

    data = cnbbuild_to_dict(build)
    if json_output:
        _print_document(json.dumps(data, indent=2))
    else:
        _print_document(yaml.safe_dump(data, sort_keys=False))


@builds_app.command("delete")
def builds_delete(
    key: Annotated[str, typer.Argument(help="CNBBuild key (NAMESPACE/NAME)")],
) -> None:
    """Delete a CNBBuild and the Knative build it owns."""
    from cnb_controller.builds.store import CNBBuildStore
    from cnb_controller.errors import ResourceNotFoundError

    namespace, name = _parse_key_or_exit(key)
    store = CNBBuildStore(_session_factory(get_settings()))

    try:
        store.delete(namespace, name)
    except ResourceNotFoundError:
        console.print(f"[red]CNBBuild not found: {key}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Deleted CNBBuild {key}[/green]")


@app.command()
def reconcile(
    keys: Annotated[
        list[str] | None,
        typer.Argument(help="CNBBuild keys (NAMESPACE/NAME) to reconcile"),
    ] = None,
    all_builds: Annotated[
        bool,
        typer.Option("--all", "-a", help="Reconcile every CNBBuild"),
    ] = False,
) -> None:
    """Run one reconcile pass for each given CNBBuild."""
    import httpx

    from cnb_controller.builds.store import CNBBuildStore
    from cnb_controller.errors import StoreError
    from cnb_controller.knative.store import KnativeBuildStore
    from cnb_controller.reconciler.cnbbuild import Reconciler
    from cnb_controller.registry.errors import (
        MalformedMetadataError,
        RegistryAccessError,
    )
    from cnb_controller.registry.image import ImageFactory
    from cnb_controller.registry.keychain import DockerConfigKeychain
    from cnb_controller.registry.metadata import RegistryMetadataRetriever
    from cnb_controller.types import split_key

    if not keys and not all_builds:
        console.print("[red]Specify CNBBuild keys or --all[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    factory = _session_factory(settings)
    cnb_builds = CNBBuildStore(factory)

    if all_builds:
        keys = [f"{b.metadata.namespace}/{b.metadata.name}" for b in cnb_builds.list()]
    else:
        keys = list(keys or [])

    failures = 0
    with httpx.Client() as client:
        image_factory = ImageFactory(
            DockerConfigKeychain(settings.secrets_dir),
            client=client,
            timeout=settings.registry_timeout,
            insecure_registries=settings.insecure_registries,
        )
        reconciler = Reconciler(
            cnb_builds=cnb_builds,
            knative_builds=KnativeBuildStore(factory),
            metadata_retriever=RegistryMetadataRetriever(image_factory),
            build_template=settings.build_template,
        )

        for key in keys:
            try:
                split_key(key)
            except ValueError:
                failures += 1
                console.print(
                    f"[red]✗ {escape(key)}: invalid key"
                    " (expected NAMESPACE/NAME)[/red]"
                )
                continue

            try:
                reconciler.reconcile(key)
            except (StoreError, RegistryAccessError, MalformedMetadataError) as e:
                failures += 1
                console.print(f"[red]✗ {key}: {escape(str(e))}[/red]")
                continue
            console.print(f"[green]✓ {key}[/green]")

    if failures:
        console.print(f"[red]{failures} of {len(keys)} reconcile(s) failed[/red]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
