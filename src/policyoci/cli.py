"""CLI entry point for policyoci."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
import httpx

from .auth import CredentialResolver, DockerConfigKeychain, Keychain, StaticCredentials
from .core import PolicyImageAssembler, load_policy_set, pull_policies, push_policies
from .errors import PolicyOCIError, PullError
from .models import Credentials, Policy
from .registry import RegistryClient
from .serializer import serialize_policy
from .validation import validate_policies


def _credentials(username: Optional[str], password: Optional[str]) -> CredentialResolver:
    if username:
        return Keychain(
            StaticCredentials(Credentials(username=username, password=password)),
            DockerConfigKeychain(),
        )
    return DockerConfigKeychain()


def _client(insecure: bool, timeout: float) -> RegistryClient:
    return RegistryClient(
        insecure=insecure,
        timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
    )


def _progress(message: str) -> None:
    click.echo(message, err=True)


def _pull_targets(policies: list[Policy], output_dir: str) -> list[tuple[Policy, Path]]:
    """
    Map each pulled policy to the file it is written to.

    Namespaced policies go under a directory named after their namespace.
    Every target must stay inside *output_dir* and belong to one policy.
    """
    root = Path(output_dir).resolve()
    owners: dict[Path, Policy] = {}
    targets = []
    for policy in policies:
        directory = root
        if policy.is_namespaced and policy.namespace:
            directory = root / policy.namespace
        path = (directory / f"{policy.name}.yaml").resolve()
        if root not in path.parents:
            raise PullError(f"{policy.kind} {policy.name!r} would be written outside {root}")
        if path in owners:
            other = owners[path]
            raise PullError(
                f"{other.kind} {other.name} and {policy.kind} {policy.name} "
                f"would both be written to {path}"
            )
        owners[path] = policy
        targets.append((policy, path))
    return targets


def _fail(exc: Exception) -> NoReturn:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


image_option = click.option(
    "--image",
    "-i",
    "image_ref",
    default="",
    envvar="POLICYOCI_IMAGE",
    help="Image reference, [registry/]repository[:tag|@digest].",
)
registry_options = [
    click.option("--username", envvar="POLICYOCI_USERNAME", help="Registry username."),
    click.option("--password", envvar="POLICYOCI_PASSWORD", help="Registry password."),
    click.option(
        "--insecure",
        is_flag=True,
        envvar="POLICYOCI_INSECURE",
        help="Use plain HTTP for the registry.",
    ),
    click.option(
        "--timeout",
        type=float,
        default=30.0,
        show_default=True,
        envvar="POLICYOCI_TIMEOUT",
        help="Registry request timeout in seconds.",
    ),
]


def with_registry_options(func):
    for option in reversed(registry_options):
        func = option(func)
    return func


@click.group()
@click.version_option()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool) -> None:
    """policyoci: distribute policies as OCI images."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command("push")
@click.option(
    "--policy",
    "-p",
    "policy_paths",
    required=True,
    multiple=True,
    type=click.Path(),
    help="Policy file or directory (repeatable).",
)
@image_option
@with_registry_options
def push_command(
    policy_paths: tuple[str, ...],
    image_ref: str,
    username: Optional[str],
    password: Optional[str],
    insecure: bool,
    timeout: float,
) -> None:
    """Push policies to a registry as an OCI image."""
    try:
        result = push_policies(
            list(policy_paths),
            image_ref,
            _client(insecure, timeout),
            credentials=_credentials(username, password),
            progress=_progress,
        )
    except PolicyOCIError as exc:
        _fail(exc)

    click.echo(f"Pushed {result.reference.name}")
    click.echo(f"  Digest  : {result.digest}")
    click.echo(f"  Policies: {len(result.image.layers)}")


@main.command("pull")
@image_option
@click.option(
    "--directory",
    "-d",
    "output_dir",
    default=".",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory to write policies into.",
)
@with_registry_options
def pull_command(
    image_ref: str,
    output_dir: str,
    username: Optional[str],
    password: Optional[str],
    insecure: bool,
    timeout: float,
) -> None:
    """Pull a policy image and write each policy as YAML."""
    try:
        policies = pull_policies(
            image_ref,
            _client(insecure, timeout),
            credentials=_credentials(username, password),
        )
        validate_policies(policies)
        written = _pull_targets(policies, output_dir)
        for policy, path in written:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(serialize_policy(policy))
    except (PolicyOCIError, OSError) as exc:
        _fail(exc)

    for policy, path in written:
        click.echo(f"{policy.kind:<14} {policy.name:<40} {path}")
    click.echo(f"Pulled {len(written)} policies from {image_ref}")


@main.command("inspect")
@click.option(
    "--policy",
    "-p",
    "policy_paths",
    required=True,
    multiple=True,
    type=click.Path(),
    help="Policy file or directory (repeatable).",
)
def inspect_command(policy_paths: tuple[str, ...]) -> None:
    """Show the manifest that would be pushed, without contacting a registry."""
    try:
        policies = load_policy_set(policy_paths)
        validate_policies(policies)
        image = PolicyImageAssembler().assemble(policies)
    except PolicyOCIError as exc:
        _fail(exc)

    manifest = image.manifest().model_dump(by_alias=True, exclude_none=True)
    click.echo(json.dumps(manifest, indent=2))


if __name__ == "__main__":
    main()
