"""Parsing of ``[registry/]repository[:tag|@digest]`` image references."""

from __future__ import annotations

import re

from .constants import DEFAULT_REGISTRY, DEFAULT_TAG
from .errors import ReferenceParseError
from .models import Reference

__all__ = ["parse_reference"]

_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_REPOSITORY_RE = re.compile(rf"^{_COMPONENT}(?:/{_COMPONENT})*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST_RE = re.compile(r"^(?P<algorithm>[a-z0-9]+(?:[.+_-][a-z0-9]+)*):(?P<hex>[a-zA-Z0-9=_-]+)$")
_REGISTRY_RE = re.compile(
    r"^(?:\[[0-9a-fA-F:]+\]|[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*)(?::[0-9]+)?$"
)
_MAX_REPOSITORY_LENGTH = 255
_DOCKER_HUB_ALIASES = {"docker.io", "registry-1.docker.io"}


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def _check_digest(text: str, digest: str) -> None:
    match = _DIGEST_RE.match(digest)
    if match is None:
        raise ReferenceParseError(f"invalid digest {digest!r} in {text!r}")
    if match["algorithm"] == "sha256" and not re.fullmatch(r"[a-f0-9]{64}", match["hex"]):
        raise ReferenceParseError(
            f"sha256 digest must be 64 lowercase hex characters in {text!r}"
        )


def parse_reference(text: str) -> Reference:
    """
    Parse *text* into a :class:`Reference`.

    The first path component is treated as a registry host when it contains
    a dot or a port, or is ``localhost``; otherwise Docker Hub is assumed.
    A reference without tag or digest gets the ``latest`` tag.

    Raises ``ReferenceParseError`` when *text* is not a valid reference.
    """
    if not text:
        raise ReferenceParseError("reference is empty")
    if text != text.strip() or any(ch.isspace() for ch in text):
        raise ReferenceParseError(f"reference {text!r} contains whitespace")

    remainder = text
    digest = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        _check_digest(text, digest)

    tag = None
    colon = remainder.rfind(":")
    if colon > remainder.rfind("/"):
        remainder, tag = remainder[:colon], remainder[colon + 1:]
        if not _TAG_RE.match(tag):
            raise ReferenceParseError(f"invalid tag {tag!r} in {text!r}")

    head, sep, tail = remainder.partition("/")
    if sep and _looks_like_registry(head):
        registry, repository = head, tail
        if not _REGISTRY_RE.match(registry):
            raise ReferenceParseError(f"invalid registry {registry!r} in {text!r}")
    else:
        registry, repository = DEFAULT_REGISTRY, remainder

    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"

    if not repository or not _REPOSITORY_RE.match(repository):
        raise ReferenceParseError(
            f"repository {repository!r} in {text!r} must be lowercase "
            "alphanumeric components separated by '/'"
        )
    if len(repository) > _MAX_REPOSITORY_LENGTH:
        raise ReferenceParseError(
            f"repository name in {text!r} exceeds {_MAX_REPOSITORY_LENGTH} characters"
        )

    if tag is None and digest is None:
        tag = DEFAULT_TAG
    return Reference(registry=registry, repository=repository, tag=tag, digest=digest)
