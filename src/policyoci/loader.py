"""Loading of policy documents from files and directories."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as SchemaError

from .constants import CLUSTER_POLICY_KIND, NAMESPACED_POLICY_KIND
from .models import Policy

__all__ = [
    "POLICY_FILE_SUFFIXES",
    "load_policies",
]

logger = logging.getLogger(__name__)

POLICY_FILE_SUFFIXES = (".yaml", ".yml", ".json")
_POLICY_KINDS = {NAMESPACED_POLICY_KIND, CLUSTER_POLICY_KIND}


def _policy_files(path: Path) -> Iterator[Path]:
    if path.is_file():
        yield path
        return
    for file_path in sorted(path.rglob("*")):
        if file_path.is_file() and file_path.suffix.lower() in POLICY_FILE_SUFFIXES:
            yield file_path


def _expand(document: Any) -> list[Any]:
    """
    Return [*document*], or its items when it is a ``kind: List``.

    Raises ``TypeError`` when a List's items are not a sequence.
    """
    if isinstance(document, dict) and document.get("kind") == "List":
        items = document.get("items") or []
        if not isinstance(items, list):
            raise TypeError("List items must be a sequence")
        return items
    return [document]


def _load_file(file_path: Path, policies: list[Policy], errors: list[str]) -> None:
    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        errors.append(f"{file_path}: {exc}")
        return

    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        errors.append(f"{file_path}: invalid YAML: {exc}")
        return

    for index, raw in enumerate(documents):
        if raw is None:
            continue
        try:
            expanded = _expand(raw)
        except TypeError as exc:
            errors.append(f"{file_path}: document {index}: {exc}")
            continue
        for document in expanded:
            if not isinstance(document, dict):
                errors.append(
                    f"{file_path}: document {index} is not a mapping "
                    f"(got {type(document).__name__})"
                )
                continue
            if document.get("kind") not in _POLICY_KINDS:
                logger.debug(
                    "Skipping %s document in %s", document.get("kind"), file_path
                )
                continue
            try:
                policy = Policy.from_document(document)
            except SchemaError as exc:
                errors.append(f"{file_path}: document {index}: {exc}")
                continue
            if not policy.name:
                errors.append(f"{file_path}: {policy.kind} without metadata.name")
                continue
            policies.append(policy)


def load_policies(paths: Iterable[str]) -> tuple[list[Policy], list[str]]:
    """
    Read every policy found under *paths*.

    Each path may be a file or a directory (walked recursively, in sorted
    order, reading ``.yaml``/``.yml``/``.json`` files). Files may hold
    several YAML documents. Documents of other kinds are skipped.

    Returns ``(policies, errors)``. Loading continues past a bad file so
    that every problem is reported at once; callers must treat a non-empty
    error list as a failure of the whole load.
    """
    policies: list[Policy] = []
    errors: list[str] = []
    for raw_path in paths:
        path = Path(raw_path)
        if not path.exists():
            errors.append(f"{raw_path}: no such file or directory")
            continue
        for file_path in _policy_files(path):
            _load_file(file_path, policies, errors)
    logger.info("Loaded %d policies (%d errors)", len(policies), len(errors))
    return policies, errors
