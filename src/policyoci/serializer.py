"""Canonical YAML encoding of policies for use as layer content."""

from __future__ import annotations

import json
from typing import Any

import yaml

from .errors import SerializationError
from .models import Policy

__all__ = [
    "deserialize_policy",
    "serialize_policy",
]


def _check_keys(value: Any, path: str = "") -> None:
    """Raise ``TypeError`` on the first mapping key that is not a string."""
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                where = path or "document"
                raise TypeError(f"{where}: key {key!r} is not a string")
            _check_keys(item, f"{path}.{key}" if path else key)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _check_keys(item, f"{path}[{index}]")


def serialize_policy(policy: Policy) -> bytes:
    """
    Encode *policy* as deterministic, block-style YAML.

    The document first goes through JSON so that only JSON-representable
    values reach the YAML emitter; keys are sorted at both steps, so the
    same policy always yields the same bytes. Mapping keys must be strings;
    JSON would otherwise coerce them and the round trip would change the
    document.
    """
    try:
        _check_keys(policy.document)
        as_json = json.dumps(policy.document, sort_keys=True, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"converting policy {policy.name} to json: {exc}") from exc

    try:
        text = yaml.safe_dump(
            json.loads(as_json),
            sort_keys=True,
            default_flow_style=False,
            allow_unicode=True,
        )
    except yaml.YAMLError as exc:
        raise SerializationError(f"converting json to yaml: {exc}") from exc
    return text.encode("utf-8")


def deserialize_policy(data: bytes) -> Policy:
    """Decode bytes produced by :func:`serialize_policy` back into a Policy."""
    try:
        document = yaml.safe_load(data.decode("utf-8"))
    except (UnicodeDecodeError, yaml.YAMLError) as exc:
        raise SerializationError(f"decoding policy layer: {exc}") from exc
    if not isinstance(document, dict):
        raise SerializationError(
            f"decoding policy layer: expected a mapping, got {type(document).__name__}"
        )
    return Policy.from_document(document)
