"""Schema and semantic validation of policies before they are packaged."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as SchemaError

from .constants import CLUSTER_POLICY_KIND, NAMESPACED_POLICY_KIND
from .errors import ValidationError
from .models import Policy

__all__ = [
    "ObjectMeta",
    "PolicyDocument",
    "PolicySpec",
    "Rule",
    "validate_policies",
    "validate_policy",
]

logger = logging.getLogger(__name__)

_DNS1123_SUBDOMAIN = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)
_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_RULE_TYPES = ("validate", "mutate", "generate", "verifyImages")
_FAILURE_ACTIONS = {"audit", "enforce"}


class ObjectMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1, max_length=253)
    namespace: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _dns_name(cls, value: str) -> str:
        if not _DNS1123_SUBDOMAIN.match(value):
            raise ValueError(
                "must consist of lower case alphanumeric characters, '-' or '.', "
                "and must start and end with an alphanumeric character"
            )
        return value

    @field_validator("namespace")
    @classmethod
    def _dns_namespace(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and (len(value) > 63 or not _DNS1123_LABEL.match(value)):
            raise ValueError(
                "must be a DNS-1123 label of at most 63 lower case alphanumeric "
                "characters or '-'"
            )
        return value


class Rule(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(min_length=1, max_length=63)
    match: dict[str, Any]
    validate_: Optional[dict[str, Any]] = Field(default=None, alias="validate")
    mutate: Optional[dict[str, Any]] = None
    generate: Optional[dict[str, Any]] = None
    verify_images: Optional[list[Any]] = Field(default=None, alias="verifyImages")

    @model_validator(mode="after")
    def _exactly_one_type(self) -> "Rule":
        present = [
            rule_type
            for rule_type, value in zip(
                _RULE_TYPES,
                (self.validate_, self.mutate, self.generate, self.verify_images),
            )
            if value
        ]
        if len(present) != 1:
            raise ValueError(
                f"rule {self.name!r} must declare exactly one of "
                f"{', '.join(_RULE_TYPES)} (found {len(present)})"
            )
        return self


class PolicySpec(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    rules: list[Rule] = Field(min_length=1)
    validation_failure_action: Optional[str] = Field(
        default=None, alias="validationFailureAction"
    )
    background: Optional[bool] = None

    @field_validator("validation_failure_action")
    @classmethod
    def _known_action(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value.lower() not in _FAILURE_ACTIONS:
            raise ValueError("must be Audit or Enforce")
        return value

    @model_validator(mode="after")
    def _unique_rule_names(self) -> "PolicySpec":
        seen: set[str] = set()
        for rule in self.rules:
            if rule.name in seen:
                raise ValueError(f"duplicate rule name {rule.name!r}")
            seen.add(rule.name)
        return self


class PolicyDocument(BaseModel):
    """The subset of a policy document checked before packaging."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: Literal["kyverno.io/v1", "kyverno.io/v2beta1"] = Field(
        alias="apiVersion"
    )
    kind: Literal["Policy", "ClusterPolicy"]
    metadata: ObjectMeta
    spec: PolicySpec

    @model_validator(mode="after")
    def _cluster_scope(self) -> "PolicyDocument":
        if self.kind == CLUSTER_POLICY_KIND and self.metadata.namespace:
            raise ValueError("a ClusterPolicy must not set metadata.namespace")
        return self


def _describe(exc: SchemaError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def validate_policy(policy: Policy) -> list[str]:
    """
    Validate one policy.

    Returns a (possibly empty) list of warnings. Raises ``ValidationError``
    naming the policy when the document violates the schema or its
    semantic rules.
    """
    try:
        document = PolicyDocument.model_validate(policy.document)
    except SchemaError as exc:
        raise ValidationError(policy.name or "<unnamed>", _describe(exc)) from exc

    warnings = []
    if document.spec.background is None:
        warnings.append(f"{policy.name}: spec.background is not set (defaults to true)")
    return warnings


def validate_policies(policies: Iterable[Policy]) -> list[str]:
    """
    Validate a whole policy set, all or nothing.

    Every policy must pass :func:`validate_policy`, and no two policies may
    share kind, namespace and name. The first failure raises.
    """
    warnings: list[str] = []
    seen: set[tuple[str, str, str]] = set()
    for policy in policies:
        warnings.extend(validate_policy(policy))
        if policy.identity in seen:
            scope = (
                f"namespace {policy.namespace or 'default'}"
                if policy.kind == NAMESPACED_POLICY_KIND
                else "cluster scope"
            )
            raise ValidationError(
                policy.name, f"duplicate {policy.kind} in {scope}"
            )
        seen.add(policy.identity)
    for warning in warnings:
        logger.warning(warning)
    return warnings
