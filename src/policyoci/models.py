"""Pydantic models for policyoci."""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    NAMESPACED_POLICY_KIND,
    OCI_IMAGE_MANIFEST,
    POLICY_CONFIG_MEDIA_TYPE,
    POLICY_LAYER_MEDIA_TYPE,
    SCOPE_CLUSTER,
    SCOPE_NAMESPACED,
)

__all__ = [
    "Credentials",
    "Descriptor",
    "OCIManifest",
    "Policy",
    "PolicyImage",
    "PolicyLayer",
    "PushResult",
    "Reference",
    "sha256_digest",
]


def sha256_digest(data: bytes) -> str:
    """Return 'sha256:<hex>' digest for *data*."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def _canonical_json(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


class Policy(BaseModel):
    """A named, possibly namespaced, rule document."""

    model_config = ConfigDict(frozen=True)

    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None
    document: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Policy":
        """Build a Policy from a parsed YAML/JSON mapping."""
        metadata = document.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        namespace = metadata.get("namespace")
        return cls(
            api_version=str(document.get("apiVersion", "")),
            kind=str(document.get("kind", "")),
            name=str(metadata.get("name", "")),
            namespace=None if namespace is None else str(namespace),
            document=copy.deepcopy(document),
        )

    @property
    def is_namespaced(self) -> bool:
        return self.kind == NAMESPACED_POLICY_KIND

    @property
    def scope(self) -> str:
        return SCOPE_NAMESPACED if self.is_namespaced else SCOPE_CLUSTER

    @property
    def identity(self) -> tuple[str, str, str]:
        """(kind, namespace, name); unique within a policy set."""
        namespace = (self.namespace or "") if self.is_namespaced else ""
        return (self.kind, namespace, self.name)


class PolicyLayer(BaseModel):
    """One packaged policy: canonical YAML bytes plus descriptive annotations."""

    model_config = ConfigDict(frozen=True)

    content: bytes
    media_type: str = POLICY_LAYER_MEDIA_TYPE
    annotations: dict[str, str] = Field(default_factory=dict)

    @property
    def digest(self) -> str:
        return sha256_digest(self.content)

    @property
    def size(self) -> int:
        return len(self.content)

    def descriptor(self) -> "Descriptor":
        return Descriptor(
            media_type=self.media_type,
            digest=self.digest,
            size=self.size,
            annotations=dict(self.annotations) or None,
        )


class Descriptor(BaseModel):
    """
    OCI content descriptor.

    https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(populate_by_name=True)

    media_type: str = Field(alias="mediaType")
    digest: str
    size: int
    annotations: Optional[dict[str, str]] = None


class OCIManifest(BaseModel):
    """
    OCI Image Manifest (schema version 2).

    Follows the OCI Image Manifest Specification
    https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=OCI_IMAGE_MANIFEST, alias="mediaType")
    config: Descriptor
    layers: list[Descriptor] = Field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialize with OCI field names; the result is what gets digested."""
        payload = self.model_dump(by_alias=True, exclude_none=True)
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class PolicyImage(BaseModel):
    """
    An assembled policy bundle.

    Images are values: :meth:`append` returns a new image and never changes
    the receiver, so a half-built image cannot be observed through an alias.
    """

    model_config = ConfigDict(frozen=True)

    media_type: str = OCI_IMAGE_MANIFEST
    config_media_type: str = POLICY_CONFIG_MEDIA_TYPE
    layers: tuple[PolicyLayer, ...] = ()

    def append(self, layer: PolicyLayer) -> "PolicyImage":
        return self.model_copy(update={"layers": self.layers + (layer,)})

    def config_bytes(self) -> bytes:
        return _canonical_json(
            {
                "architecture": "",
                "os": "",
                "config": {},
                "rootfs": {
                    "type": "layers",
                    "diff_ids": [layer.digest for layer in self.layers],
                },
            }
        )

    def manifest(self) -> OCIManifest:
        config = self.config_bytes()
        return OCIManifest(
            media_type=self.media_type,
            config=Descriptor(
                media_type=self.config_media_type,
                digest=sha256_digest(config),
                size=len(config),
            ),
            layers=[layer.descriptor() for layer in self.layers],
        )

    def manifest_bytes(self) -> bytes:
        return self.manifest().to_bytes()

    def digest(self) -> str:
        return sha256_digest(self.manifest_bytes())


class Reference(BaseModel):
    """A parsed ``[registry/]repository[:tag|@digest]`` image reference."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def context(self) -> str:
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """Tag or digest, as used in the manifest URL."""
        return self.digest or self.tag or ""

    @property
    def name(self) -> str:
        if self.digest:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.tag}"

    def __str__(self) -> str:
        return self.name


class Credentials(BaseModel):
    """Registry credentials: username/password or a pre-issued token."""

    model_config = ConfigDict(frozen=True)

    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not (self.username or self.password or self.token)


class PushResult(BaseModel):
    """Outcome of a successful push."""

    reference: Reference
    image: PolicyImage
    digest: str
