"""
Media types and annotation keys for policy images.

These values are the interoperability contract with pull tooling and must
stay stable across releases.
"""

from __future__ import annotations

import httpx

__all__ = [
    "ANNOTATION_NAME",
    "ANNOTATION_SCOPE",
    "CLUSTER_POLICY_KIND",
    "DEFAULT_REGISTRY",
    "DEFAULT_TAG",
    "NAMESPACED_POLICY_KIND",
    "OCI_IMAGE_MANIFEST",
    "POLICY_CONFIG_MEDIA_TYPE",
    "POLICY_LAYER_MEDIA_TYPE",
    "REGISTRY_TIMEOUT",
    "SCOPE_CLUSTER",
    "SCOPE_NAMESPACED",
]

# OCI standard manifest type
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"

# Policy bundle types
POLICY_CONFIG_MEDIA_TYPE = "application/vnd.cncf.kyverno.config.v1+json"
POLICY_LAYER_MEDIA_TYPE = "application/vnd.cncf.kyverno.policy.layer.v1+yaml"

# Layer annotations
ANNOTATION_NAME = "name"
ANNOTATION_SCOPE = "scope"
SCOPE_NAMESPACED = "namespaced"
SCOPE_CLUSTER = "cluster"

NAMESPACED_POLICY_KIND = "Policy"
CLUSTER_POLICY_KIND = "ClusterPolicy"

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

# Registry uploads are small, but token endpoints can be slow
REGISTRY_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
