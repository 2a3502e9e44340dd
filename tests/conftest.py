"""Shared test fixtures for policyoci."""

from __future__ import annotations

import base64
import hashlib
import threading
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest
import yaml

from policyoci.auth import CredentialResolver
from policyoci.models import Policy, PolicyImage, Reference
from policyoci.registry import RegistryClient


# ---------------------------------------------------------------------------
# Policy documents
# ---------------------------------------------------------------------------


def cluster_policy_doc(name: str = "require-labels") -> dict[str, Any]:
    return {
        "apiVersion": "kyverno.io/v1",
        "kind": "ClusterPolicy",
        "metadata": {"name": name},
        "spec": {
            "validationFailureAction": "Enforce",
            "background": True,
            "rules": [
                {
                    "name": "check-team-label",
                    "match": {"any": [{"resources": {"kinds": ["Pod"]}}]},
                    "validate": {
                        "message": "label 'team' is required",
                        "pattern": {"metadata": {"labels": {"team": "?*"}}},
                    },
                }
            ],
        },
    }


def namespaced_policy_doc(
    name: str = "restrict-image-registries", namespace: str = "team-a"
) -> dict[str, Any]:
    return {
        "apiVersion": "kyverno.io/v1",
        "kind": "Policy",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "validationFailureAction": "Audit",
            "background": False,
            "rules": [
                {
                    "name": "validate-registries",
                    "match": {"any": [{"resources": {"kinds": ["Pod"]}}]},
                    "validate": {
                        "message": "unknown image registry",
                        "pattern": {
                            "spec": {"containers": [{"image": "registry.example.com/*"}]}
                        },
                    },
                }
            ],
        },
    }


def write_yaml(path: Path, *documents: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump_all(documents, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture()
def cluster_policy() -> Policy:
    return Policy.from_document(cluster_policy_doc())


@pytest.fixture()
def namespaced_policy() -> Policy:
    return Policy.from_document(namespaced_policy_doc())


@pytest.fixture()
def policy_dir(tmp_path: Path) -> Path:
    """Directory with the two example policies, in load order."""
    d = tmp_path / "policies"
    write_yaml(d / "01-require-labels.yaml", cluster_policy_doc())
    write_yaml(d / "02-restrict-image-registries.yaml", namespaced_policy_doc())
    return d


# ---------------------------------------------------------------------------
# Publisher double
# ---------------------------------------------------------------------------


class RecordingPublisher:
    """Publisher that records every write instead of talking to a registry."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls: list[tuple[Reference, PolicyImage]] = []
        self.error = error

    def write(
        self,
        reference: Reference,
        image: PolicyImage,
        *,
        credentials: Optional[CredentialResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        self.calls.append((reference, image))
        if self.error is not None:
            raise self.error
        return image.digest()


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# ---------------------------------------------------------------------------
# In-memory registry
# ---------------------------------------------------------------------------


class FakeRegistry:
    """
    Just enough of the OCI Distribution API to push and pull an image.

    When *token* is set, every /v2/ request must carry ``Bearer <token>``;
    tokens are issued by ``https://auth.example.com/token`` to ``user:pass``.
    """

    def __init__(self, token: Optional[str] = None) -> None:
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[tuple[str, str], tuple[str, bytes]] = {}
        self.requests: list[httpx.Request] = []
        self.token = token
        self.reject_manifest = False
        self._uploads = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "auth.example.com":
            expected = "Basic " + base64.b64encode(b"user:pass").decode("ascii")
            if request.headers.get("Authorization") != expected:
                return httpx.Response(401)
            return httpx.Response(200, json={"token": self.token})

        if self.token and request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(
                401,
                headers={
                    "WWW-Authenticate": 'Bearer realm="https://auth.example.com/token",'
                    'service="registry.example.com"'
                },
            )

        parts = path.split("/")
        if "blobs" in parts and "uploads" in parts:
            repo = "/".join(parts[2 : parts.index("blobs")])
            if request.method == "POST":
                self._uploads += 1
                return httpx.Response(
                    202, headers={"Location": f"/v2/{repo}/blobs/uploads/{self._uploads}"}
                )
            digest = request.url.params["digest"]
            data = request.content
            if "sha256:" + hashlib.sha256(data).hexdigest() != digest:
                return httpx.Response(
                    400, json={"errors": [{"code": "DIGEST_INVALID", "message": "bad digest"}]}
                )
            self.blobs[digest] = data
            return httpx.Response(201)

        if "blobs" in parts:
            digest = parts[-1]
            if digest not in self.blobs:
                return httpx.Response(404)
            body = b"" if request.method == "HEAD" else self.blobs[digest]
            return httpx.Response(200, content=body)

        if "manifests" in parts:
            repo = "/".join(parts[2 : parts.index("manifests")])
            ref = parts[-1]
            if request.method == "PUT":
                if self.reject_manifest:
                    return httpx.Response(
                        400,
                        json={"errors": [{"code": "MANIFEST_INVALID", "message": "rejected"}]},
                    )
                digest = "sha256:" + hashlib.sha256(request.content).hexdigest()
                entry = (request.headers["Content-Type"], request.content)
                self.manifests[(repo, ref)] = entry
                self.manifests[(repo, digest)] = entry
                return httpx.Response(201, headers={"Docker-Content-Digest": digest})
            if (repo, ref) not in self.manifests:
                return httpx.Response(
                    404, json={"errors": [{"code": "MANIFEST_UNKNOWN", "message": "not found"}]}
                )
            media_type, body = self.manifests[(repo, ref)]
            return httpx.Response(200, content=body, headers={"Content-Type": media_type})

        return httpx.Response(404)


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def registry_client(registry: FakeRegistry) -> RegistryClient:
    return RegistryClient(transport=httpx.MockTransport(registry.handler))
