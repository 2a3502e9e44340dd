"""
OCI registry access for policy images.

Defines the publisher/reader interfaces the packaging pipeline depends on,
and :class:`RegistryClient`, an httpx implementation of both on top of the
OCI Distribution API.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError as SchemaError

from .auth import CredentialResolver, RegistryAuth
from .constants import OCI_IMAGE_MANIFEST, REGISTRY_TIMEOUT
from .errors import PublishError, PullError
from .models import Credentials, OCIManifest, PolicyImage, PolicyLayer, Reference, sha256_digest

__all__ = [
    "ImagePublisher",
    "ImageReader",
    "RegistryClient",
]

logger = logging.getLogger(__name__)

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "[::1]"}


@runtime_checkable
class ImagePublisher(Protocol):
    """Writes a finished image to a registry."""

    def write(
        self,
        reference: Reference,
        image: PolicyImage,
        *,
        credentials: Optional[CredentialResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """
        Push *image* under *reference* and return the manifest digest.

        Raises:
            PublishError: network failure, auth failure, registry rejection
                or cancellation. Nothing is retried.
        """
        ...


@runtime_checkable
class ImageReader(Protocol):
    """Reads an image back from a registry."""

    def read(
        self,
        reference: Reference,
        *,
        credentials: Optional[CredentialResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PolicyImage:
        """
        Fetch the manifest and every layer of *reference*.

        Raises:
            PullError: the image is missing, unreadable or fails digest checks.
        """
        ...


class _RegistryFailure(Exception):
    """Internal; converted to PublishError or PullError at the API boundary."""


def _error_detail(response: httpx.Response) -> str:
    """Summarize a registry error response, using its ``errors`` body when present."""
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        errors = []
    messages = [
        f"{error.get('code', 'UNKNOWN')}: {error.get('message', '')}".rstrip(": ")
        for error in errors
        if isinstance(error, dict)
    ]
    detail = "; ".join(messages) or response.reason_phrase
    return f"HTTP {response.status_code} {detail}".rstrip()


def _expect(response: httpx.Response, status: int, action: str) -> None:
    if response.status_code != status:
        raise _RegistryFailure(f"{action}: {_error_detail(response)}")


class RegistryClient:
    """
    Minimal OCI Distribution API client for policy images.

    Blobs are uploaded monolithically (POST then PUT) and skipped when the
    registry already has them; the manifest is PUT last, so the tag only
    moves once every blob is in place. Loopback registries, or any registry
    when *insecure* is set, are reached over plain HTTP.
    """

    def __init__(
        self,
        *,
        insecure: bool = False,
        timeout: httpx.Timeout = REGISTRY_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.insecure = insecure
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(
        self,
        reference: Reference,
        image: PolicyImage,
        *,
        credentials: Optional[CredentialResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        manifest_bytes = image.manifest_bytes()
        digest = sha256_digest(manifest_bytes)
        if reference.digest and reference.digest != digest:
            raise PublishError(
                f"manifest digest {digest} does not match reference {reference.name}"
            )

        blobs = [(image.manifest().config.digest, image.config_bytes())]
        blobs.extend((layer.digest, layer.content) for layer in image.layers)

        try:
            creds = self._resolve(reference, credentials)
            with self._session(reference, creds, "pull,push") as http:
                for blob_digest, data in blobs:
                    self._upload_blob(http, reference, blob_digest, data, cancel)
                _check_cancelled(cancel)
                response = http.put(
                    f"/v2/{reference.repository}/manifests/{reference.identifier}",
                    content=manifest_bytes,
                    headers={"Content-Type": image.media_type},
                )
                _expect(response, 201, f"uploading manifest for {reference.name}")
        except (httpx.HTTPError, _RegistryFailure, OSError, ValueError) as exc:
            raise PublishError(str(exc)) from exc

        logger.info("Pushed %s (%s, %d layers)", reference.name, digest, len(image.layers))
        return response.headers.get("Docker-Content-Digest", digest)

    def read(
        self,
        reference: Reference,
        *,
        credentials: Optional[CredentialResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PolicyImage:
        try:
            creds = self._resolve(reference, credentials)
            with self._session(reference, creds, "pull") as http:
                _check_cancelled(cancel)
                response = http.get(
                    f"/v2/{reference.repository}/manifests/{reference.identifier}",
                    headers={"Accept": OCI_IMAGE_MANIFEST},
                )
                _expect(response, 200, f"fetching manifest for {reference.name}")
                if reference.digest and sha256_digest(response.content) != reference.digest:
                    raise _RegistryFailure(
                        f"manifest for {reference.name} does not match its digest"
                    )
                manifest = OCIManifest.model_validate_json(response.content)

                layers = []
                for descriptor in manifest.layers:
                    content = self._fetch_blob(http, reference, descriptor.digest, cancel)
                    layers.append(
                        PolicyLayer(
                            content=content,
                            media_type=descriptor.media_type,
                            annotations=descriptor.annotations or {},
                        )
                    )
        except SchemaError as exc:
            raise PullError(f"malformed manifest for {reference.name}: {exc}") from exc
        except (httpx.HTTPError, _RegistryFailure, OSError, ValueError) as exc:
            raise PullError(str(exc)) from exc

        return PolicyImage(
            media_type=manifest.media_type,
            config_media_type=manifest.config.media_type,
            layers=tuple(layers),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def base_url(self, reference: Reference) -> str:
        host = reference.registry
        hostname = host if host.endswith("]") else host.rsplit(":", 1)[0]
        scheme = "http" if self.insecure or hostname in _LOOPBACK_HOSTS else "https"
        return f"{scheme}://{host}"

    @staticmethod
    def _resolve(
        reference: Reference, credentials: Optional[CredentialResolver]
    ) -> Optional[Credentials]:
        if credentials is None:
            return None
        return credentials.resolve(reference.registry)

    @contextmanager
    def _session(
        self, reference: Reference, credentials: Optional[Credentials], actions: str
    ) -> Iterator[httpx.Client]:
        auth = RegistryAuth(credentials, f"repository:{reference.repository}:{actions}")
        with httpx.Client(
            base_url=self.base_url(reference),
            auth=auth,
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as http:
            yield http

    def _upload_blob(
        self,
        http: httpx.Client,
        reference: Reference,
        digest: str,
        data: bytes,
        cancel: Optional[threading.Event],
    ) -> None:
        repository = reference.repository
        _check_cancelled(cancel)
        existing = http.head(f"/v2/{repository}/blobs/{digest}")
        if existing.status_code == 200:
            logger.debug("Blob %s already present in %s", digest, reference.context)
            return

        _check_cancelled(cancel)
        started = http.post(f"/v2/{repository}/blobs/uploads/")
        _expect(started, 202, f"starting upload of {digest}")
        location = started.headers.get("Location")
        if not location:
            raise _RegistryFailure(f"starting upload of {digest}: no Location header")

        _check_cancelled(cancel)
        finished = http.put(
            location,
            params={"digest": digest},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        _expect(finished, 201, f"uploading blob {digest}")
        logger.debug("Uploaded blob %s (%d bytes)", digest, len(data))

    def _fetch_blob(
        self,
        http: httpx.Client,
        reference: Reference,
        digest: str,
        cancel: Optional[threading.Event],
    ) -> bytes:
        _check_cancelled(cancel)
        response = http.get(f"/v2/{reference.repository}/blobs/{digest}")
        _expect(response, 200, f"fetching blob {digest}")
        if sha256_digest(response.content) != digest:
            raise _RegistryFailure(f"blob {digest} failed digest verification")
        return response.content


def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise _RegistryFailure("operation cancelled")
