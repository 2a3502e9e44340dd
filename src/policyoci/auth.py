"""Registry credential resolution and the token-auth flow for httpx."""

from __future__ import annotations

import base64
import json
import logging
import os
import re
from collections.abc import Generator
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import httpx

from .constants import DEFAULT_REGISTRY
from .models import Credentials

__all__ = [
    "CredentialResolver",
    "DockerConfigKeychain",
    "Keychain",
    "RegistryAuth",
    "StaticCredentials",
]

logger = logging.getLogger(__name__)

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_DOCKER_HUB_KEYS = (
    "https://index.docker.io/v1/",
    "index.docker.io",
    "docker.io",
    "registry-1.docker.io",
)
_CLIENT_ID = "policyoci"


@runtime_checkable
class CredentialResolver(Protocol):
    """Looks up credentials for a registry host."""

    def resolve(self, registry: str) -> Optional[Credentials]:
        """Return credentials for *registry*, or ``None`` for anonymous access."""
        ...


class StaticCredentials:
    """The same credentials for every registry."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def resolve(self, registry: str) -> Optional[Credentials]:
        return None if self._credentials.is_anonymous else self._credentials


class DockerConfigKeychain:
    """
    Credentials from a Docker CLI ``config.json``.

    Reads ``$DOCKER_CONFIG/config.json`` or ``~/.docker/config.json``. Only
    inline ``auths`` entries are supported; credential helpers are not run.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self._config_path = config_path

    @property
    def config_path(self) -> Path:
        if self._config_path is not None:
            return self._config_path
        config_dir = os.environ.get("DOCKER_CONFIG")
        if config_dir:
            return Path(config_dir) / "config.json"
        return Path.home() / ".docker" / "config.json"

    def resolve(self, registry: str) -> Optional[Credentials]:
        path = self.config_path
        if not path.is_file():
            return None
        config = json.loads(path.read_text(encoding="utf-8"))
        auths = config.get("auths") if isinstance(config, dict) else None
        if auths is None:
            return None
        if not isinstance(auths, dict):
            raise ValueError(f"{path}: 'auths' is not a mapping")

        candidates = [registry, f"https://{registry}", f"http://{registry}"]
        if registry == DEFAULT_REGISTRY:
            candidates.extend(_DOCKER_HUB_KEYS)
        for key in candidates:
            entry = auths.get(key)
            if entry and not isinstance(entry, dict):
                raise ValueError(f"{path}: auths entry {key!r} is not a mapping")
            if entry:
                logger.debug("Using credentials for %s from %s", key, path)
                return self._from_entry(entry)
        return None

    @staticmethod
    def _from_entry(entry: dict[str, str]) -> Optional[Credentials]:
        if entry.get("identitytoken"):
            return Credentials(token=entry["identitytoken"])
        if entry.get("auth"):
            decoded = base64.b64decode(entry["auth"]).decode("utf-8")
            username, _, password = decoded.partition(":")
            return Credentials(username=username, password=password)
        if entry.get("username"):
            return Credentials(username=entry["username"], password=entry.get("password"))
        return None


class Keychain:
    """Tries each resolver in turn; the first non-empty answer wins."""

    def __init__(self, *resolvers: CredentialResolver) -> None:
        self._resolvers = resolvers

    def resolve(self, registry: str) -> Optional[Credentials]:
        for resolver in self._resolvers:
            credentials = resolver.resolve(registry)
            if credentials is not None:
                return credentials
        return None


def _parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    scheme, _, params = header.partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(params))


def _basic_header(username: str, password: str) -> str:
    raw = f"{username}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


class RegistryAuth(httpx.Auth):
    """
    Answers registry ``401`` challenges.

    ``Basic`` challenges are answered with the resolved username/password.
    ``Bearer`` challenges fetch a token from the challenge realm for
    *scope*: with basic credentials via GET, or by exchanging an identity
    token via the OAuth2 refresh-token grant. The resulting header is reused
    for every later request on the same client.
    """

    requires_response_body = True

    def __init__(self, credentials: Optional[Credentials], scope: str) -> None:
        self._credentials = credentials
        self._scope = scope
        self._header: Optional[str] = None

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        if self._header:
            request.headers["Authorization"] = self._header
        response = yield request
        if response.status_code != 401:
            return

        scheme, params = _parse_challenge(response.headers.get("WWW-Authenticate", ""))
        credentials = self._credentials
        if scheme == "basic":
            if credentials is None or not credentials.username:
                return
            self._header = _basic_header(credentials.username, credentials.password or "")
        elif scheme == "bearer" and "realm" in params:
            token_response = yield self._token_request(params)
            if token_response.status_code != 200:
                raise httpx.HTTPStatusError(
                    f"token request to {params['realm']} failed with "
                    f"HTTP {token_response.status_code}",
                    request=token_response.request,
                    response=token_response,
                )
            body = token_response.json()
            token = body.get("token") or body.get("access_token")
            if not token:
                raise httpx.DecodingError(
                    f"token response from {params['realm']} carries no token",
                    request=token_response.request,
                )
            self._header = f"Bearer {token}"
        else:
            return

        request.headers["Authorization"] = self._header
        yield request

    def _token_request(self, params: dict[str, str]) -> httpx.Request:
        query = {"scope": self._scope}
        if "service" in params:
            query["service"] = params["service"]
        credentials = self._credentials

        if credentials is not None and credentials.token:
            form = dict(
                query,
                grant_type="refresh_token",
                refresh_token=credentials.token,
                client_id=_CLIENT_ID,
            )
            return httpx.Request("POST", params["realm"], data=form)

        headers = {}
        if credentials is not None and credentials.username:
            headers["Authorization"] = _basic_header(
                credentials.username, credentials.password or ""
            )
        return httpx.Request("GET", params["realm"], params=query, headers=headers)
