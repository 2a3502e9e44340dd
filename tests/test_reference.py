"""Tests for policyoci.reference."""

from __future__ import annotations

import pytest

from policyoci.errors import ReferenceParseError
from policyoci.reference import parse_reference

DIGEST = "sha256:" + "a" * 64


class TestParseReference:
    def test_registry_repository_tag(self) -> None:
        ref = parse_reference("registry.example.com/policies:v1")
        assert ref.registry == "registry.example.com"
        assert ref.repository == "policies"
        assert ref.tag == "v1"
        assert ref.digest is None
        assert ref.name == "registry.example.com/policies:v1"
        assert ref.identifier == "v1"

    def test_default_tag(self) -> None:
        ref = parse_reference("ghcr.io/acme/policies")
        assert ref.tag == "latest"
        assert ref.repository == "acme/policies"

    def test_registry_with_port(self) -> None:
        ref = parse_reference("localhost:5000/team/policies:v2")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "team/policies"
        assert ref.tag == "v2"

    def test_localhost_without_port(self) -> None:
        assert parse_reference("localhost/policies").registry == "localhost"

    def test_docker_hub_defaults(self) -> None:
        ref = parse_reference("policies")
        assert ref.registry == "index.docker.io"
        assert ref.repository == "library/policies"
        assert ref.name == "index.docker.io/library/policies:latest"

    def test_docker_hub_alias(self) -> None:
        ref = parse_reference("docker.io/acme/policies:v1")
        assert ref.registry == "index.docker.io"
        assert ref.repository == "acme/policies"

    def test_digest(self) -> None:
        ref = parse_reference(f"registry.example.com/policies@{DIGEST}")
        assert ref.digest == DIGEST
        assert ref.tag is None
        assert ref.identifier == DIGEST
        assert ref.name == f"registry.example.com/policies@{DIGEST}"

    def test_tag_and_digest(self) -> None:
        ref = parse_reference(f"registry.example.com/policies:v1@{DIGEST}")
        assert ref.tag == "v1"
        assert ref.identifier == DIGEST

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "registry.example.com/Policies:v1",
            "registry.example.com/policies:",
            "registry.example.com/policies:-bad",
            "registry.example.com/policies@sha256:abc",
            "registry.example.com/policies@nodigest",
            "registry.example.com/",
            "registry.example.com/policies v1",
            "registry.example.com//policies",
            "bad_host.example.com/policies",
        ],
    )
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ReferenceParseError, match="parsing image reference"):
            parse_reference(text)

    def test_repository_too_long(self) -> None:
        with pytest.raises(ReferenceParseError, match="exceeds"):
            parse_reference("registry.example.com/" + "a" * 256)
