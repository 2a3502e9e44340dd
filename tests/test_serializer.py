"""Tests for policyoci.serializer."""

from __future__ import annotations

import pytest
import yaml

from policyoci.errors import SerializationError
from policyoci.models import Policy
from policyoci.serializer import deserialize_policy, serialize_policy

from .conftest import cluster_policy_doc


class TestSerializePolicy:
    def test_round_trip(self, cluster_policy: Policy, namespaced_policy: Policy) -> None:
        for policy in (cluster_policy, namespaced_policy):
            assert deserialize_policy(serialize_policy(policy)) == policy

    def test_output_is_block_yaml(self, cluster_policy: Policy) -> None:
        text = serialize_policy(cluster_policy).decode("utf-8")
        assert text.startswith("apiVersion: kyverno.io/v1\n")
        assert "{" not in text.splitlines()[0]
        assert yaml.safe_load(text) == cluster_policy.document

    def test_key_order_does_not_matter(self) -> None:
        doc = cluster_policy_doc()
        reordered = dict(reversed(list(doc.items())))
        assert serialize_policy(Policy.from_document(doc)) == serialize_policy(
            Policy.from_document(reordered)
        )

    def test_strings_that_look_like_other_types_survive(self) -> None:
        doc = cluster_policy_doc()
        doc["metadata"]["annotations"] = {"a": "yes", "b": "1.0", "c": "2024-01-01", "d": "null"}
        policy = Policy.from_document(doc)
        assert deserialize_policy(serialize_policy(policy)) == policy

    def test_unicode_is_kept(self) -> None:
        doc = cluster_policy_doc()
        doc["spec"]["rules"][0]["validate"]["message"] = "étiquette requise"
        data = serialize_policy(Policy.from_document(doc))
        assert "étiquette requise".encode("utf-8") in data

    def test_nan_is_rejected(self) -> None:
        doc = cluster_policy_doc()
        doc["spec"]["weight"] = float("inf")
        with pytest.raises(SerializationError, match="converting policy to yaml"):
            serialize_policy(Policy.from_document(doc))

    def test_non_string_key_is_rejected(self) -> None:
        doc = cluster_policy_doc()
        doc["spec"]["rules"][0]["validate"]["pattern"] = {200: "ok"}
        with pytest.raises(SerializationError, match="key 200 is not a string"):
            serialize_policy(Policy.from_document(doc))

    def test_boolean_key_is_rejected(self) -> None:
        doc = cluster_policy_doc()
        doc["metadata"]["labels"] = {True: "on"}
        with pytest.raises(SerializationError, match="metadata.labels"):
            serialize_policy(Policy.from_document(doc))

    def test_unrepresentable_value_is_rejected(self) -> None:
        doc = cluster_policy_doc()
        doc["spec"]["extra"] = object()
        with pytest.raises(SerializationError):
            serialize_policy(Policy.from_document(doc))


class TestDeserializePolicy:
    def test_rejects_non_mapping(self) -> None:
        with pytest.raises(SerializationError, match="expected a mapping"):
            deserialize_policy(b"- a\n- b\n")

    def test_rejects_invalid_yaml(self) -> None:
        with pytest.raises(SerializationError):
            deserialize_policy(b"key: [unclosed")

    def test_rejects_invalid_utf8(self) -> None:
        with pytest.raises(SerializationError):
            deserialize_policy(b"\xff\xfe")
