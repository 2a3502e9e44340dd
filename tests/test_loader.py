"""Tests for policyoci.loader."""

from __future__ import annotations

import json
from pathlib import Path

from policyoci.loader import load_policies

from .conftest import cluster_policy_doc, namespaced_policy_doc, write_yaml


class TestLoadPolicies:
    def test_single_file(self, tmp_path: Path) -> None:
        path = write_yaml(tmp_path / "policy.yaml", cluster_policy_doc())
        policies, errors = load_policies([str(path)])
        assert errors == []
        assert [p.name for p in policies] == ["require-labels"]

    def test_directory_is_walked_in_sorted_order(self, tmp_path: Path) -> None:
        write_yaml(tmp_path / "b" / "second.yaml", namespaced_policy_doc())
        write_yaml(tmp_path / "a.yml", cluster_policy_doc("first"))
        (tmp_path / "README.md").write_text("not a policy", encoding="utf-8")
        policies, errors = load_policies([str(tmp_path)])
        assert errors == []
        assert [p.name for p in policies] == ["first", "restrict-image-registries"]

    def test_multi_document_file(self, tmp_path: Path) -> None:
        path = write_yaml(
            tmp_path / "all.yaml", cluster_policy_doc("one"), cluster_policy_doc("two")
        )
        policies, _ = load_policies([str(path)])
        assert [p.name for p in policies] == ["one", "two"]

    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text(json.dumps(cluster_policy_doc()), encoding="utf-8")
        policies, errors = load_policies([str(path)])
        assert errors == []
        assert policies[0].kind == "ClusterPolicy"

    def test_list_kind_is_expanded(self, tmp_path: Path) -> None:
        path = write_yaml(
            tmp_path / "list.yaml",
            {
                "apiVersion": "v1",
                "kind": "List",
                "items": [cluster_policy_doc("x"), cluster_policy_doc("y")],
            },
        )
        policies, _ = load_policies([str(path)])
        assert [p.name for p in policies] == ["x", "y"]

    def test_list_with_scalar_items_is_an_error(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("kind: List\nitems: 5\n", encoding="utf-8")
        write_yaml(tmp_path / "ok.yaml", cluster_policy_doc())
        policies, errors = load_policies([str(tmp_path)])
        assert [p.name for p in policies] == ["require-labels"]
        assert errors == [f"{path}: document 0: List items must be a sequence"]

    def test_other_kinds_are_skipped(self, tmp_path: Path) -> None:
        path = write_yaml(
            tmp_path / "mixed.yaml",
            {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cm"}},
            cluster_policy_doc(),
        )
        policies, errors = load_policies([str(path)])
        assert errors == []
        assert [p.name for p in policies] == ["require-labels"]

    def test_empty_documents_are_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("---\n---\n", encoding="utf-8")
        assert load_policies([str(path)]) == ([], [])

    def test_errors_are_collected_per_path(self, tmp_path: Path) -> None:
        write_yaml(tmp_path / "good.yaml", cluster_policy_doc())
        (tmp_path / "bad.yaml").write_text("kind: [unclosed", encoding="utf-8")
        (tmp_path / "scalar.yaml").write_text("just a string\n", encoding="utf-8")
        policies, errors = load_policies([str(tmp_path), str(tmp_path / "missing")])
        assert [p.name for p in policies] == ["require-labels"]
        assert len(errors) == 3
        assert any("invalid YAML" in e for e in errors)
        assert any("not a mapping" in e for e in errors)
        assert any("no such file or directory" in e for e in errors)

    def test_policy_without_name_is_an_error(self, tmp_path: Path) -> None:
        doc = cluster_policy_doc()
        del doc["metadata"]["name"]
        path = write_yaml(tmp_path / "anon.yaml", doc)
        policies, errors = load_policies([str(path)])
        assert policies == []
        assert errors == [f"{path}: ClusterPolicy without metadata.name"]
