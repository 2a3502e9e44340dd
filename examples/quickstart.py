"""
policyoci quickstart: load, validate, package, decode and (optionally) push.

Run directly:

    python examples/quickstart.py

Set POLICYOCI_DEMO_REGISTRY (for example ``localhost:5000``) to also push
the bundle to a running registry and pull it back.
"""

from __future__ import annotations

import json
import os
import pathlib
import tempfile

import yaml

REQUIRE_LABELS = {
    "apiVersion": "kyverno.io/v1",
    "kind": "ClusterPolicy",
    "metadata": {"name": "require-labels"},
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

RESTRICT_REGISTRIES = {
    "apiVersion": "kyverno.io/v1",
    "kind": "Policy",
    "metadata": {"name": "restrict-image-registries", "namespace": "team-a"},
    "spec": {
        "validationFailureAction": "Audit",
        "background": True,
        "rules": [
            {
                "name": "validate-registries",
                "match": {"any": [{"resources": {"kinds": ["Pod"]}}]},
                "validate": {
                    "message": "images must come from registry.example.com",
                    "pattern": {
                        "spec": {"containers": [{"image": "registry.example.com/*"}]}
                    },
                },
            }
        ],
    },
}


# ---------------------------------------------------------------------------
# Demo 1: Load and validate a policy directory
# ---------------------------------------------------------------------------

def demo_load(policy_dir: pathlib.Path) -> list:
    """Write two policies to disk, then load and validate them."""
    print("\n=== Demo 1: Load and validate ===")

    from policyoci.core import load_policy_set
    from policyoci.validation import validate_policies

    for index, doc in enumerate((REQUIRE_LABELS, RESTRICT_REGISTRIES), start=1):
        path = policy_dir / f"{index:02d}-{doc['metadata']['name']}.yaml"
        path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
        print(f"  Wrote {path.name}")

    policies = load_policy_set([str(policy_dir)])
    warnings = validate_policies(policies)
    for policy in policies:
        print(f"  {policy.kind:<14} {policy.name:<28} scope={policy.scope}")
    print(f"  Warnings: {warnings or 'none'}")
    return policies


# ---------------------------------------------------------------------------
# Demo 2: Assemble the image and show its manifest
# ---------------------------------------------------------------------------

def demo_assemble(policies: list):
    """Build the policy image in memory and print the manifest."""
    print("\n=== Demo 2: Assemble image ===")

    from policyoci.core import PolicyImageAssembler

    image = PolicyImageAssembler().assemble(policies)
    print(f"  Config media type : {image.config_media_type}")
    print(f"  Manifest digest   : {image.digest()}")
    for layer in image.layers:
        print(f"    {layer.annotations['name']:<28} {layer.size:5d} B  {layer.digest[:30]}...")

    print("\n  Manifest JSON (truncated):")
    manifest = image.manifest().model_dump(by_alias=True, exclude_none=True)
    for line in json.dumps(manifest, indent=2).splitlines()[:14]:
        print(f"    {line}")
    print("    ...")
    return image


# ---------------------------------------------------------------------------
# Demo 3: Decode the image back into policies
# ---------------------------------------------------------------------------

def demo_decode(image, policies: list) -> None:
    """Decode every layer and compare with the originals."""
    print("\n=== Demo 3: Decode image ===")

    from policyoci.core import decode_image

    decoded = decode_image(image)
    print(f"  Decoded {len(decoded)} policies; identical to input: {decoded == policies}")
    print("\n  First layer content:")
    for line in image.layers[0].content.decode("utf-8").splitlines()[:8]:
        print(f"    {line}")
    print("    ...")


# ---------------------------------------------------------------------------
# Demo 4: Push to and pull from a real registry
# ---------------------------------------------------------------------------

def demo_push_pull(policy_dir: pathlib.Path, registry: str) -> None:
    """Push the policy directory and pull it back."""
    print("\n=== Demo 4: Push and pull ===")

    from policyoci.auth import DockerConfigKeychain
    from policyoci.core import pull_policies, push_policies
    from policyoci.registry import RegistryClient

    client = RegistryClient()
    ref = f"{registry}/policies:quickstart"
    result = push_policies(
        [str(policy_dir)],
        ref,
        client,
        credentials=DockerConfigKeychain(),
        progress=lambda line: print(f"  {line}"),
    )
    print(f"  Pushed digest: {result.digest}")

    pulled = pull_policies(ref, client, credentials=DockerConfigKeychain())
    print(f"  Pulled back  : {[p.name for p in pulled]}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    print("policyoci quickstart demo")
    print("=" * 40)

    with tempfile.TemporaryDirectory() as tmp:
        policy_dir = pathlib.Path(tmp) / "policies"
        policy_dir.mkdir()

        policies = demo_load(policy_dir)
        image = demo_assemble(policies)
        demo_decode(image, policies)

        registry = os.environ.get("POLICYOCI_DEMO_REGISTRY")
        if registry:
            demo_push_pull(policy_dir, registry)
        else:
            print("\n(Set POLICYOCI_DEMO_REGISTRY to run the push/pull demo.)")

    print("\n" + "=" * 40)
    print("All demos completed successfully.")


if __name__ == "__main__":
    main()
