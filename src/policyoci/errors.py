"""Exception hierarchy for policyoci.

Every error is fatal to the operation that raised it. Each class carries the
pipeline phase it belongs to, and ``str(exc)`` is ``"<phase>: <detail>"``, or
``"<phase> <subject>: <detail>"`` when the error is about one named thing, so
the CLI can report it verbatim.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

__all__ = [
    "AssemblyError",
    "InputError",
    "LoadError",
    "PolicyOCIError",
    "PublishError",
    "PullError",
    "ReferenceParseError",
    "SerializationError",
    "ValidationError",
]


class PolicyOCIError(Exception):
    """Base class for all policyoci failures."""

    phase = "policyoci"

    def __init__(self, detail: str, subject: Optional[str] = None) -> None:
        self.detail = detail
        self.subject = subject
        prefix = " ".join(part for part in (self.phase, subject) if part)
        super().__init__(f"{prefix}: {detail}" if prefix else detail)


class InputError(PolicyOCIError):
    """A required input (such as the image reference) is missing."""

    phase = ""


class LoadError(PolicyOCIError):
    """Policy files could not be read or parsed."""

    phase = "unable to read policy file or directory"

    def __init__(self, path: str, errors: Iterable[str]) -> None:
        self.path = path
        self.errors = list(errors)
        super().__init__("; ".join(self.errors), subject=path)


class ValidationError(PolicyOCIError):
    """A loaded policy failed schema or semantic validation."""

    phase = "validating policy"

    def __init__(self, policy_name: str, reason: str) -> None:
        self.policy_name = policy_name
        self.reason = reason
        super().__init__(reason, subject=policy_name)


class SerializationError(PolicyOCIError):
    """A policy could not be converted to or from its canonical YAML form."""

    phase = "converting policy to yaml"


class ReferenceParseError(PolicyOCIError):
    """The image reference is not a well-formed registry reference."""

    phase = "parsing image reference"


class AssemblyError(PolicyOCIError):
    """A layer could not be appended to the image."""

    phase = "mutating image"


class PublishError(PolicyOCIError):
    """The registry write failed."""

    phase = "writing image"


class PullError(PolicyOCIError):
    """The registry read failed or returned something that is not a policy image."""

    phase = "reading image"
