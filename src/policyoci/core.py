"""Core logic for policyoci: packaging policies into OCI images and back."""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Optional

from .auth import CredentialResolver
from .constants import (
    ANNOTATION_NAME,
    ANNOTATION_SCOPE,
    OCI_IMAGE_MANIFEST,
    POLICY_CONFIG_MEDIA_TYPE,
    POLICY_LAYER_MEDIA_TYPE,
)
from .errors import (
    AssemblyError,
    InputError,
    LoadError,
    PolicyOCIError,
    PublishError,
    PullError,
    SerializationError,
)
from .loader import load_policies
from .models import Policy, PolicyImage, PolicyLayer, PushResult
from .reference import parse_reference
from .registry import ImagePublisher, ImageReader
from .serializer import deserialize_policy, serialize_policy
from .validation import validate_policies

__all__ = [
    "PolicyImageAssembler",
    "PushOperation",
    "PushState",
    "annotations_for",
    "decode_image",
    "load_policy_set",
    "pull_policies",
    "push_policies",
]

logger = logging.getLogger(__name__)

Loader = Callable[[Sequence[str]], tuple[list[Policy], list[str]]]
Validator = Callable[[Sequence[Policy]], list[str]]
Progress = Callable[[str], None]


def annotations_for(policy: Policy) -> dict[str, str]:
    """Layer annotations describing *policy*."""
    return {ANNOTATION_NAME: policy.name, ANNOTATION_SCOPE: policy.scope}


class PolicyImageAssembler:
    """
    Builds a policy image, one layer per policy.

    Purely in-memory: no disk or network I/O happens here.
    """

    def empty_image(self) -> PolicyImage:
        return PolicyImage(
            media_type=OCI_IMAGE_MANIFEST,
            config_media_type=POLICY_CONFIG_MEDIA_TYPE,
        )

    def build_layer(self, policy: Policy) -> PolicyLayer:
        """Serialize *policy* and wrap it as an annotated layer."""
        return PolicyLayer(
            content=serialize_policy(policy),
            media_type=POLICY_LAYER_MEDIA_TYPE,
            annotations=annotations_for(policy),
        )

    def append(self, image: PolicyImage, layer: PolicyLayer) -> PolicyImage:
        """Return *image* with *layer* added at the end."""
        if not layer.content:
            raise AssemblyError("layer has no content")
        if not layer.annotations.get(ANNOTATION_NAME):
            raise AssemblyError(f"layer {layer.digest} has no {ANNOTATION_NAME!r} annotation")
        return image.append(layer)

    def assemble(
        self,
        policies: Iterable[Policy],
        on_layer: Optional[Callable[[Policy], None]] = None,
    ) -> PolicyImage:
        """
        Build the image for *policies*, preserving their order.

        Raises ``SerializationError`` or ``AssemblyError``; in either case no
        image is returned.
        """
        image = self.empty_image()
        for policy in policies:
            if on_layer is not None:
                on_layer(policy)
            image = self.append(image, self.build_layer(policy))
        return image


def decode_image(image: PolicyImage) -> list[Policy]:
    """Recover the policies packaged in *image*, in layer order."""
    if image.config_media_type != POLICY_CONFIG_MEDIA_TYPE:
        raise PullError(
            f"not a policy image: config media type is {image.config_media_type!r}"
        )
    policies = []
    for index, layer in enumerate(image.layers):
        if layer.media_type != POLICY_LAYER_MEDIA_TYPE:
            raise PullError(
                f"layer {index} ({layer.digest}) has media type {layer.media_type!r}"
            )
        try:
            policies.append(deserialize_policy(layer.content))
        except SerializationError as exc:
            raise PullError(f"layer {index} ({layer.digest}): {exc.detail}") from exc
    return policies


def load_policy_set(paths: Sequence[str], loader: Loader = load_policies) -> list[Policy]:
    """
    Load every policy under *paths*, failing on any error.

    An empty result is an error too: an image without layers is never built.
    """
    policies, errors = loader(list(paths))
    source = ", ".join(paths)
    if errors:
        raise LoadError(source, errors)
    if not policies:
        raise LoadError(source, ["no policies found"])
    return policies


class PushState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    VALIDATING = "validating"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class PushOperation:
    """
    One end-to-end push: load, validate, assemble, publish.

    Stages run strictly in sequence. Any failure moves the operation to
    ``FAILED`` and re-raises; nothing after the failing stage runs and
    there is no resumption.
    """

    def __init__(
        self,
        publisher: ImagePublisher,
        *,
        credentials: Optional[CredentialResolver] = None,
        cancel: Optional[threading.Event] = None,
        progress: Optional[Progress] = None,
        loader: Loader = load_policies,
        validator: Validator = validate_policies,
        assembler: Optional[PolicyImageAssembler] = None,
    ) -> None:
        self.publisher = publisher
        self.credentials = credentials
        self.cancel = cancel
        self.progress = progress
        self.loader = loader
        self.validator = validator
        self.assembler = assembler or PolicyImageAssembler()
        self.state = PushState.IDLE

    def _enter(self, state: PushState) -> None:
        logger.debug("push: %s -> %s", self.state.value, state.value)
        self.state = state

    def _report(self, message: str) -> None:
        if self.progress is not None:
            self.progress(message)

    def _announce(self, policy: Policy) -> None:
        if policy.is_namespaced:
            self._report(f"Adding policy: {policy.name} ...")
        else:
            self._report(f"Adding cluster policy {policy.name} ...")

    def run(self, paths: Sequence[str], image_ref: str) -> PushResult:
        try:
            return self._run(paths, image_ref)
        except PolicyOCIError:
            self._enter(PushState.FAILED)
            raise

    def _run(self, paths: Sequence[str], image_ref: str) -> PushResult:
        if not image_ref:
            raise InputError("image reference is required")
        reference = parse_reference(image_ref)

        self._enter(PushState.LOADING)
        policies = load_policy_set(paths, self.loader)

        self._enter(PushState.VALIDATING)
        self.validator(policies)

        self._enter(PushState.ASSEMBLING)
        image = self.assembler.assemble(policies, on_layer=self._announce)

        self._enter(PushState.PUBLISHING)
        self._report(f"Uploading [{reference.name}]...")
        try:
            digest = self.publisher.write(
                reference, image, credentials=self.credentials, cancel=self.cancel
            )
        except PolicyOCIError:
            raise
        except Exception as exc:
            raise PublishError(str(exc)) from exc

        self._enter(PushState.DONE)
        self._report("Done.")
        return PushResult(reference=reference, image=image, digest=digest)


def push_policies(
    paths: Sequence[str],
    image_ref: str,
    publisher: ImagePublisher,
    *,
    credentials: Optional[CredentialResolver] = None,
    cancel: Optional[threading.Event] = None,
    progress: Optional[Progress] = None,
    loader: Loader = load_policies,
    validator: Validator = validate_policies,
) -> PushResult:
    """
    Package the policies under *paths* and push them to *image_ref*.

    The reference is checked before anything is loaded, every policy is
    validated before any layer is built, and *publisher* is called exactly
    once with the finished image. All failures raise a ``PolicyOCIError``
    subclass whose message names the failing phase.
    """
    operation = PushOperation(
        publisher,
        credentials=credentials,
        cancel=cancel,
        progress=progress,
        loader=loader,
        validator=validator,
    )
    return operation.run(paths, image_ref)


def pull_policies(
    image_ref: str,
    reader: ImageReader,
    *,
    credentials: Optional[CredentialResolver] = None,
    cancel: Optional[threading.Event] = None,
) -> list[Policy]:
    """Fetch *image_ref* and decode it back into policies."""
    if not image_ref:
        raise InputError("image reference is required")
    reference = parse_reference(image_ref)
    try:
        image = reader.read(reference, credentials=credentials, cancel=cancel)
    except PolicyOCIError:
        raise
    except Exception as exc:
        raise PullError(str(exc)) from exc
    return decode_image(image)
