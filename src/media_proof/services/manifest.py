# SPDX-License-Identifier: MPL-2.0
"""
Manifest Verifier

Decides whether an authenticity manifest is an acceptable provenance subject.
The manifest arrives already decoded by an external reader, either in the
JavaScript reader's shape (``activeManifest`` with nested ingredient
manifests) or in the command-line tool's shape (``active_manifest`` label plus
a ``manifests`` map that ingredients reference by label). Both are normalised
into :class:`ManifestNode` trees before any decision is made.

The verifier is pure: no I/O, no clock, no logging side effects beyond debug
lines.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from media_proof.core.config import STANDARD_BINDING_LABELS, Settings
from media_proof.core.exceptions import (
    GeneratedContent,
    InvalidFingerprint,
    MissingBinding,
    ParseFailure,
    UntrustedSigner,
)
from media_proof.core.fingerprint import bytes_to_fingerprint, normalize_fingerprint
from media_proof.core.models import SourceClass, TrustVerdict, VerdictReason

logger = logging.getLogger(__name__)

ACTION_LABELS = ("c2pa.actions", "c2pa.actions.v2")
GENERATIVE_INFO_LABELS = ("c2pa.ai_generative_info",)
GENERATIVE_SOURCE_TYPES = (
    "trainedAlgorithmicMedia",
    "compositeWithTrainedAlgorithmicMedia",
    "algorithmicMedia",
)
_INSTANCE_SUFFIX = re.compile(r"__\d+$")
# Hard cap on nested ingredient objects, independent of the walk depth setting
MAX_NESTING = 64

ManifestInput = Union[bytes, str, Dict[str, Any], Any]


@dataclass
class ManifestNode:
    """One manifest in an ingredient chain."""

    label: Optional[str]
    claim_generator: Optional[str]
    signer: Optional[str]
    signed_at: Optional[str]
    assertions: List[Tuple[str, Any]] = field(default_factory=list)
    # Each parent is either a nested ManifestNode or a label into the store
    parents: List[Union["ManifestNode", str]] = field(default_factory=list)


@dataclass
class ManifestStore:
    """A parsed manifest store."""

    active: Optional[ManifestNode]
    nodes: Dict[str, ManifestNode] = field(default_factory=dict)
    validation_errors: List[str] = field(default_factory=list)
    validation_flag: Optional[bool] = None

    def resolve(self, parent: Union[ManifestNode, str]) -> Optional[ManifestNode]:
        if isinstance(parent, ManifestNode):
            return parent
        return self.nodes.get(parent)


def _get(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present key/attribute of ``names`` from a dict or object."""
    for name in names:
        if isinstance(obj, dict):
            if name in obj and obj[name] is not None:
                return obj[name]
        elif obj is not None and getattr(obj, name, None) is not None:
            return getattr(obj, name)
    return default


def _assertion_list(raw: Any) -> List[Tuple[str, Any]]:
    if raw is None:
        return []
    items = _get(raw, "data", default=raw) if not isinstance(raw, list) else raw
    if not isinstance(items, list):
        return []
    assertions = []
    for item in items:
        label = _get(item, "label")
        if isinstance(label, str):
            assertions.append((label, _get(item, "data", default=item)))
    return assertions


def _claim_generator(raw: Any) -> Optional[str]:
    info = _get(raw, "claimGeneratorInfo", "claim_generator_info")
    if isinstance(info, list) and info:
        name = _get(info[0], "name")
        version = _get(info[0], "version")
        if name:
            return f"{name} {version}" if version else str(name)
    generator = _get(raw, "claimGenerator", "claim_generator")
    return str(generator) if generator else None


def _parse_node(raw: Any, nesting: int = 0) -> ManifestNode:
    if raw is None:
        raise ParseFailure("Manifest node is empty")
    if nesting > MAX_NESTING:
        raise ParseFailure(f"Ingredient manifests nested deeper than {MAX_NESTING}")
    signature_info = _get(raw, "signatureInfo", "signature_info", default={})
    node = ManifestNode(
        label=_get(raw, "label"),
        claim_generator=_claim_generator(raw),
        signer=_get(signature_info, "issuer"),
        signed_at=_get(signature_info, "time"),
        assertions=_assertion_list(_get(raw, "assertions")),
    )
    ingredients = _get(raw, "ingredients", default=[]) or []
    # parentOf ingredients first; they are the provenance chain
    ordered = sorted(
        ingredients,
        key=lambda ing: 0 if _get(ing, "relationship", default="parentOf") == "parentOf" else 1,
    )
    for ingredient in ordered:
        nested = _get(ingredient, "manifest")
        if nested is not None and not isinstance(nested, str):
            node.parents.append(_parse_node(nested, nesting + 1))
            continue
        ref = nested if isinstance(nested, str) else _get(ingredient, "active_manifest", "activeManifest")
        if isinstance(ref, str):
            node.parents.append(ref)
    return node


def _validation_errors(raw: Any) -> List[str]:
    statuses = _get(raw, "validationStatus", "validation_status", default=[]) or []
    errors = []
    for status in statuses:
        code = str(_get(status, "code", default=""))
        if code.startswith("failure") or ".failure" in code:
            errors.append(str(_get(status, "explanation", default=code)))
    return errors


def parse_manifest_store(manifest: ManifestInput) -> ManifestStore:
    """Normalise decoded manifest input into a :class:`ManifestStore`.

    Raises:
        ParseFailure: If the input is not decodable or has no active manifest
    """
    if isinstance(manifest, (bytes, bytearray)):
        try:
            manifest = manifest.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseFailure(f"Manifest is not UTF-8 JSON: {e}") from e
    if isinstance(manifest, str):
        try:
            manifest = json.loads(manifest)
        except json.JSONDecodeError as e:
            raise ParseFailure(f"Invalid manifest JSON: {e}") from e
    if manifest is None:
        raise ParseFailure("No manifest store found")

    flag = _get(manifest, "isValid", "valid")
    store = ManifestStore(
        active=None,
        validation_errors=_validation_errors(manifest),
        validation_flag=flag if isinstance(flag, bool) else None,
    )

    manifests = _get(manifest, "manifests")
    active_raw = _get(manifest, "activeManifest", "active_manifest")
    if isinstance(manifests, dict):
        for label, raw in manifests.items():
            node = _parse_node(raw)
            node.label = node.label or label
            store.nodes[label] = node
        if isinstance(active_raw, str):
            store.active = store.nodes.get(active_raw)
    if store.active is None and active_raw is not None and not isinstance(active_raw, str):
        store.active = _parse_node(active_raw)
    if store.active is None:
        raise ParseFailure("No active manifest")
    return store


def walk_chain(store: ManifestStore, max_depth: int) -> List[ManifestNode]:
    """Follow parent ingredients from the active manifest to the root.

    The walk is bounded by ``max_depth`` and guarded against cycles, which a
    malformed store can contain when ingredients reference labels.

    Raises:
        ParseFailure: On a cycle, a dangling reference, or excessive depth
    """
    chain: List[ManifestNode] = []
    visited = set()
    node = store.active
    while node is not None:
        key = node.label or id(node)
        if key in visited:
            raise ParseFailure(f"Ingredient chain is cyclic at {key}")
        visited.add(key)
        chain.append(node)
        if len(chain) > max_depth:
            raise ParseFailure(f"Ingredient chain exceeds maximum depth {max_depth}")
        if not node.parents:
            break
        parent = store.resolve(node.parents[0])
        if parent is None:
            raise ParseFailure(f"Ingredient references unknown manifest {node.parents[0]}")
        node = parent
    return chain


def is_generated(node: ManifestNode) -> bool:
    """True if any action assertion declares generative authorship."""
    for label, data in node.assertions:
        label = _INSTANCE_SUFFIX.sub("", label)
        if label in GENERATIVE_INFO_LABELS:
            return True
        if label not in ACTION_LABELS:
            continue
        for action in _get(data, "actions", default=[]) or []:
            source_type = str(_get(action, "digitalSourceType", default=""))
            if any(source_type.endswith("/" + t) or source_type == t for t in GENERATIVE_SOURCE_TYPES):
                return True
            description = str(_get(action, "description", default="")).lower()
            if "generative ai" in description:
                return True
    return False


def _decode_hash(value: Any) -> Optional[str]:
    if isinstance(value, (list, bytes, bytearray)):
        try:
            return bytes_to_fingerprint(value)
        except (InvalidFingerprint, ValueError, TypeError):
            return None
    if isinstance(value, str):
        try:
            return normalize_fingerprint(value)
        except InvalidFingerprint:
            pass
        try:
            return bytes_to_fingerprint(base64.b64decode(value, validate=True))
        except (binascii.Error, InvalidFingerprint, ValueError):
            return None
    return None


def extract_binding(node: ManifestNode, preferred_label: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Find the hard-binding hash embedded in ``node``.

    Returns:
        ``(label, fingerprint)`` or ``(None, None)``. Never falls back to a
        digest of the whole file.
    """
    labels = list(STANDARD_BINDING_LABELS)
    if preferred_label:
        labels.insert(0, preferred_label)
    by_label: Dict[str, Any] = {}
    for label, data in node.assertions:
        by_label.setdefault(_INSTANCE_SUFFIX.sub("", label), data)
    for label in labels:
        if label not in by_label:
            continue
        fingerprint = _decode_hash(_get(by_label[label], "hash"))
        if fingerprint:
            return label, fingerprint
    return None, None


class ManifestVerifier:
    """Turns a decoded manifest into a :class:`TrustVerdict`."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def verify(self, manifest: ManifestInput) -> TrustVerdict:
        try:
            store = parse_manifest_store(manifest)
            if store.validation_flag is False or store.validation_errors:
                detail = "; ".join(store.validation_errors) or "validation flag is false"
                raise ParseFailure(f"Manifest failed validation: {detail}")
            active = store.active
            if not active.signer:
                raise ParseFailure("Active manifest is unsigned")
            if not active.claim_generator:
                raise ParseFailure("Active manifest has no claim generator")
            chain = walk_chain(store, self.settings.max_manifest_depth)
        except ParseFailure as e:
            logger.debug(f"Manifest parse failure: {e.message}")
            return TrustVerdict(
                is_valid=False,
                root_signer="",
                claim_generator="",
                source_class=SourceClass.UNKNOWN,
                binding_hash=None,
                reasons=(VerdictReason(ParseFailure.code, e.message),),
            )

        root_signer = active.signer
        reasons: List[VerdictReason] = []
        trusted = self.settings.trusted_signer_for(root_signer)

        if any(is_generated(node) for node in chain):
            source_class = SourceClass.AI_GENERATED
            reasons.append(VerdictReason(GeneratedContent.code, "AI-generated content is not accepted"))
        elif trusted is None:
            source_class = SourceClass.UNKNOWN
        elif trusted.kind == "software":
            source_class = SourceClass.SOFTWARE_TOOL
        else:
            source_class = SourceClass.CAMERA_HARDWARE

        if trusted is None:
            reasons.append(VerdictReason(UntrustedSigner.code, f"Untrusted signer: {root_signer}"))

        spec = self.settings.hash_spec_for(root_signer)
        binding_label, binding_hash = extract_binding(active, spec.target_label if spec else None)
        if binding_hash is None:
            reasons.append(VerdictReason(MissingBinding.code, "No verifiable binding hash in manifest"))

        return TrustVerdict(
            is_valid=not reasons,
            root_signer=root_signer,
            claim_generator=active.claim_generator,
            source_class=source_class,
            binding_hash=binding_hash,
            reasons=tuple(reasons),
            binding_label=binding_label,
            signed_at=active.signed_at,
            chain=tuple(node.signer or "unknown" for node in chain),
            validation_errors=tuple(store.validation_errors),
        )


def verify_manifest(manifest: ManifestInput, settings: Optional[Settings] = None) -> TrustVerdict:
    """Verify a decoded manifest against ``settings``' trust policy."""
    return ManifestVerifier(settings).verify(manifest)
