# SPDX-License-Identifier: MPL-2.0
"""Runtime configuration.

Every setting can be supplied through a ``MEDIA_PROOF_*`` environment variable
and has a development default, so the CLI and tests run without setup.
"""

import os
import re
from typing import List, Literal, Optional, Set

from pydantic import BaseModel, Field, ValidationError, field_validator

from media_proof.core.exceptions import ConfigurationError

ENV_PREFIX = "MEDIA_PROOF_"

# Distinguished-name attributes that carry the signer's name
DN_NAME_ATTRIBUTES = ("CN", "O")


class TrustedSigner(BaseModel):
    """An allow-listed root signer.

    ``name`` must equal the manifest's signer identity, ignoring case. When
    the signer is a distinguished name (``C=US, O=Google LLC, CN=...``) its
    ``CN`` and ``O`` values are compared instead. ``kind`` decides the
    verdict's source class.
    """

    name: str = Field(..., min_length=1)
    kind: Literal["camera", "software"] = "camera"

    def matches(self, signer: Optional[str]) -> bool:
        return self.name.strip().casefold() in signer_names(signer)


def signer_names(signer: Optional[str]) -> Set[str]:
    """Case-folded names a signer identity can be matched by."""
    signer = (signer or "").strip()
    if not signer:
        return set()
    names = {signer.casefold()}
    if "=" in signer:
        for part in signer.split(","):
            key, sep, value = part.partition("=")
            if sep and key.strip().upper() in DN_NAME_ATTRIBUTES and value.strip():
                names.add(value.strip().casefold())
    return names


class HashSpec(BaseModel):
    """Which hard-binding assertion a signer family uses as the content hash."""

    id: str  # noqa: A003
    vendor: str
    matcher: str
    target_label: str
    description: str = ""

    @field_validator("matcher")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid matcher regex: {e}") from e
        return value

    def matches(self, signer: str) -> bool:
        return re.search(self.matcher, signer or "", re.IGNORECASE) is not None


DEFAULT_TRUSTED_SIGNERS = [
    TrustedSigner(name="Google LLC"),
    TrustedSigner(name="Sony Corporation"),
    TrustedSigner(name="Leica Camera AG"),
    TrustedSigner(name="Nikon Corporation"),
    TrustedSigner(name="Canon Inc."),
]

DEFAULT_HASH_SPECS = [
    HashSpec(
        id="google-pixel",
        vendor="Google",
        matcher=r"Google LLC",
        target_label="c2pa.hash.data.part",
        description="Pixel devices bind content through the partial data hash.",
    ),
]

# Embedded content-hash assertions, in order of preference
STANDARD_BINDING_LABELS = (
    "c2pa.hash.data",
    "c2pa.hash.bmff.v3",
    "c2pa.hash.bmff.v2",
    "c2pa.hash.bmff",
    "c2pa.hash.boxes",
)


class Settings(BaseModel):
    """Configuration for the media proof services."""

    trusted_signers: List[TrustedSigner] = Field(default_factory=lambda: list(DEFAULT_TRUSTED_SIGNERS))
    hash_specs: List[HashSpec] = Field(default_factory=lambda: list(DEFAULT_HASH_SPECS))

    data_ledger_url: str = "https://gateway.irys.xyz"
    data_ledger_upload_url: Optional[str] = None
    ownership_rpc_url: Optional[str] = None
    tree_address: str = "local-tree"
    store_url: Optional[str] = None
    store_key: Optional[str] = None
    local_db: str = ":memory:"
    issuer_key_path: Optional[str] = None

    search_page_size: int = Field(default=100, ge=1, le=1000)
    request_timeout: float = Field(default=30.0, gt=0)
    confirm_timeout: float = Field(default=60.0, gt=0)
    max_manifest_depth: int = Field(default=10, ge=1)
    lookup_workers: int = Field(default=4, ge=1)
    duplicate_scope: Literal["issuer", "global"] = "issuer"

    def trusted_signer_for(self, signer: str) -> Optional[TrustedSigner]:
        for entry in self.trusted_signers:
            if entry.matches(signer):
                return entry
        return None

    def hash_spec_for(self, signer: str) -> Optional[HashSpec]:
        for spec in self.hash_specs:
            if spec.matches(signer):
                return spec
        return None

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """Build settings from ``MEDIA_PROOF_*`` environment variables.

        Raises:
            ConfigurationError: If a variable has an invalid value
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        simple = (
            "data_ledger_url",
            "data_ledger_upload_url",
            "ownership_rpc_url",
            "tree_address",
            "store_url",
            "store_key",
            "local_db",
            "issuer_key_path",
            "search_page_size",
            "request_timeout",
            "confirm_timeout",
            "max_manifest_depth",
            "lookup_workers",
            "duplicate_scope",
        )
        for name in simple:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw not in (None, ""):
                values[name] = raw

        signers = env.get(ENV_PREFIX + "TRUSTED_SIGNERS")
        if signers:
            values["trusted_signers"] = parse_trusted_signers(signers)

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def parse_trusted_signers(raw: str) -> List[dict]:
    """Parse ``"Google LLC=camera,Adobe=software"`` into signer entries."""
    entries = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, _, kind = item.partition("=")
        entry = {"name": name.strip()}
        if kind.strip():
            entry["kind"] = kind.strip().lower()
        entries.append(entry)
    return entries
