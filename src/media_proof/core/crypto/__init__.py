# SPDX-License-Identifier: MPL-2.0
"""Issuer signing keys.

An issuing identity is an Ed25519 key pair. Its public half, rendered as
unpadded base64url, is the identity string the data ledger reports as the
owner of every record the issuer publishes, and the identity the duplicate
resolver compares against.
"""

from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Union, cast

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519


def _b64u(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64u_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


@dataclass
class IssuerKey:
    """Ed25519 key pair of an issuing identity."""

    private_key: ed25519.Ed25519PrivateKey
    public_key: ed25519.Ed25519PublicKey
    kid: str = field(default_factory=lambda: f"issuer-{os.urandom(8).hex()}")

    DOMAIN: ClassVar[bytes] = b"media-proof-v1"

    @classmethod
    def generate(cls, kid: str | None = None) -> IssuerKey:
        """Generate a new issuer key.

        Args:
            kid: Optional key identifier.  If omitted, a random identifier is
                generated.
        """
        private_key = ed25519.Ed25519PrivateKey.generate()
        return cls(
            private_key=private_key,
            public_key=private_key.public_key(),
            kid=kid or f"issuer-{os.urandom(8).hex()}",
        )

    @classmethod
    def from_private_bytes(cls, private_bytes: bytes, kid: str | None = None) -> IssuerKey:
        private_key = ed25519.Ed25519PrivateKey.from_private_bytes(private_bytes)
        key = cls(private_key=private_key, public_key=private_key.public_key())
        if kid:
            key.kid = kid
        return key

    @property
    def identity(self) -> str:
        """Ledger identity string of this issuer."""
        return _b64u(self.public_bytes())

    def public_bytes(self) -> bytes:
        return cast(
            "bytes",
            self.public_key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            ),
        )

    def sign(self, data: bytes) -> str:
        """Sign ``data`` and return the signature as base64url."""
        return _b64u(self.private_key.sign(self.DOMAIN + data))

    # ------------------------------------------------------------------
    # JWK helpers
    # ------------------------------------------------------------------
    def to_jwk(self, private: bool = False) -> dict:
        jwk = {"kty": "OKP", "crv": "Ed25519", "kid": self.kid, "x": self.identity}
        if private:
            private_bytes = cast(
                "bytes",
                self.private_key.private_bytes(
                    encoding=serialization.Encoding.Raw,
                    format=serialization.PrivateFormat.Raw,
                    encryption_algorithm=serialization.NoEncryption(),
                ),
            )
            jwk["d"] = _b64u(private_bytes)
        return jwk

    @classmethod
    def from_jwk(cls, jwk: dict) -> IssuerKey:
        """Construct an :class:`IssuerKey` from private JWK data."""
        if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
            raise ValueError("Unsupported JWK parameters")
        if "d" not in jwk:
            raise ValueError("JWK does not contain private key material")

        key = cls.from_private_bytes(_b64u_decode(jwk["d"]), kid=jwk.get("kid"))
        if "x" in jwk and jwk["x"] != key.identity:
            raise ValueError("JWK public key does not match private key")
        return key

    def save(self, path: Union[str, Path]) -> None:
        Path(path).write_text(json.dumps(self.to_jwk(private=True), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Union[str, Path]) -> IssuerKey:
        return cls.from_jwk(json.loads(Path(path).read_text(encoding="utf-8")))


def verify_signature(identity: str, data: bytes, signature: str) -> bool:
    """Check that ``signature`` over ``data`` was made by ``identity``."""
    try:
        public_key = ed25519.Ed25519PublicKey.from_public_bytes(_b64u_decode(identity))
        public_key.verify(_b64u_decode(signature), IssuerKey.DOMAIN + data)
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True
