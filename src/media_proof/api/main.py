# SPDX-License-Identifier: MPL-2.0
"""FastAPI application for the Media Proof API."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from media_proof import __version__
from media_proof.core.config import Settings
from media_proof.core.crypto import IssuerKey
from media_proof.core.exceptions import (
    DuplicateProof,
    InvalidFingerprint,
    LedgerUnavailable,
    ManifestError,
    MediaProofError,
    MintFailure,
    RecordNotFound,
)
from media_proof.services.backends import Backends, build_backends, load_issuer_key
from media_proof.services.manifest import ManifestVerifier
from media_proof.services.minting import ProofMinter
from media_proof.services.pipeline import VerificationPipeline
from media_proof.services.resolver import DuplicateResolver

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])

ERROR_STATUS = (
    (ManifestError, 422),
    (InvalidFingerprint, 422),
    (DuplicateProof, status.HTTP_409_CONFLICT),
    (RecordNotFound, status.HTTP_404_NOT_FOUND),
    (LedgerUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (MintFailure, status.HTTP_502_BAD_GATEWAY),
)


class VerifyManifestRequest(BaseModel):
    """A decoded manifest store."""

    manifest: Dict[str, Any]


class MintRequest(BaseModel):
    """Mint a proof for a manifest on behalf of ``recipient``."""

    manifest: Dict[str, Any]
    recipient: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    price: int = Field(default=0, ge=0)
    image_ref: Optional[str] = None


@dataclass
class AppServices:
    settings: Settings
    backends: Backends
    issuer_key: IssuerKey
    verifier: ManifestVerifier
    minter: ProofMinter
    pipeline: VerificationPipeline


def _services(request: Request) -> AppServices:
    return request.app.state.services


async def media_proof_error_handler(request: Request, exc: MediaProofError) -> JSONResponse:
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_cls, error_status in ERROR_STATUS:
        if isinstance(exc, error_cls):
            code = error_status
            break
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=code, content=exc.to_dict())


def create_app(
    settings: Optional[Settings] = None,
    backends: Optional[Backends] = None,
    issuer_key: Optional[IssuerKey] = None,
) -> FastAPI:
    """Build the API around the given (or configured) backends."""
    settings = settings or Settings.from_env()
    backends = backends or build_backends(settings)
    issuer_key = load_issuer_key(settings, issuer_key)

    app = FastAPI(
        title="Media Proof API",
        description="Provenance proofs for captured media",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.services = AppServices(
        settings=settings,
        backends=backends,
        issuer_key=issuer_key,
        verifier=ManifestVerifier(settings),
        minter=ProofMinter(backends, issuer_key, settings),
        pipeline=VerificationPipeline(backends.data_ledger, backends.ownership_ledger, backends.store, settings),
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(MediaProofError, media_proof_error_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):  # type: ignore[no-untyped-def]
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        return response

    allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )
    trusted_hosts = os.getenv("TRUSTED_HOSTS")
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts.split(","))

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["Health"])
    @limiter.limit("500/minute")
    def health_check(request: Request) -> Dict[str, str]:
        """Health check endpoint for monitoring and load balancers."""
        services = _services(request)
        return {
            "status": "healthy",
            "service": "media-proof-api",
            "version": __version__,
            "issuer": services.issuer_key.identity,
        }

    @app.post("/api/v1/manifests/verify", tags=["Manifests"])
    @limiter.limit("100/minute")
    def verify_manifest(request: Request, body: VerifyManifestRequest) -> Dict[str, Any]:
        """Verdict for a decoded manifest; rejections are reported, not raised."""
        verdict = _services(request).verifier.verify(body.manifest)
        return verdict.to_dict()

    @app.get("/api/v1/proofs/{fingerprint}/duplicate", tags=["Proofs"])
    @limiter.limit("100/minute")
    def check_duplicate(
        request: Request,
        fingerprint: str,
        issuer: Optional[str] = Query(default=None, description="Issuer identity; defaults to this server"),
    ) -> Dict[str, Any]:
        services = _services(request)
        check = DuplicateResolver(services.minter.resolver).check(fingerprint, issuer or services.issuer_key.identity)
        return {
            "is_duplicate": check.is_duplicate,
            "blocking_token_id": check.blocking_token_id,
            "ledger_ref": check.ledger_ref,
        }

    @app.post("/api/v1/proofs/mint", status_code=status.HTTP_201_CREATED, tags=["Proofs"])
    @limiter.limit("30/minute")
    def mint(request: Request, body: MintRequest) -> Dict[str, Any]:
        services = _services(request)
        verdict = services.verifier.verify(body.manifest)
        result = services.minter.mint_proof(
            verdict,
            body.recipient,
            title=body.title,
            description=body.description,
            price=body.price,
            image_ref=body.image_ref,
        )
        return {"fingerprint": verdict.binding_hash, **result.to_dict()}

    @app.get("/api/v1/proofs/{fingerprint}/verification", tags=["Proofs"])
    @limiter.limit("100/minute")
    def verification(request: Request, fingerprint: str) -> Dict[str, Any]:
        return _services(request).pipeline.run(fingerprint).to_dict()

    @app.post("/api/v1/tokens/{token_id}/sync-owner", tags=["Tokens"])
    @limiter.limit("30/minute")
    def sync_owner(request: Request, token_id: str) -> Dict[str, Any]:
        owner = _services(request).minter.sync_owner(token_id)
        return {"token_id": token_id, "owner": owner}
