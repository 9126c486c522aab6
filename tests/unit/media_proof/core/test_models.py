# SPDX-License-Identifier: MPL-2.0
"""Tests for data models."""

import pytest

from media_proof.core.exceptions import MissingBinding, ParseFailure, UntrustedSigner
from media_proof.core.models import (
    CrossLinkReport,
    MintResult,
    OwnershipToken,
    PipelineResult,
    SourceClass,
    Stage,
    StageStatus,
    TrustVerdict,
    VerdictReason,
)


def make_verdict(*reasons):
    return TrustVerdict(
        is_valid=not reasons,
        root_signer="Sony",
        claim_generator="Camera 2.0",
        source_class=SourceClass.CAMERA_HARDWARE,
        binding_hash=None if reasons else "ab" * 32,
        reasons=tuple(reasons),
    )


class TestTrustVerdict:
    def test_valid_verdict_does_not_raise(self):
        make_verdict().raise_for_verdict()

    def test_raises_first_reason(self):
        verdict = make_verdict(
            VerdictReason("UntrustedSigner", "Untrusted signer: Sony"),
            VerdictReason("MissingBinding", "No verifiable binding hash in manifest"),
        )
        with pytest.raises(UntrustedSigner) as excinfo:
            verdict.raise_for_verdict()
        assert excinfo.value.details["reasons"] == [
            "UntrustedSigner: Untrusted signer: Sony",
            "MissingBinding: No verifiable binding hash in manifest",
        ]

    def test_unknown_reason_code_raises_parse_failure(self):
        with pytest.raises(ParseFailure):
            make_verdict(VerdictReason("Mystery", "?")).raise_for_verdict()

    def test_invalid_without_reasons_raises_parse_failure(self):
        verdict = TrustVerdict(False, "", "", SourceClass.UNKNOWN, None)
        with pytest.raises(ParseFailure):
            verdict.raise_for_verdict()

    def test_to_dict(self):
        verdict = make_verdict(VerdictReason("MissingBinding", "none"))
        data = verdict.to_dict()
        assert data["source_class"] == "camera-hardware"
        assert data["reason_codes"] == ["MissingBinding"]
        assert data["reasons"] == ["MissingBinding: none"]
        assert verdict.has_reason(MissingBinding.code)


def test_burned_token_is_not_live():
    token = OwnershipToken("t", None, "uri", burned=True, last_holder="alice")
    assert not token.is_live
    assert OwnershipToken("t", "alice", "uri").is_live


def test_mint_result_prediction():
    result = MintResult("ref", "t2", "t1", "sig", "uri")
    assert not result.prediction_matched
    assert result.to_dict()["prediction_matched"] is False


def test_cross_link_report_requires_both_directions():
    assert CrossLinkReport(True, True, "u", "u").is_valid
    assert not CrossLinkReport(True, False, "u", "v").is_valid
    assert not CrossLinkReport(False, True, "u", "u").is_valid


def test_pipeline_result_lookup_and_serialisation():
    result = PipelineResult("ab" * 32, [Stage("locate", "Locate", StageStatus.ERROR, "none")])
    assert result.stage("locate").status is StageStatus.ERROR
    with pytest.raises(KeyError):
        result.stage("missing")
    data = result.to_dict()
    assert data["stages"] == [{"id": "locate", "label": "Locate", "status": "error", "message": "none"}]
    assert data["located"] is None
