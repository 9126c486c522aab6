# SPDX-License-Identifier: MPL-2.0
"""
Output helpers for the CLI commands.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict

import click

from media_proof.core.exceptions import MediaProofError
from media_proof.core.models import DuplicateCheck, MintResult, PipelineResult, StageStatus, TrustVerdict

STATUS_MARKS = {
    StageStatus.PENDING: "·",
    StageStatus.RUNNING: "…",
    StageStatus.SUCCESS: "✓",
    StageStatus.ERROR: "✗",
}


def load_manifest(path: str) -> Dict[str, Any]:
    """Load a decoded manifest store from a JSON file."""
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        click.echo(f"Error loading manifest: {e}", err=True)
        sys.exit(1)


def fail(error: MediaProofError) -> None:
    click.echo(f"Error: {error.code}: {error.message}", err=True)
    for key, value in error.details.items():
        if value is not None:
            click.echo(f"  {key}: {value}", err=True)
    sys.exit(1)


def echo_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def print_verdict(verdict: TrustVerdict, output: str) -> None:
    if output == "json":
        echo_json(verdict.to_dict())
        return
    if output == "compact":
        status = "VALID" if verdict.is_valid else "INVALID"
        if verdict.reasons:
            status += f" ({', '.join(verdict.reason_codes)})"
        click.echo(f"{verdict.binding_hash or 'no-binding'}: {status}")
        return

    click.echo(f"Status: {'✓ VALID' if verdict.is_valid else '✗ INVALID'}")
    click.echo(f"Signer: {verdict.root_signer or 'unknown'}")
    click.echo(f"Claim generator: {verdict.claim_generator or 'unknown'}")
    click.echo(f"Source: {verdict.source_class.value}")
    if verdict.binding_hash:
        click.echo(f"Fingerprint: {verdict.binding_hash} ({verdict.binding_label})")
    if len(verdict.chain) > 1:
        click.echo(f"Chain: {' <- '.join(verdict.chain)}")
    if verdict.reasons:
        click.echo("\nReasons:")
        for reason in verdict.reasons:
            click.echo(f"  ✗ {reason}")


def print_duplicate(fingerprint: str, check: DuplicateCheck, output: str) -> None:
    if output == "json":
        echo_json(
            {
                "fingerprint": fingerprint,
                "is_duplicate": check.is_duplicate,
                "blocking_token_id": check.blocking_token_id,
                "ledger_ref": check.ledger_ref,
            }
        )
    elif check.is_duplicate:
        click.echo(f"Duplicate: token {check.blocking_token_id} (record {check.ledger_ref})")
    else:
        click.echo("No live proof for this issuer")


def print_mint(fingerprint: str, result: MintResult, output: str) -> None:
    if output == "json":
        echo_json({"fingerprint": fingerprint, **result.to_dict()})
        return
    if output == "compact":
        click.echo(f"{fingerprint}: {result.token_id} {result.ledger_ref}")
        return
    click.echo(f"Minted token {result.token_id}")
    click.echo(f"Record: {result.ledger_ref}")
    click.echo(f"Metadata URI: {result.metadata_uri}")
    if not result.prediction_matched:
        click.echo(f"Warning: predicted token was {result.predicted_token_id}", err=True)


def print_pipeline(result: PipelineResult, output: str) -> None:
    if output == "json":
        echo_json(result.to_dict())
        return
    if output == "compact":
        token = result.located.token.token_id if result.located else "none"
        click.echo(f"{result.fingerprint}: {'VALID' if result.is_valid else 'INVALID'} (token {token})")
        return
    click.echo(f"Fingerprint: {result.fingerprint}")
    for stage in result.stages:
        click.echo(f"  {STATUS_MARKS[stage.status]} {stage.label}: {stage.message or ''}")
    click.echo(f"Status: {'✓ VALID' if result.is_valid else '✗ INVALID'}")
