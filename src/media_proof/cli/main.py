# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""
import logging
import sys
from typing import Optional

import click

from media_proof.cli.commands import (
    fail,
    load_manifest,
    print_duplicate,
    print_mint,
    print_pipeline,
    print_verdict,
)
from media_proof.core.config import Settings
from media_proof.core.crypto import IssuerKey
from media_proof.core.exceptions import LedgerError, MediaProofError
from media_proof.services.backends import Backends, build_backends
from media_proof.services.ledger.local import LocalOwnershipLedger
from media_proof.services.manifest import verify_manifest
from media_proof.services.minting import ProofMinter
from media_proof.services.pipeline import run_verification_pipeline
from media_proof.services.resolver import check_duplicate

DEFAULT_DB = "media-proof.db"

OUTPUT_OPTION = click.option(
    "--output", "-o", type=click.Choice(["text", "json", "compact"]), default="text", help="Output format"
)


class CliState:
    """Settings plus lazily built backends."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._backends: Optional[Backends] = None

    @property
    def backends(self) -> Backends:
        if self._backends is None:
            self._backends = build_backends(self.settings)
        return self._backends

    def issuer_key(self) -> IssuerKey:
        if not self.settings.issuer_key_path:
            click.echo("Error: an issuer key is required (--key or MEDIA_PROOF_ISSUER_KEY_PATH)", err=True)
            sys.exit(1)
        try:
            return IssuerKey.load(self.settings.issuer_key_path)
        except (OSError, ValueError) as e:
            click.echo(f"Error loading issuer key: {e}", err=True)
            sys.exit(1)


pass_state = click.make_pass_decorator(CliState)


@click.group()  # type: ignore[misc]
@click.option("--db", "db_path", type=click.Path(dir_okay=False), help=f"Local ledger database (default: {DEFAULT_DB})")
@click.option("--key", "key_path", type=click.Path(dir_okay=False), help="Issuer key file (JWK)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, db_path: Optional[str], key_path: Optional[str], verbose: bool) -> None:
    """Media Proof CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    try:
        settings = Settings.from_env()
    except MediaProofError as e:
        fail(e)
    updates = {}
    if db_path:
        updates["local_db"] = db_path
    elif settings.local_db == ":memory:":
        updates["local_db"] = DEFAULT_DB
    if key_path:
        updates["issuer_key_path"] = key_path
    ctx.obj = CliState(settings.model_copy(update=updates))


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from media_proof import __version__

    click.echo(f"Media Proof v{__version__}")


@cli.command()  # type: ignore[misc]
@click.argument("output_file", type=click.Path(dir_okay=False))
@click.option("--kid", help="Key identifier")
def keygen(output_file: str, kid: Optional[str]) -> None:
    """Generate an Ed25519 issuer key."""
    key = IssuerKey.generate(kid)
    try:
        key.save(output_file)
    except OSError as e:
        click.echo(f"Error saving key: {e}", err=True)
        sys.exit(1)
    click.echo(f"Key saved to {output_file}")
    click.echo(f"Issuer identity: {key.identity}")


@cli.command("verify-manifest")  # type: ignore[misc]
@click.argument("manifest_file", type=click.Path(exists=True, dir_okay=False))
@OUTPUT_OPTION
@pass_state
def verify_manifest_cmd(state: CliState, manifest_file: str, output: str) -> None:
    """Check a decoded manifest store against the trust policy."""
    verdict = verify_manifest(load_manifest(manifest_file), state.settings)
    print_verdict(verdict, output)
    sys.exit(0 if verdict.is_valid else 1)


@cli.command("check-duplicate")  # type: ignore[misc]
@click.argument("fingerprint")
@click.option("--issuer", help="Issuer identity (default: identity of --key)")
@OUTPUT_OPTION
@pass_state
def check_duplicate_cmd(state: CliState, fingerprint: str, issuer: Optional[str], output: str) -> None:
    """Check whether an issuer already holds a live proof."""
    issuer = issuer or state.issuer_key().identity
    backends = state.backends
    try:
        check = check_duplicate(
            fingerprint, issuer, backends.data_ledger, backends.ownership_ledger, state.settings
        )
    except MediaProofError as e:
        fail(e)
    print_duplicate(fingerprint, check, output)


@cli.command()  # type: ignore[misc]
@click.argument("manifest_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--recipient", "-r", required=True, help="Holder of the minted token")
@click.option("--title", help="Listing title")
@click.option("--description", help="Listing description")
@click.option("--price", type=click.IntRange(min=0), default=0, help="Listing price")
@click.option("--image", "image_ref", help="Display image reference")
@OUTPUT_OPTION
@pass_state
def mint(
    state: CliState,
    manifest_file: str,
    recipient: str,
    title: Optional[str],
    description: Optional[str],
    price: int,
    image_ref: Optional[str],
    output: str,
) -> None:
    """Verify a manifest and mint a proof for it."""
    verdict = verify_manifest(load_manifest(manifest_file), state.settings)
    minter = ProofMinter(state.backends, state.issuer_key(), state.settings)
    try:
        result = minter.mint_proof(
            verdict, recipient, title=title, description=description, price=price, image_ref=image_ref
        )
    except MediaProofError as e:
        fail(e)
    print_mint(verdict.binding_hash, result, output)


@cli.command()  # type: ignore[misc]
@click.argument("fingerprint")
@OUTPUT_OPTION
@pass_state
def verify(state: CliState, fingerprint: str, output: str) -> None:
    """Run the verification pipeline for a fingerprint."""
    backends = state.backends
    result = run_verification_pipeline(
        fingerprint, backends.data_ledger, backends.ownership_ledger, backends.store, state.settings
    )
    print_pipeline(result, output)
    sys.exit(0 if result.is_valid else 1)


@cli.command()  # type: ignore[misc]
@click.argument("token_id")
@pass_state
def burn(state: CliState, token_id: str) -> None:
    """Burn a token on the local ownership ledger."""
    ledger = state.backends.ownership_ledger
    if not isinstance(ledger, LocalOwnershipLedger):
        click.echo("Error: burn is only supported on the local ownership ledger", err=True)
        sys.exit(1)
    try:
        token = ledger.burn(token_id)
    except LedgerError as e:
        fail(e)
    click.echo(f"Burned token {token.token_id} (last holder {token.last_holder})")


@cli.command("sync-owner")  # type: ignore[misc]
@click.argument("token_id")
@pass_state
def sync_owner_cmd(state: CliState, token_id: str) -> None:
    """Copy a token's current holder into the proof store."""
    minter = ProofMinter(state.backends, state.issuer_key(), state.settings)
    try:
        owner = minter.sync_owner(token_id)
    except MediaProofError as e:
        fail(e)
    click.echo(f"Owner of {token_id}: {owner or 'none (burned)'}")


@cli.command()  # type: ignore[misc]
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=8000, help="Bind port")
@pass_state
def serve(state: CliState, host: str, port: int) -> None:
    """Serve the HTTP API."""
    import uvicorn

    from media_proof.api.main import create_app

    app = create_app(state.settings, state.backends)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
