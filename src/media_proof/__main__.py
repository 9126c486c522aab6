# SPDX-License-Identifier: MPL-2.0
from media_proof.cli.main import cli

cli()
