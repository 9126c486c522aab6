# SPDX-License-Identifier: MPL-2.0
"""HTTP API."""
from media_proof.api.main import create_app

__all__ = ["create_app"]
