# SPDX-License-Identifier: MPL-2.0
"""JSON schemas shipped with the package."""
