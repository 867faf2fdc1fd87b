"""Entry point for `python -m podkit`.

Usage:
    python -m podkit logs --selector app=web --follow
    uv run python -m podkit forward --selector app=web --port :8080
"""

from __future__ import annotations

from podkit.cli import cli

cli()
