"""podkit command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``podkit`` script).
"""

from podkit.cli.main import cli

__all__ = ["cli"]
