"""Entry point for ``python -m pap``."""

from pap.cli import cli

cli()
