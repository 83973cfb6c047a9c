"""Allow ``python -m pgtestbed``."""

from pgtestbed.cli import app

app()
