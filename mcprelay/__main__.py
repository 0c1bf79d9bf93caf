"""Allow ``python -m mcprelay``."""

from mcprelay.cli import app

app()
