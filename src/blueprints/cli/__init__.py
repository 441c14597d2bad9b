"""
Blueprints CLI Package.

- project.py: init, validate, trace, status
- plan.py: next-id, apply, renumber
- loop.py: the review/build loop
- utils.py: Shared utilities

The typer app and entry point live in blueprints.cli.main.
"""

from blueprints.cli.main import app, main
from blueprints.cli.utils import version_callback

__all__ = [
    "app",
    "main",
    "version_callback",
]
