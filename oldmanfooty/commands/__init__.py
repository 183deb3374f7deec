"""CLI commands for Old Man Footy."""

from .mysideline import mysideline_commands
from .user import user_commands


def register_commands(app):
    """Register all CLI command groups with the Flask app."""
    app.cli.add_command(mysideline_commands)
    app.cli.add_command(user_commands)
