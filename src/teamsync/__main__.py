"""Main entry point for teamsync CLI.

Supports both direct invocation (`python -m teamsync`) and package entry point.
"""

from teamsync.cli import cli

if __name__ == "__main__":
    cli()
