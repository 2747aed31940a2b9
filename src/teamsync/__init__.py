"""teamsync - Sync agent team task lists to GitHub Issues and Projects.

Each team (collection) of tasks is mirrored onto a GitHub Project V2 board
backed by real issues in a linked repository. Syncing is one-way, idempotent
and guarded by a per-team lock file.

Installation:
    # Standalone (recommended)
    uv tool install teamsync

    # From checkout
    uv pip install -e .
"""

__version__ = "0.1.0"
