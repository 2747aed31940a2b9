"""Install the PostToolUse hook that runs a sync after task changes.

The hook lives in the agent tool's settings.json, globally in the home
directory or per project with --local.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

HOOK_EVENT = "PostToolUse"
HOOK_ENTRY: Dict[str, Any] = {
    "matcher": "TaskCreate|TaskUpdate",
    "command": "teamsync sync --quiet",
    "async": True,
}


def get_settings_path(local: bool = False, cwd: Optional[Path] = None) -> Path:
    """Path of the settings file to edit."""
    if local:
        return (cwd or Path.cwd()) / ".claude" / "settings.json"
    return Path.home() / ".claude" / "settings.json"


def read_settings(path: Path) -> Dict[str, Any]:
    """Read settings, treating a missing or unparsable file as empty."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Could not read %s, starting from empty settings: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def write_settings(path: Path, settings: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings, indent=2) + "\n")


def is_teamsync_hook(hook: Any) -> bool:
    return (
        isinstance(hook, dict)
        and isinstance(hook.get("command"), str)
        and hook["command"].startswith("teamsync")
    )


def install_hook(settings_path: Path) -> bool:
    """Add the sync hook. Returns False if it was already installed."""
    settings = read_settings(settings_path)
    hooks = settings.setdefault("hooks", {})
    entries = hooks.setdefault(HOOK_EVENT, [])

    if any(is_teamsync_hook(hook) for hook in entries):
        return False

    entries.append(dict(HOOK_ENTRY))
    write_settings(settings_path, settings)
    logger.info("Installed hook in %s", settings_path)
    return True


def uninstall_hook(settings_path: Path) -> bool:
    """Remove teamsync hooks, leaving other hooks alone.

    Returns:
        True if something was removed
    """
    settings = read_settings(settings_path)
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict) or not hooks.get(HOOK_EVENT):
        return False

    entries = hooks[HOOK_EVENT]
    kept = [hook for hook in entries if not is_teamsync_hook(hook)]
    if len(kept) == len(entries):
        return False

    if kept:
        hooks[HOOK_EVENT] = kept
    else:
        del hooks[HOOK_EVENT]
    if not hooks:
        del settings["hooks"]

    write_settings(settings_path, settings)
    logger.info("Removed hook from %s", settings_path)
    return True
