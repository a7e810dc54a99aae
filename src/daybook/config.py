"""Configuration management for daybook."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


DEFAULT_CONFIG = {
    "notes_path": "~/notes",
    "index_dir": ".index",
    "default_category": "personal",
    "categories": ["work", "meeting", "personal", "idea", "task"],
    "search": {"max_results": 20, "enable_entity_extraction": True, "snippet_width": 200},
    "watcher": {"quiet_period": 0.5, "queue_size": 1000},
}

DATABASE_FILENAME = "notes.db"


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".daybook" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if config_path and not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    if path and path.exists():
        try:
            with open(path) as f:
                file_cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e
        if not isinstance(file_cfg, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if notes_path := os.environ.get("DAYBOOK_NOTES_PATH"):
        cfg["notes_path"] = notes_path

    cfg["notes_path"] = str(Path(cfg["notes_path"]).expanduser().resolve())
    validate_config(cfg)
    return cfg


def validate_config(cfg: dict[str, Any]) -> None:
    """Raise ConfigError for values the rest of daybook cannot work with."""
    search = cfg.get("search", {})
    max_results = search.get("max_results")
    if not isinstance(max_results, int) or not 1 <= max_results <= 100:
        raise ConfigError(f"search.max_results must be an integer between 1 and 100, got {max_results!r}")
    width = search.get("snippet_width")
    if not isinstance(width, int) or width < 20:
        raise ConfigError(f"search.snippet_width must be an integer >= 20, got {width!r}")

    watcher = cfg.get("watcher", {})
    quiet = watcher.get("quiet_period")
    if not isinstance(quiet, (int, float)) or quiet < 0:
        raise ConfigError(f"watcher.quiet_period must be a non-negative number, got {quiet!r}")
    queue_size = watcher.get("queue_size")
    if not isinstance(queue_size, int) or queue_size < 1:
        raise ConfigError(f"watcher.queue_size must be a positive integer, got {queue_size!r}")

    index_dir = cfg.get("index_dir")
    if not index_dir or "/" in index_dir or "\\" in index_dir:
        raise ConfigError(f"index_dir must be a plain directory name, got {index_dir!r}")
    if not cfg.get("default_category"):
        raise ConfigError("default_category must not be empty")


def get_notes_path(cfg: dict[str, Any]) -> Path:
    return Path(cfg["notes_path"]).expanduser()


def get_index_path(cfg: dict[str, Any]) -> Path:
    """Index artifacts live inside the notes root, in a directory the watcher ignores."""
    return get_notes_path(cfg) / cfg["index_dir"]


def get_database_path(cfg: dict[str, Any]) -> Path:
    return get_index_path(cfg) / DATABASE_FILENAME


def ensure_directories(cfg: dict[str, Any]) -> None:
    get_notes_path(cfg).mkdir(parents=True, exist_ok=True)
    get_index_path(cfg).mkdir(parents=True, exist_ok=True)


def ensure_gitignore(cfg: dict[str, Any]) -> Path:
    """Keep the index directory out of version control."""
    gitignore = get_notes_path(cfg) / ".gitignore"
    entry = f"{cfg['index_dir']}/\n"
    if not gitignore.exists():
        gitignore.write_text(entry)
    else:
        existing = gitignore.read_text()
        if cfg["index_dir"] not in existing:
            sep = "" if existing.endswith("\n") or not existing else "\n"
            gitignore.write_text(existing + sep + entry)
    return gitignore


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
