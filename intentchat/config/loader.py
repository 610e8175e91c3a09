# ==============================
# Config Loader (only env reader)
# ==============================
"""
Config loader for intentchat.

Rules:
- This is the ONLY place allowed to read os.environ and .env.
- Everything else receives a validated Settings object.

Precedence:
env > .env > configs/*.yaml > defaults

Testability:
- All functions accept injected paths and env dict.
- No hardcoded absolute paths.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from intentchat.config.schema import Settings

ENV_PREFIX = "INTENTCHAT__"

# one YAML file per top-level settings section
SECTION_FILES = (
    "app",
    "embedding",
    "index",
    "chunking",
    "resolver",
    "completion",
    "sessions",
    "logging",
    "commands",
)


# ==============================
# YAML Helpers
# ==============================


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return {}
    data = yaml.safe_load(raw)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge dictionaries: override wins.
    """
    out: Dict[str, Any] = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    """
    Accept both `{name: {...}}` and a bare mapping in configs/<name>.yaml.
    """
    if name in data and isinstance(data[name], dict) and len(data) == 1:
        return data[name]
    return data


# ==============================
# .env Loader
# ==============================


def _read_dotenv(dotenv_path: Path) -> Dict[str, str]:
    """
    Minimal .env parser (KEY=VALUE).
    - Ignores comments and blank lines.
    - Strips surrounding quotes.
    """
    if not dotenv_path.exists():
        return {}
    envs: Dict[str, str] = {}
    for line in dotenv_path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        key, val = s.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key:
            envs[key] = val
    return envs


def _coerce(v: str) -> Any:
    vs = v.strip()
    if vs.lower() in {"true", "false"}:
        return vs.lower() == "true"
    if vs.isdigit() or (vs.startswith("-") and vs[1:].isdigit()):
        return int(vs)
    if "." in vs:
        try:
            return float(vs)
        except ValueError:
            pass
    if vs.startswith("[") and vs.endswith("]"):
        loaded = yaml.safe_load(vs)
        if isinstance(loaded, list):
            return loaded
    return vs


def _apply_env_overrides(cfg: Dict[str, Any], env: Dict[str, str]) -> Dict[str, Any]:
    """
    Apply environment overrides with INTENTCHAT__ style nesting.

Example:
  INTENTCHAT__RESOLVER__COMMAND_THRESHOLD=0.6
  INTENTCHAT__INDEX__BACKEND=qdrant
  INTENTCHAT__APP__SYNC_ROOTS=["docs", "src"]

Rules:
- Split by '__' after the prefix
- Lowercase keys for dict insertion
- Coerce booleans/ints/floats/lists when obvious
    """
    out = dict(cfg)
    for k, v in env.items():
        if not k.startswith(ENV_PREFIX):
            continue
        path = k[len(ENV_PREFIX) :].split("__")
        if not path or any(not p for p in path):
            continue
        cur: Dict[str, Any] = out
        for i, seg in enumerate(path):
            key = seg.lower()
            if i == len(path) - 1:
                cur[key] = _coerce(v)
            else:
                nxt = cur.get(key)
                if not isinstance(nxt, dict):
                    nxt = {}
                    cur[key] = nxt
                cur = nxt
    return out


# ==============================
# Public Loader API
# ==============================


def load_settings(
    *,
    repo_root: Optional[str] = None,
    configs_dir: Optional[str] = None,
    dotenv_file: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Load and validate Settings.

Inputs:
- repo_root: defaults to current working directory
- configs_dir: defaults to <repo_root>/configs
- dotenv_file: defaults to <repo_root>/.env
- env: injected env vars (defaults to os.environ)
    """
    env_vars = dict(env) if env is not None else dict(os.environ)

    root = Path(repo_root or os.getcwd()).expanduser().resolve()
    cfg_dir = root / (configs_dir or "configs")

    merged: Dict[str, Any] = {}
    for name in SECTION_FILES:
        section = _section(_read_yaml(cfg_dir / f"{name}.yaml"), name)
        merged = _deep_merge(merged, {name: section})

    # .env (optional); real env wins over .env
    dotenv_path = Path(dotenv_file) if dotenv_file else (root / ".env")
    effective_env = dict(env_vars)
    for k, v in _read_dotenv(dotenv_path).items():
        effective_env.setdefault(k, v)

    merged = _apply_env_overrides(merged, effective_env)

    # repo_root defaults to the resolved root unless explicitly overridden
    paths = (merged.get("app") or {}).get("paths") or {}
    if not paths.get("repo_root") or paths.get("repo_root") == ".":
        merged = _deep_merge(merged, {"app": {"paths": {"repo_root": str(root)}}})
    if configs_dir:
        merged = _deep_merge(merged, {"app": {"paths": {"configs_dir": configs_dir}}})

    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e
