"""Read harness defaults from a ``.env.defaults`` file.

The file is optional and lives at the project root (``E2E_PROJECT_ROOT`` or the
current working directory). Real environment variables always win; this only
supplies fallbacks so a checkout can pin its paths and commands once.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict

ENV_DEFAULTS_FILENAME = ".env.defaults"


def parse_env_file(text: str) -> Dict[str, str]:
    defaults: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] in ('"', "'") and value[-1] == value[0]:
            value = value[1:-1]
        defaults[key.strip()] = value
    return defaults


@lru_cache(maxsize=8)
def _load_env_defaults(root: str) -> Dict[str, str]:
    env_defaults = Path(root) / ENV_DEFAULTS_FILENAME
    if not env_defaults.exists():
        return {}
    return parse_env_file(env_defaults.read_text(encoding="utf-8"))


def project_root() -> Path:
    return Path(os.environ.get("E2E_PROJECT_ROOT") or os.getcwd()).resolve()


def get_env(key: str, default: str | None = None) -> str | None:
    """Environment value, then ``.env.defaults`` value, then ``default``."""
    value = os.environ.get(key)
    if value:
        return value
    return _load_env_defaults(str(project_root())).get(key, default)


def clear_cache() -> None:
    _load_env_defaults.cache_clear()
