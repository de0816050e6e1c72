"""Load settings from AGENT_RUNTIME_CONFIG_PATH or return the default.

``load_config()`` is memoised with ``functools.lru_cache`` so the file is read
and parsed at most once per process.  Call ``load_config.cache_clear()`` to
force a re-read (useful in tests and when the environment changes at runtime).
"""

from __future__ import annotations

import functools
import json
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .schema import DEFAULT_CONFIG, RuntimeSettings


class _Env(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AGENT_RUNTIME_", extra="ignore")
    config_path: Optional[str] = None
    api_key: Optional[str] = None
    max_steps: Optional[int] = None


_env: Optional[_Env] = None


def _get_env() -> _Env:
    global _env
    if _env is None:
        _env = _Env()
    return _env


@functools.lru_cache(maxsize=1)
def load_config() -> RuntimeSettings:
    """Load settings from AGENT_RUNTIME_CONFIG_PATH if set and valid; else DEFAULT_CONFIG.

    ``AGENT_RUNTIME_API_KEY`` and ``AGENT_RUNTIME_MAX_STEPS`` override the
    corresponding values from the file (or the defaults).
    """
    env = _get_env()
    cfg = DEFAULT_CONFIG
    path = env.config_path
    if path and path.strip():
        p = Path(path).expanduser().resolve()
        if p.is_file():
            data = json.loads(p.read_text(encoding="utf-8"))
            cfg = RuntimeSettings.model_validate(data)

    if env.api_key:
        cfg = cfg.model_copy(update={"model": cfg.model.model_copy(update={"api_key": env.api_key})})
    if env.max_steps is not None:
        # Re-validate so the budget constraint (> 0) applies to env overrides too.
        cfg = RuntimeSettings.model_validate({**cfg.model_dump(), "max_steps": env.max_steps})
    return cfg
