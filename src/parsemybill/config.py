import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs, find_project_root, var_dir

log = get_logger("config")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_PUBLIC_BASE_URL = "http://localhost:8000"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DATA_SUBDIR = "parsemybill"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    repository-level config files like `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs from the nearest .env; does not mutate os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v.strip() for k, v in dotenv_values(path).items() if k and v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(env: Dict[str, str], *names: str) -> Optional[str]:
    for name in names:
        v = os.environ.get(name)
        if v and v.strip():
            return v.strip()
    for name in names:
        v = env.get(name) or env.get(name.lower())
        if v:
            return v
    return None


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from the environment and `.env`."""

    project_root: str
    data_dir: str
    api_key: Optional[str]
    base_url: Optional[str]
    model_name: str
    public_base_url: str

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, "parsemybill.sqlite3")

    @property
    def objects_dir(self) -> str:
        return os.path.join(self.data_dir, "objects")


def load_settings(start_dir: Optional[str] = None) -> Settings:
    start = start_dir or os.getcwd()
    root = find_project_root(start)
    env = _read_dotenv(start)

    api_key = _lookup(env, "OPENAI_API_KEY")
    base_url = _lookup(env, "OPENAI_BASE_URL")
    if not api_key:
        api_key = _lookup(env, "OPEN_ROUTER_API_KEY")
        if api_key and not base_url:
            base_url = OPENROUTER_BASE_URL
            log.info("Using OpenRouter endpoint for extraction")
    if not api_key:
        log.debug("No model API key found in env or .env")

    data_dir_raw = _lookup(env, "PARSEMYBILL_DATA_DIR")
    data_dir = expand_abs(data_dir_raw) if data_dir_raw else os.path.join(var_dir(root), DATA_SUBDIR)

    return Settings(
        project_root=root,
        data_dir=data_dir,
        api_key=api_key,
        base_url=base_url,
        model_name=_lookup(env, "PARSEMYBILL_MODEL") or DEFAULT_MODEL,
        public_base_url=(_lookup(env, "PARSEMYBILL_PUBLIC_BASE_URL") or DEFAULT_PUBLIC_BASE_URL).rstrip("/"),
    )
