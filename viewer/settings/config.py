from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml

DEFAULT_API_BASE_URL = "http://localhost:8001"


def config_path() -> Path | None:
    raw = (os.getenv("EMBIGGEN_CONFIG") or "").strip()
    return Path(raw).expanduser() if raw else None


@lru_cache(maxsize=4)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid viewer config root: {path}")
    return data


def _file_value(key: str):
    path = config_path()
    if path is None:
        return None
    return _load_yaml(path).get(key)


def _raw(env_key: str, file_key: str) -> str | None:
    # Environment wins over the optional YAML file.
    v = os.getenv(env_key)
    if v is not None and v.strip():
        return v.strip()
    fv = _file_value(file_key)
    if fv is None:
        return None
    return str(fv).strip() or None


def _float(env_key: str, file_key: str, default: float) -> float:
    raw = _raw(env_key, file_key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def api_base_url() -> str:
    base = _raw("EMBIGGEN_API_BASE_URL", "apiBaseUrl") or DEFAULT_API_BASE_URL
    return base.rstrip("/")


def delete_secret() -> str | None:
    return _raw("EMBIGGEN_ANNOTATION_DELETE_SECRET", "annotationDeleteSecret")


def save_debounce_s() -> float:
    return max(0.0, _float("EMBIGGEN_SAVE_DEBOUNCE_MS", "saveDebounceMs", 400.0)) / 1000.0


def fetch_debounce_s() -> float:
    return max(0.0, _float("EMBIGGEN_FETCH_DEBOUNCE_MS", "fetchDebounceMs", 300.0)) / 1000.0


def request_timeout_s() -> float:
    return _float("EMBIGGEN_REQUEST_TIMEOUT_S", "requestTimeoutS", 20.0)


def max_query_length() -> int:
    return int(_float("EMBIGGEN_MAX_QUERY_LENGTH", "maxQueryLength", 1800))


def log_level() -> str:
    return (_raw("EMBIGGEN_LOG_LEVEL", "logLevel") or "INFO").upper()


@dataclass(frozen=True)
class ViewerSettings:
    api_base_url: str
    delete_secret: str | None
    save_debounce_s: float
    fetch_debounce_s: float
    request_timeout_s: float
    max_query_length: int
    log_level: str


def load_settings() -> ViewerSettings:
    """
    Snapshot of the current configuration.

    Values are re-read on every call so tests (and dev sessions) can change env vars.
    """
    return ViewerSettings(
        api_base_url=api_base_url(),
        delete_secret=delete_secret(),
        save_debounce_s=save_debounce_s(),
        fetch_debounce_s=fetch_debounce_s(),
        request_timeout_s=request_timeout_s(),
        max_query_length=max_query_length(),
        log_level=log_level(),
    )


def clear_config_cache() -> None:
    """
    Forget parsed YAML files; edits to the config file are otherwise not picked up.
    """
    _load_yaml.cache_clear()
