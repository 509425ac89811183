import sys
from pathlib import Path

import pytest


# Ensure `viewer/` is on sys.path so tests can import local modules
# like `annotations.*`, `geo.*`, and `net.*`.
VIEWER_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(VIEWER_ROOT))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    # A developer's shell config must not leak into debounce timings or base URLs.
    for key in (
        "EMBIGGEN_CONFIG",
        "EMBIGGEN_API_BASE_URL",
        "EMBIGGEN_ANNOTATION_DELETE_SECRET",
        "EMBIGGEN_SAVE_DEBOUNCE_MS",
        "EMBIGGEN_FETCH_DEBOUNCE_MS",
        "EMBIGGEN_REQUEST_TIMEOUT_S",
        "EMBIGGEN_MAX_QUERY_LENGTH",
        "EMBIGGEN_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
