import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette caches an exit event bound to the first event loop."""
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield
    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None


@pytest.fixture(autouse=True)
def dify_env(monkeypatch: pytest.MonkeyPatch):
    """Keep host environment variables from leaking into Settings."""
    for name in ("OUTPUT_VARIABLE", "DIFY_USER", "DEFAULT_MODEL", "API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DIFY_API_KEY", "test-key")
    monkeypatch.setenv("DIFY_API_URL", "https://dify.example.com/v1")

    from difybridge.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
