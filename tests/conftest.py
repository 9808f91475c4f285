import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import ssb_validate`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from ssb_validate.config import get_config_manager  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "perf: performance/benchmark tests (skipped unless SSBV_RUN_PERF=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_perf = _env_flag('SSBV_RUN_PERF')

    for item in items:
        if 'perf' in item.keywords and not run_perf:
            item.add_marker(pytest.mark.skip(reason='perf tests skipped; set SSBV_RUN_PERF=1 to enable'))


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    """Every test starts from default configuration with no SSBV_* overrides."""
    for name in list(os.environ):
        if name.startswith("SSBV_") and name != "SSBV_RUN_PERF":
            monkeypatch.delenv(name, raising=False)
    manager = get_config_manager()
    manager.reset()
    yield manager
    manager.reset()
