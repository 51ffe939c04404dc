"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import os
import sys
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local coverpipe package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of coverpipe modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("coverpipe"):
        del sys.modules[module_name]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the host's CI variables, tokens and global config out of tests."""
    for name in (
        "GITHUB_ACTIONS",
        "GITHUB_SHA",
        "GITHUB_REF",
        "GITHUB_REF_NAME",
        "GITHUB_HEAD_REF",
        "GITHUB_RUN_ID",
        "GITHUB_RUN_ATTEMPT",
        "GITHUB_REPOSITORY",
        "GITHUB_WORKSPACE",
        "COVERPIPE_TOKEN",
        "CODECOV_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("COVERPIPE__"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "coverpipe.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "global-config.yaml"
    )
