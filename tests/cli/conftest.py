from unittest.mock import MagicMock

import pytest


@pytest.fixture(autouse=True)
def _isolated_state_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("GSP_STATE_DIR", str(tmp_path))


@pytest.fixture
def mock_panel():
    panel = MagicMock()
    panel.owner_id = 5
    return panel
