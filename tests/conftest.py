"""
Pytest configuration and shared fixtures.
"""

from types import SimpleNamespace

import pytest
import yaml


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from real config files and Azure environment variables."""
    monkeypatch.delenv("AZOPS_CONFIG", raising=False)
    monkeypatch.delenv("AZURE_SUBSCRIPTION_ID", raising=False)
    monkeypatch.delenv("AZOPS_DATABASE_URL", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def config_file(tmp_path):
    """Write an azops.yaml with archive settings filled in."""
    path = tmp_path / "azops.yaml"
    path.write_text(
        yaml.dump(
            {
                "azure": {"subscription_id": "00000000-0000-0000-0000-000000000000"},
                "archive": {
                    "container_url": "https://acct.blob.core.windows.net/archive",
                    "staging_dir": str(tmp_path / "staging"),
                },
                "database": {"url": f"sqlite:///{tmp_path / 'cli.db'}"},
            }
        )
    )
    return path


@pytest.fixture
def blob_props():
    """Factory for blob property objects as returned by get_blob_properties()."""

    def make(size=100, tier="Hot", archive_status=None, metadata=None, name="a.7z"):
        return SimpleNamespace(
            name=name,
            size=size,
            blob_tier=tier,
            archive_status=archive_status,
            metadata=metadata or {},
        )

    return make


@pytest.fixture
def no_wait_retry():
    """Retry parameters that never sleep."""
    return {
        "max_attempts": 2,
        "initial_delay": 0,
        "backoff_factor": 1.0,
        "max_delay": 0,
        "sleep": lambda _: None,
    }
