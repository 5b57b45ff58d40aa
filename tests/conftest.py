import pytest

from codebase_insights.core.config import settings

# Override settings for tests
settings.openai_api_key = "test-key"
settings.app_env = "development"
settings.sentry_dsn = ""


@pytest.fixture(autouse=True)
def _no_env_file(monkeypatch, tmp_path):
    """Keep a developer's local .env out of Settings() built inside tests."""
    monkeypatch.chdir(tmp_path)
