import pytest

from config import get_settings
from duplicates import DuplicatePolicy


@pytest.fixture(autouse=True)
def fresh_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("SUBLEDGER_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(tmp_path):
    settings = get_settings()

    assert settings.database_url == f"sqlite:///{tmp_path.resolve() / 'subledger.db'}"
    assert settings.duplicate_time_threshold_minutes == 30
    assert settings.duplicate_amount_similarity == 0.95
    assert settings.duplicate_allow_force_add is True
    assert settings.renewal_batch_limit == 500


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SUBLEDGER_DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("SUBLEDGER_DUPLICATE_TIME_THRESHOLD_MINUTES", "10")
    monkeypatch.setenv("SUBLEDGER_DUPLICATE_AMOUNT_SIMILARITY", "0.9")
    monkeypatch.setenv("SUBLEDGER_DUPLICATE_ALLOW_FORCE_ADD", "off")

    settings = get_settings()

    assert settings.database_url == "sqlite:///:memory:"
    assert settings.duplicate_time_threshold_minutes == 10
    assert settings.duplicate_amount_similarity == 0.9
    assert settings.duplicate_allow_force_add is False


def test_duplicate_policy_follows_settings(monkeypatch):
    monkeypatch.setenv("SUBLEDGER_DUPLICATE_ALLOW_FORCE_ADD", "false")
    monkeypatch.setenv("SUBLEDGER_DUPLICATE_TIME_THRESHOLD_MINUTES", "5")

    policy = DuplicatePolicy.from_settings()

    assert policy == DuplicatePolicy(
        time_threshold_minutes=5, amount_similarity=0.95, allow_force_add=False
    )
