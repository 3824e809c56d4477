import pytest

from residuals.core.config import ResidualsSettings


def test_defaults_without_environment(monkeypatch):
    for name in (
        "RESIDUALS_API_BASE",
        "RESIDUALS_API_TOKEN",
        "RESIDUALS_POLL_INTERVAL",
        "RESIDUALS_STALE_WARNING_AFTER",
        "API_CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = ResidualsSettings.from_env()

    assert settings.api_base is None
    assert settings.poll_interval == 5.0
    assert settings.stale_warning_after == 3
    assert settings.cors_origins == ["http://localhost:3000", "http://127.0.0.1:3000"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RESIDUALS_API_BASE", "https://backoffice.example.com")
    monkeypatch.setenv("RESIDUALS_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("RESIDUALS_TRAILING_MONTHS", "3")
    monkeypatch.setenv("API_CORS_ORIGINS", "https://a.example.com, https://b.example.com")

    settings = ResidualsSettings.from_env()

    assert settings.api_base == "https://backoffice.example.com"
    assert settings.poll_interval == 2.5
    assert settings.trailing_months == 3
    assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]


@pytest.mark.parametrize("value", ["fast", "0", "-1"])
def test_invalid_poll_interval_is_rejected(monkeypatch, value):
    monkeypatch.setenv("RESIDUALS_POLL_INTERVAL", value)
    with pytest.raises(ValueError):
        ResidualsSettings.from_env()
