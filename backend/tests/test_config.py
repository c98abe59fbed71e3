import pytest

from family_finance.config import load_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DB_PATH", "PORT", "UPLOAD_DIR", "STRICT_UPDATES", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    cfg = load_settings()
    assert cfg.db_path == "./family_finance.db"
    assert cfg.port == 8080
    assert cfg.upload_dir == "./uploads"
    assert cfg.max_upload_bytes == 10 * 1024 * 1024
    assert cfg.strict_updates is False
    assert cfg.log_level == "INFO"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_PATH", "/var/lib/finance/finance.db")
    monkeypatch.setenv("PORT", "3001")
    monkeypatch.setenv("STRICT_UPDATES", "yes")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    cfg = load_settings()
    assert cfg.db_path == "/var/lib/finance/finance.db"
    assert cfg.port == 3001
    assert cfg.strict_updates is True
    assert cfg.log_level == "DEBUG"


def test_explicit_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "3001")
    assert load_settings(port=9000).port == 9000
