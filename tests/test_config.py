import pytest
from pydantic import ValidationError

from vidtube.config import MIN_SECRET_LENGTH, Settings, get_settings, reset_settings_cache

ACCESS = "a" * MIN_SECRET_LENGTH
REFRESH = "r" * MIN_SECRET_LENGTH


def test_from_env_reads_declared_names(monkeypatch, tmp_path):
    monkeypatch.setenv("ACCESS_TOKEN_SECRET", ACCESS)
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", REFRESH)
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    monkeypatch.setenv("CORS_ORIGIN", "https://a.example, https://b.example")
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    settings = Settings.from_env()
    assert settings.access_token_ttl_minutes == 5
    assert settings.cors_origins == ["https://a.example", "https://b.example"]
    assert settings.tmp_dir == tmp_path / "tmp"


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(access_token_secret="short", refresh_token_secret=REFRESH)


def test_secrets_must_differ():
    with pytest.raises(ValidationError):
        Settings(access_token_secret=ACCESS, refresh_token_secret=ACCESS)


def test_ttl_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(
            access_token_secret=ACCESS,
            refresh_token_secret=REFRESH,
            refresh_token_ttl_minutes=0,
        )


def test_missing_secrets_are_generated_and_persisted(monkeypatch, tmp_path):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    first = Settings()
    second = Settings()
    assert len(first.access_token_secret) >= MIN_SECRET_LENGTH
    assert first.access_token_secret != first.refresh_token_secret
    assert first.access_token_secret == second.access_token_secret
    assert (tmp_path / ".access_token_secret").stat().st_mode & 0o777 == 0o600


def test_from_env_generates_unset_secrets(monkeypatch, tmp_path):
    monkeypatch.delenv("ACCESS_TOKEN_SECRET", raising=False)
    monkeypatch.delenv("REFRESH_TOKEN_SECRET", raising=False)
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    settings = Settings.from_env()
    assert len(settings.access_token_secret) >= MIN_SECRET_LENGTH
    assert len(settings.refresh_token_secret) >= MIN_SECRET_LENGTH
    assert settings.access_token_secret != settings.refresh_token_secret
    assert (tmp_path / ".access_token_secret").read_text() == settings.access_token_secret
    assert (tmp_path / ".refresh_token_secret").read_text() == settings.refresh_token_secret


def test_media_configured_requires_all_credentials():
    settings = Settings(
        access_token_secret=ACCESS,
        refresh_token_secret=REFRESH,
        cloudinary_cloud_name="demo",
        cloudinary_api_key="key",
    )
    assert settings.media_configured is False
    settings = settings.model_copy(update={"cloudinary_api_secret": "shh"})
    assert settings.media_configured is True


def test_settings_cache_reset(monkeypatch):
    first = get_settings()
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings() is not first
