from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vidtube.logging import get_logger

logger = get_logger(__name__)

MIN_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _persisted_secret(file_name: str) -> str:
    """Load a signing secret from SHARED_FS_ROOT, generating it on first use.

    Tokens signed with a generated secret stay valid across restarts because
    the value is written to disk with 0600 permissions.
    """
    fs_root = Path(os.getenv("SHARED_FS_ROOT", "/srv/vidtube"))
    secret_path = fs_root / file_name

    try:
        fs_root.mkdir(parents=True, exist_ok=True)
        os.chmod(fs_root, 0o700)
    except PermissionError:
        # Directory may already exist with different permissions (e.g., in container)
        pass
    except OSError as exc:
        logger.warning(
            "secret_dir_setup_failed",
            error=str(exc),
            path=str(fs_root),
        )

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if persisted and len(persisted) >= MIN_SECRET_LENGTH:
                return persisted
        except OSError as exc:
            logger.error("secret_read_failed", error=str(exc), path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    tmp_path = None
    try:
        # Write to a temp file then rename so readers never see a partial secret
        fd, tmp_path = tempfile.mkstemp(
            dir=str(fs_root), prefix=f"{file_name}_", suffix=".tmp"
        )
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.rename(tmp_path, str(secret_path))
    except OSError as exc:
        if tmp_path:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        logger.error("secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {file_name}; set the secret env var or make SHARED_FS_ROOT writable"
        ) from exc
    logger.info("secret_generated", path=str(secret_path))
    return generated


class Settings(BaseModel):
    """Runtime settings, read once at startup and passed to the services."""

    database_url: str = env_field(
        "postgresql://localhost:5432/vidtube", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    shared_fs_root: str = env_field("/srv/vidtube", "SHARED_FS_ROOT")
    upload_tmp_dir: str | None = env_field(
        None,
        "UPLOAD_TMP_DIR",
        description="Where multipart uploads are staged; defaults to <SHARED_FS_ROOT>/tmp",
    )
    max_upload_bytes: int = env_field(10 * 1024 * 1024, "MAX_UPLOAD_BYTES")
    access_token_secret: str = env_field(
        None, "ACCESS_TOKEN_SECRET", validate_default=True
    )
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES")
    refresh_token_secret: str = env_field(
        None, "REFRESH_TOKEN_SECRET", validate_default=True
    )
    refresh_token_ttl_minutes: int = env_field(
        60 * 24 * 10, "REFRESH_TOKEN_TTL_MINUTES"
    )
    cors_origins: List[str] = env_field(
        [],
        "CORS_ORIGIN",
        description="Comma separated list of origins allowed to send credentials",
    )
    cookie_secure: bool = env_field(True, "COOKIE_SECURE")
    cloudinary_cloud_name: str | None = env_field(None, "CLOUDINARY_CLOUD_NAME")
    cloudinary_api_key: str | None = env_field(None, "CLOUDINARY_API_KEY")
    cloudinary_api_secret: str | None = env_field(None, "CLOUDINARY_API_SECRET")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviour for CI (memory store, placeholder media).",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def tmp_dir(self) -> Path:
        return Path(self.upload_tmp_dir or Path(self.shared_fs_root) / "tmp")

    @property
    def media_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("access_token_secret", mode="before")
    @classmethod
    def _ensure_access_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < MIN_SECRET_LENGTH:
                raise ValueError(
                    f"ACCESS_TOKEN_SECRET must be at least {MIN_SECRET_LENGTH} characters"
                )
            return value
        return _persisted_secret(".access_token_secret")

    @field_validator("refresh_token_secret", mode="before")
    @classmethod
    def _ensure_refresh_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < MIN_SECRET_LENGTH:
                raise ValueError(
                    f"REFRESH_TOKEN_SECRET must be at least {MIN_SECRET_LENGTH} characters"
                )
            return value
        return _persisted_secret(".refresh_token_secret")

    @field_validator("access_token_ttl_minutes", "refresh_token_ttl_minutes")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token TTL must be positive")
        return value

    @model_validator(mode="after")
    def _distinct_secrets(self):
        # A leaked access secret must not be able to mint renewal tokens
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
