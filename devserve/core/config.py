from __future__ import annotations

import httpx
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    host: str = "0.0.0.0"
    port: int = 3000
    ssl_port: int = 3443

    # Bootstrap: ports tried are port, port + step, ... (max_attempts in total)
    port_max_attempts: int = 10
    port_step: int = 1

    public_dir: str = "public"
    log_level: str = "INFO"

    # Dev proxy (optional). Empty target or empty prefix disables forwarding.
    proxy_prefix: str = "/api"
    proxy_target: str = ""
    proxy_timeout_sec: float = 60.0
    proxy_verify_ssl: bool = True

    # TLS listener: only the literal "true" (any case) turns it on.
    https: str = ""
    ssl_key_path: str = "cert/dev.key"
    ssl_cert_path: str = "cert/dev.crt"

    @field_validator("proxy_target")
    @classmethod
    def _check_proxy_target(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            return ""
        url = httpx.URL(v)
        if url.scheme not in {"http", "https"} or not url.host:
            raise ValueError(f"PROXY_TARGET must be an absolute http(s) URL, got {v!r}")
        return v

    @property
    def https_enabled(self) -> bool:
        return str(self.https).strip().lower() == "true"

    @property
    def proxy_enabled(self) -> bool:
        return bool(self.proxy_target) and bool(self.proxy_prefix)

    @property
    def proxy_target_url(self) -> httpx.URL | None:
        if not self.proxy_target:
            return None
        return httpx.URL(self.proxy_target)


settings = Settings()
