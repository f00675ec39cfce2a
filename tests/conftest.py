from __future__ import annotations

import pytest

from devserve.core.config import Settings

ENV_KEYS = (
    "HOST",
    "PORT",
    "SSL_PORT",
    "PORT_MAX_ATTEMPTS",
    "PORT_STEP",
    "PUBLIC_DIR",
    "LOG_LEVEL",
    "PROXY_PREFIX",
    "PROXY_TARGET",
    "PROXY_TIMEOUT_SEC",
    "PROXY_VERIFY_SSL",
    "HTTPS",
    "SSL_KEY_PATH",
    "SSL_CERT_PATH",
)


@pytest.fixture(autouse=True)
def hermetic_env(monkeypatch):
    """Keep a developer's shell environment from leaking into Settings()."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def public_dir(tmp_path):
    d = tmp_path / "public"
    d.mkdir()
    (d / "index.html").write_text("<!doctype html><title>index</title>", encoding="utf-8")
    (d / "app.js").write_text("console.log('hi');", encoding="utf-8")
    return d


@pytest.fixture()
def make_settings(public_dir):
    def _make(**overrides) -> Settings:
        values = {"host": "127.0.0.1", "public_dir": str(public_dir)}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
