from __future__ import annotations

import logging

import pytest

from devserve.main import create_app
from devserve.services.listener import BaseListener, BoundListener, PortExhaustedError
from devserve.worker import run_dev_server
from devserve.worker.run_dev_server import StartupError, run, start_listeners


class StubListener(BaseListener):
    def __init__(self, fail_serve: Exception | None = None) -> None:
        self.fail_serve = fail_serve
        self.served = False
        self.closed = False

    async def serve(self) -> None:
        self.served = True
        if self.fail_serve is not None:
            raise self.fail_serve

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def cert_files(tmp_path):
    key = tmp_path / "dev.key"
    cert = tmp_path / "dev.crt"
    key.write_text("not a key", encoding="utf-8")
    cert.write_text("not a cert", encoding="utf-8")
    return key, cert


def _close_all(listeners):
    for bound in listeners:
        bound.listener.close()


async def test_http_only_by_default(make_settings, caplog):
    cfg = make_settings(port=0)
    with caplog.at_level(logging.INFO):
        listeners = await start_listeners(create_app(cfg), cfg)
    try:
        assert len(listeners) == 1
        assert listeners[0].port > 0
        assert f"HTTP server running at http://localhost:{listeners[0].port}" in caplog.text
    finally:
        _close_all(listeners)


async def test_https_without_cert_files_is_skipped(make_settings, tmp_path, caplog):
    key, cert = tmp_path / "missing.key", tmp_path / "missing.crt"
    cfg = make_settings(port=0, https="true", ssl_key_path=str(key), ssl_cert_path=str(cert))
    with caplog.at_level(logging.WARNING):
        listeners = await start_listeners(create_app(cfg), cfg)
    try:
        assert len(listeners) == 1
        assert "HTTPS requested but cert files not found" in caplog.text
        assert str(key) in caplog.text
        assert str(cert) in caplog.text
    finally:
        _close_all(listeners)


async def test_bad_tls_material_keeps_http_running(make_settings, cert_files, caplog):
    key, cert = cert_files
    cfg = make_settings(
        port=0, ssl_port=0, https="True", ssl_key_path=str(key), ssl_cert_path=str(cert)
    )
    with caplog.at_level(logging.WARNING):
        listeners = await start_listeners(create_app(cfg), cfg)
    try:
        assert len(listeners) == 1
        assert "Unable to start HTTPS server" in caplog.text
    finally:
        _close_all(listeners)


async def test_https_exhaustion_is_only_a_warning(make_settings, cert_files, monkeypatch, caplog):
    key, cert = cert_files
    http = StubListener()

    async def fake_listen(factory, port, *, max_attempts, step, label):
        if label == "HTTPS server":
            raise PortExhaustedError("HTTPS server failed to find an open port")
        return BoundListener(listener=http, port=port)

    monkeypatch.setattr(run_dev_server, "listen_with_retry", fake_listen)
    cfg = make_settings(https="true", ssl_key_path=str(key), ssl_cert_path=str(cert))
    with caplog.at_level(logging.WARNING):
        listeners = await start_listeners(create_app(cfg), cfg)

    assert [b.listener for b in listeners] == [http]
    assert "Unable to start HTTPS server" in caplog.text


async def test_both_listeners_when_tls_binds(make_settings, cert_files, monkeypatch):
    key, cert = cert_files
    labels = []

    async def fake_listen(factory, port, *, max_attempts, step, label):
        labels.append((label, port, max_attempts, step))
        return BoundListener(listener=StubListener(), port=port)

    monkeypatch.setattr(run_dev_server, "listen_with_retry", fake_listen)
    cfg = make_settings(
        https="true",
        ssl_key_path=str(key),
        ssl_cert_path=str(cert),
        port_max_attempts=3,
        port_step=2,
    )
    listeners = await start_listeners(create_app(cfg), cfg)

    assert [b.port for b in listeners] == [3000, 3443]
    assert labels == [("HTTP server", 3000, 3, 2), ("HTTPS server", 3443, 3, 2)]


async def test_http_failure_is_fatal(make_settings, monkeypatch, caplog):
    async def fake_listen(factory, port, *, max_attempts, step, label):
        raise PortExhaustedError(f"{label} failed to find an open port (starting at {port})")

    monkeypatch.setattr(run_dev_server, "listen_with_retry", fake_listen)
    with pytest.raises(StartupError):
        await start_listeners(create_app(make_settings()), make_settings())

    with caplog.at_level(logging.ERROR):
        assert await run(make_settings()) == 1
    assert "Unable to start HTTP server" in caplog.text


async def test_run_serves_all_listeners(make_settings, monkeypatch, caplog):
    http = StubListener()
    https = StubListener(fail_serve=OSError("tls handshake machinery broke"))

    async def fake_start(app, cfg):
        return [BoundListener(listener=http, port=3000), BoundListener(listener=https, port=3443)]

    monkeypatch.setattr(run_dev_server, "start_listeners", fake_start)
    with caplog.at_level(logging.WARNING):
        assert await run(make_settings()) == 0

    assert http.served and https.served
    assert "HTTPS server stopped" in caplog.text
