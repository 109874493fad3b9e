from vidtube import serve


def test_main_runs_app_with_env_binding(monkeypatch):
    calls = {}

    def fake_run(app, **kwargs):
        calls["app"] = app
        calls.update(kwargs)

    monkeypatch.setattr(serve.uvicorn, "run", fake_run)
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "9123")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    serve.main()

    assert calls["app"] == "vidtube.app:app"
    assert calls["host"] == "127.0.0.1"
    assert calls["port"] == 9123
    assert calls["log_level"] == "warning"


def test_main_defaults(monkeypatch):
    calls = {}
    monkeypatch.setattr(serve.uvicorn, "run", lambda app, **kwargs: calls.update(kwargs))
    for name in ("HOST", "PORT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    serve.main()
    assert calls["host"] == "0.0.0.0"
    assert calls["port"] == 8000
    assert calls["log_level"] == "info"
