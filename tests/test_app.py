import pytest
from fastapi.testclient import TestClient

from deploywatch.main import app, build_supervisor, cli
from deploywatch.config import WatcherConfig
from deploywatch.stats import WatcherStats


def test_health():
    # no context manager: the lifespan (and its watcher) is not started
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_status_reports_counters():
    stats = WatcherStats()
    stats.epoch = 3
    stats.blocks_processed = 12
    stats.events_emitted = 4
    stats.last_block = 1234
    app.state.stats = stats
    app.state.mode = "blocks"

    response = TestClient(app).get("/status")

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "blocks"
    assert body["epoch"] == 3
    assert body["blocks_processed"] == 12
    assert body["events_emitted"] == 4
    assert body["last_block"] == 1234
    assert body["connected"] is False


def test_supervisor_mode_selects_session():
    config = WatcherConfig(ws_url="ws://localhost:8546")
    blocks = build_supervisor("blocks", config, WatcherStats())
    mempool = build_supervisor("mempool", config, WatcherStats())
    assert blocks.session.__qualname__.startswith("block_session")
    assert mempool.session.__qualname__.startswith("mempool_session")


def test_missing_ws_url_exits(monkeypatch):
    monkeypatch.setattr("deploywatch.main.dotenv.load_dotenv", lambda *a, **k: False)
    monkeypatch.delenv("WS_URL", raising=False)
    with pytest.raises(SystemExit) as exc:
        cli(["blocks"])
    assert exc.value.code == 1
