import http.server
import threading

import pytest

from fluentreload.config import Config
from fluentreload.controller import Controller, FixedTimeUpdater, Generator, OnDemandUpdater
from fluentreload.datasource import FileSystemDatasource, NamespaceConfig
from fluentreload.parser import parse_string
from fluentreload.reloader import RELOAD_PATH, Reloader

MATCH_STDOUT = "<match **>\n@type stdout\n</match>"


@pytest.fixture
def examples(tmp_path):
    src = tmp_path / "examples"
    src.mkdir()
    for name in ("alpha", "beta", "gamma"):
        (src / f"{name}.conf").write_text(MATCH_STDOUT)
    return src


@pytest.fixture
def reload_server():
    hits = []

    class Handler(http.server.BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == RELOAD_PATH:
                hits.append(self.path)
            self.send_response(200)
            self.end_headers()

        def log_message(self, *args):
            pass

    server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1], hits
    server.shutdown()
    server.server_close()


def _config(examples, out, datasource="fs"):
    return Config(datasource=datasource, fs_datasource_dir=str(examples),
                  templates_dir="../templates", id="default", output_dir=str(out),
                  log_level="debug")


def test_run_once_controller(examples, tmp_path):
    out = tmp_path / "out"
    config = _config(examples, out)
    ds = FileSystemDatasource(config.fs_datasource_dir, config.output_dir)
    ctrl = Controller(config, ds, FixedTimeUpdater(config.interval_seconds))

    ctrl.run_once()
    assert ctrl.total_config_ns == 3

    (examples / "new-namespace.conf").write_text(MATCH_STDOUT)
    ctrl.run_once()
    assert ctrl.total_config_ns == 4


def test_hashes_recorded_and_files_rendered(examples, tmp_path):
    out = tmp_path / "out"
    ds = FileSystemDatasource(examples, out)
    ctrl = Controller(_config(examples, out), ds, FixedTimeUpdater(0))
    ctrl.run_once()
    assert set(ds.hashes) == {"alpha", "beta", "gamma"}
    assert (out / "ns-alpha.conf").read_text() == str(parse_string(MATCH_STDOUT))


def test_reload_only_on_change(examples, tmp_path, reload_server):
    port, hits = reload_server
    out = tmp_path / "out"
    ds = FileSystemDatasource(examples, out)
    ctrl = Controller(_config(examples, out, "default"), ds, FixedTimeUpdater(0),
                      reloader=Reloader(port, timeout=5))
    assert ctrl.run_once() is True
    assert len(hits) == 1
    assert ctrl.run_once() is False
    assert len(hits) == 1
    (examples / "beta.conf").write_text("<match **>\n@type null\n</match>")
    assert ctrl.run_once() is True
    assert len(hits) == 2


def test_bad_config_gets_status_and_is_not_rendered(examples, tmp_path):
    out = tmp_path / "out"
    (examples / "bad.conf").write_text("<match **>\n</filter>")
    ds = FileSystemDatasource(examples, out)
    ctrl = Controller(_config(examples, out), ds, FixedTimeUpdater(0))
    ctrl.run_once()
    assert "bad" not in ds.hashes
    assert not (out / "ns-bad.conf").exists()
    assert "mismatched tags" in (out / "ns-bad.status").read_text()
    assert ctrl.total_config_ns == 4


def test_stale_files_removed(examples, tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    (out / "ns-old.conf").write_text("stale")
    ctrl = Controller(_config(examples, out), FileSystemDatasource(examples, out),
                      FixedTimeUpdater(0))
    ctrl.run_once()
    assert not (out / "ns-old.conf").exists()
    assert (out / "ns-gamma.conf").exists()


def test_generator_cleanup_returns_removed(tmp_path):
    (tmp_path / "ns-keep.conf").write_text("")
    (tmp_path / "ns-drop.conf").write_text("")
    removed = Generator().cleanup_unused_files(tmp_path, {"keep": "h"})
    assert removed == ["ns-drop.conf"]
    assert (tmp_path / "ns-keep.conf").exists()


def test_generator_hash_stable(tmp_path):
    gen = Generator()
    gen.set_model([NamespaceConfig("a", MATCH_STDOUT)])
    first = gen.render_to_disk(tmp_path)
    assert gen.render_to_disk(tmp_path) == first
    assert list(first) == ["a"]


def test_run_stops_when_stop_set(examples, tmp_path):
    out = tmp_path / "out"
    ctrl = Controller(_config(examples, out), FileSystemDatasource(examples, out),
                      FixedTimeUpdater(60))
    stop = threading.Event()
    stop.set()
    ctrl.run(stop)
    assert ctrl.total_config_ns == 3


def test_fixed_time_updater():
    stop = threading.Event()
    assert FixedTimeUpdater(0).wait(stop) is True
    stop.set()
    assert FixedTimeUpdater(60).wait(stop) is False


def test_on_demand_updater_coalesces():
    updater = OnDemandUpdater(poll_interval=0.01)
    stop = threading.Event()
    updater.notify()
    updater.notify()
    assert updater.wait(stop) is True
    stop.set()
    assert updater.wait(stop) is False


def test_on_demand_updater_wakes_from_thread():
    updater = OnDemandUpdater(poll_interval=0.01)
    stop = threading.Event()
    timer = threading.Timer(0.05, updater.notify)
    timer.start()
    try:
        assert updater.wait(stop) is True
    finally:
        timer.cancel()