"""The main control loop: read configs, render them and reload Fluentd."""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from .config import Config
from .datasource import Datasource, NamespaceConfig
from .parser import ParseError, parse_string
from .reloader import Reloader

log = logging.getLogger(__name__)

LOCAL_DATASOURCES = ("fake", "fs")


def _file_name(namespace: str) -> str:
    return f"ns-{namespace}.conf"


class Generator:
    """Renders namespace configurations to files, one per namespace."""

    def __init__(self, status_updater: Datasource | None = None) -> None:
        self.status_updater = status_updater
        self.model: list[NamespaceConfig] = []

    def set_model(self, namespaces: Iterable[NamespaceConfig]) -> None:
        self.model = list(namespaces)

    def _update_status(self, namespace: str, status: str) -> None:
        if self.status_updater is not None:
            self.status_updater.update_status(namespace, status)

    def render_to_disk(self, output_dir: str | Path) -> dict[str, str]:
        """Write every valid namespace config and return its content hash by namespace.

        Namespaces whose configuration does not parse are left out and get an
        error status.
        """
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        hashes: dict[str, str] = {}
        for ns in self.model:
            try:
                fragment = parse_string(ns.fluentd_config)
            except ParseError as exc:
                log.error("Error parsing config for ns %s: %s", ns.name, exc)
                self._update_status(ns.name, f"error parsing config: {exc}")
                continue
            content = str(fragment)
            (out / _file_name(ns.name)).write_text(content)
            hashes[ns.name] = hashlib.sha256(content.encode()).hexdigest()
            self._update_status(ns.name, "")
        return hashes

    def cleanup_unused_files(self, output_dir: str | Path,
                             config_hashes: dict[str, str]) -> list[str]:
        """Remove rendered files of namespaces no longer present; return their names."""
        keep = {_file_name(name) for name in config_hashes}
        removed: list[str] = []
        for path in sorted(Path(output_dir).glob("ns-*.conf")):
            if path.name not in keep:
                path.unlink(missing_ok=True)
                removed.append(path.name)
        return removed


class Updater(Protocol):
    def wait(self, stop: threading.Event) -> bool: ...


class FixedTimeUpdater:
    """Wakes the control loop after a fixed interval."""

    def __init__(self, seconds: float) -> None:
        self.interval = max(float(seconds), 0.0)

    def wait(self, stop: threading.Event) -> bool:
        """Return True when the interval passed, False when ``stop`` was set."""
        return not stop.wait(self.interval)


class OnDemandUpdater:
    """Wakes the control loop when notified; extra notifications coalesce."""

    def __init__(self, poll_interval: float = 0.1) -> None:
        self.poll_interval = poll_interval
        self._condition = threading.Condition()
        self._pending = False

    def notify(self) -> None:
        with self._condition:
            self._pending = True
            self._condition.notify_all()

    def wait(self, stop: threading.Event) -> bool:
        """Return True on a notification, False when ``stop`` was set."""
        with self._condition:
            while not self._pending:
                if stop.is_set():
                    return False
                self._condition.wait(self.poll_interval)
            self._pending = False
            return True


class Controller:
    """Runs the render-and-reload loop over a datasource."""

    def __init__(self, config: Config, datasource: Datasource, updater: Updater,
                 generator: Generator | None = None,
                 reloader: Reloader | None = None) -> None:
        self.datasource = datasource
        self.updater = updater
        self.generator = generator if generator is not None else Generator(datasource)
        if reloader is None:
            if config.datasource in LOCAL_DATASOURCES:
                log.info("Setting reloader to null because is running locally")
                reloader = Reloader(None)
            else:
                reloader = Reloader(config.fluentd_rpc_port)
        self.reloader = reloader
        self.output_dir = config.output_dir
        self.total_config_ns = 0

    def run_once(self) -> bool:
        """Run one pass of the loop; return True when a reload was requested."""
        log.info("Running main control loop")
        namespaces = self.datasource.get_namespaces()
        self.generator.set_model(namespaces)
        try:
            config_hashes = self.generator.render_to_disk(self.output_dir)
        except OSError as exc:
            log.error("Cannot render configuration: %s", exc)
            return False

        log.info("Config hashes returned in run_once: %s", config_hashes)
        needs_reload = False
        for ns in namespaces:
            new_hash = config_hashes.get(ns.name)
            if new_hash is None:
                log.info("No config updates for namespace %s", ns.name)
                continue
            if new_hash != ns.previous_config_hash:
                log.info("Detecting updates for namespace %s", ns.name)
                needs_reload = True
                self.datasource.write_current_config_hash(ns.name, new_hash)

        if self.total_config_ns != len(namespaces):
            log.info("New namespaces found. Reloading fluentd...")
            needs_reload = True
            self.total_config_ns = len(namespaces)

        if needs_reload:
            self.reloader.reload_configuration()

        self.generator.cleanup_unused_files(self.output_dir, config_hashes)
        return needs_reload

    def run(self, stop: threading.Event | None = None) -> None:
        """Loop until ``stop`` is set, running once per updater wake-up."""
        stop = stop if stop is not None else threading.Event()
        while True:
            try:
                self.run_once()
            except Exception:  # the loop keeps running whatever one pass does
                log.exception("Control loop pass failed")
            if not self.updater.wait(stop):
                log.info("Terminating main controller loop")
                return