"""Sources of per-namespace Fluentd configuration."""

from __future__ import annotations

import contextlib
import datetime
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .objects import Pod

log = logging.getLogger(__name__)

LOGZ_TEMPLATE = """
<match **>
  @type logzio_buffered
  endpoint_url https://listener.example.com:8071?token=placeholder
  output_include_time true
  output_include_tags true
  buffer_type    file
  buffer_path    /var/log/logzio-$my_ns.buffer
  flush_interval 10s
  buffer_chunk_limit 1m
</match>
"""

_UNCONFIGURED_CONFIG = """
\t\t<match **>
\t\t  @type null
\t\t</match>
\t\t"""

FAKE_NAMESPACES = ("kube-system", "monitoring", "csp-main")


@dataclass
class Mount:
    path: str
    volume_name: str
    sub_path: str = ""


@dataclass
class MiniContainer:
    """A container with the metadata of its pod and its emptyDir mounts."""

    pod_id: str
    pod_name: str
    name: str
    image: str = ""
    container_id: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    host_mounts: list[Mount] = field(default_factory=list)
    node_name: str = ""


@dataclass
class NamespaceConfig:
    """All the data the generator needs about one namespace."""

    name: str
    fluentd_config: str = ""
    previous_config_hash: str = ""
    mini_containers: list[MiniContainer] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)


class Datasource(ABC):
    """Reads namespace configurations and records their state."""

    @abstractmethod
    def get_namespaces(self) -> list[NamespaceConfig]:
        """Return the configuration of every namespace to process."""

    @abstractmethod
    def write_current_config_hash(self, namespace: str, config_hash: str) -> None:
        """Remember the hash of the configuration last applied for a namespace."""

    @abstractmethod
    def update_status(self, namespace: str, status: str) -> None:
        """Record an error description for a namespace; an empty status clears it."""


def convert_pods_to_minis(pods: Iterable[Pod]) -> list[MiniContainer]:
    """Turn pods into containers that have at least one emptyDir mount.

    Mounts are ordered by path length, longest first.
    """
    minis: list[MiniContainer] = []
    for pod in pods:
        empty_dirs = {volume.name for volume in pod.volumes if volume.empty_dir}
        for container in pod.containers:
            mounts = [
                Mount(path=vm.mount_path, volume_name=vm.name, sub_path=vm.sub_path)
                for vm in container.volume_mounts
                if vm.name in empty_dirs
            ]
            if not mounts:
                continue
            container_id = next(
                (st.container_id for st in pod.container_statuses if st.name == container.name),
                "",
            )
            minis.append(MiniContainer(
                pod_id=pod.uid,
                pod_name=pod.name,
                name=container.name,
                image=container.image,
                container_id=container_id,
                labels=pod.labels,
                host_mounts=sorted(mounts, key=lambda m: len(m.path), reverse=True),
                node_name=pod.node_name,
            ))
    return minis


def _make_fake_config(namespace: str) -> str:
    return (LOGZ_TEMPLATE
            .replace("$ns$", namespace)
            .replace("$ts$", str(datetime.datetime.now())))


class FakeDatasource(Datasource):
    """Returns a predefined set of namespaces and configurations."""

    def __init__(self) -> None:
        self.hashes: dict[str, str] = {}

    def get_namespaces(self) -> list[NamespaceConfig]:
        result = [NamespaceConfig(name=ns, fluentd_config=_make_fake_config(ns))
                  for ns in FAKE_NAMESPACES]
        result.append(NamespaceConfig(name="not-configured",
                                      fluentd_config=_UNCONFIGURED_CONFIG))
        return result

    def write_current_config_hash(self, namespace: str, config_hash: str) -> None:
        self.hashes[namespace] = config_hash

    def update_status(self, namespace: str, status: str) -> None:
        log.info("Setting status of namespace %s to %s", namespace, status)


class FileSystemDatasource(Datasource):
    """Turns every ``<namespace>.conf`` file in a directory into a namespace config."""

    def __init__(self, root_dir: str | Path, status_output_dir: str | Path) -> None:
        self.root_dir = Path(root_dir)
        self.status_output_dir = Path(status_output_dir)
        self.hashes: dict[str, str] = {}

    def get_namespaces(self) -> list[NamespaceConfig]:
        result: list[NamespaceConfig] = []
        for path in sorted(self.root_dir.glob("*.conf"), key=str):
            namespace = path.name[: -len(".conf")]
            try:
                contents = path.read_bytes().decode("utf-8", errors="replace")
            except OSError as exc:
                log.info("Cannot read file %s: %s", path, exc)
                continue
            log.info("Loading namespace %s from file %s", namespace, path)
            result.append(NamespaceConfig(
                name=namespace,
                fluentd_config=contents,
                previous_config_hash=self.hashes.get(namespace, ""),
            ))
        return result

    def write_current_config_hash(self, namespace: str, config_hash: str) -> None:
        self.hashes[namespace] = config_hash

    def update_status(self, namespace: str, status: str) -> None:
        path = self.status_output_dir / f"ns-{namespace}.status"
        if status:
            try:
                path.write_text(status)
            except OSError as exc:
                log.error("Cannot write status file %s: %s", path, exc)
        else:
            with contextlib.suppress(OSError):
                path.unlink()