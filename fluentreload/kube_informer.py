"""Datasource that reads namespace configurations from cluster objects."""

from __future__ import annotations

import logging

from .config import Config
from .datasource import Datasource, NamespaceConfig, convert_pods_to_minis
from .kubedatasource import (
    ConfigMapDS,
    FluentdConfigDS,
    KubeDS,
    MigrationModeDS,
    Notifier,
)
from .objects import Cluster, parse_selector
from .parser import ParseError, parse_string

log = logging.getLogger(__name__)


class KubeInformerDatasource(Datasource):
    """Finds namespaces holding Fluentd configuration and describes each of them."""

    def __init__(self, config: Config, cluster: Cluster, kubeds: KubeDS) -> None:
        self.config = config
        self.cluster = cluster
        self.kubeds = kubeds
        self.config_hashes: dict[str, str] = {}
        self._crd_enabled = config.datasource == "crd" or config.crd_migration_mode

    @classmethod
    def create(cls, config: Config, cluster: Cluster,
               notifier: Notifier) -> KubeInformerDatasource:
        """Pick the reader that matches the configured datasource and wait for it."""
        kubeds: KubeDS
        if config.datasource == "crd":
            kubeds = FluentdConfigDS(config, cluster, notifier)
        elif config.crd_migration_mode:
            kubeds = MigrationModeDS.create(config, cluster, notifier)
        else:
            kubeds = ConfigMapDS(config, cluster, notifier)
        if not kubeds.is_ready():
            raise RuntimeError("failed to sync local informer with upstream Kubernetes API")
        log.info("Synced local informer with upstream Kubernetes API")
        return cls(config, cluster, kubeds)

    def get_namespaces(self) -> list[NamespaceConfig]:
        """Return the configuration of each discovered namespace that has a valid one."""
        result: list[NamespaceConfig] = []
        for name in self.discover_namespaces():
            namespace = self.cluster.get_namespace(name)
            config_data = self.kubeds.get_fluentd_config(name)
            if not config_data:
                log.info("Skipping namespace: %s because is empty", name)
                continue
            try:
                parse_string(config_data)
            except ParseError as exc:
                log.error("Error parsing config for ns %s: %s", name, exc)
                continue

            result.append(NamespaceConfig(
                name=name,
                fluentd_config=config_data,
                previous_config_hash=self.config_hashes.get(name, ""),
                labels=namespace.labels,
                mini_containers=convert_pods_to_minis(self.cluster.pods(name)),
            ))
        return result

    def write_current_config_hash(self, namespace: str, config_hash: str) -> None:
        self.config_hashes[namespace] = config_hash

    def update_status(self, namespace: str, status: str) -> None:
        """Add the status annotation when absent, or remove it when status is empty."""
        try:
            ns = self.cluster.get_namespace(namespace)
        except KeyError:
            log.info("Cannot find namespace to update status for: %s", namespace)
            return

        key = self.config.annot_status
        exists = key in ns.annotations
        if not exists and status:
            ns.annotations[key] = status
        if exists and not status:
            del ns.annotations[key]

        try:
            self.cluster.update_namespace(ns)
        except KeyError as exc:
            log.info("Cannot set error status on namespace %s: %s", namespace, exc)

    def discover_namespaces(self) -> list[str]:
        """Return the sorted, distinct names of namespaces to inspect."""
        cfg = self.config
        if cfg.namespaces:
            names = list(cfg.namespaces)
        elif cfg.namespace_selector:
            selector = parse_selector(cfg.namespace_selector)
            names = [ns.name for ns in self.cluster.namespaces(selector)]
        elif cfg.datasource == "crd":
            log.info("Discovering only namespaces that have fluentdconfig crd defined.")
            names = self._fluentd_config_namespaces()
        elif cfg.default_configmap_name:
            names = []
            for cm in self.cluster.configmaps():
                if cm.name == cfg.default_configmap_name:
                    names.append(cm.namespace)
                    continue
                try:
                    owner = self.cluster.get_namespace(cm.namespace)
                except KeyError:
                    continue
                if owner.annotations.get(cfg.annot_configmap_name):
                    names.append(cm.namespace)
            if cfg.crd_migration_mode:
                names.extend(self._fluentd_config_namespaces())
        else:
            names = [ns.name for ns in self.cluster.namespaces()]
        return sorted(set(names))

    def _fluentd_config_namespaces(self) -> list[str]:
        if not self._crd_enabled:
            raise RuntimeError("failed to initialize the fluentdconfig crd client")
        names = [fc.namespace for fc in self.cluster.fluentd_configs()]
        log.debug("Returned these namespaces for fluentdconfig crds: %s", names)
        return names