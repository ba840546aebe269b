"""Readers of Fluentd configuration stored in cluster objects."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from .config import Config
from .objects import Cluster, ConfigMap

log = logging.getLogger(__name__)

ENTRY_NAME = "fluent.conf"


class Notifier(Protocol):
    def notify(self) -> None: ...


class NamespaceNotConfigured(LookupError):
    """Raised when no configmap name can be found for a namespace."""

    def __init__(self, namespace: str) -> None:
        super().__init__(f"Namespace '{namespace}' is not configured")
        self.namespace = namespace


def are_labels_in_allow_list(labels: Mapping[str, str] | None,
                             allowlist: Mapping[str, str] | None) -> bool:
    """Return True when every label is present with the same value in the allowlist.

    An empty allowlist allows everything.
    """
    if not allowlist:
        return True
    return all(key in allowlist and allowlist[key] == value
               for key, value in (labels or {}).items())


def _always_ready() -> bool:
    return True


def _in_watched_namespaces(config: Config, obj: Any) -> bool:
    if not config.namespaces:
        return True
    return getattr(obj, "namespace", None) in config.namespaces


class KubeDS(ABC):
    """A source of Fluentd configuration held in cluster resources."""

    @abstractmethod
    def get_fluentd_config(self, namespace: str) -> str:
        """Return the concatenated configuration for a namespace."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return True once the underlying data is available."""


class ConfigMapDS(KubeDS):
    """Reads configuration from config maps, by name or by label selector."""

    def __init__(self, config: Config, cluster: Cluster, notifier: Notifier,
                 ready: Callable[[], bool] | None = None) -> None:
        self.config = config
        self.cluster = cluster
        self.notifier = notifier
        self._ready = ready if ready is not None else _always_ready

    def is_ready(self) -> bool:
        return self._ready()

    def get_fluentd_config(self, namespace: str) -> str:
        return self._read_config(self._fetch_configmaps(namespace))

    def _fetch_configmaps(self, namespace: str) -> list[ConfigMap]:
        if self.config.datasource == "multimap":
            found = self.cluster.configmaps(namespace, self.config.parsed_label_selector)
            return sorted(found, key=lambda cm: cm.name)

        try:
            map_name = self.detect_configmap_name(namespace)
        except NamespaceNotConfigured as exc:
            log.debug("Could not find a named configmap for namespace: %s", exc)
            map_name = ""
        try:
            return [self.cluster.get_configmap(namespace, map_name)]
        except KeyError as exc:
            log.debug("Failed to retrieve configmap '%s' from namespace '%s': %s",
                      map_name, namespace, exc)
            return []

    @staticmethod
    def _read_config(configmaps: list[ConfigMap]) -> str:
        parts: list[str] = []
        for cm in configmaps:
            if ENTRY_NAME not in cm.data:
                log.warning("cannot find entry %s in configmap %s/%s",
                            ENTRY_NAME, cm.namespace, cm.name)
                return ""
            parts.append(cm.data[ENTRY_NAME])
            log.debug("Loaded config data from config map: %s/%s", cm.namespace, cm.name)
        return "\n".join(parts)

    def detect_configmap_name(self, namespace: str) -> str:
        """Return the configmap name from the namespace annotation or the default.

        Raises NamespaceNotConfigured when neither gives a name, and LookupError
        when the namespace does not exist.
        """
        try:
            ns = self.cluster.get_namespace(namespace)
        except KeyError as exc:
            raise LookupError(
                f"Could not get the details of namespace '{namespace}': {exc}"
            ) from exc

        name = ns.annotations.get(self.config.annot_configmap_name, "")
        if name:
            return name
        if self.config.default_configmap_name:
            log.debug("Using default configmap name ('%s') for namespace '%s'",
                      self.config.default_configmap_name, namespace)
            return self.config.default_configmap_name
        raise NamespaceNotConfigured(namespace)

    def handle_change(self, obj: Any) -> bool:
        """React to a changed config map; return True when the loop was notified."""
        if not hasattr(obj, "namespace") or not hasattr(obj, "name"):
            log.warning("error decoding object, invalid type")
            return False
        if not _in_watched_namespaces(self.config, obj):
            return False

        if self.config.datasource == "multimap":
            labels = getattr(obj, "labels", None) or {}
            if not labels or not are_labels_in_allow_list(
                    self.config.parsed_label_selector, labels):
                return False
        else:
            try:
                map_name = self.detect_configmap_name(obj.namespace)
            except LookupError:
                return False
            if obj.name != map_name:
                return False

        self.notifier.notify()
        return True


class FluentdConfigDS(KubeDS):
    """Reads configuration from FluentdConfig resources."""

    def __init__(self, config: Config, cluster: Cluster, notifier: Notifier,
                 ready: Callable[[], bool] | None = None) -> None:
        self.config = config
        self.cluster = cluster
        self.notifier = notifier
        self._ready = ready if ready is not None else _always_ready

    def is_ready(self) -> bool:
        return self._ready()

    def get_fluentd_config(self, namespace: str) -> str:
        resources = sorted(self.cluster.fluentd_configs(namespace), key=lambda fc: fc.name)
        for fc in resources:
            log.debug("loaded config data from fluentdconfig: %s/%s", fc.namespace, fc.name)
        return "\n".join(fc.fluentconf for fc in resources)

    def handle_change(self, obj: Any) -> bool:
        """React to a changed FluentdConfig; return True when the loop was notified."""
        if self.config.namespaces:
            if not hasattr(obj, "namespace"):
                log.warning("error decoding object, invalid type")
                return False
            if not _in_watched_namespaces(self.config, obj):
                return False
        self.notifier.notify()
        return True


class MigrationModeDS(KubeDS):
    """Combines config maps and FluentdConfig resources during a migration."""

    def __init__(self, fd_ds: KubeDS, cm_ds: KubeDS) -> None:
        self.fd_ds = fd_ds
        self.cm_ds = cm_ds

    @classmethod
    def create(cls, config: Config, cluster: Cluster, notifier: Notifier) -> MigrationModeDS:
        return cls(FluentdConfigDS(config, cluster, notifier),
                   ConfigMapDS(config, cluster, notifier))

    def is_ready(self) -> bool:
        return self.fd_ds.is_ready() and self.cm_ds.is_ready()

    def get_fluentd_config(self, namespace: str) -> str:
        fd_configs = self.fd_ds.get_fluentd_config(namespace)
        cm_configs = self.cm_ds.get_fluentd_config(namespace)
        return cm_configs + "\n" + fd_configs