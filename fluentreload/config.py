"""Command-line configuration of the config reloader and its validation."""

from __future__ import annotations

import argparse
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, NamedTuple

VERSION = "unknown"
APP_NAME = "config-reloader"
TRACE = 5
DATASOURCES = ("default", "fake", "fs", "multimap", "crd")

_LOG_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_FLUENTD_LOG_LEVELS = {
    "fatal": "fatal",
    "error": "error",
    "warn": "warn",
    "warning": "warn",
    "info": "info",
    "debug": "debug",
    "trace": "trace",
}

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}

_RE_VALID_ID = re.compile(r"([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]")
_RE_VALID_ANNOTATION = re.compile(r"([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]+.*")


class ConfigError(ValueError):
    """Raised when flags cannot be parsed or the configuration is invalid."""


def parse_log_level(name: str) -> int:
    """Return the logging level for a level name such as ``info`` or ``warning``."""
    level = _LOG_LEVELS.get(name.lower())
    if level is None:
        raise ConfigError(f"not a valid log level: {name!r}")
    return level


class _Flag(NamedTuple):
    name: str
    attr: str
    kind: type
    has_default: bool
    help: str
    choices: tuple[str, ...] | None = None


_FLAGS = (
    _Flag("master", "master", str, True,
          "The Kubernetes API server to connect to (default: auto-detect)"),
    _Flag("kubeconfig", "kube_config", str, True,
          "Retrieve target cluster configuration from a Kubernetes configuration file"),
    _Flag("datasource", "datasource", str, True,
          "Datasource to use default|fake|fs|multimap|crd", DATASOURCES),
    _Flag("crd-migration-mode", "crd_migration_mode", bool, False,
          "Enable the crd datasource together with the current datasource"),
    _Flag("fs-dir", "fs_datasource_dir", str, False,
          "If --datasource=fs is used, configure the dir hosting the files"),
    _Flag("interval", "interval_seconds", int, True, "Run every x seconds"),
    _Flag("allow-file", "allow_file", bool, False,
          "Allow @type file for namespace configuration"),
    _Flag("id", "id", str, True, "The id of this deployment"),
    _Flag("fluentd-rpc-port", "fluentd_rpc_port", int, True, "RPC port of Fluentd"),
    _Flag("log-level", "log_level", str, True,
          "Control verbosity of log level for reloader"),
    _Flag("fluentd-loglevel", "fluentd_log_level", str, True,
          "Control verbosity of log level for fluentd"),
    _Flag("buffer-mount-folder", "buffer_mount_folder", str, True,
          "Folder in /var/log/{} where to create all fluentd buffers"),
    _Flag("annotation", "annot_configmap_name", str, True,
          "Which annotation on the namespace stores the configmap name?"),
    _Flag("default-configmap", "default_configmap_name", str, True,
          "Read the configmap by this name if namespace is not annotated"),
    _Flag("status-annotation", "annot_status", str, True,
          "Store configuration errors in this annotation, leave empty to turn off"),
    _Flag("allow-label", "allow_label", str, True,
          "When set only objects with this label can be fetched using templating"),
    _Flag("allow-label-annotation", "allow_label_annotation", str, True,
          "Which annotation on the namespace stores the allow label?"),
    _Flag("prometheus-enabled", "prometheus_enabled", bool, False,
          "Prometheus metrics enabled"),
    _Flag("metrics-port", "metrics_port", int, True,
          "Expose prometheus metrics on this port"),
    _Flag("kubelet-root", "kubelet_root", str, True, "Kubelet root dir"),
    _Flag("namespaces", "namespaces", list, False,
          "List of namespaces to process. If empty, processes all namespaces"),
    _Flag("templates-dir", "templates_dir", str, True, "Where to find templates"),
    _Flag("output-dir", "output_dir", str, True, "Where to output config files"),
    _Flag("meta-key", "meta_key", str, False, "Attach metadata under this key"),
    _Flag("meta-values", "meta_values", str, False, "Metadata in the k=v,k2=v2 format"),
    _Flag("fluentd-binary", "fluentd_validate_command", str, False,
          "Path to fluentd binary used to validate configuration"),
    _Flag("label-selector", "label_selector", str, False,
          "Label selector in the k=v,k2=v2 format (used only with --datasource=multimap)"),
    _Flag("allow-tag-expansion", "allow_tag_expansion", bool, False,
          "Allow specifying tags in the format 'k.{a,b}.** k.c.**'"),
    _Flag("admin-namespace", "admin_namespace", str, True,
          "Configurations defined in this namespace are copied as is"),
    _Flag("exec-timeout", "exec_timeout_seconds", int, True,
          "Timeout duration (in seconds) for exec command during validation"),
    _Flag("container-bytes-limit", "read_bytes_limit", int, True,
          "read_bytes_limit_per_second parameter for tail plugin per container file"),
    _Flag("namespace-selector", "namespace_selector", str, False,
          "Namespace selector in the k=v,k2=v2 format"),
)


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigError(message)


def _env_name(flag_name: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", f"{APP_NAME}_{flag_name}".upper())


def _env_default(flag: _Flag, base: Any) -> Any:
    env_name = _env_name(flag.name)
    raw = os.environ.get(env_name)
    if raw is None:
        return base
    if flag.kind is int:
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigError(f"invalid integer in {env_name}: {raw!r}") from exc
    if flag.kind is bool:
        if raw in _TRUE_WORDS:
            return True
        if raw in _FALSE_WORDS:
            return False
        raise ConfigError(f"invalid boolean in {env_name}: {raw!r}")
    if flag.kind is list:
        return [line for line in raw.splitlines() if line]
    if flag.choices and raw not in flag.choices:
        raise ConfigError(f"invalid value in {env_name}: {raw!r}")
    return raw


def _is_valid_value(text: str) -> bool:
    return bool(text) and "'" not in text


def _parse_pairs(text: str, error_message: str) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for element in text.split(","):
        if not element:
            continue
        parts = element.split("=")
        if len(parts) != 2:
            raise ConfigError(error_message)
        key, value = parts[0].strip(), parts[1].strip()
        if _is_valid_value(key) and _is_valid_value(value):
            parsed[key] = value
    return parsed


@dataclass
class Config:
    """Project-wide configuration, filled from flags and then validated."""

    master: str = ""
    kube_config: str = ""
    fluentd_rpc_port: int = 24444
    templates_dir: str = "/templates"
    output_dir: str = "/fluentd/etc"
    log_level: str = "info"
    fluentd_log_level: str = "info"
    buffer_mount_folder: str = ""
    annot_configmap_name: str = "logging.csp.vmware.com/fluentd-configmap"
    annot_status: str = "logging.csp.vmware.com/fluentd-status"
    default_configmap_name: str = "fluentd-config"
    interval_seconds: int = 60
    datasource: str = "default"
    crd_migration_mode: bool = False
    fs_datasource_dir: str = ""
    allow_file: bool = False
    id: str = "default"
    fluentd_validate_command: str = ""
    meta_key: str = ""
    meta_values: str = ""
    label_selector: str = ""
    kubelet_root: str = "/var/lib/kubelet/"
    namespaces: list[str] = field(default_factory=list)
    namespace_selector: str = ""
    prometheus_enabled: bool = False
    metrics_port: int = 9000
    allow_tag_expansion: bool = False
    admin_namespace: str = "kube-system"
    allow_label: str = ""
    allow_label_annotation: str = ""
    exec_timeout_seconds: int = 30
    read_bytes_limit: int = 51200
    parsed_meta_values: dict[str, str] = field(default_factory=dict)
    parsed_label_selector: dict[str, str] = field(default_factory=dict)
    level: int | None = field(default=None, repr=False)

    def parse_flags(self, args: list[str] | None) -> None:
        """Fill the configuration from command-line arguments and environment."""
        parser = _Parser(
            prog=APP_NAME,
            description="Regenerates Fluentd configs based on Kubernetes namespace "
            "annotations against templates, reloading Fluentd if necessary",
            allow_abbrev=False,
        )
        parser.add_argument("--version", action="version", version=VERSION)
        defaults = Config()
        for flag in _FLAGS:
            base = getattr(defaults if flag.has_default else self, flag.attr)
            default = _env_default(flag, base)
            option = f"--{flag.name}"
            if flag.kind is bool:
                parser.add_argument(option, dest=flag.attr, default=default,
                                    action=argparse.BooleanOptionalAction, help=flag.help)
            elif flag.kind is list:
                parser.add_argument(option, dest=flag.attr, default=None,
                                    action="append", help=flag.help)
            else:
                parser.add_argument(option, dest=flag.attr, default=default,
                                    type=flag.kind, choices=flag.choices, help=flag.help)

        namespace = parser.parse_args(list(args or []))
        for flag in _FLAGS:
            value = getattr(namespace, flag.attr)
            if flag.kind is list:
                value = list(value) if value is not None else list(
                    _env_default(flag, getattr(self, flag.attr)))
            setattr(self, flag.attr, value)

    def parse_fluentd_log_level(self) -> str:
        """Return the canonical Fluentd log level for ``fluentd_log_level``."""
        level = _FLUENTD_LOG_LEVELS.get(self.fluentd_log_level.lower())
        if level is None:
            raise ConfigError(f"not a valid Fluentd log Level: {self.fluentd_log_level!r}")
        return level

    def _has_valid_buffer_mount_folder(self) -> bool:
        return all(
            ch.isalpha() or ch.isdecimal() or ch in "-_" for ch in self.buffer_mount_folder
        )

    def validate(self) -> None:
        """Normalize and check the configuration, raising ConfigError on problems."""
        if self.interval_seconds < 0:
            self.interval_seconds = 60
        if self.exec_timeout_seconds < 0:
            self.exec_timeout_seconds = 30

        try:
            self.level = parse_log_level(self.log_level)
        except ConfigError as exc:
            raise ConfigError(f"failed to parse log level: {exc}") from exc

        try:
            self.fluentd_log_level = self.parse_fluentd_log_level()
        except ConfigError as exc:
            raise ConfigError(f"failed to parse fluentd log level: {exc}") from exc

        if not _RE_VALID_ID.search(self.id):
            raise ConfigError("ID must be a valid hostname")

        if not self.annot_configmap_name or not _RE_VALID_ANNOTATION.fullmatch(
            self.annot_configmap_name
        ):
            raise ConfigError(f"invalid annotation name: '{self.annot_configmap_name}'")

        if self.buffer_mount_folder and not self._has_valid_buffer_mount_folder():
            raise ConfigError(
                f"invalid fluentd buffer mount folder: /var/log/{self.buffer_mount_folder}"
            )

        if self.annot_status and not _RE_VALID_ANNOTATION.fullmatch(self.annot_status):
            raise ConfigError(f"invalid annotation name: '{self.annot_status}'")

        if self.datasource == "fs" and not self.fs_datasource_dir:
            raise ConfigError("using --datasource=fs requires --fs-dir too")

        if self.meta_key and not self.meta_values:
            raise ConfigError("using --meta-key requires --meta-values too")

        if self.meta_key:
            self.parsed_meta_values = _parse_pairs(
                self.meta_values,
                f"bad metadata: {self.meta_values}, use the k=v,k2=v2... format",
            )
            if not self.parsed_meta_values:
                raise ConfigError("using --meta-key requires --meta-values too")

        if self.datasource == "multimap":
            if not self.label_selector:
                raise ConfigError("using --datasource=multimap requires --label-selector too")
            self.parsed_label_selector = _parse_pairs(
                self.label_selector,
                f"bad label selector: {self.label_selector}, use the k=v,k2=v2... format",
            )