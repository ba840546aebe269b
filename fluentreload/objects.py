"""In-memory model of the cluster objects the reloader reads."""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

_KEY = r"[A-Za-z0-9](?:[-A-Za-z0-9_./]*[A-Za-z0-9])?"
_VALUE = r"(?:[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?)?"
_RE_SET = re.compile(rf"({_KEY})\s+(in|notin)\s*\(([^()]*)\)")
_RE_EQUALITY = re.compile(rf"({_KEY})\s*(==|!=|=)\s*({_VALUE})")
_RE_EXISTS = re.compile(rf"(!?)\s*({_KEY})")
_RE_VALUE = re.compile(_VALUE)


class SelectorError(ValueError):
    """Raised when a label selector cannot be parsed."""


class _Operator(Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    DOES_NOT_EXIST = "!"


@dataclass(frozen=True)
class _Requirement:
    key: str
    operator: _Operator
    values: tuple[str, ...] = ()

    def _matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator is _Operator.EXISTS:
            return present
        if self.operator is _Operator.DOES_NOT_EXIST:
            return not present
        if self.operator in (_Operator.EQUALS, _Operator.IN):
            return present and labels[self.key] in self.values
        return not present or labels[self.key] not in self.values


@dataclass(frozen=True)
class LabelSelector:
    """A conjunction of label requirements; an empty selector matches everything."""

    requirements: tuple[_Requirement, ...] = ()

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return all(req._matches(labels) for req in self.requirements)


def _split_requirements(text: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise SelectorError(f"unbalanced parentheses in selector: {text!r}")
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    if depth != 0:
        raise SelectorError(f"unbalanced parentheses in selector: {text!r}")
    parts.append("".join(current))
    return parts


def _parse_requirement(text: str) -> _Requirement:
    piece = text.strip()
    if not piece:
        raise SelectorError("empty requirement in selector")

    match = _RE_SET.fullmatch(piece)
    if match:
        values = tuple(value.strip() for value in match.group(3).split(","))
        if not any(values) or not all(_RE_VALUE.fullmatch(v) for v in values):
            raise SelectorError(f"invalid value set in requirement: {piece!r}")
        operator = _Operator.IN if match.group(2) == "in" else _Operator.NOT_IN
        return _Requirement(match.group(1), operator, values)

    match = _RE_EQUALITY.fullmatch(piece)
    if match:
        operator = _Operator.NOT_EQUALS if match.group(2) == "!=" else _Operator.EQUALS
        return _Requirement(match.group(1), operator, (match.group(3),))

    match = _RE_EXISTS.fullmatch(piece)
    if match:
        operator = _Operator.DOES_NOT_EXIST if match.group(1) else _Operator.EXISTS
        return _Requirement(match.group(2), operator)

    raise SelectorError(f"invalid requirement in selector: {piece!r}")


def parse_selector(text: str) -> LabelSelector:
    """Parse a selector such as ``a=b,c!=d,e in (f,g),!h``."""
    if not text.strip():
        return LabelSelector()
    return LabelSelector(tuple(_parse_requirement(p) for p in _split_requirements(text)))


SelectorLike = Union[LabelSelector, Mapping[str, str], None]


def _as_selector(selector: SelectorLike) -> LabelSelector:
    if selector is None:
        return LabelSelector()
    if isinstance(selector, LabelSelector):
        return selector
    return LabelSelector(
        tuple(_Requirement(k, _Operator.EQUALS, (v,)) for k, v in selector.items())
    )


@dataclass
class Namespace:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class ConfigMap:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class Volume:
    name: str
    empty_dir: bool = False


@dataclass
class VolumeMount:
    name: str
    mount_path: str
    sub_path: str = ""


@dataclass
class Container:
    name: str
    image: str = ""
    volume_mounts: list[VolumeMount] = field(default_factory=list)


@dataclass
class ContainerStatus:
    name: str
    container_id: str = ""


@dataclass
class Pod:
    name: str
    namespace: str
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    node_name: str = ""
    containers: list[Container] = field(default_factory=list)
    volumes: list[Volume] = field(default_factory=list)
    container_statuses: list[ContainerStatus] = field(default_factory=list)


@dataclass
class FluentdConfig:
    """A namespaced resource holding a fluent.conf fragment."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    fluentconf: str = ""


def _listing(store: dict[tuple[str, str], Any], namespace: str | None,
             selector: LabelSelector) -> list[Any]:
    return [
        copy.deepcopy(obj)
        for key, obj in sorted(store.items())
        if (namespace is None or key[0] == namespace) and selector.matches(obj.labels)
    ]


class Cluster:
    """A store of namespaces, config maps, pods and fluentd configs.

    Objects are copied on the way in and out, so callers cannot change the
    store except through ``add`` and ``update_namespace``.
    """

    def __init__(self, objects: Iterable[Any] = ()) -> None:
        self._namespaces: dict[str, Namespace] = {}
        self._configmaps: dict[tuple[str, str], ConfigMap] = {}
        self._pods: dict[tuple[str, str], Pod] = {}
        self._fluentd_configs: dict[tuple[str, str], FluentdConfig] = {}
        for obj in objects:
            self.add(obj)

    def add(self, obj: Any) -> None:
        """Insert or replace an object, keyed by its namespace and name."""
        stored = copy.deepcopy(obj)
        if isinstance(obj, Namespace):
            self._namespaces[obj.name] = stored
        elif isinstance(obj, ConfigMap):
            self._configmaps[(obj.namespace, obj.name)] = stored
        elif isinstance(obj, Pod):
            self._pods[(obj.namespace, obj.name)] = stored
        elif isinstance(obj, FluentdConfig):
            self._fluentd_configs[(obj.namespace, obj.name)] = stored
        else:
            raise TypeError(f"unsupported object type: {type(obj).__name__}")

    def namespaces(self, selector: SelectorLike = None) -> list[Namespace]:
        chosen = _as_selector(selector)
        return [
            copy.deepcopy(ns)
            for name, ns in sorted(self._namespaces.items())
            if chosen.matches(ns.labels)
        ]

    def get_namespace(self, name: str) -> Namespace:
        try:
            return copy.deepcopy(self._namespaces[name])
        except KeyError:
            raise KeyError(f"namespace {name!r} not found") from None

    def update_namespace(self, namespace: Namespace) -> Namespace:
        """Replace an existing namespace; raise KeyError if it does not exist."""
        if namespace.name not in self._namespaces:
            raise KeyError(f"namespace {namespace.name!r} not found")
        self._namespaces[namespace.name] = copy.deepcopy(namespace)
        return copy.deepcopy(namespace)

    def configmaps(self, namespace: str | None = None,
                   selector: SelectorLike = None) -> list[ConfigMap]:
        return _listing(self._configmaps, namespace, _as_selector(selector))

    def get_configmap(self, namespace: str, name: str) -> ConfigMap:
        try:
            return copy.deepcopy(self._configmaps[(namespace, name)])
        except KeyError:
            raise KeyError(f"configmap {namespace}/{name} not found") from None

    def pods(self, namespace: str | None = None) -> list[Pod]:
        return _listing(self._pods, namespace, LabelSelector())

    def fluentd_configs(self, namespace: str | None = None) -> list[FluentdConfig]:
        return _listing(self._fluentd_configs, namespace, LabelSelector())