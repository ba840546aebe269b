import pytest

from fluentreload.config import Config
from fluentreload.kubedatasource import (
    ConfigMapDS,
    FluentdConfigDS,
    MigrationModeDS,
    NamespaceNotConfigured,
    are_labels_in_allow_list,
)
from fluentreload.objects import Cluster, ConfigMap, FluentdConfig, Namespace

ANNOT = "logging.csp.vmware.com/fluentd-configmap"
CONF = "<match **>\n@type stdout\n</match>"


class Counter:
    def __init__(self):
        self.count = 0

    def notify(self):
        self.count += 1


def make_cluster():
    return Cluster([
        Namespace("plain"),
        Namespace("annotated", annotations={ANNOT: "custom-map"}),
        ConfigMap("fluentd-config", "plain", data={"fluent.conf": CONF}),
        ConfigMap("custom-map", "annotated", data={"fluent.conf": "A"}),
        ConfigMap("fluentd-config", "annotated", data={"fluent.conf": "B"}),
    ])


def test_default_configmap_name_used():
    ds = ConfigMapDS(Config(), make_cluster(), Counter())
    assert ds.get_fluentd_config("plain") == CONF


def test_annotation_overrides_default():
    ds = ConfigMapDS(Config(), make_cluster(), Counter())
    assert ds.detect_configmap_name("annotated") == "custom-map"
    assert ds.get_fluentd_config("annotated") == "A"


def test_not_configured_without_default():
    cfg = Config(default_configmap_name="")
    ds = ConfigMapDS(cfg, make_cluster(), Counter())
    with pytest.raises(NamespaceNotConfigured) as info:
        ds.detect_configmap_name("plain")
    assert str(info.value) == "Namespace 'plain' is not configured"
    assert ds.get_fluentd_config("plain") == ""


def test_unknown_namespace_raises():
    ds = ConfigMapDS(Config(), make_cluster(), Counter())
    with pytest.raises(LookupError):
        ds.get_fluentd_config("missing")


def test_missing_entry_gives_empty_config():
    cluster = Cluster([Namespace("ns"),
                       ConfigMap("fluentd-config", "ns", data={"other": "x"})])
    ds = ConfigMapDS(Config(), cluster, Counter())
    assert ds.get_fluentd_config("ns") == ""


def multimap_config():
    return Config(datasource="multimap", label_selector="app=fluentd",
                  parsed_label_selector={"app": "fluentd"})


def test_multimap_joins_sorted_by_name():
    cluster = Cluster([
        Namespace("ns"),
        ConfigMap("b", "ns", labels={"app": "fluentd"}, data={"fluent.conf": "second"}),
        ConfigMap("a", "ns", labels={"app": "fluentd"}, data={"fluent.conf": "first"}),
        ConfigMap("c", "ns", labels={"app": "other"}, data={"fluent.conf": "skip"}),
    ])
    ds = ConfigMapDS(multimap_config(), cluster, Counter())
    assert ds.get_fluentd_config("ns") == "first\nsecond"


def test_multimap_missing_entry_gives_empty():
    cluster = Cluster([
        Namespace("ns"),
        ConfigMap("a", "ns", labels={"app": "fluentd"}, data={"fluent.conf": "first"}),
        ConfigMap("b", "ns", labels={"app": "fluentd"}, data={}),
    ])
    ds = ConfigMapDS(multimap_config(), cluster, Counter())
    assert ds.get_fluentd_config("ns") == ""


def test_handle_change_by_name():
    counter = Counter()
    ds = ConfigMapDS(Config(), make_cluster(), counter)
    assert ds.handle_change(ConfigMap("fluentd-config", "plain")) is True
    assert ds.handle_change(ConfigMap("unrelated", "plain")) is False
    assert ds.handle_change(ConfigMap("fluentd-config", "missing")) is False
    assert ds.handle_change(object()) is False
    assert counter.count == 1


def test_handle_change_respects_namespace_filter():
    counter = Counter()
    ds = ConfigMapDS(Config(namespaces=["annotated"]), make_cluster(), counter)
    assert ds.handle_change(ConfigMap("fluentd-config", "plain")) is False
    assert ds.handle_change(ConfigMap("custom-map", "annotated")) is True
    assert counter.count == 1


def test_handle_change_multimap_labels():
    counter = Counter()
    ds = ConfigMapDS(multimap_config(), Cluster([Namespace("ns")]), counter)
    assert ds.handle_change(ConfigMap("x", "ns")) is False
    assert ds.handle_change(ConfigMap("x", "ns", labels={"app": "other"})) is False
    assert ds.handle_change(ConfigMap("x", "ns", labels={"app": "fluentd", "k": "v"})) is True
    assert counter.count == 1


def test_are_labels_in_allow_list():
    assert are_labels_in_allow_list({"a": "1"}, {})
    assert are_labels_in_allow_list({"a": "1"}, {"a": "1", "b": "2"})
    assert not are_labels_in_allow_list({"a": "1"}, {"a": "2"})
    assert not are_labels_in_allow_list({"c": "1"}, {"a": "1"})


def test_is_ready_uses_callable():
    ds = ConfigMapDS(Config(), Cluster(), Counter(), ready=lambda: False)
    assert ds.is_ready() is False
    assert ConfigMapDS(Config(), Cluster(), Counter()).is_ready() is True


def fd_cluster():
    return Cluster([
        Namespace("ns"),
        FluentdConfig("zeta", "ns", fluentconf="Z"),
        FluentdConfig("alpha", "ns", fluentconf="A"),
        FluentdConfig("alpha", "other", fluentconf="O"),
        ConfigMap("fluentd-config", "ns", data={"fluent.conf": "CM"}),
    ])


def test_fluentd_config_sorted_and_scoped():
    ds = FluentdConfigDS(Config(datasource="crd"), fd_cluster(), Counter())
    assert ds.get_fluentd_config("ns") == "A\nZ"
    assert ds.get_fluentd_config("empty") == ""


def test_fluentd_config_handle_change():
    counter = Counter()
    ds = FluentdConfigDS(Config(namespaces=["ns"]), fd_cluster(), counter)
    assert ds.handle_change(FluentdConfig("x", "other")) is False
    assert ds.handle_change(FluentdConfig("x", "ns")) is True
    unfiltered = FluentdConfigDS(Config(), fd_cluster(), counter)
    assert unfiltered.handle_change(FluentdConfig("x", "other")) is True
    assert counter.count == 2


def test_migration_mode_concatenates():
    ds = MigrationModeDS.create(Config(), fd_cluster(), Counter())
    assert ds.get_fluentd_config("ns") == "CM\nA\nZ"
    assert ds.is_ready() is True


def test_migration_mode_ready_requires_both():
    cfg = Config()
    cluster = fd_cluster()
    ds = MigrationModeDS(FluentdConfigDS(cfg, cluster, Counter(), ready=lambda: False),
                         ConfigMapDS(cfg, cluster, Counter()))
    assert ds.is_ready() is False