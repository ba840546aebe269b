"""Parse, render, track and reload Fluentd configurations gathered per namespace."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "parser",
    "reloader",
    "objects",
    "datasource",
    "controller",
    "kubedatasource",
    "kube_informer",
]