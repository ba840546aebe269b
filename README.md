# fluentreload

A library for managing Fluentd configuration that is gathered per namespace.

The package:

- parses Fluentd configuration text into directives and parameters, and
  renders them back to a canonical text form,
- reads and validates the reloader's settings, given as command-line style
  flags or environment variables,
- collects per-namespace configuration from a directory, a fixed sample set,
  or an in-memory model of cluster objects (namespaces, config maps, pods and
  `FluentdConfig` resources),
- writes each namespace's rendered configuration to a file, tracks a hash of
  it, and asks Fluentd to reload gracefully through its RPC endpoint when
  something changed.

It needs only the Python standard library (3.10 or later). Install the
`test` extra to run the tests with pytest.

## Parsing Fluentd configuration

```python
from fluentreload.parser import parse_string, ParseError

fragment = parse_string("""
<filter myapp.access>
  @type record_transformer # inline comment
  <record>
    host_param "#{Socket.gethostname}"
  </record>
</filter>
""")

directive = fragment[0]
directive.name          # "filter"
directive.tag           # "myapp.access"
directive.type          # "record_transformer"
directive.nested[0].param_verbatim("host_param")

print(fragment)         # canonical, indented form, parameters sorted by name
```

- `Directive.param` returns a value with any trailing ` # comment` removed;
  `Directive.param_verbatim` returns it as written.
- `Directive.set_param` adds or changes a parameter, and removes it when
  given an empty value.
- `Directive.clone` and `Fragment.clone` make deep copies.
- `params_from_kv("k1", "v1", "k2", "v2")` builds a parameter mapping from
  alternating names and values; a trailing name without a value is ignored.
- Unbalanced or mismatched tags and parameters outside any directive raise
  `ParseError`.

## Settings

```python
from fluentreload.config import Config, ConfigError

cfg = Config()
cfg.parse_flags(["--datasource", "fs", "--fs-dir", "/etc/fluentd/namespaces"])
try:
    cfg.validate()
except ConfigError as exc:
    print(f"bad settings: {exc}")
```

Each flag may also be given through an environment variable named
`CONFIG_RELOADER_` followed by the flag name in upper case with dashes turned
into underscores, for example `CONFIG_RELOADER_LOG_LEVEL`. Flags on the
command line take precedence. Bad flags raise `ConfigError`.

`validate` normalises values where that is safe: a negative `--interval`
becomes 60 seconds and a negative `--exec-timeout` becomes 30. It sets
`Config.level` to a `logging` level and canonicalises `fluentd_log_level`.
For other mistakes it raises `ConfigError`, for example:

- an unknown log level or Fluentd log level,
- an ID that is not a valid host name,
- an invalid annotation name or buffer mount folder,
- `--datasource=fs` without `--fs-dir`,
- `--meta-key` without usable `--meta-values` in the `k=v,k2=v2` form,
- `--datasource=multimap` without `--label-selector`.

## Data sources

- `fluentreload.datasource.FileSystemDatasource` treats every `*.conf` file
  in a directory as one namespace's configuration and writes error statuses
  to `ns-<namespace>.status` files.
- `fluentreload.datasource.FakeDatasource` returns a fixed sample set.
- `fluentreload.kube_informer.KubeInformerDatasource` discovers namespaces in
  a `fluentreload.objects.Cluster` model and reads their configuration
  through `ConfigMapDS`, `FluentdConfigDS` or `MigrationModeDS` from
  `fluentreload.kubedatasource`. Statuses are stored as a namespace
  annotation.

```python
from fluentreload.config import Config
from fluentreload.controller import OnDemandUpdater
from fluentreload.kube_informer import KubeInformerDatasource
from fluentreload.objects import Cluster, ConfigMap, Namespace

cluster = Cluster([
    Namespace("team-a"),
    ConfigMap("fluentd-config", "team-a",
              data={"fluent.conf": "<match **>\n@type stdout\n</match>"}),
])
source = KubeInformerDatasource.create(Config(), cluster, OnDemandUpdater())
[ns.name for ns in source.get_namespaces()]   # ["team-a"]
```

`fluentreload.objects.parse_selector` parses label selectors such as
`a=b,c!=d,e in (f,g),!h`.

## The control loop

`fluentreload.controller.Controller` runs the main loop. Each pass:

1. fetches the namespaces from the datasource,
2. renders each one with `Generator` to `ns-<namespace>.conf` in the output
   directory (namespaces whose configuration does not parse get an error
   status instead),
3. records changed hashes,
4. calls `fluentreload.reloader.Reloader` when anything changed or the
   number of namespaces differs from the last pass,
5. removes rendered files of namespaces that are gone.

`Controller.run_once` runs one pass; `Controller.run` loops until a
`threading.Event` is set. `FixedTimeUpdater` wakes the loop after a fixed
interval, and `OnDemandUpdater` wakes it when `notify` is called. With the
`fake` or `fs` datasource the reloader does nothing.

## What the package does not do

- It has no command to run; the loop is started from your own code.
- It does not connect to a live Kubernetes API server. `Cluster` is an
  in-memory store that you fill with `Cluster.add`, and resource change
  handlers (`handle_change`) must be called by you.
- The `Generator` only re-renders each namespace's configuration as parsed;
  it applies no templates and does not run Fluentd to validate the result.