# kdnsaux

This package provides helpers for running a caching dnsmasq instance next to
a cluster DNS server, and for testing that setup end to end.

## Supervising dnsmasq: `kdnsaux.dnsmasq.nanny`

* `extract_dnsmasq_args(cmdline_args)` splits a command line at the first
  `--`. It returns `(before, after)` and drops the `--` itself. When there is
  no `--`, every argument goes into `before`.
* `munge_server(server)` rewrites a `host:port` address into the `host#port`
  form that dnsmasq expects:

  ```python
  from kdnsaux.dnsmasq.nanny import munge_server

  munge_server("2.2.2.2:10053")        # "2.2.2.2#10053"
  munge_server("[2001:db8:3::3]:53")   # "[2001:db8:3::3]#53"
  munge_server("2001:db8:1::1")        # unchanged
  ```

* `Nanny(exec_path, lookup=None)` manages one dnsmasq process.
  * `configure(args, stub_domains, upstream_nameservers, kubedns_server)`
    builds `self.args`. Stub domains become `--server /<domain>/<server>`.
    A server given as a name rather than an IP is resolved first: names
    ending in `cluster.local` are looked up through `kubedns_server`, and all
    others through the system resolver. If the lookup fails, the name is
    kept. Upstream nameservers become `--server <server>`, followed by
    `--no-resolv`.
  * `start()` launches the process and copies its stdout and stderr to the
    log.
  * `wait(timeout)` returns the exit status.
  * `kill()` stops the process. It raises `NannyError` if the process is not
    running.

## dnsmasq cache statistics: `kdnsaux.dnsmasq.metrics`

`MetricsClient(addr, port, timeout=2.0).get_metrics()` sends a `*.bind`
CHAOS TXT query for each `MetricName`: hits, misses, evictions, insertions
and cachesize. It returns a dict that maps each `MetricName` to an integer.
Network errors, a wrong number of answers, a missing TXT record and
non-integer values all raise `MetricsError`.

## Metrics and HTTP routes: `kdnsaux.sidecar`

* `kdnsaux.sidecar.options` defines `DNSProbeOption` and `Options`.
  `new_options()` returns the defaults: dnsmasq at `127.0.0.1:53` polled
  every 5000 ms, and metrics on `0.0.0.0:10054` at `/metrics` in namespace
  `kubedns`.
* `kdnsaux.sidecar.metrics` provides:
  * `Counter` and `Histogram`, plus `exponential_buckets(start, factor, count)`.
  * `Registry`. Its `register` method rejects duplicate names, and its
    `expose` method renders every metric in the Prometheus text format.
  * `Router`, which maps paths to handlers that return a `Response`:
    * `handle` adds a handler for a path;
    * `dispatch` runs the handler for a path, or answers 404;
    * `serve(addr, port)` serves the routes over HTTP in a background
      thread;
    * leaving a `with Router()` block shuts the servers down.
  * `DnsmasqCounters`, which holds one counter per dnsmasq metric plus an
    errors counter.
  * `initialize_metrics(options, registry, router)`, which registers those
    counters, routes the metrics path and `/healthz`, and starts serving.

## End-to-end test support: `kdnsaux.e2e`

* `logger` holds the following:
  * the `Logger` interface and `StandardLogger`, which is backed by
    `logging`;
  * `FatalError`, which the fatal methods raise;
  * `get_logger` and `set_logger`;
  * `log_with_prefix`.
* `options.default_options(base_dir, work_dir)` returns the image names and
  tools used by the other modules.
* `util` holds the sudo and mount helpers: `can_sudo`, `keep_sudo_active`,
  `make_shared_mount` and `umount`.
* `docker.Docker` wraps the `docker` command line: start and stop a managed
  daemon, pull images, run, remove, kill and list containers.
* `cluster.Cluster` runs etcd, an API server and, optionally, a kubelet in
  containers.
* `framework` provides `Framework`, `init_framework` and `get_framework`.
  `Framework` starts background processes whose output goes to log files
  under `<work_dir>/logs`. After a failure, it dumps those logs on tear-down.
* `kubedns.KubeDNS` starts and stops a kube-dns binary and queries it. Each
  answer record is returned as tab-separated text.
* `harness.Harness` writes the `stubDomains` and `upstreamNameservers`
  configuration files. It also waits for an expected line in the arguments
  file that a mock dnsmasq records.

`kdnsaux.logutil.log_with_prefix(prefix, text)` logs each line of `text` as
`<prefix> | <line>`.

## What is not included

* There is no daemon that polls dnsmasq on an interval and feeds the values
  into `DnsmasqCounters`.
* There are no periodic DNS probes or per-probe health endpoints.
  `DNSProbeOption` only describes one.
* There is no `--version` option handling.
* The package installs no commands. Use it as a library from your own
  program.

## Requirements

You need Python 3.10 or later and `dnspython`. `Nanny` and the `e2e` helpers
start external programs (`dnsmasq`, `docker`, `sudo`, `ip`, `mount`). These
must be installed wherever those parts are used.