# dnsrelay

`dnsrelay` is the core of a pluggable DNS forwarder. It reads a YAML or JSON
configuration, builds the plugins the configuration names from a registry of
plugin types, serves a small HTTP API, and coordinates shutdown. Alongside
that it offers the building blocks plugins are built from: expiring caches,
LRU caches, sharded maps, per-client rate limiting, domain and IP-range
matchers, a hosts table, DNS message helpers and a per-query context.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running

```
dnsrelay start -c config.yaml -d /path/to/workdir
```

`-d` changes the working directory first. Without `-c`, `config.json`,
`config.yaml` or `config.yml` is looked up in the current directory. The
process runs until it receives SIGINT or SIGTERM, or until a part of it
reports a fatal error; the exit status is then 0 or 1.

```
dnsrelay version
```

prints the version and exits.

## Configuration

```yaml
log:
  level: info        # debug, info, warn, error, dpanic, panic, fatal
  file: ""           # empty means stderr
  production: false  # true for JSON log lines

include:
  - other_config.yaml   # loaded before this file's plugins, up to 8 levels deep

plugins:
  - tag: my_plugin
    type: some_type
    args: {}

api:
  http: "127.0.0.1:8080"   # empty disables the HTTP API
```

Keys are case-insensitive and unknown keys are rejected. Scalars are
converted loosely: numbers become strings where a string is expected,
`"true"` becomes `True`, and a single value becomes a one-element list.
`dnsrelay.config.load_config` and `dnsrelay.config.config_from_dict` do the
loading.

## Plugins

A plugin type is registered with `dnsrelay.plugin.reg_new_plugin_func(typ,
init_func, args_type)`. `args_type()` returns the default arguments object,
typically a dataclass instance; the `args` from the configuration are decoded
into it by `dnsrelay.plugin.decode_args`. `init_func(bp, args)` then builds
the plugin. The `BP` handle carries the plugin's `tag`, a `logger` and the
server `m`; `bp.reg_api(wsgi_app)` mounts a WSGI application under
`/plugins/<tag>`.

Plugins registered with `reg_new_preset_plugin_func(tag, f)` are built at
start-up before those from the configuration. A plugin without a tag gets a
generated one; duplicated tags and unknown types are errors. On shutdown
every plugin with a `close()` method is closed.

`dnsrelay.server.Mosdns` is the server instance. `Mosdns.for_test(plugins)`
gives an instance with a silent logger for tests. The instance is itself
the WSGI application of the HTTP API, which answers `GET /metrics` with the
start time and plugin count and forwards `/plugins/<tag>/...` to mounted
applications; any other request gets a page listing the available routes.

## Building blocks

Domain matching with `domain:`, `full:`, `regexp:` and `keyword:` rules.
`match` returns the stored value or raises `KeyError`:

```python
from dnsrelay.domain_matcher import new_domain_mix_matcher

m = new_domain_mix_matcher()          # rules without a prefix are "domain:"
m.add("example.com", None)
m.add("full:exact.example.org", None)
m.match("www.example.com.")           # None; an unknown name raises KeyError
```

IP ranges:

```python
import io
from dnsrelay.netlist import IPList, load_from_reader

ips = IPList()
load_from_reader(ips, io.StringIO("192.168.0.0/16\n10.0.0.1\n"))
ips.sort()                            # required before contains()
ips.contains("192.168.3.4")           # True
```

Hosts table:

```python
import io
from dnsrelay.domain_matcher import MixMatcher, load_from_text_reader
from dnsrelay.hosts import Hosts, parse_ips

m = MixMatcher()
m.set_default_matcher("domain")
load_from_text_reader(m, io.StringIO("dns.google 8.8.8.8 8.8.4.4\n"), parse_ips)
hosts = Hosts(m)
ipv4, ipv6 = hosts.lookup("dns.google.")
```

`Hosts.lookup_msg` answers a `dns.message.Message` A or AAAA query directly.

Other modules:

- `dnsrelay.cache`: `Cache`, an expiring cache with a background cleaner.
- `dnsrelay.lru`, `dnsrelay.concurrent_lru`: `LRU`, `ConcurrentLRU`, `ShardedLRU`.
- `dnsrelay.concurrent_map`: `ConcurrentMap`, a sharded thread-safe map.
- `dnsrelay.linkedlist`: the doubly linked list behind the LRU.
- `dnsrelay.rate_limiter`: `RateLimiter` and `TokenBucket`, per-client limits.
- `dnsrelay.safe_close`: `SafeClose`, coordinated shutdown of worker threads.
- `dnsrelay.dnsutils`: TTL helpers, `fake_soa` and `gen_empty_reply`.
- `dnsrelay.ptr`: `parse_ptr_qname`, the address held in a PTR query name.
- `dnsrelay.netio`: DNS message framing over TCP streams and UDP datagrams.
- `dnsrelay.query_context`: `Context`, the per-query state, and `reg_key`.
- `dnsrelay.logger`: `LogConfig`, `new_logger` and the process-wide logger.

## What it does not do

No plugin types come with the package, so a configuration can only name
types that the caller has registered; on its own, `dnsrelay start` loads its
configuration, serves the HTTP API and waits. It does not listen for DNS
queries, forward them upstream, or install itself as a system service. The
`/metrics` route reports only the start time and the number of plugins.