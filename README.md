# cbdcp

Building blocks for an application that consumes a Couchbase DCP (Database
Change Protocol) stream and shares the bucket's vBuckets across a group of
consumers.

## What is in the package

- `cbdcp.loader` — `load_config` reads a YAML configuration and expands
  `${VAR}` placeholders from the environment; `format_configuration` logs and
  returns the configuration as compact JSON with `password` masked as `*****`;
  `SimpleConsumer` turns a plain callback into a `Consumer` and remembers the
  latest offset per vBucket.
- `cbdcp.models` — event types (`DcpMutation`, `DcpDeletion`,
  `DcpExpiration`, `DcpSeqNoAdvanced`, `DcpStreamEnd`), `Offset`,
  `VbIdRange`, `CheckpointDocument` (with `to_dict` / `from_dict`),
  `Identity` (JSON round trip), `EventHandler` life-cycle hooks and the
  abstract `Consumer`, `LeaderElector` and `LeaderHandler`.
- `cbdcp.membership` — `StaticMembership`, `DynamicMembership`,
  `HaMembership`, `StatefulSetMembership` (member number from the ordinal at
  the end of a pod hostname such as `connector-2`), and a small thread-based
  `EventBus` on which membership changes are published.
- `cbdcp.vbucket_discovery` — `create_membership` builds a membership from
  its type name (`static`, `dynamic`, `kubernetesHa`,
  `kubernetesStatefulSet`); `VBucketDiscovery` splits the vBuckets into
  contiguous shares and returns this member's share.
- `cbdcp.offsets` — `OffsetLatestSeqNoInit` picks where a stream stops:
  the vBucket's current seqno in `finite` mode, `2**64 - 1` otherwise.
- `cbdcp.metadata` — `FileMetadata` keeps checkpoints in one JSON file;
  `ReadOnlyMetadata` loads through another store but never saves or clears.
- `cbdcp.discovery` — `ServiceDiscovery` keeps the known group members,
  pings them, and as leader numbers them by join time and publishes its own
  place on the bus.
- `cbdcp.rpc` — `RpcServer` and `RpcClient` carry the leader/follower calls
  (ping, register, rebalance) as JSON lines over TCP.
- `cbdcp.tracing` — pluggable request tracing; `register_request_tracer`
  installs one tracer (a second raises `TracerAlreadyRegisteredError`),
  `reset_request_tracer` goes back to the in-memory `NoopTracer`.
- `cbdcp.logger` — printf-style `Logger`; `init_default_logger(level)`
  writes JSON lines to stderr.
- `cbdcp.helpers` — size strings, list chunking, `retry`, and the
  `is_metadata` check for connector and transaction keys.
- `cbdcp.concurrent_map` — `ConcurrentMap`, a lock-guarded dictionary with
  `store_if` and JSON conversion.

## Installation

```
pip install cbdcp
```

## Loading a configuration

```yaml
hosts: ["localhost:8091"]
username: ${DCP_USERNAME}
password: ${DCP_PASSWORD}
bucketName: ${DCP_BUCKET_NAME}
```

```python
from cbdcp.loader import load_config, format_configuration

config = load_config("config.yml")     # a plain dict
print(format_configuration(config))    # "password" is shown as *****
```

A placeholder whose variable is not set stays as written.

## Picking vBuckets for a member

```python
from cbdcp.membership import EventBus
from cbdcp.vbucket_discovery import VBucketDiscovery, create_membership

membership = create_membership("static", EventBus(), member_number=2, total_members=3)
discovery = VBucketDiscovery(membership, 1024, "static")
vbuckets = discovery.get()    # [342, 343, ..., 682]
```

Earlier members take one extra vBucket when the count does not divide
evenly. `discovery.metric` records the member numbers and the range.

## Handling events

```python
from cbdcp.loader import SimpleConsumer
from cbdcp.models import DcpMutation

def listener(ctx):
    if isinstance(ctx.event, DcpMutation):
        print("mutated", ctx.event.key, ctx.event.is_created())
    ctx.ack()

consumer = SimpleConsumer(listener)
```

## Checkpoint files

```python
from cbdcp.metadata import FileMetadata

store = FileMetadata("checkpoints.json")
state, existed = store.load(range(4), "bucket-uuid")   # empty checkpoints when the file is missing
store.save(state.to_dict(), {}, "bucket-uuid")
```

## Size strings

```python
from cbdcp.helpers import resolve_union_int_or_string_value

resolve_union_int_or_string_value("10mb")    # 10485760
resolve_union_int_or_string_value("500kb")   # 512000
resolve_union_int_or_string_value("123")     # 123
```

The units `KB`, `MB` and `GB` are accepted in any case, spaces may stand
before them, and a comma may stand in for the decimal point (`"5,5mb"`).
Other units raise `ValueError`.

## What the package does not do

The package does not connect to a Couchbase cluster. It opens no DCP
streams, runs no checkpoint schedule, serves no metrics or HTTP API, and
has no command-line program. There is no checkpoint store or membership
kept in Couchbase itself (`create_membership` rejects `couchbase`), and no
Kubernetes client or leader election: `LeaderElector` and `LeaderHandler`
are interfaces for you to implement.

## Running the tests

```
pip install -e ".[test]"
pytest
```