# layersnap

Building blocks for tools that build container images one layer at a time.
The package has no third-party dependencies. It runs on POSIX systems only,
because user and group lookup uses the `pwd` and `grp` modules.

## Modules

- `layersnap.layered_map`: `LayeredMap` records, for each layer, the files
  it adds (path to hash) and deletes. It detects which files changed since
  the last committed layer and computes a SHA-256 key for the top layer.
- `layersnap.command_util`: the path and environment rules of build
  instructions. It covers `$VAR` / `${VAR}` expansion with quoting and
  escapes, wildcard matching of sources, destination paths for copied files
  and downloaded URLs, remote-URL detection, merging `ENV` values into an
  environment list, and resolving `--chown` values to numeric uid and gid.
- `layersnap.timing`: sums the time spent in named categories and reports
  it as text or JSON.
- `layersnap.logsetup`: sets the root logger's level and output format
  (`text`, `color` or `json`).

## Installation

```
pip install layersnap
```

## Examples

### Tracking layers

```python
import hashlib
from pathlib import Path

from layersnap.layered_map import LayeredMap

def file_hash(path):
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()

layers = LayeredMap(file_hash)
layers.snapshot()                      # start a layer; add() needs one
if layers.check_file_change("/etc/hostname"):
    layers.add("/etc/hostname")        # reuses the hash just computed
layers.add_delete("/tmp/old-file")
print(layers.key())                    # hex SHA-256 of the top layer
print(layers.get_current_paths())      # paths including the top layer
```

`snapshot()` commits the top layer into the current image and opens a new
one. `add()` and `add_delete()` raise `RuntimeError` when no layer has been
opened. `add()` also raises `RuntimeError` when the hasher fails.

### Expanding variables and working out destinations

```python
from layersnap.command_util import (
    KeyValuePair,
    destination_filepath,
    get_user_group,
    is_src_remote_file_url,
    match_sources,
    resolve_environment_replacement,
    update_config_env,
    url_destination_filepath,
)

resolve_environment_replacement("/$a/b/", ["a=/path/"], True)    # "/path/b/"
resolve_environment_replacement("\\$foo", ["foo=/path/"], True)  # "$foo"

destination_filepath("context/foo", "foo", "/")                  # "/foo"
url_destination_filepath("https://something/$foo.tar.gz", "/foo/", "/test",
                         ["foo=bar"])                            # "/foo/bar.tar.gz"

match_sources(["pkg/*", "/root/dir?"], ["pkg/a", "pkg/b/d/", "root/dir1"])
# ["pkg/a", "/root/dir1"]

is_src_remote_file_url("http://example.com/foobar.tar.gz")       # True
is_src_remote_file_url("/is/a/filepath")                         # False

update_config_env(
    [KeyValuePair("alice", "nice"), KeyValuePair("bob", "cool")],
    ["bob=used", "more=test"],
    [],
)  # ["bob=cool", "more=test", "alice=nice"]

get_user_group("", [])                                           # (-1, -1)
```

Whether a destination counts as a directory depends on the local
filesystem. An existing directory counts, and so does a missing path that
ends in `/` or is `.`.

Malformed input raises `ValueError`. This covers unterminated quotes, bad
`${...}` substitutions, bad glob patterns, unknown users that are not
numeric uids, and groups that cannot be resolved when no fallback to the
uid is allowed.

`lookup_user()` returns a `User` with the account's details. A numeric uid
with no account becomes `User(uid=..., home_dir="/")`.
`uid_and_gid_from_string("user:group", fallback_to_uid)` returns
`(uid, gid)`.

### Timing

```python
from layersnap import timing

timer = timing.start("Hashing files")
...
timing.DEFAULT_RUN.stop(timer)
print(timing.summary())   # e.g. "Hashing files: 1.5ms\n", one line per category
print(timing.to_json())   # {"Hashing files":1500000}, nanoseconds per category
```

A separate `timing.TimedRun(categories=None, clock=...)` can be used
instead of the default run. `timing.format_duration(timedelta)` renders
values such as `3s`, `1ms` or `1h2m3.5s`.

### Logging

```python
from layersnap.logsetup import configure

configure("debug", "json", False)   # returns the handler installed on the root logger
```

Levels are `panic`, `fatal`, `error`, `warn`/`warning`, `info`, `debug` and
`trace`. An unknown level or format raises `ValueError`.

## What it does not do

The package keeps the bookkeeping for layers but does not produce them:

- It does not walk a filesystem to find changes.
- It does not follow symlinks to decide which paths belong in a layer.
- It does not write layer tarballs or whiteout entries.
- It does not read build files, fetch base images or talk to registries
  and storage buckets.
- It has no command-line program.

## Running the tests

```
pip install -e .[test]
pytest
```