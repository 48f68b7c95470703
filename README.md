# rsprof

Building blocks for a sampling CPU and heap profiler, plus command-line tools
for looking at recorded profile databases.

A traced process writes CPU samples, allocations and deallocations, each with
a stack of return addresses, into a ring buffer in shared memory. This package
defines that buffer's binary layout, can write to it and read from it,
aggregates heap events per call site, picks the stack frame that a sample
should be charged to, and formats reports. It also lists and queries SQLite
profile databases.

## Installation

```
pip install .
```

No third-party packages are needed. To run the tests:

```
pip install ".[test]"
pytest
```

## Command line

### Listing profiles

```
rsprof list --dir .
```

Finds files named `rsprof.*.db` in the directory (`-d`/`--dir`, default the
current directory), reads their `meta`, `checkpoints` and `cpu_samples`
tables, and prints file name, process name, recording length and total CPU
sample count, sorted by the recorded start time, newest first. Files that
cannot be opened as databases are skipped; missing metadata shows as
`unknown` or `0`.

### Querying a profile

```
rsprof query profile.db "SELECT key, value FROM meta"
```

Runs one SQL statement on an existing database and prints the result
tab-separated with a header row. `NULL` is printed for nulls, floats with six
decimals, and blobs as `<blob N bytes>`.

### Attaching to a process

```
rsprof --pid 12345
rsprof --process my_service
```

`--pid`/`-p` and `--process`/`-P` (substring match on the process name, like
`pgrep`) are mutually exclusive; one of them is required when no subcommand is
given. A name matching several processes is reported with the list of
matches. Other options are accepted and validated: `--interval`/`-i`
(default `1s`), `--duration`/`-d`, `--output`/`-o`, `--quiet`/`-q` and
`--cpu-freq` (1 to 10000 Hz, default 99). Durations take forms such as `30s`,
`5m`, `2h`, `1h30m` or a bare number of seconds.

Recording itself is not performed; see below.

### Exit codes

| Code | Meaning |
|------|---------|
| 0 | success |
| 1 | general error, including rejected option values and unsupported recording |
| 2 | invalid arguments (also used by the argument parser for unknown options) |
| 3 | process not found, or more than one process matches |
| 4 | permission denied |
| 5 | missing debug info |
| 6 | database error |

Errors are printed to standard error as `Error: <message>`.

## Library

- `rsprof.tracebuf` — the ring-buffer format: `RingHeader`, `EventRecord`
  (with `pack`/`unpack`), `EventType`, `buffer_size`, and `RingBufferWriter`,
  which records events into any writable buffer or, through
  `RingBufferWriter.create()`, into a shared file (default
  `/dev/shm/rsprof-trace`). `walk_frame_pointers` follows a chain of saved
  frame pointers given a word-reading function, and `find_code_segment`
  finds the first private executable mapping in maps text.
- `rsprof.shm` — `ShmTraceSampler` validates a buffer's header, then
  `poll_events()` reads events written since the last poll, keeps per-site
  `HeapStats` keyed by `stack_key`, tracks live allocations, and collects
  `CpuSample`s (`read_cpu_samples()` hands them over and clears them).
  `ShmTraceSampler.open(pid, path)` maps a shared file read-only.
- `rsprof.attribution` — `find_user_frame(stack, resolve)` chooses the first
  frame outside allocator, standard-library, runtime and profiler code,
  moving to the caller of small utility helpers. `resolve` is any function
  from an address to a `Location`.
- `rsprof.report` — `CpuEntry`/`HeapEntry` rows rendered as tables, JSON or
  CSV (`render_cpu_table`, `render_heap_json`, …), and the helpers
  `format_bytes`, `format_count`, `format_function`, `simplify_path` and
  `format_location`.
- `rsprof.profiles` — `read_profile_info`, `find_profiles`,
  `most_recent_profile`, `render_profile_list` and `run_query`.
- `rsprof.process` — `ProcessInfo.from_pid`, `find_process_by_name`,
  `sanitize_name`, and `MemoryMaps` for parsing `/proc/<pid>/maps` and
  computing a binary's load offset.
- `rsprof.errors` — `RsprofError` and its subclasses, each carrying an
  `ExitCode`.

## What this package does not do

- It does not record profiles. `rsprof --pid …` identifies the process and
  then stops with an "Unsupported platform" error: there is no symbol
  resolution from debug information and nothing that writes profile
  databases.
- It has no perf-event or eBPF sampling; events come only from the
  shared-memory ring buffer.
- There is no `top` command and no interactive viewer. The report renderers
  in `rsprof.report` work on entries you supply; `rsprof query` gives direct
  SQL access to a database.

## Demo workload

```
rsprof-demo
rsprof-demo --ticks 2000
```

Runs a request-processing loop with deliberate problems: a slow hash in the
request path, a validator that keeps a bloated record of every request, an
audit log whose flush archives copies instead of releasing them, and a
metrics hook doing needless statistics. It prints its PID and a progress line
every 500 requests and runs until interrupted, or for `--ticks` requests.