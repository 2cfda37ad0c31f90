# critools

Helpers for checking container runtimes that implement the Container Runtime
Interface (CRI), and for collecting benchmark results. The package is made of
these modules:

- `critools.config`: the client configuration file
- `critools.results`: collection of lifecycle benchmark samples and JSON reports
- `critools.context`: a test context built from command-line flags and YAML files
- `critools.cri`: the CRI data model, the service interfaces a runtime client
  provides, and a small `Framework` that holds a client for each test
- `critools.framework`: helpers that create pod sandboxes, containers and
  images through those interfaces, and parse image references
- `critools.validate_images`, `critools.validate_containers`: checks of image
  and container operations
- `critools.logs`: parsing of container log files

Install with `pip install .`. Add `.[test]` to install pytest as well.

## Client configuration

The configuration file is a small YAML mapping:

```yaml
runtime-endpoint: unix:///run/containerd/containerd.sock
image-endpoint: unix:///run/containerd/containerd.sock
timeout: 10
debug: false
pull-image-on-create: false
disable-pull-on-run: false
```

`read_config` rejects any other key with `ConfigError`. It does the same when
`timeout` is not an integer or when a flag is not a boolean. A missing file
raises `OSError`.

```python
from critools.config import read_config, write_config, get_server_config_from_file

config = read_config("/etc/crictl.yaml")
config.debug = True
write_config(config, "/tmp/crictl.yaml")   # comments of the file read are kept

server = get_server_config_from_file("/etc/crictl.yaml", "/usr/local/bin/crictl")
print(server.timeout)                      # a datetime.timedelta
```

`write_config(None, path)` writes a file that holds every option at its default.
When the named file does not exist, `get_server_config_from_file` looks for
`crictl.yaml` in the directory of its second argument. It returns a
`ServerConfiguration`. Any failure there is raised as `ConfigError`.

## Benchmark results

A `LifecycleBenchmarkDatapoint` records one benchmarked lifecycle. It holds the
duration of each operation in nanoseconds. A `LifecycleBenchmarksResultsManager`
gathers datapoints into a `LifecycleBenchmarksResultsSet` on a background
thread:

```python
from critools.results import (
    LifecycleBenchmarkDatapoint,
    LifecycleBenchmarksResultsManager,
    LifecycleBenchmarksResultsSet,
)

results = LifecycleBenchmarksResultsSet(
    operations_names=["CreatePod", "StatusPod", "StopPod", "RemovePod"],
    num_parallel=1,
)
manager = LifecycleBenchmarksResultsManager(results, 60)
channel = manager.start_results_consumer()          # a queue.Queue
channel.put(LifecycleBenchmarkDatapoint(
    sample_index=0, start_time=0, end_time=40,
    operations_durations_ns=[10, 10, 10, 10],
))
channel.put(None)                                    # end of the stream
manager.await_all_results(60)
manager.write_results_file("pod_benchmark_data.json")
```

If a datapoint has the wrong number of durations, the manager logs a warning and
keeps the datapoint. These cases raise `ResultsError`:

- `await_all_results` times out;
- the consumer waits longer than its own timeout for the next result;
- the report is written while the consumer is still running.

The report uses the keys `operationsNames`, `numParallel` and `datapoints`.

## Test context

```python
from critools.context import parse_test_context

context = parse_test_context(["--runtime-endpoint", "unix:///run/crio/crio.sock",
                              "--image-service-timeout", "1m30s"])
context.apply_platform_defaults()
context.load_yaml_config_files()
```

`build_arg_parser` accepts these flags:

- `--report-prefix`, `--report-dir`
- `--image-endpoint`, `--image-service-timeout`
- `--config`
- `--runtime-endpoint`, `--runtime-service-timeout`, `--runtime-handler`
- `--test-images-file`
- `--benchmarking-params-file`, `--benchmarking-output-dir`
- `--registry-prefix`
- `--lcow`, on Windows only

The timeout flags take durations such as `300s` or `250ms`.

`apply_platform_defaults` sets the default pod labels, the container and pause
commands, and the default test image for Linux or Windows.
`load_yaml_config_files` reads the test-images file into `TestImageList` and
the benchmarking file into `BenchmarkingParams`, using their camelCase keys.
`load_yaml_file` does the same for any of these dataclasses.

## Runtime interfaces and helpers

`critools.cri` defines `RuntimeService` and `ImageManagerService` as protocols.
Any object that provides their methods can be used. A method reports failure by
raising. `Framework` holds a `CRIClient` for one test. It asks its loader for a
client when none is held:

```python
from critools.cri import Framework
from critools.framework import create_pod_sandbox_for_container, create_default_container

framework = Framework(loader=make_client)   # make_client returns a CRIClient
with framework as client:
    pod_id, pod_config = create_pod_sandbox_for_container(client.runtime_client, context)
    container_id = create_default_container(
        client.runtime_client, client.image_client, pod_id, pod_config, "demo-", context
    )
```

`pull_public_image` puts the context's registry prefix in front of image names
that are not canonical, such as `busybox`. When the prefix differs from
`docker.io/library`, it also rewrites the domain of canonical names. It adds
`:latest` to a name that has no tag. `parse_named` raises
`NameNotCanonicalError` for a valid but non-canonical name. It raises
`ReferenceError_` for an invalid one.

## Validation checks

`critools.validate_images` covers pulling, status, listing and removal of
images: `check_pull_public_image`, `check_remove_image`, `pull_image_list`,
`remove_image_list` and `remove_duplicates`. A failed check raises
`ValidationError`.

`critools.validate_containers` starts, stops and removes containers, waits for a
container state, runs exec and checks its output, creates host paths and
symlinks for volume tests, creates a logging container, and lists container
stats. A failed check raises `ContainerCheckError`.

`critools.logs` reads container log files in the Docker JSON format and in the
CRI text format:

```python
from critools.logs import parse_cri_log, StreamType

message = parse_cri_log("2016-10-06T00:17:09.669794202Z stdout F hello World")
assert message.stream is StreamType.STDOUT
assert message.log == "hello World\n"
```

## What the package does not do

- It has no client that talks to a runtime over its socket. You supply the
  objects that provide `RuntimeService` and `ImageManagerService`.
- It has no command-line program.
- It has no suite runner that drives the benchmarks. `critools.results`
  collects and saves the samples, but the code that times the pod, container
  and image operations is not included.