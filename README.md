# imagebuild

Tooling around building container images from a Dockerfile inside a
container: resolving and unpacking the build context, parsing and validating
the executor's command-line options, preparing paths before a build, parsing
the cache warmer's options, and collecting release notes from GitHub.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Build contexts

`imagebuild.buildcontext` chooses a handler from the prefix of a build
context location. `get_build_context(src_context, opts, build_context_dir)`
returns a `BuildContext`; its `unpack()` method returns the directory that
holds the context.

| Prefix      | Handler           | Behaviour                                                           |
|-------------|-------------------|---------------------------------------------------------------------|
| `dir://`    | `DirContext`      | The directory is used as it is.                                     |
| `tar://`    | `TarContext`      | A local `.tar.gz` is unpacked into `build_context_dir`; `tar://stdin` reads the tarball from standard input (an interactive terminal is refused). |
| `https://`  | `HTTPSTarContext` | A `.tar.gz` is downloaded, unpacked into `build_context_dir`, and the downloaded file removed. A status other than 200 is an error. |

`gs://`, `s3://` and `git://` are recognised but raise `BuildContextError`
as not supported; any other location raises `BuildContextError` too.

```python
from imagebuild.buildcontext import BuildOptions, get_build_context

context = get_build_context("tar:///tmp/context.tar.gz", BuildOptions(), "/tmp/buildcontext")
directory = context.unpack()
```

`unpack_compressed_tar(tar_path, directory)` unpacks a gzip-compressed
tarball on its own and returns the member names. Entries that would land
outside the target directory are refused.

## The executor command

```
imagebuild-executor --context dir:///workspace/ --dockerfile Dockerfile --destination registry.example.com/app:latest
```

The command:

1. moves deprecated flag values (`--customPlatform`, `--snapshotMode`,
   `--tarPath`) to their replacements, appends `KANIKO_REGISTRY_MIRROR` to the
   registry mirrors if set, and defaults `--custom-platform` to the host;
2. if the working directory (from `--kaniko-dir`, else `KANIKO_DIR`, else
   `/kaniko`) is not `/kaniko`, copies `/kaniko` there, removes the original,
   and points `DOCKER_CONFIG` at its `.docker` directory;
3. fills in bare `--build-arg NAME` values from the environment and sets up
   logging from `--verbosity`, `--log-format` and `--log-timestamp`;
4. checks that `--destination` or `--no-push` is given, and that `--cache`
   with `--no-push` comes with `--cache-repo`;
5. unpacks the build context (a plain path is used as it is; a prefixed
   location goes through `get_build_context`; `--bucket` without a prefix is
   taken as `gs://`), then applies `--context-sub-path`;
6. finds the Dockerfile, directly or relative to the context, and copies it
   (and any `Dockerfile.dockerignore` beside it) into the working directory;
7. refuses to go on outside a container unless `--force` is given, makes the
   remaining relative paths absolute, and prints the build context, the
   Dockerfile and the paths to leave out of snapshots (`/var/run` unless
   `--ignore-var-run=false`, plus each `--ignore-path`).

Errors are printed and the command exits with status 1.

```
imagebuild-executor version
```

prints the installed version.

From Python, `imagebuild.executor_options` offers `parse_args`,
`build_parser`, `is_url`, `should_skip`, `resolve_environment_build_args`,
`check_no_deprecated_flags` and `cache_flags_valid`, with options held in
`ExecutorOptions`; inconsistent options raise `OptionsError`.
`imagebuild.executor_cli` offers the individual steps: `prepare`,
`resolve_source_context`, `resolve_dockerfile_path`, `copy_dockerfile`,
`resolve_relative_paths` and `check_kaniko_dir`.

## Cache warmer options

`imagebuild.warmer_cli` parses the cache warmer's options into
`WarmerOptions` (`parse_args`, `build_parser`), checks them (`validate`,
`validate_dockerfile_path`) and creates the cache directory
(`ensure_cache_dir`). At least one `--image` or a `--dockerfile` is required;
otherwise `WarmerOptionsError` is raised.

## Release notes

List the pull requests merged since the latest release of a repository, as
changelog markdown:

```
imagebuild-release-notes --org example-org --repo example-repo
```

Pass `--token token` with a personal access token when anonymous requests
hit the rate limit. `--fromTag` and `--toTag` are accepted but do not change
the result: the latest release is always the starting point. From Python,
use `GitHubClient`, `collect_merged_pull_requests`, `format_pull_request`
and `print_pull_requests`.

## What this package does not do

- The executor prepares and validates a build but does not build, snapshot
  or push an image: after preparation it only reports what it resolved.
- Build contexts from cloud storage buckets, S3 and git repositories are not
  supported.
- There is no cache warmer command and nothing is pulled into the cache;
  only the warmer's options are parsed and checked.