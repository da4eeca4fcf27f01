"""Command-line options of the image build executor."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Callable, Iterable, Sequence

from imagebuild.buildcontext import BuildOptions

logger = logging.getLogger(__name__)

DEFAULT_KANIKO_PATH = "/kaniko"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_LOG_FORMAT = "color"
DEFAULT_LOG_TIMESTAMP = False
DEFAULT_CACHE_TTL = timedelta(hours=336)

_URL_PATTERN = re.compile(r"^https?://")

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PIECE = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_FULL = re.compile(rf"([+-]?)((?:{_DURATION_PIECE})+)")
_DURATION_ITEM = re.compile(_DURATION_PIECE)

_GIT_KEYS = {
    "branch": "git_branch",
    "single-branch": "git_single_branch",
    "recurse-submodules": "git_recurse_submodules",
}


class OptionsError(Exception):
    """Raised when executor options are inconsistent."""


@dataclass
class ExecutorOptions:
    """Everything the executor command line can set."""

    dockerfile_path: str = "Dockerfile"
    src_context: str = "/workspace/"
    context_sub_path: str = ""
    bucket: str = ""
    destinations: list[str] = field(default_factory=list)
    snapshot_mode: str = "full"
    custom_platform: str = ""
    build_args: list[str] = field(default_factory=list)
    insecure: bool = False
    skip_tls_verify: bool = False
    insecure_pull: bool = False
    skip_tls_verify_pull: bool = False
    push_retry: int = 0
    image_fs_extract_retry: int = 0
    kaniko_dir: str = DEFAULT_KANIKO_PATH
    tar_path: str = ""
    single_snapshot: bool = False
    reproducible: bool = False
    target: str = ""
    no_push: bool = False
    no_push_cache: bool = False
    cache_repo: str = ""
    cache_dir: str = "/cache"
    digest_file: str = ""
    image_name_digest_file: str = ""
    image_name_tag_digest_file: str = ""
    oci_layout_path: str = ""
    compression: str = ""
    compression_level: int = -1
    cache: bool = False
    compressed_caching: bool = True
    cleanup: bool = False
    cache_ttl: timedelta = DEFAULT_CACHE_TTL
    insecure_registries: list[str] = field(default_factory=list)
    skip_tls_verify_registries: list[str] = field(default_factory=list)
    registries_certificates: dict[str, str] = field(default_factory=dict)
    registries_client_certificates: dict[str, str] = field(default_factory=dict)
    registry_mirrors: list[str] = field(default_factory=list)
    skip_default_registry_fallback: bool = False
    ignore_var_run: bool = True
    labels: list[str] = field(default_factory=list)
    skip_unused_stages: bool = False
    run_v2: bool = False
    git_branch: str = ""
    git_single_branch: bool = False
    git_recurse_submodules: bool = False
    cache_copy_layers: bool = False
    cache_run_layers: bool = True
    ignore_paths: list[str] = field(default_factory=list)
    force_build_metadata: bool = False
    skip_push_permission_check: bool = False
    snapshot_mode_deprecated: str = ""
    custom_platform_deprecated: str = ""
    tar_path_deprecated: str = ""
    force: bool = False
    verbosity: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    log_timestamp: bool = DEFAULT_LOG_TIMESTAMP

    def build_options(self) -> BuildOptions:
        """The options that govern fetching of the build context."""
        return BuildOptions(
            git_branch=self.git_branch,
            git_single_branch=self.git_single_branch,
            git_recurse_submodules=self.git_recurse_submodules,
        )


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _parse_duration(text: str) -> timedelta:
    if text in ("0", "+0", "-0"):
        return timedelta(0)
    match = _DURATION_FULL.fullmatch(text)
    if match is None:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
    seconds = sum(
        float(number) * _DURATION_UNITS[unit]
        for number, unit in _DURATION_ITEM.findall(match.group(2))
    )
    return timedelta(seconds=-seconds if match.group(1) == "-" else seconds)


def _parse_key_value(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {text!r}")
    return key, value


def _parse_git(text: str) -> dict[str, object]:
    settings: dict[str, object] = {}
    for part in filter(None, text.split(",")):
        key, sep, value = part.partition("=")
        if not sep or key not in _GIT_KEYS:
            raise argparse.ArgumentTypeError(f"invalid git option {part!r}")
        dest = _GIT_KEYS[key]
        settings[dest] = value if dest == "git_branch" else _parse_bool(value)
    return settings


def _add_bool(parser: argparse.ArgumentParser, *names: str, dest: str, default: bool, help: str) -> None:
    parser.add_argument(
        *names,
        dest=dest,
        nargs="?",
        const=True,
        default=default,
        type=_parse_bool,
        metavar="BOOL",
        help=help,
    )


def _add_multi(parser: argparse.ArgumentParser, *names: str, dest: str, help: str, type=str) -> None:
    parser.add_argument(*names, dest=dest, action="append", default=None, type=type, help=help)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the executor."""
    parser = argparse.ArgumentParser(prog="executor", allow_abbrev=False)
    add = parser.add_argument

    add("-v", "--verbosity", default=DEFAULT_LOG_LEVEL,
        help="Log level (trace, debug, info, warn, error, fatal, panic)")
    add("--log-format", dest="log_format", default=DEFAULT_LOG_FORMAT,
        help="Log format (text, color, json)")
    _add_bool(parser, "--log-timestamp", dest="log_timestamp", default=DEFAULT_LOG_TIMESTAMP,
              help="Timestamp in log output")
    _add_bool(parser, "--force", dest="force", default=False,
              help="Force building outside of a container")

    add("-f", "--dockerfile", dest="dockerfile_path", default="Dockerfile",
        help="Path to the dockerfile to be built.")
    add("-c", "--context", dest="src_context", default="/workspace/",
        help="Path to the dockerfile build context.")
    add("--context-sub-path", dest="context_sub_path", default="",
        help="Sub path within the given context.")
    add("-b", "--bucket", dest="bucket", default="", help=argparse.SUPPRESS)
    _add_multi(parser, "-d", "--destination", dest="destinations",
               help="Registry the final image should be pushed to. Repeatable.")
    add("--snapshot-mode", dest="snapshot_mode", default="full",
        help="Change the file attributes inspected during snapshotting")
    add("--custom-platform", dest="custom_platform", default="",
        help="Specify the build platform if different from the current host")
    _add_multi(parser, "--build-arg", dest="build_args",
               help="ARG values at build time. Repeatable.")
    _add_bool(parser, "--insecure", dest="insecure", default=False,
              help="Push to insecure registry using plain HTTP")
    _add_bool(parser, "--skip-tls-verify", dest="skip_tls_verify", default=False,
              help="Push to insecure registry ignoring TLS verify")
    _add_bool(parser, "--insecure-pull", dest="insecure_pull", default=False,
              help="Pull from insecure registry using plain HTTP")
    _add_bool(parser, "--skip-tls-verify-pull", dest="skip_tls_verify_pull", default=False,
              help="Pull from insecure registry ignoring TLS verify")
    add("--push-retry", dest="push_retry", type=int, default=0,
        help="Number of retries for the push operation")
    add("--image-fs-extract-retry", dest="image_fs_extract_retry", type=int, default=0,
        help="Number of retries for image FS extraction")
    add("--kaniko-dir", dest="kaniko_dir", default=DEFAULT_KANIKO_PATH,
        help="Path to the kaniko directory; takes precedence over KANIKO_DIR.")
    add("--tar-path", dest="tar_path", default="",
        help="Path to save the image in as a tarball instead of pushing")
    _add_bool(parser, "--single-snapshot", dest="single_snapshot", default=False,
              help="Take a single snapshot at the end of the build.")
    _add_bool(parser, "--reproducible", dest="reproducible", default=False,
              help="Strip timestamps out of the image to make it reproducible")
    add("--target", dest="target", default="", help="Set the target build stage to build")
    _add_bool(parser, "--no-push", dest="no_push", default=False,
              help="Do not push the image to the registry")
    _add_bool(parser, "--no-push-cache", dest="no_push_cache", default=False,
              help="Do not push the cache layers to the registry")
    add("--cache-repo", dest="cache_repo", default="",
        help="Repository to use as a cache; prefix with 'oci:' for an OCI layout path")
    add("--cache-dir", dest="cache_dir", default="/cache",
        help="Specify a local directory to use as a cache.")
    add("--digest-file", dest="digest_file", default="",
        help="File to save the digest of the built image to.")
    add("--image-name-with-digest-file", dest="image_name_digest_file", default="",
        help="File to save the image name with digest to.")
    add("--image-name-tag-with-digest-file", dest="image_name_tag_digest_file", default="",
        help="File to save the image name with tag and digest to.")
    add("--oci-layout-path", dest="oci_layout_path", default="",
        help="Path to save the OCI image layout of the built image.")
    add("--compression", dest="compression", choices=("gzip", "zstd"), default="",
        help="Compression algorithm (gzip, zstd)")
    add("--compression-level", dest="compression_level", type=int, default=-1,
        help="Compression level")
    _add_bool(parser, "--cache", dest="cache", default=False,
              help="Use cache when building image")
    _add_bool(parser, "--compressed-caching", dest="compressed_caching", default=True,
              help="Compress the cached layers.")
    _add_bool(parser, "--cleanup", dest="cleanup", default=False,
              help="Clean the filesystem at the end")
    add("--cache-ttl", dest="cache_ttl", type=_parse_duration, default=DEFAULT_CACHE_TTL,
        help="Cache timeout, e.g. 6h. Defaults to two weeks.")
    _add_multi(parser, "--insecure-registry", dest="insecure_registries",
               help="Insecure registry using plain HTTP. Repeatable.")
    _add_multi(parser, "--skip-tls-verify-registry", dest="skip_tls_verify_registries",
               help="Registry ignoring TLS verify. Repeatable.")
    _add_multi(parser, "--registry-certificate", dest="registries_certificates",
               type=_parse_key_value, help="registry=/path/to/server/certificate")
    _add_multi(parser, "--registry-client-cert", dest="registries_client_certificates",
               type=_parse_key_value, help="registry=/path/to/client/cert,/path/to/client/key")
    _add_multi(parser, "--registry-mirror", dest="registry_mirrors",
               help="Registry mirror to use instead of docker.io. Repeatable.")
    _add_bool(parser, "--skip-default-registry-fallback", dest="skip_default_registry_fallback",
              default=False, help="Do not fall back to the default registry.")
    _add_bool(parser, "--ignore-var-run", dest="ignore_var_run", default=True,
              help="Ignore /var/run when taking image snapshot.")
    _add_bool(parser, "--whitelist-var-run", dest="ignore_var_run", default=True,
              help="Deprecated: use --ignore-var-run.")
    _add_multi(parser, "--label", dest="labels", help="Image metadata label. Repeatable.")
    _add_bool(parser, "--skip-unused-stages", dest="skip_unused_stages", default=False,
              help="Build only used stages.")
    _add_bool(parser, "--use-new-run", dest="run_v2", default=False,
              help="Use the experimental run implementation.")
    add("--git", dest="git", type=_parse_git, default=None,
        help="branch=NAME,single-branch=BOOL,recurse-submodules=BOOL")
    _add_bool(parser, "--cache-copy-layers", dest="cache_copy_layers", default=False,
              help="Caches copy layers")
    _add_bool(parser, "--cache-run-layers", dest="cache_run_layers", default=True,
              help="Caches run layers")
    _add_multi(parser, "--ignore-path", dest="ignore_paths",
               help="Ignore this path when taking a snapshot. Repeatable.")
    _add_bool(parser, "--force-build-metadata", dest="force_build_metadata", default=False,
              help="Force add metadata layers to build image")
    _add_bool(parser, "--skip-push-permission-check", dest="skip_push_permission_check",
              default=False, help="Skip check of the push permission")

    add("--snapshotMode", dest="snapshot_mode_deprecated", default="",
        help="Deprecated: use --snapshot-mode.")
    add("--customPlatform", dest="custom_platform_deprecated", default="",
        help="Deprecated: use --custom-platform.")
    add("--tarPath", dest="tar_path_deprecated", default="",
        help="Deprecated: use --tar-path.")
    return parser


_DICT_FIELDS = ("registries_certificates", "registries_client_certificates")


def parse_args(argv: Sequence[str] | None = None) -> ExecutorOptions:
    """Parse executor arguments into ExecutorOptions."""
    namespace = build_parser().parse_args(sys.argv[1:] if argv is None else list(argv))
    values = vars(namespace)
    git = values.pop("git") or {}
    values.update(git)
    for name in _DICT_FIELDS:
        if values[name] is not None:
            values[name] = dict(values[name])
    known = {f.name for f in fields(ExecutorOptions)}
    return ExecutorOptions(**{k: v for k, v in values.items() if k in known and v is not None})


def is_url(path: str) -> bool:
    """Whether path is an http or https URL."""
    return _URL_PATTERN.match(path) is not None


def should_skip(path: str) -> bool:
    """Whether path needs no resolving to an absolute path."""
    return path == "" or is_url(path) or os.path.isabs(path)


def resolve_environment_build_args(
    arguments: Iterable[str], resolver: Callable[[str], str]
) -> list[str]:
    """Give build args without a value the value resolver returns for their name."""
    return [arg if "=" in arg else f"{arg}={resolver(arg)}" for arg in arguments]


def check_no_deprecated_flags(opts: ExecutorOptions) -> list[str]:
    """Move deprecated flag values to their replacements; return the deprecated flags used."""
    used = []
    if opts.custom_platform_deprecated:
        logger.warning("Flag --customPlatform is deprecated. Use: --custom-platform")
        opts.custom_platform = opts.custom_platform_deprecated
        used.append("customPlatform")
    if opts.snapshot_mode_deprecated:
        logger.warning("Flag --snapshotMode is deprecated. Use: --snapshot-mode")
        opts.snapshot_mode = opts.snapshot_mode_deprecated
        used.append("snapshotMode")
    if opts.tar_path_deprecated:
        logger.warning("Flag --tarPath is deprecated. Use: --tar-path")
        opts.tar_path = opts.tar_path_deprecated
        used.append("tarPath")
    return used


def cache_flags_valid(opts: ExecutorOptions) -> None:
    """Raise OptionsError if the caching flags cannot work together."""
    if not opts.cache:
        return
    if not opts.cache_repo and opts.no_push:
        raise OptionsError("if using cache with --no-push, specify cache repo with --cache-repo")