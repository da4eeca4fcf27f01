"""The image build executor command: validates options and prepares the build context."""

from __future__ import annotations

import json
import logging
import os
import platform
import shutil
import subprocess
import sys
from importlib.metadata import PackageNotFoundError, version as _dist_version
from typing import Sequence

from imagebuild.buildcontext import (
    GCS_BUILD_CONTEXT_PREFIX,
    BuildContextError,
    get_build_context,
)
from imagebuild.executor_options import (
    DEFAULT_KANIKO_PATH,
    ExecutorOptions,
    OptionsError,
    cache_flags_valid,
    check_no_deprecated_flags,
    is_url,
    parse_args,
    resolve_environment_build_args,
    should_skip,
)

logger = logging.getLogger(__name__)

VAR_RUN = "/var/run"

_LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}
_LOG_FORMATS = ("text", "color", "json")

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm/v7",
    "armv6l": "arm/v6",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}
_OS_NAMES = {"linux": "linux", "darwin": "darwin", "win32": "windows", "cygwin": "windows"}

_CONTAINER_MARKERS = ("/.dockerenv", "/run/.containerenv")
_CGROUP_HINTS = ("docker", "kubepods", "containerd", "lxc", "podman", "libpod")

_RELATIVE_PATH_FIELDS = (
    "dockerfile_path",
    "src_context",
    "cache_dir",
    "tar_path",
    "digest_file",
    "image_name_digest_file",
    "image_name_tag_digest_file",
)


def _default_platform() -> str:
    os_name = _OS_NAMES.get(sys.platform, sys.platform)
    machine = platform.machine().lower()
    arch = _ARCH_NAMES.get(machine, machine or "unknown")
    return f"{os_name}/{arch}"


def _validate_platform(spec: str) -> None:
    parts = spec.split("/")
    if len(parts) > 3 or any(not part for part in parts):
        raise OptionsError(f"Invalid platform {spec!r}")


def _validate_flags(opts: ExecutorOptions) -> None:
    check_no_deprecated_flags(opts)
    mirror = os.environ.get("KANIKO_REGISTRY_MIRROR")
    if mirror is not None:
        opts.registry_mirrors.append(mirror)
    if not opts.custom_platform:
        opts.custom_platform = _default_platform()
    _validate_platform(opts.custom_platform)


class _JSONFormatter(logging.Formatter):
    def __init__(self, timestamp: bool) -> None:
        super().__init__()
        self._timestamp = timestamp

    def format(self, record: logging.LogRecord) -> str:
        entry = {"level": record.levelname.lower(), "msg": record.getMessage()}
        if self._timestamp:
            entry["time"] = self.formatTime(record)
        return json.dumps(entry)


class _ColorFormatter(logging.Formatter):
    _COLORS = {
        logging.DEBUG: "\033[37m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[31m",
    }

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = self._COLORS.get(record.levelno, "")
        return f"{color}{text}\033[0m" if color else text


_handler: logging.Handler | None = None


def _configure_logging(level: str, fmt: str, timestamp: bool) -> None:
    global _handler
    try:
        numeric = _LOG_LEVELS[level.lower()]
    except KeyError:
        raise OptionsError(f"parsing log level: not a valid log level: {level!r}") from None
    if fmt not in _LOG_FORMATS:
        raise OptionsError(f"not a valid log format: {fmt!r}. Please specify one of (text, color, json)")

    pattern = "%(asctime)s %(levelname)s %(message)s" if timestamp else "%(levelname)s %(message)s"
    if fmt == "json":
        formatter: logging.Formatter = _JSONFormatter(timestamp)
    elif fmt == "color":
        formatter = _ColorFormatter(pattern)
    else:
        formatter = logging.Formatter(pattern)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(formatter)
    root.addHandler(_handler)
    root.setLevel(numeric)


def _is_contained() -> bool:
    if any(os.path.exists(marker) for marker in _CONTAINER_MARKERS):
        return True
    if os.environ.get("container"):
        return True
    try:
        with open("/proc/1/cgroup", encoding="utf-8", errors="replace") as cgroup:
            content = cgroup.read()
    except OSError:
        return False
    return any(hint in content for hint in _CGROUP_HINTS)


def _executor_version() -> str:
    try:
        return _dist_version("imagebuild")
    except PackageNotFoundError:
        return "unknown"


def check_kaniko_dir(directory: str, default_dir: str = DEFAULT_KANIKO_PATH) -> None:
    """Move the working directory from default_dir to directory when they differ."""
    if directory == default_dir:
        return
    # The target may be on another partition, so copy rather than rename.
    shutil.copytree(default_dir, directory, symlinks=True, dirs_exist_ok=True)
    shutil.rmtree(default_dir)
    os.environ["DOCKER_CONFIG"] = os.path.join(directory, ".docker")


def copy_dockerfile(opts: ExecutorOptions, dockerfile_copy_path: str) -> None:
    """Copy the Dockerfile (and its .dockerignore) aside so .dockerignore cannot hide it."""
    source = opts.dockerfile_path
    try:
        os.makedirs(os.path.dirname(dockerfile_copy_path) or ".", exist_ok=True)
        if os.path.abspath(source) != os.path.abspath(dockerfile_copy_path):
            shutil.copyfile(source, dockerfile_copy_path)
    except OSError as exc:
        raise OptionsError(f"copying dockerfile: {exc}") from exc

    ignore_source = source + ".dockerignore"
    ignore_target = dockerfile_copy_path + ".dockerignore"
    if os.path.lexists(ignore_source):
        try:
            if os.path.abspath(ignore_source) != os.path.abspath(ignore_target):
                shutil.copyfile(ignore_source, ignore_target)
        except OSError as exc:
            raise OptionsError(f"copying Dockerfile.dockerignore: {exc}") from exc
    opts.dockerfile_path = dockerfile_copy_path


def resolve_dockerfile_path(opts: ExecutorOptions, dockerfile_copy_path: str) -> None:
    """Make the Dockerfile path absolute, looking in the build context too, and copy it aside."""
    if is_url(opts.dockerfile_path):
        return
    if os.path.lexists(opts.dockerfile_path):
        opts.dockerfile_path = os.path.abspath(opts.dockerfile_path)
        copy_dockerfile(opts, dockerfile_copy_path)
        return
    in_context = os.path.join(opts.src_context, opts.dockerfile_path)
    if os.path.lexists(in_context):
        opts.dockerfile_path = os.path.abspath(in_context)
        copy_dockerfile(opts, dockerfile_copy_path)
        return
    raise OptionsError(
        "please provide a valid path to a Dockerfile within the build context with --dockerfile"
    )


def resolve_source_context(
    opts: ExecutorOptions,
    context_sub_path: str | None = None,
    build_context_dir: str | None = None,
) -> None:
    """Unpack a remote or archived build context and point src_context at the result."""
    if context_sub_path is None:
        context_sub_path = opts.context_sub_path
    if build_context_dir is None:
        build_context_dir = os.path.join(DEFAULT_KANIKO_PATH, "buildcontext")

    if not opts.src_context and not opts.bucket:
        raise OptionsError(
            "please specify a path to the build context with the --context flag "
            "or a bucket with the --bucket flag"
        )
    if opts.src_context and "://" not in opts.src_context:
        return
    if opts.bucket:
        if "://" not in opts.bucket:
            # Without a prefix the bucket is taken to be cloud storage.
            opts.src_context = GCS_BUILD_CONTEXT_PREFIX + opts.bucket
        else:
            opts.src_context = opts.bucket

    context = get_build_context(opts.src_context, opts.build_options(), build_context_dir)
    logger.debug("Getting source context from %s", opts.src_context)
    opts.src_context = context.unpack()
    if context_sub_path:
        opts.src_context = os.path.join(opts.src_context, context_sub_path)
        if not os.path.exists(opts.src_context):
            raise OptionsError(f"context sub path {opts.src_context} does not exist")
    logger.debug("Build context located at %s", opts.src_context)


def resolve_relative_paths(opts: ExecutorOptions) -> dict[str, str]:
    """Turn relative path options into absolute ones; return the options changed."""
    resolved = {}
    for name in _RELATIVE_PATH_FIELDS:
        path = getattr(opts, name)
        if should_skip(path):
            logger.debug("Skip resolving path %s", path)
            continue
        absolute = os.path.abspath(path)
        setattr(opts, name, absolute)
        resolved[name] = absolute
        logger.debug("Resolved relative path %s to %s", path, absolute)
    return resolved


def prepare(
    opts: ExecutorOptions,
    context_sub_path: str | None = None,
    build_context_dir: str | None = None,
    dockerfile_copy_path: str | None = None,
) -> list[str]:
    """Validate options and make the build context ready; return the paths to ignore in snapshots."""
    _validate_flags(opts)

    # The command line flag takes precedence over the KANIKO_DIR environment variable.
    directory = os.environ.get("KANIKO_DIR", DEFAULT_KANIKO_PATH)
    if opts.kaniko_dir != DEFAULT_KANIKO_PATH:
        directory = opts.kaniko_dir
    try:
        check_kaniko_dir(directory, DEFAULT_KANIKO_PATH)
    except OSError as exc:
        raise OptionsError(f"moving {DEFAULT_KANIKO_PATH} to {directory}: {exc}") from exc

    if build_context_dir is None:
        build_context_dir = os.path.join(directory, "buildcontext")
    if dockerfile_copy_path is None:
        dockerfile_copy_path = os.path.join(directory, "Dockerfile")

    opts.build_args = resolve_environment_build_args(
        opts.build_args, lambda name: os.environ.get(name, "")
    )
    _configure_logging(opts.verbosity, opts.log_format, opts.log_timestamp)

    if not opts.no_push and not opts.destinations:
        raise OptionsError("you must provide --destination, or use --no-push")
    try:
        cache_flags_valid(opts)
    except OptionsError as exc:
        raise OptionsError(f"cache flags invalid: {exc}") from exc
    try:
        resolve_source_context(opts, context_sub_path, build_context_dir)
    except (OptionsError, BuildContextError, OSError) as exc:
        raise OptionsError(f"error resolving source context: {exc}") from exc
    try:
        resolve_dockerfile_path(opts, dockerfile_copy_path)
    except OptionsError as exc:
        raise OptionsError(f"error resolving dockerfile path: {exc}") from exc
    if not opts.destinations and opts.image_name_digest_file:
        raise OptionsError("you must provide --destination if setting ImageNameDigestFile")
    if not opts.destinations and opts.image_name_tag_digest_file:
        raise OptionsError("you must provide --destination if setting ImageNameTagDigestFile")

    ignored = []
    if opts.ignore_var_run:
        # /var/run often holds mounted sockets that must not end up in the image.
        logger.debug("Adding /var/run to default ignore list")
        ignored.append(VAR_RUN)
    ignored.extend(opts.ignore_paths)
    return ignored


def _exit_code(exc: BaseException) -> int:
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, subprocess.CalledProcessError):
            return current.returncode
        current = current.__cause__ or current.__context__
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the executor command line; return the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == "version":
        print("Kaniko version : ", _executor_version())
        return 0

    opts = parse_args(args)
    try:
        ignored = prepare(opts)
    except OptionsError as exc:
        print(exc)
        return 1

    if not _is_contained():
        if not opts.force:
            print(
                "kaniko should only be run inside of a container, run with the --force flag "
                "if you are sure you want to continue"
            )
            return 1
        logger.warning(
            "Kaniko is being run outside of a container. This can have dangerous effects on your system"
        )

    try:
        resolve_relative_paths(opts)
        os.chdir("/")
    except OSError as exc:
        print(f"error resolving relative paths to absolute paths: {exc}")
        return _exit_code(exc)

    print(f"Build context: {opts.src_context}")
    print(f"Dockerfile: {opts.dockerfile_path}")
    if ignored:
        print(f"Ignored paths: {', '.join(ignored)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())