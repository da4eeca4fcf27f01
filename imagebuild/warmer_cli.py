"""Command-line options of the cache warmer and their validation."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Sequence

from imagebuild.executor_cli import _configure_logging, _default_platform, _validate_platform
from imagebuild.executor_options import (
    DEFAULT_CACHE_TTL,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_TIMESTAMP,
    OptionsError,
    _add_bool,
    _add_multi,
    _parse_duration,
    _parse_key_value,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "/cache"

_URL_PATTERN = re.compile(r"^https?://")
_DICT_FIELDS = ("registries_certificates", "registries_client_certificates")


class WarmerOptionsError(Exception):
    """Raised when cache warmer options are invalid."""


@dataclass
class WarmerOptions:
    """Everything the cache warmer command line can set."""

    images: list[str] = field(default_factory=list)
    cache_dir: str = DEFAULT_CACHE_DIR
    force: bool = False
    cache_ttl: timedelta = DEFAULT_CACHE_TTL
    insecure_pull: bool = False
    skip_tls_verify_pull: bool = False
    insecure_registries: list[str] = field(default_factory=list)
    skip_tls_verify_registries: list[str] = field(default_factory=list)
    registries_certificates: dict[str, str] = field(default_factory=dict)
    registries_client_certificates: dict[str, str] = field(default_factory=dict)
    registry_mirrors: list[str] = field(default_factory=list)
    skip_default_registry_fallback: bool = False
    custom_platform: str = ""
    dockerfile_path: str = ""
    build_args: list[str] = field(default_factory=list)
    verbosity: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    log_timestamp: bool = DEFAULT_LOG_TIMESTAMP


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the cache warmer."""
    parser = argparse.ArgumentParser(prog="cache warmer", allow_abbrev=False)
    add = parser.add_argument

    add("-v", "--verbosity", default=DEFAULT_LOG_LEVEL,
        help="Log level (trace, debug, info, warn, error, fatal, panic)")
    add("--log-format", dest="log_format", default=DEFAULT_LOG_FORMAT,
        help="Log format (text, color, json)")
    _add_bool(parser, "--log-timestamp", dest="log_timestamp", default=DEFAULT_LOG_TIMESTAMP,
              help="Timestamp in log output")

    _add_multi(parser, "-i", "--image", dest="images",
               help="Image to cache. Set it repeatedly for multiple images.")
    add("-c", "--cache-dir", dest="cache_dir", default=DEFAULT_CACHE_DIR,
        help="Directory of the cache.")
    _add_bool(parser, "-f", "--force", dest="force", default=False,
              help="Force cache overwriting.")
    add("--cache-ttl", dest="cache_ttl", type=_parse_duration, default=DEFAULT_CACHE_TTL,
        help="Cache timeout in hours. Defaults to two weeks.")
    _add_bool(parser, "--insecure-pull", dest="insecure_pull", default=False,
              help="Pull from insecure registry using plain HTTP")
    _add_bool(parser, "--skip-tls-verify-pull", dest="skip_tls_verify_pull", default=False,
              help="Pull from insecure registry ignoring TLS verify")
    _add_multi(parser, "--insecure-registry", dest="insecure_registries",
               help="Insecure registry using plain HTTP to pull. Repeatable.")
    _add_multi(parser, "--skip-tls-verify-registry", dest="skip_tls_verify_registries",
               help="Insecure registry ignoring TLS verify to pull. Repeatable.")
    _add_multi(parser, "--registry-certificate", dest="registries_certificates",
               type=_parse_key_value, help="registry=/path/to/server/certificate")
    _add_multi(parser, "--registry-client-cert", dest="registries_client_certificates",
               type=_parse_key_value, help="registry=/path/to/client/cert,/path/to/client/key")
    _add_multi(parser, "--registry-mirror", dest="registry_mirrors",
               help="Registry mirror to use instead of docker.io. Repeatable.")
    _add_bool(parser, "--skip-default-registry-fallback", dest="skip_default_registry_fallback",
              default=False, help="Do not fall back to the default registry.")
    add("--customPlatform", dest="custom_platform", default="",
        help="Specify the build platform if different from the current host")
    add("-d", "--dockerfile", dest="dockerfile_path", default="",
        help="Path to the dockerfile whose base images are to be cached.")
    _add_multi(parser, "--build-arg", dest="build_args",
               help="Build args for dynamic replacement of the base image. Repeatable.")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> WarmerOptions:
    """Parse cache warmer arguments into WarmerOptions."""
    namespace = build_parser().parse_args(sys.argv[1:] if argv is None else list(argv))
    values = vars(namespace)
    for name in _DICT_FIELDS:
        if values[name] is not None:
            values[name] = dict(values[name])
    known = {f.name for f in fields(WarmerOptions)}
    opts = WarmerOptions(**{k: v for k, v in values.items() if k in known and v is not None})

    # Default the platform to the current host's, and validate it.
    if not opts.custom_platform:
        opts.custom_platform = _default_platform()
    try:
        _validate_platform(opts.custom_platform)
    except OptionsError as exc:
        raise WarmerOptionsError(str(exc)) from exc
    return opts


def is_url(path: str) -> bool:
    """Whether path is an http or https URL."""
    return _URL_PATTERN.match(path) is not None


def validate_dockerfile_path(opts: WarmerOptions) -> None:
    """Make a local Dockerfile path absolute; raise if it does not exist."""
    if is_url(opts.dockerfile_path):
        return
    if os.path.lexists(opts.dockerfile_path):
        opts.dockerfile_path = os.path.abspath(opts.dockerfile_path)
        return
    raise WarmerOptionsError(
        "please provide a valid path to a Dockerfile within the build context with --dockerfile"
    )


def validate(opts: WarmerOptions) -> None:
    """Configure logging and check that the options describe something to cache."""
    try:
        _configure_logging(opts.verbosity, opts.log_format, opts.log_timestamp)
    except OptionsError as exc:
        raise WarmerOptionsError(str(exc)) from exc

    if not opts.images and not opts.dockerfile_path:
        raise WarmerOptionsError(
            "You must select at least one image to cache or a dockerfilepath to parse"
        )
    if opts.dockerfile_path:
        try:
            validate_dockerfile_path(opts)
        except WarmerOptionsError as exc:
            raise WarmerOptionsError(f"error validating dockerfile path: {exc}") from exc


def ensure_cache_dir(opts: WarmerOptions) -> str:
    """Create the cache directory if it is missing; return its path."""
    path = opts.cache_dir
    if not os.path.exists(path):
        try:
            os.makedirs(path, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise WarmerOptionsError(f"Failed to create cache directory: {exc}") from exc
    return path