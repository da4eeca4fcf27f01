"""Build contexts: where the sources for an image build come from."""

from __future__ import annotations

import logging
import os
import sys
import tarfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable

import requests

logger = logging.getLogger(__name__)

TAR_BUILD_CONTEXT_PREFIX = "tar://"
LOCAL_DIR_BUILD_CONTEXT_PREFIX = "dir://"
HTTPS_BUILD_CONTEXT_PREFIX = "https://"
GCS_BUILD_CONTEXT_PREFIX = "gs://"
S3_BUILD_CONTEXT_PREFIX = "s3://"
GIT_BUILD_CONTEXT_PREFIX = "git://"

CONTEXT_TAR = "context.tar.gz"

_UNSUPPORTED_PREFIXES = frozenset(
    {GCS_BUILD_CONTEXT_PREFIX, S3_BUILD_CONTEXT_PREFIX, GIT_BUILD_CONTEXT_PREFIX}
)

_UNKNOWN_PREFIX_MESSAGE = (
    "unknown build context prefix provided, please use one of the following: "
    "gs://, dir://, tar://, s3://, git://, https://"
)

_EXTRACTION_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)


class BuildContextError(Exception):
    """Raised when a build context cannot be resolved or unpacked."""


@dataclass(frozen=True)
class BuildOptions:
    """Options that influence how a build context is fetched."""

    git_branch: str = ""
    git_single_branch: bool = False
    git_recurse_submodules: bool = False


class BuildContext(ABC):
    """A source of build context files."""

    @abstractmethod
    def unpack(self) -> str:
        """Make the build context available and return the directory holding it."""


@dataclass
class DirContext(BuildContext):
    """A build context that is already a directory on disk."""

    context: str

    def unpack(self) -> str:
        return self.context


@dataclass
class TarContext(BuildContext):
    """A gzip-compressed tarball on disk, or on standard input when context is 'stdin'."""

    context: str
    build_context_dir: str | os.PathLike
    stdin: BinaryIO | None = field(default=None, repr=False)

    def unpack(self) -> str:
        directory = os.fspath(self.build_context_dir)
        try:
            os.makedirs(directory, mode=0o750, exist_ok=True)
        except OSError as exc:
            raise BuildContextError(f"unpacking tar from build context: {exc}") from exc

        if self.context == "stdin":
            stream = self.stdin if self.stdin is not None else sys.stdin.buffer
            if stream.isatty():
                raise BuildContextError(
                    "no data found.. don't forget to add the '--interactive, -i' flag"
                )
            logger.info("To simulate EOF and exit, press 'Ctrl+D'")
            try:
                with tarfile.open(fileobj=stream, mode="r|gz") as archive:
                    _extract(archive, directory)
            except _EXTRACTION_ERRORS as exc:
                raise BuildContextError(f"unpacking tar from stdin: {exc}") from exc
            return directory

        unpack_compressed_tar(self.context, directory)
        return directory


@dataclass
class HTTPSTarContext(BuildContext):
    """A gzip-compressed tarball downloaded over HTTPS."""

    context: str
    build_context_dir: str | os.PathLike

    def unpack(self) -> str:
        logger.info("Retrieving https tar file")
        directory = os.fspath(self.build_context_dir)
        tar_path = os.path.join(directory, CONTEXT_TAR)
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise BuildContextError(f"creating {directory}: {exc}") from exc

        try:
            with requests.get(self.context, stream=True) as response:
                if response.status_code != requests.codes.ok:
                    raise BuildContextError(
                        "HTTPSTar bad status from server: "
                        f"{response.status_code} {response.reason}"
                    )
                with open(tar_path, "wb") as target:
                    for chunk in response.iter_content(chunk_size=64 * 1024):
                        target.write(chunk)
        except requests.RequestException as exc:
            raise BuildContextError(f"downloading {self.context}: {exc}") from exc
        except OSError as exc:
            raise BuildContextError(f"writing {tar_path}: {exc}") from exc

        logger.info("Retrieved https tar file")
        unpack_compressed_tar(tar_path, directory)
        logger.info("Extracted https tar file")

        # Remove the tar so it doesn't interfere with subsequent commands.
        try:
            os.remove(tar_path)
        except OSError as exc:
            raise BuildContextError(f"removing {tar_path}: {exc}") from exc
        return directory


def _is_within(root: str, name: str) -> bool:
    target = os.path.realpath(os.path.join(root, name))
    return target == root or target.startswith(root + os.sep)


def _extract(archive: tarfile.TarFile, directory: str) -> list[str]:
    root = os.path.realpath(directory)
    extra = {"filter": "tar"} if hasattr(tarfile, "tar_filter") else {}
    names = []
    for member in archive:
        if not _is_within(root, member.name):
            raise BuildContextError(f"tar entry {member.name!r} escapes {directory}")
        archive.extract(member, directory, **extra)
        names.append(member.name)
    return names


def unpack_compressed_tar(tar_path: str | os.PathLike, directory: str | os.PathLike) -> list[str]:
    """Extract a gzip-compressed tarball into directory; return the member names."""
    try:
        with tarfile.open(os.fspath(tar_path), mode="r:gz") as archive:
            return _extract(archive, os.fspath(directory))
    except _EXTRACTION_ERRORS as exc:
        raise BuildContextError(f"unpacking {tar_path}: {exc}") from exc


def _split_prefix(src_context: str) -> tuple[str, str] | None:
    pieces = src_context.split("://")
    if len(pieces) < 2:
        return None
    prefix = pieces[0] + "://"
    rest = pieces[1] + ("://" if len(pieces) > 2 else "")
    return prefix, rest


def get_build_context(
    src_context: str,
    opts: BuildOptions | None,
    build_context_dir: str | os.PathLike,
) -> BuildContext:
    """Choose the build context handler for src_context from its prefix."""
    split = _split_prefix(src_context)
    if split is not None:
        prefix, context = split
        if prefix == LOCAL_DIR_BUILD_CONTEXT_PREFIX:
            return DirContext(context=context)
        if prefix == HTTPS_BUILD_CONTEXT_PREFIX:
            return HTTPSTarContext(context=src_context, build_context_dir=build_context_dir)
        if prefix == TAR_BUILD_CONTEXT_PREFIX:
            return TarContext(context=context, build_context_dir=build_context_dir)
        if prefix in _UNSUPPORTED_PREFIXES:
            raise BuildContextError(f"build context prefix {prefix} is not supported")
    raise BuildContextError(_UNKNOWN_PREFIX_MESSAGE)


def supported_prefixes() -> Iterable[str]:
    """The prefixes that get_build_context accepts."""
    return (LOCAL_DIR_BUILD_CONTEXT_PREFIX, TAR_BUILD_CONTEXT_PREFIX, HTTPS_BUILD_CONTEXT_PREFIX)


def _ensure_path(path: str | os.PathLike) -> Path:
    return Path(os.fspath(path))