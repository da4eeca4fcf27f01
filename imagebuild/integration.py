"""Helpers for driving end-to-end image build checks."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import tarfile
import tempfile
import time
from dataclasses import dataclass
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

GCR_REPO_PREFIX = "gcr.io/"


@dataclass
class IntegrationTestConfig:
    """Settings shared by the end-to-end checks."""

    gcs_bucket: str = ""
    image_repo: str = ""
    onbuild_base_image: str = ""
    hardlink_base_image: str = ""
    service_account: str = ""
    docker_major_version: int = 0
    dockerfiles_pattern: str = ""

    def is_gcr_repository(self) -> bool:
        return self.image_repo.startswith(GCR_REPO_PREFIX)


def run_on_interrupt(func: Callable[[], None]):
    """Call func and exit with status 1 when SIGINT arrives; return the previous handler."""

    def _handler(signum, frame):
        logger.info("Interrupted, cleaning up.")
        func()
        sys.exit(1)

    return signal.signal(signal.SIGINT, _handler)


def run_command_without_test(args: Sequence[str]) -> bytes:
    """Run a command and return its combined stdout and stderr.

    Raises CalledProcessError, carrying the output, if the command fails.
    """
    completed = subprocess.run(
        list(args), stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
    )
    if completed.returncode != 0:
        raise subprocess.CalledProcessError(
            completed.returncode, completed.args, output=completed.stdout
        )
    return completed.stdout


def run_command(args: Sequence[str]) -> bytes:
    """Run a command and return its stdout, logging details if it fails."""
    completed = subprocess.run(
        list(args), stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False
    )
    if completed.returncode != 0:
        logger.error("command failed: %s", completed.args)
        logger.error("stderr: %s", completed.stderr.decode(errors="replace"))
        logger.error("stdout: %s", completed.stdout.decode(errors="replace"))
        raise subprocess.CalledProcessError(
            completed.returncode, completed.args, output=completed.stdout, stderr=completed.stderr
        )
    return completed.stdout


def create_integration_tarball(directory: str | os.PathLike | None = None) -> str:
    """Pack directory (default: the working directory) into a temporary .tar.gz; return its path."""
    logger.info("Creating tarball of integration test files to use as build context")
    source = os.fspath(directory) if directory is not None else os.getcwd()
    temp_dir = tempfile.mkdtemp()
    context_path = os.path.join(temp_dir, f"context_{time.time_ns()}.tar.gz")
    with tarfile.open(context_path, mode="w:gz") as archive:
        for entry in sorted(os.listdir(source)):
            archive.add(os.path.join(source, entry), arcname=entry)
    os.chmod(context_path, 0o644)
    return context_path