"""Starting binaries and docker containers for integration tests."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Sequence

__all__ = ["run_binary", "run_container"]


def run_binary(bin_path: str | os.PathLike[str], *args: str) -> Callable[[], int]:
    """Start a binary with ``args``, sharing this process's stdout and stderr.

    Returns a function that kills the process if it still runs, waits for
    it and returns its exit code.
    """
    path = os.path.abspath(bin_path)
    proc = subprocess.Popen([path, *args])

    def cancel() -> int:
        if proc.poll() is None:
            proc.kill()
        return proc.wait()

    return cancel


def run_container(image: str, docker_args: Sequence[str], runtime_args: Sequence[str]) -> Callable[[], None]:
    """Launch a detached docker container and return a function that kills it."""
    command = ["docker", "run", "-d", *docker_args, image, *runtime_args]
    result = subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"exit status {result.returncode}: {result.stdout}")
    container_id = result.stdout.split("\n")[0]

    def kill() -> None:
        subprocess.run(
            ["docker", "kill", container_id],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )

    return kill