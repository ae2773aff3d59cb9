"""Helper process lifecycle shared by the local services and qemu machines."""

import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

import psutil

from kola.core.structured_logging import get_logger


def wait_for(condition: Callable[[], bool], process: subprocess.Popen,
             timeout: float, interval: float = 0.05) -> bool:
    """Poll condition until true, the process exits, or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        if process.poll() is not None:
            return False
        time.sleep(interval)
    return condition()


def wait_for_path(path: Path, process: subprocess.Popen, timeout: float = 5.0) -> bool:
    return wait_for(path.exists, process, timeout)


def terminate_process(process: Optional[subprocess.Popen], timeout: float = 5.0) -> Optional[int]:
    """
    Terminate a helper process and any children it forked.

    SIGTERM first, SIGKILL for whatever is still alive after timeout.
    Returns the exit status of the process, or None if it was never started.
    """
    if process is None:
        return None

    logger = get_logger(__name__)
    if process.poll() is None:
        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        process.terminate()
        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass

        # the parent is reaped through Popen so its exit status is kept
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {process.pid} ignored SIGTERM, killing")
            process.kill()

        _, alive = psutil.wait_procs(children, timeout=timeout)
        for proc in alive:
            logger.warning(f"Process {proc.pid} ignored SIGTERM, killing")
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

    return process.wait()
