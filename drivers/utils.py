"""
drivers/utils.py

Small helpers shared by drivers: the bounded poll used while a new
machine boots, and a file copy that keeps private keys private.
"""

import logging
import os
import shutil
import time
from typing import Callable

from .errors import WaitTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 180.0
DEFAULT_WAIT_INTERVAL = 3.0


def wait_for(
    condition: Callable[[], bool],
    timeout: float = DEFAULT_WAIT_TIMEOUT,
    interval: float = DEFAULT_WAIT_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Call `condition` until it returns a truthy value.

    Sleeps `interval` seconds between attempts and gives up once `timeout`
    seconds have passed since the first attempt. The condition is always
    tried at least once. Exceptions raised by the condition propagate.

    Raises:
        WaitTimeoutError: the deadline passed before the condition held.
    """
    deadline = clock() + timeout
    attempts = 0
    while True:
        attempts += 1
        if condition():
            return
        if clock() + interval >= deadline:
            break
        sleep(interval)
    raise WaitTimeoutError(
        f"Maximum number of retries ({attempts}) exceeded after {timeout:g}s"
    )


def copy_file(src: str, dst: str) -> None:
    """Copy `src` to `dst`, flush it to disk and restrict it to the owner."""
    parent = os.path.dirname(dst)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(src, "rb") as fin, open(dst, "wb") as fout:
        shutil.copyfileobj(fin, fout)
        fout.flush()
        os.fsync(fout.fileno())
    os.chmod(dst, 0o600)
    logger.debug("Copied %s to %s", src, dst)
