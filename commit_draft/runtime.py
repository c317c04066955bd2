"""
Process-wide runtime setup for CPU inference
"""
import logging
import os
import threading
from typing import Optional

import torch

logger = logging.getLogger(__name__)

THREAD_ENV_VARS = ("OMP_NUM_THREADS", "MKL_NUM_THREADS")

_configured_threads: Optional[int] = None
_lock = threading.Lock()


def configure_threads(num_threads: Optional[int] = None) -> int:
    """
    Size the tensor library's worker pool once, before the first forward pass

    Environment variables that are already set win over ``num_threads``.
    Later calls return the value chosen by the first one.

    Args:
        num_threads: Desired pool size (default: host core count)

    Returns:
        The thread count in effect
    """
    global _configured_threads
    with _lock:
        if _configured_threads is not None:
            return _configured_threads

        if num_threads is None:
            num_threads = os.cpu_count() or 1

        for name in THREAD_ENV_VARS:
            if name not in os.environ:
                os.environ[name] = str(num_threads)

        # OMP_NUM_THREADS set by the user takes precedence
        try:
            effective = int(os.environ["OMP_NUM_THREADS"])
        except ValueError:
            effective = num_threads

        torch.set_num_threads(effective)
        _configured_threads = effective
        logger.info("Using %d CPU threads for inference", effective)
        return effective


def reset_thread_configuration():
    """Forget the recorded pool size (tests only; the pool itself keeps its size)"""
    global _configured_threads
    with _lock:
        _configured_threads = None
