"""Worker pool shared by the parallel stages of a pipeline run."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, List, Optional

from .config import EXECUTOR_KINDS, use_n_threads
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Reusable pool of workers for embarrassingly parallel stages.

    The pool is created once per pipeline run and shut down once. With a
    single worker tasks run inline and no executor is started.

    Parameters
    ----------
    n_workers : int, optional
        Number of workers, resolved with :func:`fastoc.config.use_n_threads`
    kind : str, optional
        'thread' (default) or 'process'

    Examples
    --------
    >>> with WorkerPool(4) as pool:
    ...     blocks = pool.map(compute_block, block_bounds)
    """

    def __init__(self, n_workers: Optional[int] = 0, kind: str = "thread"):
        if kind not in EXECUTOR_KINDS:
            raise ConfigurationError(f"Unknown executor '{kind}'. Choose from {EXECUTOR_KINDS}")
        self.n_workers = use_n_threads(n_workers)
        self.kind = kind
        self._executor: Optional[Executor] = None

    @property
    def parallel(self) -> bool:
        return self.n_workers > 1

    def start(self) -> "WorkerPool":
        if self.parallel and self._executor is None:
            if self.kind == "process":
                self._executor = ProcessPoolExecutor(max_workers=self.n_workers)
            else:
                self._executor = ThreadPoolExecutor(max_workers=self.n_workers)
            logger.debug(f"Started {self.kind} pool with {self.n_workers} workers")
        return self

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            logger.debug("Worker pool shut down")

    def __enter__(self) -> "WorkerPool":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def imap(self, fn: Callable, items: Iterable) -> Iterator:
        """Apply ``fn`` to every item; results are yielded in input order."""
        if not self.parallel:
            return (fn(item) for item in items)
        self.start()
        return self._executor.map(fn, items)

    def map(self, fn: Callable, items: Iterable) -> List:
        """Apply ``fn`` to every item and wait for all results."""
        return list(self.imap(fn, items))

    def __repr__(self):
        return f"WorkerPool(n_workers={self.n_workers}, kind='{self.kind}')"
