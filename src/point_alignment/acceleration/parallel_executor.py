"""
Parallel execution infrastructure for per-point processing.

Provides ParallelExecutor, a structured parallel map over contiguous blocks of
point indices. Each call is a synchronous fan-out/fan-in: the caller blocks
until every block of the current phase has finished.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from multiprocessing import cpu_count
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def _block_bounds(n_items: int, block_size: int) -> List[Tuple[int, int]]:
    """Split ``range(n_items)`` into contiguous ``(start, stop)`` blocks."""
    return [(start, min(start + block_size, n_items)) for start in range(0, n_items, block_size)]


def _worker_wrapper(
    idx: int, start: int, stop: int, worker_fn: Callable[[int, int], Any]
) -> Tuple[int, Any, Optional[BaseException]]:
    """
    Run one block and capture its failure instead of raising inside the pool.

    Returns:
        Tuple of (block_index, result, exception)
    """
    try:
        return (idx, worker_fn(start, stop), None)
    except Exception as e:
        logger.error(f"Worker error on block {idx} [{start}, {stop}): {type(e).__name__}: {e}")
        return (idx, None, e)


class ParallelExecutor:
    """
    Parallel executor for block-wise point processing.

    Worker functions receive ``(start, stop)`` index bounds and either return a
    value for that block or write into a distinct slice of a buffer the caller
    pre-allocated. Results are returned in block order regardless of completion
    order, so no two tasks ever write to the same slot.

    Blocks run on a thread pool. The numba kernels are compiled with
    ``nogil=True`` and the inputs are shared read-only NumPy arrays.

    Example:
        executor = ParallelExecutor(n_workers=4)
        maxima = executor.map_blocks(lambda a, b: block_max(points[a:b]), len(points))
    """

    def __init__(self, n_workers: Optional[int] = None, block_size: int = 256):
        """
        Initialize parallel executor.

        Args:
            n_workers: Number of worker threads. If None, uses cpu_count. Minimum is 1.
            block_size: Default number of items per task.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count())
        else:
            n_workers = max(1, int(n_workers))

        self.n_workers = n_workers
        self.block_size = max(1, int(block_size))

        logger.debug(
            f"Initialized ParallelExecutor with {self.n_workers} workers "
            f"(total CPUs: {cpu_count()}, block size: {self.block_size})"
        )

    def map_blocks(
        self,
        worker_fn: Callable[[int, int], Any],
        n_items: int,
        block_size: Optional[int] = None,
    ) -> List[Any]:
        """
        Map worker function over contiguous index blocks.

        Args:
            worker_fn: Called as ``worker_fn(start, stop)`` once per block.
            n_items: Total number of items to cover.
            block_size: Items per block (defaults to the executor's block size).

        Returns:
            List of block results in block order.

        Raises:
            RuntimeError: If any block fails; the first failure is chained as the cause.
        """
        if n_items <= 0:
            return []

        blocks = _block_bounds(n_items, block_size or self.block_size)
        start_time = time.time()

        # If only 1 worker or 1 block, use sequential processing (no pool overhead)
        if self.n_workers == 1 or len(blocks) == 1:
            results = []
            for i, (start, stop) in enumerate(blocks):
                try:
                    results.append(worker_fn(start, stop))
                except Exception as e:
                    logger.error(f"Error processing block {i}: {e}", exc_info=True)
                    raise RuntimeError(f"Block processing failed: {e}") from e
            logger.debug(
                f"Sequential processing complete: {len(blocks)} blocks in {time.time() - start_time:.4f}s"
            )
            return results

        results = self._parallel_map(blocks, worker_fn)
        logger.debug(
            f"Parallel processing complete: {len(blocks)} blocks on {self.n_workers} workers "
            f"in {time.time() - start_time:.4f}s"
        )
        return results

    def reduce_blocks(
        self,
        worker_fn: Callable[[int, int], Any],
        n_items: int,
        combine: Callable[[Any, Any], Any],
        initial: Any,
        block_size: Optional[int] = None,
    ) -> Any:
        """
        Map worker function over blocks and fold the block results.

        The fold happens on the calling thread after the barrier, so ``combine``
        never needs its own synchronization.
        """
        return reduce(combine, self.map_blocks(worker_fn, n_items, block_size), initial)

    def _parallel_map(
        self,
        blocks: List[Tuple[int, int]],
        worker_fn: Callable[[int, int], Any],
    ) -> List[Any]:
        results_dict = {}
        errors = []

        with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
            futures = [
                pool.submit(_worker_wrapper, i, start, stop, worker_fn)
                for i, (start, stop) in enumerate(blocks)
            ]
            # Leaving the context manager waits for every submitted block
        for future in futures:
            idx, result, error = future.result()
            if error is not None:
                errors.append((idx, error))
            else:
                results_dict[idx] = result

        if errors:
            error_msg = f"{len(errors)} blocks failed out of {len(blocks)}"
            logger.error(error_msg)
            for idx, error in errors[:5]:  # Log first 5 errors
                logger.error(f"  Block {idx}: {type(error).__name__}: {error}")
            if len(errors) > 5:
                logger.error(f"  ... and {len(errors) - 5} more errors")
            raise RuntimeError(error_msg) from errors[0][1]

        return [results_dict[i] for i in range(len(blocks))]
