from concurrent import futures

class SlabPool:
    """Evaluate a function over contiguous slabs of rows on a thread pool.

    numpy releases the GIL inside most array operations, so stencil work on
    separate slabs overlaps well on multiple cores.
    """
    def __init__(self, num_threads):
        assert num_threads > 0
        self.num_threads = num_threads
        self.threadpool = futures.ThreadPoolExecutor(num_threads)
        self.futures = set()

    def submit(self, fn, *args, **kws):
        future = self.threadpool.submit(fn, *args, **kws)
        self.futures.add(future)
        return future

    def wait_first_error(self):
        """Wait until all submitted futures have completed or the first error
        arises. If an error is raised (or control-c is pressed), cancel the rest
        of the futures and re-raise."""
        try:
            for future in futures.as_completed(self.futures):
                future.result() # if exception occured in the future, this will raise an error
        except BaseException:
            for future in self.futures:
                future.cancel()
            raise
        finally:
            self.futures.clear()

    def map_slabs(self, fn, n_rows):
        """Call fn(start, stop) for contiguous row ranges covering range(n_rows)
        and return the results in row order, after all calls have finished."""
        ranges = slab_ranges(n_rows, self.num_threads)
        submitted = [self.submit(fn, start, stop) for start, stop in ranges]
        self.wait_first_error()
        return ranges, [future.result() for future in submitted]

    def shutdown(self):
        self.threadpool.shutdown(wait=True)

def slab_ranges(n_rows, n_slabs):
    """Split range(n_rows) into at most n_slabs non-empty (start, stop) ranges
    of nearly equal size."""
    n_slabs = max(1, min(n_slabs, n_rows))
    bounds = [n_rows * i // n_slabs for i in range(n_slabs + 1)]
    return [(start, stop) for start, stop in zip(bounds[:-1], bounds[1:])]
