import concurrent.futures
import threading


__all__ = ['LazyPool']


class LazyPool:
    """Thread pool created on first use, so references that never go async hold no threads."""

    def __init__(self, size=5):
        self.size = size
        self._pool = None
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            if self._pool is None:
                self._pool = concurrent.futures.ThreadPoolExecutor(max_workers=self.size,
                                                                   thread_name_prefix="firetree")
        return self._pool

    @property
    def started(self):
        return self._pool is not None

    def submit(self, fn, *args, callback=None, **kwargs):
        future = self.get().submit(fn, *args, **kwargs)
        if callback is not None:
            future.add_done_callback(callback)  # callback gets the future, call .result()
        return future

    def shutdown(self, wait=False):
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait)
