# sync/dispatch.py
import logging
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)


class SyncDispatcher:
    """Fire-and-forget runner for cloud calls.

    With an executor, jobs run one at a time in the background and the
    caller never waits on network I/O. Without one, jobs run inline (tests, one-shot scripts).
    Either way a failing job is logged and dropped.
    """

    def __init__(self, executor=None):
        self._executor = executor

    @classmethod
    def background(cls):
        # One worker: pushes reach the cloud in the order the mutations happened
        return cls(ThreadPoolExecutor(max_workers=1, thread_name_prefix='personal-sync'))

    def _run(self, fn, *args, **kwargs):
        name = getattr(fn, '__name__', repr(fn))
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"Background sync job {name} failed: {str(e)}", exc_info=True)
            return None
        if result is False:
            logger.info(f"Background sync job {name} did not complete; will retry on next sync")
        return result

    def submit(self, fn, *args, **kwargs):
        if self._executor is None:
            self._run(fn, *args, **kwargs)
            return None
        return self._executor.submit(self._run, fn, *args, **kwargs)

    def shutdown(self, wait=True):
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
