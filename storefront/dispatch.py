"""Run backend calls off the request thread and track them by handle.

A view asks a ``ViewScope`` for its data; each call becomes a
``RequestHandle`` whose ``state`` says whether the server has answered.
Leaving the scope releases every handle still in flight, so a late answer
is dropped instead of landing on a page that is already gone.
"""
import logging
import threading
from concurrent.futures import CancelledError, Future, TimeoutError
from enum import Enum

logger = logging.getLogger(__name__)


class ActionState(Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class RequestCancelled(Exception):
    pass


class RequestHandle:

    def __init__(self, label, future):
        self.label = label
        self._future = future
        self._lock = threading.Lock()
        self._released = False
        self._callbacks = []
        future.add_done_callback(self._on_done)

    @property
    def state(self):
        if self._released:
            return ActionState.CANCELLED
        if not self._future.done():
            return ActionState.PENDING
        if self._future.exception() is not None:
            return ActionState.FAILED
        return ActionState.CONFIRMED

    @property
    def confirmed(self):
        return self.state is ActionState.CONFIRMED

    def cancel(self):
        with self._lock:
            if self._future.done() and not self._released:
                return False
            self._released = True
            self._callbacks.clear()
        self._future.cancel()
        logger.debug('released %s', self.label)
        return True

    def wait(self, timeout=None):
        """Wait for the call itself to finish, released or not."""
        try:
            self._future.exception(timeout)
        except TimeoutError:
            return False
        except CancelledError:
            pass
        return True

    def result(self, timeout=None):
        if self._released:
            raise RequestCancelled(self.label)
        return self._future.result(timeout)

    def add_done_callback(self, fn):
        with self._lock:
            if self._released:
                return
            if not self._future.done():
                self._callbacks.append(fn)
                return
        fn(self)

    def _on_done(self, future):
        with self._lock:
            if self._released:
                return
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn(self)


class Dispatcher:
    """Starts every call on its own daemon thread.

    Nothing is shared between calls, so a backend call that never answers
    only holds the view waiting on it, and does not keep the process alive.
    """

    def submit(self, label, fn, *args, **kwargs):
        future = Future()
        thread = threading.Thread(target=_run, args=(future, fn, args, kwargs),
                                  name=f'storefront-api-{label}', daemon=True)
        thread.start()
        return RequestHandle(label, future)


def _run(future, fn, args, kwargs):
    if not future.set_running_or_notify_cancel():
        return
    try:
        result = fn(*args, **kwargs)
    except Exception as e:
        future.set_exception(e)
    else:
        future.set_result(result)


class ViewScope:
    """Handles owned by one view; anything unfinished is released on exit."""

    def __init__(self, dispatcher=None):
        self.dispatcher = dispatcher or Dispatcher()
        self.handles = []

    def fetch(self, label, fn, *args, **kwargs):
        handle = self.dispatcher.submit(label, fn, *args, **kwargs)
        self.handles.append(handle)
        return handle

    def release(self):
        for handle in self.handles:
            if handle.state is ActionState.PENDING:
                handle.cancel()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
