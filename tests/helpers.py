"""Fakes for processes, timers and transports used across the tests."""

import io
import itertools
import subprocess
import threading
import time


_pids = itertools.count(4000)


class FakeProcess:
    """Stands in for subprocess.Popen; exits only when told to."""

    def __init__(self, argv, stdout_data=b'', stderr_data=b'', **kwargs):
        self.argv = argv
        self.kwargs = kwargs
        self.pid = next(_pids)
        self.stdout = io.BytesIO(stdout_data)
        self.stderr = io.BytesIO(stderr_data)
        self.returncode = None
        self.terminated = False
        self.killed = False
        self._exited = threading.Event()

    def finish(self, code):
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.argv, timeout)
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.finish(-15)

    def kill(self):
        self.killed = True
        self.finish(-9)


class FakePopen:
    """Callable replacing subprocess.Popen, recording every launch."""

    def __init__(self):
        self.processes = []
        self.fail_with = None
        self.stdout_data = b''
        self.stderr_data = b''

    def __call__(self, argv, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        proc = FakeProcess(argv, self.stdout_data, self.stderr_data, **kwargs)
        self.processes.append(proc)
        return proc

    @property
    def last(self):
        return self.processes[-1]


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """Run the callback as a thread timer would, unless cancelled"""
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if t.started and not t.cancelled]


class RecordingTransport:
    def __init__(self):
        self.chunks = []
        self.closed = False

    def send(self, chunk):
        self.chunks.append(chunk)


class BusyTransport:
    """A viewer whose send queue is full"""

    closed = False
    busy = True

    def __init__(self):
        self.attempts = 0

    def send(self, chunk):
        self.attempts += 1


class FailingTransport:
    closed = False

    def __init__(self):
        self.attempts = 0

    def send(self, chunk):
        self.attempts += 1
        raise ConnectionResetError("client went away")


def wait_for(predicate, timeout=2.0):
    """Poll predicate until it is true or timeout expires"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_which(*tools):
    """which() replacement that finds only the given tools"""
    available = set(tools)
    return lambda tool: f'/usr/bin/{tool}' if tool in available else None
