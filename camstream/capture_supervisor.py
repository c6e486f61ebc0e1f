import codecs
import logging
import re
import subprocess
import threading
import time
from enum import Enum

from camstream.errors import CaptureCrashed, CaptureLaunchFailed, NoCameraAvailable


# ffmpeg/rpicam-vid status output, not faults
PROGRESS_MARKERS = ('frame=', 'fps=', 'speed=', 'bitrate=')

# Seconds to wait for output readers to reach EOF after the pipeline exits
READER_JOIN_TIMEOUT = 2.0


class CaptureState(Enum):
    IDLE = 'idle'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'
    CRASHED = 'crashed'
    RESTARTING = 'restarting'


def is_progress_line(line):
    return any(marker in line for marker in PROGRESS_MARKERS)


class CaptureSession:
    """One running capture pipeline"""

    def __init__(self, backend, processes, restart_attempts=0):
        self.backend = backend
        self.processes = processes
        self.started_at = time.time()
        self.last_exit_code = None
        self.restart_attempts = restart_attempts
        self.stop_requested = False
        self.readers = []

    @property
    def output(self):
        return self.processes[-1].stdout

    @property
    def pids(self):
        return [proc.pid for proc in self.processes]


class CaptureSupervisor:
    """Owns the single capture process and its restart policy.

    States: idle -> starting -> running -> stopping -> idle, with
    running -> crashed -> restarting -> starting on an unsolicited
    non-zero exit. Every transition happens under one lock; process exit
    and restart timers arrive on their own threads and are serialized
    through it.
    """

    def __init__(self, hub, selector, restart_delay=5.0, max_restarts=None,
                 popen=subprocess.Popen, timer_factory=threading.Timer):
        self._hub = hub
        self._selector = selector
        self.restart_delay = restart_delay
        self.max_restarts = max_restarts
        self._popen = popen
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = CaptureState.IDLE
        self._session = None
        self._listeners = []
        self._restart_timer = None
        self._restart_generation = 0
        self._restart_attempts = 0
        self._low_latency = False
        self.last_exit_code = None

    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def is_active(self):
        with self._lock:
            return self._state is not CaptureState.IDLE

    @property
    def session(self):
        with self._lock:
            return self._session

    def add_listener(self, callback):
        """callback(old_state, new_state) on every transition"""
        self._listeners.append(callback)

    def _set_state(self, new_state):
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logging.info(f"Capture state: {old_state.value} -> {new_state.value}")
        for callback in list(self._listeners):
            try:
                callback(old_state, new_state)
            except Exception:
                logging.exception("Capture state listener failed")

    def start(self, backend):
        """Launch backend; a no-op returning False unless idle.

        Raises CaptureLaunchFailed if the process cannot be spawned.
        """
        with self._lock:
            if self._state is not CaptureState.IDLE:
                logging.info(f"Capture already {self._state.value}, ignoring start")
                return False
            self._low_latency = backend.low_latency
            self._restart_attempts = 0
            self._set_state(CaptureState.STARTING)
            try:
                self._launch(backend, restart_attempts=0)
            except CaptureLaunchFailed:
                self._set_state(CaptureState.IDLE)
                raise
            return True

    def _launch(self, backend, restart_attempts):
        try:
            processes = self._spawn(backend)
        except OSError as e:
            logging.error(f"Could not spawn {backend.name}: {e}")
            raise CaptureLaunchFailed(backend.name, e) from e

        session = CaptureSession(backend, processes, restart_attempts)
        self._session = session
        session.readers.append(self._hub.attach(session.output))

        for index, proc in enumerate(processes):
            stage = backend.commands[index][0]
            reader = threading.Thread(
                target=self._drain_stderr,
                args=(proc, stage),
                name=f'CaptureStderr-{stage}',
                daemon=True
            )
            session.readers.append(reader)
            reader.start()

        threading.Thread(
            target=self._watch,
            args=(session,),
            name='CaptureWatcher',
            daemon=True
        ).start()

        self._set_state(CaptureState.RUNNING)
        logging.info(f"Capture started with {backend.name} (pids {session.pids})")

    def _spawn(self, backend):
        processes = []
        upstream = None
        try:
            for argv in backend.commands:
                proc = self._popen(
                    list(argv),
                    stdin=upstream if upstream is not None else subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    bufsize=0
                )
                if upstream is not None:
                    # The next stage owns the read end now
                    upstream.close()
                processes.append(proc)
                upstream = proc.stdout
        except OSError:
            for proc in processes:
                if proc.poll() is None:
                    proc.kill()
            raise
        return processes

    def _drain_stderr(self, proc, stage):
        stream = proc.stderr
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        pending = ''
        while True:
            try:
                data = stream.read(4096)
            except (OSError, ValueError):
                break
            if not data:
                break
            pending += decoder.decode(data)
            # The last piece may be a line still being written
            *lines, pending = re.split(r'[\r\n]', pending)
            for line in lines:
                self._log_stderr(stage, line)
        self._log_stderr(stage, pending + decoder.decode(b'', final=True))

    def _log_stderr(self, stage, line):
        line = line.strip()
        if not line:
            return
        if is_progress_line(line):
            logging.debug(f"{stage} status: {line}")
        else:
            logging.info(f"{stage}: {line}")

    def _watch(self, session):
        last = session.processes[-1]
        code = last.wait()
        for proc in session.processes[:-1]:
            upstream_code = proc.poll()
            if upstream_code is None:
                # Downstream is gone, the capture stage can't make progress
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
            elif upstream_code != 0 and code == 0:
                code = upstream_code
        self._close_pipes(session)
        self._on_exit(session, code)

    def _close_pipes(self, session):
        """Release the pipe ends once every reader has seen EOF"""
        for reader in session.readers:
            reader.join(READER_JOIN_TIMEOUT)
        for proc in session.processes:
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()

    def _on_exit(self, session, code):
        with self._lock:
            session.last_exit_code = code
            self.last_exit_code = code

            if session is not self._session or session.stop_requested:
                logging.info(f"Capture process exited with code {code} after stop")
                return

            self._hub.detach()
            self._session = None

            if code is not None and code > 0:
                crash = CaptureCrashed(session.backend.name, code)
                logging.error(f"Capture crashed: {crash}")
                self._set_state(CaptureState.CRASHED)
                self._schedule_restart(session.restart_attempts + 1)
            else:
                logging.info(f"Capture process exited with code {code}, not restarting")
                self._set_state(CaptureState.IDLE)

    def _schedule_restart(self, attempt):
        if self.max_restarts is not None and attempt > self.max_restarts:
            logging.error(f"Capture crashed {attempt} times since last start, giving up")
            self._set_state(CaptureState.IDLE)
            return

        self._restart_generation += 1
        self._restart_attempts = attempt
        logging.warning(
            f"Restarting capture in {self.restart_delay:g}s (attempt {attempt})"
        )
        timer = self._timer_factory(
            self.restart_delay,
            self._restart,
            args=(self._restart_generation,)
        )
        timer.daemon = True
        self._restart_timer = timer
        timer.start()

    def _cancel_restart(self):
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None
            logging.info("Pending capture restart cancelled")
        self._restart_generation += 1

    def _restart(self, generation):
        with self._lock:
            if generation != self._restart_generation or self._state is not CaptureState.CRASHED:
                return
            self._restart_timer = None
            self._set_state(CaptureState.RESTARTING)
            self._set_state(CaptureState.STARTING)
            try:
                backend = self._selector.select(low_latency=self._low_latency)
                self._launch(backend, self._restart_attempts)
            except (NoCameraAvailable, CaptureLaunchFailed) as e:
                logging.error(f"Capture restart failed: {e}")
                self._set_state(CaptureState.CRASHED)
                self._schedule_restart(self._restart_attempts + 1)

    def stop(self, wait=None):
        """Terminate the capture pipeline without blocking.

        With wait set, block up to that many seconds per process and kill
        survivors; used during shutdown.
        """
        with self._lock:
            if self._state is CaptureState.IDLE:
                return False
            self._cancel_restart()
            session = self._session
            self._session = None
            self._set_state(CaptureState.STOPPING)
            if session is not None:
                session.stop_requested = True
                self._hub.detach()
                for proc in session.processes:
                    if proc.poll() is None:
                        logging.info(f"Sending SIGTERM to capture process {proc.pid}")
                        proc.terminate()
            self._set_state(CaptureState.IDLE)

        if wait is not None and session is not None:
            for proc in session.processes:
                try:
                    proc.wait(timeout=wait)
                except subprocess.TimeoutExpired:
                    logging.warning(f"Capture process {proc.pid} didn't stop, killing...")
                    proc.kill()
                    proc.wait()
        return True

    def snapshot(self):
        with self._lock:
            session = self._session
            info = {
                'state': self._state.value,
                'backend': None,
                'output_format': None,
                'pids': [],
                'uptime': None,
                'restart_attempts': self._restart_attempts,
                'last_exit_code': self.last_exit_code,
            }
            if session is not None:
                info['backend'] = session.backend.name
                info['output_format'] = session.backend.output_format
                info['pids'] = session.pids
                info['uptime'] = time.time() - session.started_at
            return info
