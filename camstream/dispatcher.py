import logging
import threading

from camstream.errors import CaptureLaunchFailed, NoCameraAvailable


class Dispatcher:
    """Translate viewer session events into registry/supervisor calls.

    ``notify(subscriber_id, event, data)`` sends an event to one viewer;
    ``broadcast(event, data)`` sends one to every viewer.
    """

    def __init__(self, registry, hub, selector, supervisor, notify, broadcast=None):
        self.registry = registry
        self.hub = hub
        self.selector = selector
        self.supervisor = supervisor
        self._notify = notify
        self._broadcast = broadcast
        # Connect/disconnect/start/stop arrive on server worker threads
        self._lock = threading.RLock()
        supervisor.add_listener(self._on_capture_state)

    def connect(self, subscriber_id, transport):
        with self._lock:
            first = self.registry.add(subscriber_id)
            self.hub.subscribe(subscriber_id, transport)
            logging.info(f"Client connected: {subscriber_id} ({self.registry.count()} total)")
            self._notify(subscriber_id, 'status', self.session_status())
            if first:
                self._start_capture(subscriber_id)
            else:
                self.broadcast_status()

    def disconnect(self, subscriber_id):
        with self._lock:
            self.hub.unsubscribe(subscriber_id)
            last = self.registry.remove(subscriber_id)
            logging.info(f"Client disconnected: {subscriber_id}")
            if last:
                logging.info("No clients connected, stopping stream")
                if not self.supervisor.stop():
                    self.broadcast_status()
            else:
                self.broadcast_status()

    def request_start(self, subscriber_id, options=None):
        options = options or {}
        with self._lock:
            logging.info(f"Client {subscriber_id} requested stream start")
            if self.supervisor.is_active:
                return False
            return self._start_capture(subscriber_id, bool(options.get('ultraLowLatency')))

    def request_stop(self, subscriber_id):
        """Tear down capture; viewers stay subscribed"""
        with self._lock:
            logging.info(f"Client {subscriber_id} requested stream stop")
            return self.supervisor.stop()

    def _start_capture(self, subscriber_id, low_latency=False):
        try:
            backend = self.selector.select(low_latency=low_latency)
            return self.supervisor.start(backend)
        except (NoCameraAvailable, CaptureLaunchFailed) as e:
            logging.error(f"Camera start failed: {e}")
            self._notify(subscriber_id, 'error', str(e))
            return False

    def session_status(self):
        return {
            'connected': True,
            'streaming': self.supervisor.is_active,
            'clients': self.registry.count(),
        }

    def status(self):
        return {
            'streaming': self.supervisor.is_active,
            'clients': self.registry.count(),
            'camera': 'available' if self.selector.camera_present() else 'not found',
        }

    def broadcast_status(self):
        if self._broadcast is not None:
            self._broadcast('status', self.session_status())

    def _on_capture_state(self, old_state, new_state):
        self.broadcast_status()
