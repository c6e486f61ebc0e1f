import logging
import threading

from camstream.errors import SubscriberDeliveryFailed


class BroadcastHub:
    """Fan out raw chunks from the active capture sink to every subscriber.

    Chunks are passed through byte-exact and never buffered: a subscriber
    whose transport rejects a chunk, or reports itself busy, simply misses
    that chunk. A subscriber added mid-stream starts with the next chunk.
    """

    def __init__(self, chunk_size=65536):
        self.chunk_size = chunk_size
        self._lock = threading.Lock()
        self._subscribers = {}
        self._sink = None
        self._reader = None
        self.chunks_relayed = 0
        self.bytes_relayed = 0
        self.delivery_failures = 0
        self.backpressure_drops = 0

    @property
    def has_sink(self):
        with self._lock:
            return self._sink is not None

    def attach(self, sink):
        """Make sink the active source and start pumping it"""
        with self._lock:
            self._sink = sink
            reader = threading.Thread(
                target=self._pump,
                args=(sink,),
                name='HubReader',
                daemon=True
            )
            self._reader = reader
        reader.start()
        logging.info("Broadcast hub attached to capture output")
        return reader

    def detach(self):
        with self._lock:
            if self._sink is None:
                return
            self._sink = None
            self._reader = None
        logging.info("Broadcast hub detached from capture output")

    def join(self, timeout=None):
        """Wait for the current reader thread to finish"""
        with self._lock:
            reader = self._reader
        if reader is not None:
            reader.join(timeout)

    def subscribe(self, subscriber_id, transport):
        with self._lock:
            self._subscribers[subscriber_id] = transport

    def unsubscribe(self, subscriber_id):
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    def subscriber_ids(self):
        with self._lock:
            return list(self._subscribers)

    def _pump(self, sink):
        while True:
            try:
                chunk = sink.read(self.chunk_size)
            except (OSError, ValueError) as e:
                # ValueError: read on a pipe closed by stop()
                logging.debug(f"Capture output closed: {e}")
                break
            if not chunk:
                break
            with self._lock:
                if self._sink is not sink:
                    break
            self.on_data(chunk)
        logging.debug("Hub reader finished")

    def on_data(self, chunk):
        """Deliver one chunk to every current subscriber"""
        with self._lock:
            targets = list(self._subscribers.items())
            self.chunks_relayed += 1
            self.bytes_relayed += len(chunk)

        for subscriber_id, transport in targets:
            if getattr(transport, 'closed', False):
                continue
            if getattr(transport, 'busy', False):
                # Backpressured: this viewer misses the chunk
                with self._lock:
                    self.backpressure_drops += 1
                continue
            try:
                transport.send(chunk)
            except Exception as e:
                failure = SubscriberDeliveryFailed(subscriber_id, e)
                with self._lock:
                    self.delivery_failures += 1
                logging.debug(str(failure))

    def stats(self):
        with self._lock:
            return {
                'subscribers': len(self._subscribers),
                'attached': self._sink is not None,
                'chunks_relayed': self.chunks_relayed,
                'bytes_relayed': self.bytes_relayed,
                'delivery_failures': self.delivery_failures,
                'backpressure_drops': self.backpressure_drops,
            }
