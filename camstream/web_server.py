from flask import Flask, request, jsonify, send_from_directory, abort
from flask_cors import CORS
from flask_socketio import SocketIO
import time
import logging
import os


# A binary Socket.IO event is a header packet plus one attachment packet
PACKETS_PER_CHUNK = 2


class SocketTransport:
    """Delivers video chunks to one Socket.IO client.

    The client counts as busy while its Engine.IO send queue holds
    ``max_pending`` chunks or more; the hub then skips it instead of
    letting the queue grow.
    """

    def __init__(self, socketio, sid, max_pending=8):
        self.socketio = socketio
        self.sid = sid
        self.max_pending = max_pending
        self.closed = False

    def pending_packets(self):
        server = self.socketio.server
        if server is None:
            return 0
        eio_sid = server.manager.eio_sid_from_sid(self.sid, '/')
        socket = server.eio.sockets.get(eio_sid) if eio_sid is not None else None
        if socket is None:
            return 0
        return socket.queue.qsize()

    @property
    def busy(self):
        return self.pending_packets() >= self.max_pending * PACKETS_PER_CHUNK

    def send(self, chunk):
        self.socketio.emit('video-data', chunk, to=self.sid)

    def close(self):
        self.closed = True


class WebServer:
    def __init__(self, config, dispatcher_factory):
        self.config = config
        self.start_time = time.time()
        self.transports = {}

        server_config = self.config['server']
        self.static_folder = os.path.abspath(server_config['static_folder'])

        self.app = Flask(__name__,
                         static_folder=self.static_folder,
                         static_url_path='/static')

        CORS(self.app, resources={
            r"/*": {
                "origins": server_config['cors_origins'],
                "methods": ["GET", "POST", "OPTIONS"],
                "allow_headers": ["Content-Type"]
            }
        })

        self.socketio = SocketIO(self.app,
                                 cors_allowed_origins=server_config['cors_origins'],
                                 async_mode='threading')

        self.dispatcher = dispatcher_factory(self.notify, self.broadcast)

        self.setup_routes()
        self.setup_socket_events()

    def notify(self, sid, event, data):
        self.socketio.emit(event, data, to=sid)

    def broadcast(self, event, data):
        self.socketio.emit(event, data)

    def setup_routes(self):
        """Setup Flask routes"""

        @self.app.route('/')
        def index():
            if not os.path.exists(os.path.join(self.static_folder, 'index.html')):
                abort(404)
            return send_from_directory(self.static_folder, 'index.html')

        @self.app.route('/api/status')
        def status():
            return jsonify(self.dispatcher.status())

        @self.app.route('/api/capture')
        def capture():
            info = self.dispatcher.supervisor.snapshot()
            info['hub'] = self.dispatcher.hub.stats()
            return jsonify(info)

        # Health check endpoint
        @self.app.route('/health')
        def health():
            return {
                'status': 'ok',
                'timestamp': time.time(),
                'uptime': time.time() - self.start_time
            }

    def setup_socket_events(self):
        """Setup Socket.IO event handlers"""

        @self.socketio.on('connect')
        def on_connect(auth=None):
            sid = request.sid
            transport = SocketTransport(
                self.socketio, sid,
                max_pending=self.config['capture']['max_pending_chunks']
            )
            self.transports[sid] = transport
            self.dispatcher.connect(sid, transport)

        @self.socketio.on('disconnect')
        def on_disconnect(reason=None):
            sid = request.sid
            transport = self.transports.pop(sid, None)
            if transport is not None:
                transport.close()
            self.dispatcher.disconnect(sid)

        @self.socketio.on('start-stream')
        def on_start_stream(options=None):
            if not isinstance(options, dict):
                options = {}
            self.dispatcher.request_start(request.sid, options)

        @self.socketio.on('stop-stream')
        def on_stop_stream(*args):
            self.dispatcher.request_stop(request.sid)

    def run(self):
        """Start web server"""
        host = self.config['server']['host']
        port = self.config['server']['port']

        logging.info(f"Starting web server on {host}:{port}")
        self.socketio.run(
            self.app,
            host=host,
            port=port,
            debug=False,
            allow_unsafe_werkzeug=True
        )
