import signal
import sys
import logging
import os
from camstream.broadcast_hub import BroadcastHub
from camstream.camera_backends import BackendSelector
from camstream.capture_supervisor import CaptureSupervisor
from camstream.dispatcher import Dispatcher
from camstream.subscriber_registry import SubscriberRegistry
from camstream.web_server import WebServer


class ProcessManager:
    def __init__(self, config, popen=None):
        self.config = config
        capture = config['capture']

        self.selector = BackendSelector(config['camera'])
        self.hub = BroadcastHub(chunk_size=capture['chunk_size'])
        self.registry = SubscriberRegistry()

        supervisor_kwargs = {}
        if popen is not None:
            supervisor_kwargs['popen'] = popen
        self.supervisor = CaptureSupervisor(
            self.hub,
            self.selector,
            restart_delay=capture['restart_delay'],
            max_restarts=capture['max_restarts'],
            **supervisor_kwargs
        )

        self.web_server = WebServer(config, self.create_dispatcher)
        self.dispatcher = self.web_server.dispatcher

    def create_dispatcher(self, notify, broadcast):
        return Dispatcher(self.registry, self.hub, self.selector,
                          self.supervisor, notify, broadcast)

    def start_all(self):
        """Configure logging and signals, then serve until shutdown"""
        self.setup_logging()

        # Setup signal handlers
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)

        self.log_camera_probe()

        port = self.config['server']['port']
        print("\n" + "="*60)
        print("  Camera Streaming Server")
        print("="*60)
        print(f"  Web Interface: http://[PI_IP]:{port}")
        print(f"  Status:        http://[PI_IP]:{port}/api/status")
        print("="*60)
        print("\nPress Ctrl+C to stop\n")

        self.web_server.run()

    def log_camera_probe(self):
        available = []
        for variant, present in self.selector.probe_all():
            logging.info(f"Backend {variant.value}: {'available' if present else 'not found'}")
            if present:
                available.append(variant.value)
        if available:
            logging.info(f"Camera detected: {available[0]}")
        else:
            logging.warning("No camera backend found, stream will start when a camera appears")

    def stop_all(self):
        """Stop the capture session, waiting briefly for it to exit"""
        logging.info("Stopping capture...")
        self.supervisor.stop(wait=self.config['capture']['stop_timeout'])
        logging.info("Capture stopped")

    def handle_signal(self, signum, frame):
        """Handle shutdown signals"""
        logging.info(f"Received signal {signum}, shutting down...")
        self.stop_all()
        sys.exit(0)

    def setup_logging(self):
        """Setup logging configuration"""
        log_config = self.config['logging']
        handlers = [logging.StreamHandler()]

        log_file = log_config.get('file')
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            handlers.insert(0, logging.FileHandler(log_file))

        logging.basicConfig(
            level=getattr(logging, log_config['level']),
            format=log_config['format'],
            handlers=handlers,
            force=True
        )
