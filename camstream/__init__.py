"""
Live Camera Streaming Server

Relays the raw output of an on-device capture process (rpicam-vid, raspivid
or ffmpeg) to any number of browser viewers over Socket.IO, starting the
camera on the first viewer and stopping it when the last one leaves.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .capture_supervisor import CaptureSupervisor, CaptureState
from .broadcast_hub import BroadcastHub
from .web_server import WebServer

__all__ = ["CaptureSupervisor", "CaptureState", "BroadcastHub", "WebServer"]
