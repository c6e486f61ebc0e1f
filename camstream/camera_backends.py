import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum

from camstream.errors import NoCameraAvailable


class BackendVariant(Enum):
    HARDWARE_ENCODER = 'HardwareEncoder'
    SOFTWARE_TRANSCODE = 'SoftwareTranscode'
    LEGACY_CAPTURE = 'LegacyCapture'


# Probe order; the first available variant wins
PRIORITY = (
    BackendVariant.HARDWARE_ENCODER,
    BackendVariant.SOFTWARE_TRANSCODE,
    BackendVariant.LEGACY_CAPTURE,
)

CAPTURE_UTILITIES = ('rpicam-vid', 'libcamera-vid')
LEGACY_UTILITY = 'raspivid'
TRANSCODER = 'ffmpeg'

LOW_LATENCY_FLAGS = ('-fflags', 'nobuffer', '-flags', 'low_delay')


@dataclass(frozen=True)
class CaptureBackend:
    """One concrete way of producing a video stream on stdout.

    ``commands`` is the pipeline in order: each entry is an argv tuple and
    the stdout of one stage feeds the stdin of the next.
    """
    variant: BackendVariant
    commands: tuple
    output_format: str
    low_latency: bool = False

    @property
    def name(self):
        return self.variant.value

    @property
    def is_pipeline(self):
        return len(self.commands) > 1


class BackendSelector:
    """Probe the host for camera software/hardware and pick a backend"""

    def __init__(self, camera_config, which=shutil.which, exists=os.path.exists):
        self.camera = camera_config
        self._which = which
        self._exists = exists

    def camera_present(self):
        return self._exists(self.camera['device'])

    def _capture_utility(self):
        for tool in CAPTURE_UTILITIES:
            if self._which(tool):
                return tool
        return None

    def is_available(self, variant):
        if variant is BackendVariant.HARDWARE_ENCODER:
            return self.camera_present() and bool(self._which(TRANSCODER))
        if variant is BackendVariant.SOFTWARE_TRANSCODE:
            return self._capture_utility() is not None and bool(self._which(TRANSCODER))
        if variant is BackendVariant.LEGACY_CAPTURE:
            return bool(self._which(LEGACY_UTILITY))
        return False

    def probe_all(self):
        """Availability of every variant in priority order"""
        return [(variant, self.is_available(variant)) for variant in PRIORITY]

    def select(self, low_latency=False):
        for variant in PRIORITY:
            if self.is_available(variant):
                backend = self.build(variant, low_latency)
                logging.info(f"Selected capture backend: {backend.name}")
                return backend
        raise NoCameraAvailable()

    def build(self, variant, low_latency=False):
        if variant is BackendVariant.HARDWARE_ENCODER:
            commands = (self._hardware_encoder_command(low_latency),)
            output_format = 'mpegts'
        elif variant is BackendVariant.SOFTWARE_TRANSCODE:
            commands = (self._capture_command(), self._transcode_command(low_latency))
            output_format = 'mpegts'
        elif variant is BackendVariant.LEGACY_CAPTURE:
            commands = (self._legacy_command(low_latency),)
            output_format = 'h264'
        else:
            raise ValueError(f"Unknown backend variant: {variant}")
        return CaptureBackend(variant, commands, output_format, low_latency)

    def _hardware_encoder_command(self, low_latency):
        cam = self.camera
        args = [
            TRANSCODER, '-hide_banner',
            '-f', 'v4l2',
            '-framerate', str(cam['framerate']),
            '-video_size', f"{cam['width']}x{cam['height']}",
            '-i', cam['device'],
            '-c:v', 'h264_v4l2m2m',
            '-b:v', str(cam['bitrate']),
            '-g', str(cam['keyframe_interval']),
            '-pix_fmt', 'yuv420p',
        ]
        if low_latency:
            args.extend(LOW_LATENCY_FLAGS)
        args.extend(['-f', 'mpegts', '-'])
        return tuple(args)

    def _capture_command(self):
        cam = self.camera
        return (
            self._capture_utility(),
            '-t', '0',
            '--width', str(cam['width']),
            '--height', str(cam['height']),
            '--framerate', str(cam['framerate']),
            '--inline',
            '--flush',
            '-n',
            '-o', '-',
        )

    def _transcode_command(self, low_latency):
        cam = self.camera
        keyint = cam['keyframe_interval']
        args = [
            TRANSCODER, '-hide_banner',
            '-i', '-',
            '-c:v', 'libx264',
            '-preset', 'ultrafast',
            '-tune', 'zerolatency',
            '-profile:v', 'baseline',
            '-level', '3.0',
            '-pix_fmt', 'yuv420p',
            '-x264opts', f'keyint={keyint}:min-keyint={keyint}:scenecut=0:bframes=0',
            '-bufsize', '64k',
            '-maxrate', f"{cam['bitrate'] // 1000}k",
            '-g', str(keyint),
        ]
        if low_latency:
            args.extend(LOW_LATENCY_FLAGS)
            args.extend(['-strict', 'experimental'])
        args.extend(['-f', 'mpegts', '-'])
        return tuple(args)

    def _legacy_command(self, low_latency):
        cam = self.camera
        args = [
            LEGACY_UTILITY,
            '-t', '0',
            '-w', str(cam['width']),
            '-h', str(cam['height']),
            '-fps', str(cam['framerate']),
            '-b', str(cam['bitrate']),
        ]
        if low_latency:
            # Inline SPS/PPS headers and flush after every frame
            args.extend(['-ih', '-fl'])
        args.extend(['-o', '-'])
        return tuple(args)
