class CamstreamError(Exception):
    """Base class for camera streaming server errors"""


class ConfigError(CamstreamError):
    pass


class NoCameraAvailable(CamstreamError):
    """No supported capture backend was detected on this host"""

    def __init__(self, message="Camera not available"):
        super().__init__(message)


class CaptureLaunchFailed(CamstreamError):
    """The capture process could not be spawned"""

    def __init__(self, backend_name, reason):
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Failed to launch {backend_name}: {reason}")


class CaptureCrashed(CamstreamError):
    """A running capture process exited abnormally"""

    def __init__(self, backend_name, exit_code):
        self.backend_name = backend_name
        self.exit_code = exit_code
        super().__init__(f"{backend_name} exited with code {exit_code}")


class SubscriberDeliveryFailed(CamstreamError):
    def __init__(self, subscriber_id, cause):
        self.subscriber_id = subscriber_id
        self.cause = cause
        super().__init__(f"Delivery to {subscriber_id} failed: {cause}")
