import copy
import logging
import os

import yaml

from camstream.errors import ConfigError


DEFAULT_CONFIG_PATH = 'config/config.yaml'

DEFAULTS = {
    'server': {
        'host': '0.0.0.0',
        'port': 3000,
        'cors_origins': '*',
        'static_folder': 'static',
    },
    'camera': {
        'device': '/dev/video0',
        'width': 640,
        'height': 480,
        'framerate': 20,
        'bitrate': 1000000,
        'keyframe_interval': 20,
    },
    'capture': {
        'restart_delay': 5.0,
        'max_restarts': None,
        'chunk_size': 65536,
        'stop_timeout': 5.0,
        'max_pending_chunks': 8,
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': 'logs/camera_server.log',
    },
}


def merge(base, override):
    """Recursively merge override into a copy of base"""
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path=None, environ=None, overrides=None):
    """Load YAML configuration on top of the built-in defaults.

    A missing file is not an error; the defaults are used as-is. The PORT
    environment variable wins over the configured port, and overrides
    (command line values) win over both. Everything is validated last.
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get('CAMSTREAM_CONFIG', DEFAULT_CONFIG_PATH)

    loaded = {}
    if os.path.exists(path):
        with open(path, 'r') as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
    else:
        logging.info(f"No config file at {path}, using defaults")

    config = merge(DEFAULTS, loaded)

    if environ.get('PORT'):
        config['server']['port'] = environ['PORT']

    if overrides:
        config = merge(config, overrides)

    validate(config)
    return config


def validate(config):
    server = config['server']
    try:
        server['port'] = int(server['port'])
    except (TypeError, ValueError):
        raise ConfigError(f"server.port must be an integer, got {server['port']!r}")
    if not 0 < server['port'] < 65536:
        raise ConfigError(f"server.port out of range: {server['port']}")

    capture = config['capture']
    for key in ('restart_delay', 'stop_timeout'):
        try:
            capture[key] = float(capture[key])
        except (TypeError, ValueError):
            raise ConfigError(f"capture.{key} must be a number")
        if capture[key] < 0:
            raise ConfigError(f"capture.{key} must not be negative")

    if capture['max_restarts'] is not None:
        if not isinstance(capture['max_restarts'], int) or capture['max_restarts'] < 0:
            raise ConfigError("capture.max_restarts must be a non-negative integer or null")

    if not isinstance(capture['chunk_size'], int) or capture['chunk_size'] <= 0:
        raise ConfigError("capture.chunk_size must be a positive integer")

    if not isinstance(capture['max_pending_chunks'], int) or capture['max_pending_chunks'] <= 0:
        raise ConfigError("capture.max_pending_chunks must be a positive integer")

    for key in ('width', 'height', 'framerate', 'bitrate', 'keyframe_interval'):
        value = config['camera'][key]
        if not isinstance(value, int) or value <= 0:
            raise ConfigError(f"camera.{key} must be a positive integer")

    level = str(config['logging']['level']).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"Unknown logging level: {config['logging']['level']}")
    config['logging']['level'] = level
