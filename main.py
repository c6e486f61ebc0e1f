#!/usr/bin/env python3
import argparse
import logging
import sys
from camstream.config import load_config
from camstream.errors import ConfigError
from camstream.process_manager import ProcessManager


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Live camera streaming server")
    parser.add_argument('--config', help="Path to YAML config (default config/config.yaml)")
    parser.add_argument('--port', type=int, help="Listen port, overrides config and PORT")
    parser.add_argument('--log-level', help="Logging level, e.g. DEBUG")
    return parser.parse_args(argv)


def cli_overrides(args):
    overrides = {}
    if args.port is not None:
        overrides['server'] = {'port': args.port}
    if args.log_level:
        overrides['logging'] = {'level': args.log_level}
    return overrides


def main(argv=None):
    """Main entry point for the camera streaming server"""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        # Load configuration
        config = load_config(args.config, overrides=cli_overrides(args))
        logging.info(f"Using port: {config['server']['port']}")

        manager = ProcessManager(config)

        # Serves until a signal handler exits
        manager.start_all()

    except ConfigError as e:
        logging.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nShutdown initiated...")
        if 'manager' in locals():
            manager.stop_all()
        sys.exit(0)
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        if 'manager' in locals():
            manager.stop_all()
        sys.exit(1)


if __name__ == "__main__":
    main()
