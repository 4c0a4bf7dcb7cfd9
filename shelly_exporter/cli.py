# Shelly Exporter - Command Line Entry Point
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Loads the configuration, builds the device connections and serves the
# Prometheus metrics endpoint until interrupted.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, List, Optional

import requests
from prometheus_client import CollectorRegistry, generate_latest, start_http_server

from . import __version__
from .collector import ShellyCollector
from .config import (DEFAULT_CONFIG_PATH, ConfigError, ExporterConfig, load_config, refresh_config_file,
                     write_example_config)
from .device import DeviceConnection

log = logging.getLogger(__name__)

LOG_FORMAT = '[%(asctime)s] %(levelname)s: %(name)s: %(message)s'


def setup_logging(config: Optional[ExporterConfig], verbose: bool = False) -> None:
    if verbose:
        level_name = "DEBUG"
    else:
        level_name = config.log_level if config is not None else "INFO"
    logging.basicConfig(level=getattr(logging, level_name), format=LOG_FORMAT, datefmt='%H:%M:%S')
    if config is not None and config.log_to_file:
        directory = os.path.dirname(config.log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handler = RotatingFileHandler(config.log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    # websocket-client logs every handshake failure on its own
    logging.getLogger("websocket").setLevel(logging.CRITICAL if not verbose else logging.DEBUG)


def build_devices(config: ExporterConfig, session: Optional[requests.Session] = None,
                  connector: Optional[Callable[[str, float], Any]] = None) -> List[DeviceConnection]:
    devices = []
    for target in config.targets:
        log.info("Target %s: %s at %s", target.name, target.model, target.url)
        devices.append(DeviceConnection(target, session=session, connector=connector))
    return devices


def build_registry(collector: ShellyCollector) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(collector)
    return registry


def run_once(collector: ShellyCollector) -> int:
    registry = build_registry(collector)
    sys.stdout.write(generate_latest(registry).decode("utf-8"))
    sys.stdout.flush()
    return 0 if all(d.up for d in collector.devices) else 1


def serve(collector: ShellyCollector, address: str, port: int, stop: Optional[threading.Event] = None) -> int:
    """Serve /metrics until SIGINT/SIGTERM or until `stop` is set."""
    registry = build_registry(collector)
    for device in collector.devices:
        device.connect()

    if stop is None:
        stop = threading.Event()

    def _stop(signum, frame):
        log.info("Signal %d received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    try:
        server, _thread = start_http_server(port, addr=address, registry=registry)
    except OSError as e:
        log.error("Cannot listen on %s:%d: %s", address, port, e)
        return 1
    log.info("Serving metrics on http://%s:%d/metrics", address, port)

    stop.wait()
    server.shutdown()
    server.server_close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Prometheus exporter for Shelly power meters")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"YAML configuration file (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--listen-address", default="0.0.0.0", help="Address to serve metrics on (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to serve metrics on (overrides listen_port)")
    parser.add_argument("--once", action="store_true", help="Refresh all devices once, print the metrics and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose (DEBUG) logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    if not os.path.exists(args.config):
        setup_logging(None, args.verbose)
        write_example_config(args.config)
        log.error("No configuration found; an example was written to %s, edit it and start again", args.config)
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        setup_logging(None, args.verbose)
        log.error("%s", e)
        return 2
    setup_logging(config, args.verbose)
    refresh_config_file(config, args.config)
    log.info("Shelly exporter %s starting with %d target(s)", __version__, len(config.targets))

    session = requests.Session()
    collector = ShellyCollector(build_devices(config, session=session))
    try:
        if args.once:
            return run_once(collector)
        return serve(collector, args.listen_address, args.port or config.listen_port)
    finally:
        collector.close()
        session.close()


if __name__ == "__main__":
    sys.exit(main())
