# packet_sniffer/cli.py
# The command-line entrypoint for the capture agent. Runs the agent until SIGINT/SIGTERM,
# or lists capturable interfaces so an operator can pick adapter prefixes.
import argparse
import signal
import sys
import threading

from loguru import logger

from packet_sniffer.capture.backends.scapy_backend import create_backend
from packet_sniffer.capture.manager import CaptureManager
from packet_sniffer.config_loader import load_config
from packet_sniffer.errors import PacketSnifferError, UnsupportedPlatformError
from packet_sniffer.logger import setup_logging
from packet_sniffer.storage.influx_client import InfluxStorage

SUPPORTED_PLATFORMS = ("win32", "linux", "darwin")


def check_platform(platform: str = sys.platform) -> None:
    if not platform.startswith(SUPPORTED_PLATFORMS):
        raise UnsupportedPlatformError("Unsupported operating system", {"platform": platform})


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, frame):
        logger.warning("Received signal {}, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def list_interfaces(cfg) -> int:
    backend = create_backend(cfg.backend, statistics_interval=cfg.statistics_sample_interval_sec)
    interfaces = backend.list_interfaces()
    if not interfaces:
        logger.error("No capturable interfaces were found")
        return 1
    for iface in interfaces:
        print(f"{iface.index:>4}  {iface.name:<24} {iface.address or '-':<16} {iface.description}")
    return 0


def run_agent(cfg, stop_event: threading.Event) -> int:
    check_platform()
    backend = create_backend(cfg.backend, statistics_interval=cfg.statistics_sample_interval_sec)
    sink = InfluxStorage.connect(
        url=cfg.influx.url,
        bucket=cfg.influx.bucket,
        token=cfg.influx.token,
        org=cfg.influx.org,
        measurement=cfg.influx.measurement,
        timeout_ms=cfg.influx.timeout_ms,
        retry_delay=cfg.sink_retry_delay_sec,
        stop_event=stop_event,
    )
    if sink is None:
        logger.info("Stopped before the stream store was reachable")
        return 0
    manager = CaptureManager(cfg, backend, sink, stop_event=stop_event)
    manager.run()
    logger.info("Agent stopped")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="packet-sniffer")
    parser.add_argument("--config", "-c", default="config/config.yaml")
    parser.add_argument("--mode", choices=["run", "interfaces"], default="run")
    parser.add_argument("--log-level", default=None, help="Overrides logging.level from the config file")
    args = parser.parse_args(argv)

    setup_logging(args.log_level or "INFO")
    try:
        cfg = load_config(args.config)
    except PacketSnifferError as e:
        logger.critical("Failed to load configuration: {}", e)
        return 1
    setup_logging(args.log_level or cfg.logging.level, cfg.logging.file,
                  rotation=cfg.logging.rotation, retention=cfg.logging.retention)
    logger.info("Loaded configuration from {}", args.config)

    if args.mode == "interfaces":
        return list_interfaces(cfg)

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    try:
        return run_agent(cfg, stop_event)
    except PacketSnifferError as e:
        logger.critical("Agent terminated: {}", e)
        return 1
    finally:
        logger.complete()


if __name__ == "__main__":
    sys.exit(main())
