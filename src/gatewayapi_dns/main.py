from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Callable, List, Optional

from .cluster import ClusterClient, ClusterConfigError, KubernetesClusterClient
from .config.config_parser import AppConfig, load_config
from .config.logging_config import init_logging
from .reconciler import ResourceWatcher
from .records import RecordStore
from .servers.server import DNSServer

logger = logging.getLogger("gatewayapi_dns.main")

# Upper bound on how long shutdown waits for each watcher thread.
SHUTDOWN_JOIN_TIMEOUT = 5.0


def build_watchers(
    cfg: AppConfig,
    cluster: ClusterClient,
    store: RecordStore,
    stop_event: threading.Event,
) -> List[ResourceWatcher]:
    """Brief: Create one ResourceWatcher per configured kind.

    Inputs:
      - cfg: AppConfig supplying kinds, local address and timing knobs.
      - cluster: ClusterClient shared by all watchers.
      - store: RecordStore shared by all watchers.
      - stop_event: Cancellation signal shared by all watchers.

    Outputs:
      - List of unstarted ResourceWatcher instances.
    """

    return [
        ResourceWatcher(
            kind,
            cluster,
            store,
            cfg.local_address,
            stop_event=stop_event,
            probe_interval=cfg.probe_interval_seconds,
            watch_retry_delay=cfg.watch_retry_delay_seconds,
        )
        for kind in cfg.resource_kinds()
    ]


def default_cluster_factory(cfg: AppConfig) -> ClusterClient:
    return KubernetesClusterClient(
        cfg.kubeconfig,
        in_cluster=cfg.in_cluster,
        watch_timeout_seconds=cfg.watch_timeout_seconds,
    )


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, frame):  # noqa: ARG001
        logger.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            signal.signal(sig, _handle)
        except ValueError:  # pragma: no cover - not on the main thread
            logger.debug("Cannot install handler for %s outside main thread", sig)


def run(
    cfg: AppConfig,
    stop_event: threading.Event,
    *,
    cluster_factory: Optional[Callable[[AppConfig], ClusterClient]] = None,
) -> int:
    """Brief: Start the watchers and DNS listeners, block until stop_event is set.

    Inputs:
      - cfg: Validated AppConfig.
      - stop_event: Shared cancellation signal.
      - cluster_factory: Builds the ClusterClient (defaults to a
        KubernetesClusterClient from cfg).

    Outputs:
      - int exit code; 1 when credentials cannot be loaded or the listeners
        cannot bind.
    """

    store = RecordStore()
    try:
        cluster = (cluster_factory or default_cluster_factory)(cfg)
    except ClusterConfigError as exc:
        logger.error("%s", exc)
        return 1

    watchers = build_watchers(cfg, cluster, store, stop_event)

    logger.info(
        "Starting DNS Server on %s:%d (local address %s)",
        cfg.listen.host,
        cfg.listen.port,
        cfg.local_address,
    )
    try:
        server = DNSServer(cfg.listen.host, cfg.listen.port, store, tcp=cfg.listen.tcp)
    except OSError as exc:
        logger.error("Failed to start DNS listeners: %s", exc)
        return 1

    for watcher in watchers:
        watcher.start()
    server.serve_forever()

    try:
        # Timed waits keep the main thread responsive to signal handlers.
        while not stop_event.wait(1.0):
            pass
    finally:
        logger.info("DNS Server shutting down...")
        stop_event.set()
        server.stop()
        for watcher in watchers:
            if not watcher.join(SHUTDOWN_JOIN_TIMEOUT):
                logger.warning("Watcher for %s did not stop in time", watcher.kind)
    return 0


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for gatewayapi-dns.
    Parses arguments, loads configuration, starts the watchers and the DNS server.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            PYTHONPATH=src python -m gatewayapi_dns.main --config config.yaml
    """
    parser = argparse.ArgumentParser(
        description="DNS server for hostnames of Gateway API routes and Ingresses"
    )
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level (trace, debug, info, warn, error, crit)",
    )
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        if args.log_level:
            cfg = AppConfig(
                **{**cfg.model_dump(), "logging": {**cfg.logging, "level": args.log_level}}
            )
    except ValueError as exc:
        print(str(exc))
        return 1

    init_logging(cfg.logging)
    logger.info("Loaded config from %s", args.config)

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)
    return run(cfg, stop_event)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
