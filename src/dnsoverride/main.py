from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Tuple

from .config.config_parser import AppConfig, build_app_config, parse_config_file
from .config.logging_config import init_logging
from .config.models import section_dict
from .overrides.cache import DurableOverrideCache
from .overrides.resolver import OverrideResolver
from .overrides.store import OverrideStore, build_override_store
from .servers.server import DNSServer


def build_resolver(app_cfg: AppConfig) -> Tuple[OverrideStore, OverrideResolver]:
    """
    Build the override store client, load the durable cache and wire the resolver.

    Inputs:
      - app_cfg: AppConfig from build_app_config().
    Outputs:
      - (store, resolver)

    Raises:
      - RuntimeError: When the store driver is unavailable.
      - ValueError: When the store or resolver settings are invalid.
    """
    store = build_override_store(section_dict(app_cfg.override_store))
    cache = DurableOverrideCache.load(app_cfg.cache.file)
    resolver = OverrideResolver(
        store,
        cache,
        mode=app_cfg.resolver.mode,
        ttl=app_cfg.resolver.ttl,
        max_alias_hops=app_cfg.resolver.max_alias_hops,
    )
    return store, resolver


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DNS override server.
    Parses arguments, loads configuration, builds the override resolver, and
    serves UDP until a termination signal arrives.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on clean shutdown, 1 on configuration, store or bind
        failure.

    Example use:
        CLI:
            dnsoverride --config config/config.yaml -v UPSTREAM=9.9.9.9:53
    """
    parser = argparse.ArgumentParser(
        description="DNS proxy answering from an override store with a durable local cache"
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="Path to YAML config"
    )
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Override a config variable (may be repeated)",
    )
    args = parser.parse_args(argv)

    try:
        cfg = parse_config_file(args.config, cli_vars=args.var)
        app_cfg = build_app_config(cfg)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 1

    init_logging(app_cfg.logging)
    logger = logging.getLogger("dnsoverride.main")
    logger.info("Loaded config from %s", args.config)

    try:
        store, resolver = build_resolver(app_cfg)
    except (RuntimeError, ValueError) as exc:
        logger.error("Failed to initialize override store: %s", exc)
        return 1

    upstream = app_cfg.upstream
    if upstream is None:
        logger.warning("No upstream configured; unanswered queries will get SERVFAIL")
    else:
        logger.info(
            "Upstream: %s:%d, timeout: %dms",
            upstream["host"],
            upstream["port"],
            app_cfg.timeout_ms,
        )

    host, port = app_cfg.listen.host, app_cfg.listen.port
    try:
        server = DNSServer(
            host, port, resolver, upstream, timeout_ms=app_cfg.timeout_ms
        )
    except OSError:
        store.close()
        return 1

    shutdown_event = threading.Event()

    def _request_shutdown(signum, _frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        shutdown_event.set()

    for sig_name in ("SIGTERM", "SIGINT", "SIGHUP"):
        sig = getattr(signal, sig_name, None)
        if sig is None:
            continue
        try:
            signal.signal(sig, _request_shutdown)
        except (ValueError, OSError):
            logger.warning("Could not install %s handler on this platform", sig_name)

    udp_thread = threading.Thread(
        target=server.serve_forever, name="dnsoverride-udp", daemon=True
    )
    udp_thread.start()
    logger.info(
        "Listening on %s:%d (resolver mode=%s, cache=%s)",
        host,
        port,
        resolver.mode,
        resolver.cache.path or "<memory>",
    )

    exit_code = 0
    try:
        while not shutdown_event.is_set():
            if not udp_thread.is_alive():
                logger.error("UDP listener thread exited unexpectedly")
                exit_code = 1
                break
            shutdown_event.wait(1.0)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        server.stop()
        udp_thread.join(timeout=5.0)
        store.close()

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
