from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

import uvicorn

from backend.app import create_app
from src.live.config import ENV_CONFIG_FILE, LOG_LEVELS, ConfigError, ServerConfig, build_config, load_config_file
from src.live.telemetry import WsfVesselClient
from src.route.model import InvalidRouteError, build_route_model, load_waypoints

log = logging.getLogger("ferrycaster")


def build_parser() -> argparse.ArgumentParser:
    d = ServerConfig()
    p = argparse.ArgumentParser(description="Serve live ferry progress along the Seattle-Bainbridge route")
    p.add_argument("--config", help=f"JSON config file (default: env {ENV_CONFIG_FILE}, skipped if missing)")
    p.add_argument("-c", "--accesscode", dest="access_code", help="WSDOT Traveler Information API access code")
    p.add_argument("-b", "--bind", help=f"host:port for the webserver (default {d.bind})")
    p.add_argument("-t", "--terminal", type=int, help=f"terminal to track ferries to and from (default {d.terminal})")
    p.add_argument("-u", "--update", dest="update_frequency", type=float, help="seconds between telemetry polls")
    p.add_argument("-i", "--idle", dest="idle_after", type=float, help="seconds without requests before polling pauses")
    p.add_argument(
        "-s",
        "--segment-size",
        dest="segment_max_size",
        type=float,
        help="max length in metres of a subdivided route segment; smaller is smoother but slower",
    )
    p.add_argument("-m", "--minimum-ferries", dest="minimum_ferries", type=int, help="always report at least this many ferries")
    p.add_argument(
        "-S",
        "--max-staleness",
        dest="max_staleness",
        type=float,
        help="max data age in seconds; nonnegative values enable staleness compensation",
    )
    p.add_argument("--min-update", dest="min_update_interval", type=float, help="floor for compensated poll interval, seconds")
    p.add_argument("--route", dest="route_path", help="route CSV with lat,lon columns in travel order")
    p.add_argument("--debug", action="store_true", default=None, help="serve a debugging page on /debug")
    p.add_argument("--debug-path", dest="debug_page_path", help="path to the debug.html file")
    p.add_argument("--timeout", dest="telemetry_timeout", type=float, help="telemetry request timeout, seconds")
    p.add_argument("--log-level", dest="log_level", type=str.upper, choices=LOG_LEVELS)
    p.add_argument(
        "--allow-unmapped-terminal",
        action="store_true",
        help="run even if the terminal is not an end of the route",
    )
    return p


def run(args: argparse.Namespace) -> int:
    overrides = {
        k: getattr(args, k)
        for k in (
            "access_code",
            "bind",
            "terminal",
            "update_frequency",
            "idle_after",
            "segment_max_size",
            "minimum_ferries",
            "max_staleness",
            "min_update_interval",
            "route_path",
            "debug",
            "debug_page_path",
            "telemetry_timeout",
            "log_level",
        )
    }
    try:
        config_path = args.config or os.getenv(ENV_CONFIG_FILE, "")
        file_values = load_config_file(Path(config_path), required=bool(args.config)) if config_path else {}
        config = build_config(file_values=file_values, overrides=overrides).validate(require_access_code=True)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        log.error("%s", exc)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if config.terminal not in config.route_terminals and not args.allow_unmapped_terminal:
        log.error(
            "route data only covers terminals %s; pass --allow-unmapped-terminal to track terminal %d anyway",
            config.route_terminals,
            config.terminal,
        )
        return 2

    try:
        model = build_route_model(load_waypoints(Path(config.route_path)), config.segment_max_size)
    except (InvalidRouteError, FileNotFoundError) as exc:
        log.error("cannot build route model: %s", exc)
        return 2
    log.info("route model: %d segments, %.0f m", model.segment_count, model.total_length)

    source = WsfVesselClient(config.access_code, terminal=config.terminal, timeout=config.telemetry_timeout)
    app = create_app(config, model, source)

    host, port = config.host_port()
    log.info("trying to bind to %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    return 0


def main() -> None:
    args = build_parser().parse_args()
    rc = run(args)
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
