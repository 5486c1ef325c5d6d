"""Operator CLI: run a timeline refresh or dump a body package.

    hubble-refresh sync --lat 40.7 --lon -74.0 [--settings s.json] [--dry-run]
    hubble-refresh body --id 0 --lat 40.7 --lon -74.0
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from hubble.config import configure_logging, load_config
from hubble.errors import UnknownBodyError
from hubble.models import Observer, PinCommand, PinOp
from hubble.pins import build_test_pin
from hubble.protocol import (
    BODY_NAMES,
    PROTOCOL_V1,
    PROTOCOL_V2,
    decode_body_package,
    encode_request,
    encode_response,
)
from hubble.service import HubbleService

logger = logging.getLogger(__name__)


class PrintSink:
    """Writes each command as a JSON line instead of sending it."""

    def __init__(self, stream=None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self.count = 0

    def submit(self, command: PinCommand) -> None:
        record: dict = {"op": command.op.value, "id": command.pin_id}
        if command.pin is not None:
            record["pin"] = command.pin.to_json()
        self._stream.write(json.dumps(record) + "\n")
        self.count += 1


def _observer(args: argparse.Namespace) -> Observer:
    return Observer(
        latitude=args.lat, longitude=args.lon, height=args.height, timezone=args.tz
    )


def _load_settings(path: Path | None) -> dict | None:
    if path is None:
        return None
    with path.open(encoding="utf-8") as f:
        settings = json.load(f)
    if not isinstance(settings, dict):
        raise SystemExit(f"{path}: settings must be a JSON object")
    return settings


def _cmd_sync(args: argparse.Namespace) -> int:
    config = load_config(args.env_file)
    service = HubbleService.from_config(config, sink=PrintSink() if args.dry_run else None)
    if not args.dry_run and service.dispatcher is None:
        logger.error("No timeline token configured; use --dry-run or set HUBBLE_TIMELINE_TOKEN")
        return 2

    if args.test_pin:
        pin = build_test_pin()
        service.sink.submit(PinCommand(PinOp.UPSERT, pin.id, pin))

    count = service.refresh(_observer(args), settings=_load_settings(args.settings))
    logger.info("Submitted %d pin upserts", count)

    if service.dispatcher is not None and not args.dry_run:
        results = service.dispatcher.drain()
        failed = [r for r in results if not r.ok]
        logger.info("Timeline: %d ok, %d failed", len(results) - len(failed), len(failed))
        if failed:
            return 1
    return 0


def _cmd_body(args: argparse.Namespace) -> int:
    config = load_config(args.env_file)
    service = HubbleService.from_config(config)
    service.protocol_version = PROTOCOL_V1 if args.legacy else PROTOCOL_V2
    try:
        data = service.handle_body_request(encode_request(args.id), _observer(args))
    except UnknownBodyError as e:
        logger.error("%s", e)
        return 2
    if data is None:
        return 1
    print(data.hex())
    print(json.dumps(encode_response(data)))
    print(json.dumps({"body": BODY_NAMES[args.id], **asdict(decode_body_package(data))}, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hubble-refresh", description=__doc__.splitlines()[0])
    parser.add_argument("--env-file", type=Path, default=None, help=".env file to load")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_location(p: argparse.ArgumentParser) -> None:
        p.add_argument("--lat", type=float, required=True, help="Latitude, degrees north")
        p.add_argument("--lon", type=float, required=True, help="Longitude, degrees east")
        p.add_argument("--height", type=float, default=0.0, help="Height in meters")
        p.add_argument("--tz", default=None, help="IANA zone; looked up from coordinates if omitted")

    sync = sub.add_parser("sync", help="Push timeline pins for a location")
    add_location(sync)
    sync.add_argument("--settings", type=Path, default=None, help="JSON settings file")
    sync.add_argument("--dry-run", action="store_true", help="Print commands instead of sending")
    sync.add_argument("--test-pin", action="store_true", help="Also push the development test pin")
    sync.set_defaults(func=_cmd_sync)

    body = sub.add_parser("body", help="Print the body package for one body")
    body.add_argument("--id", type=int, required=True, help="Body id, 0-28")
    add_location(body)
    body.add_argument("--legacy", action="store_true", help="Emit the 7-byte V1 layout")
    body.set_defaults(func=_cmd_body)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(load_config(args.env_file).log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
