"""Blobstore CLI - inspect and edit digital objects in a configured blob store.

Usage:
    python -m blobstore_storage [--config PATH] list
    python -m blobstore_storage [--config PATH] create OID
    python -m blobstore_storage [--config PATH] put OID PID [--input PATH] [--no-detect]
    python -m blobstore_storage [--config PATH] get OID PID [--out PATH]
    python -m blobstore_storage [--config PATH] info OID [PID]
    python -m blobstore_storage [--config PATH] rm OID [PID]

The configuration file defaults to $BLOBSTORE_CONFIG.

Exit codes:
    0: Success
    1: Storage error (not found, duplicate, backend failure)
    2: Configuration or argument error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Callable
from typing import Any

from blobstore_storage.config import BLOBSTORE_CONFIG_ENV
from blobstore_storage.digital_object import DigitalObject
from blobstore_storage.errors import ConfigError, InvalidArgumentError, StorageError
from blobstore_storage.payload import Payload
from blobstore_storage.storage import Storage

logger = logging.getLogger(__name__)


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(error: Exception) -> dict[str, Any]:
    result: dict[str, Any] = {"code": type(error).__name__, "message": str(error)}
    if isinstance(error, StorageError):
        result["message"] = error.message
        if error.oid:
            result["oid"] = error.oid
        if error.pid:
            result["pid"] = error.pid
    return {"error": result}


def _payload_to_dict(payload: Payload) -> dict[str, Any]:
    last_modified = payload.last_modified()
    return {
        "content_type": payload.content_type,
        "label": payload.label,
        "last_modified": last_modified.isoformat() if last_modified else None,
        "oid": payload.oid,
        "pid": payload.id,
        "size": payload.size(),
        "type": str(payload.type) if payload.type else None,
    }


def _object_to_dict(obj: DigitalObject) -> dict[str, Any]:
    return {
        "oid": obj.id,
        "payloads": obj.payload_ids,
        "source": obj.source_id,
    }


def cmd_list(storage: Storage, args: argparse.Namespace) -> int:
    _output_json({"objects": sorted(storage.get_object_id_list())})
    return 0


def cmd_create(storage: Storage, args: argparse.Namespace) -> int:
    obj = storage.create_object(args.oid)
    _output_json(_object_to_dict(obj))
    return 0


def cmd_put(storage: Storage, args: argparse.Namespace) -> int:
    """Create a payload, or overwrite it when the PID already exists."""
    obj = storage.get_object(args.oid)

    if args.input:
        try:
            stream = open(args.input, "rb")  # noqa: SIM115
        except OSError as e:
            raise InvalidArgumentError(f"Cannot read input: {e}", oid=args.oid) from e
    else:
        stream = sys.stdin.buffer

    with stream:
        if args.pid in obj.payload_ids:
            if args.no_detect:
                payload = obj.get_payload(args.pid)
                payload.write_payload(stream, determine_content_type=False)
            else:
                payload = obj.update_payload(args.pid, stream)
        else:
            payload = obj.create_stored_payload(args.pid, stream)

    _output_json(_payload_to_dict(obj.get_payload(payload.id)))
    return 0


def cmd_get(storage: Storage, args: argparse.Namespace) -> int:
    payload = storage.get_object(args.oid).get_payload(args.pid)
    data = payload.read()

    if args.out:
        try:
            with open(args.out, "wb") as f:
                f.write(data)
        except OSError as e:
            raise InvalidArgumentError(f"Cannot write output: {e}", oid=args.oid) from e
        print(f"Payload written to: {args.out}", file=sys.stderr)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    return 0


def cmd_info(storage: Storage, args: argparse.Namespace) -> int:
    obj = storage.get_object(args.oid)
    if args.pid:
        _output_json(_payload_to_dict(obj.get_payload(args.pid)))
    else:
        _output_json(_object_to_dict(obj))
    return 0


def cmd_rm(storage: Storage, args: argparse.Namespace) -> int:
    if args.pid:
        storage.get_object(args.oid).remove_payload(args.pid)
        _output_json({"oid": args.oid, "pid": args.pid, "removed": True})
    else:
        storage.remove_object(args.oid)
        _output_json({"oid": args.oid, "removed": True})
    return 0


COMMAND_DISPATCH: dict[str, Callable[[Storage, argparse.Namespace], int]] = {
    "list": cmd_list,
    "create": cmd_create,
    "put": cmd_put,
    "get": cmd_get,
    "info": cmd_info,
    "rm": cmd_rm,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="blobstore",
        description="Blobstore storage - digital objects over a blob store",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get(BLOBSTORE_CONFIG_ENV),
        metavar="PATH",
        help=f"Path to JSON configuration (default: ${BLOBSTORE_CONFIG_ENV})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Log storage operations to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("list", help="List object IDs")

    create_parser_ = subparsers.add_parser("create", help="Create an empty object")
    create_parser_.add_argument("oid", help="Object ID")

    put_parser = subparsers.add_parser("put", help="Store or overwrite a payload")
    put_parser.add_argument("oid", help="Object ID")
    put_parser.add_argument("pid", help="Payload ID")
    put_parser.add_argument(
        "--input",
        default=None,
        metavar="PATH",
        help="Path to payload file (reads from stdin if omitted)",
    )
    put_parser.add_argument(
        "--no-detect",
        action="store_true",
        default=False,
        help="Keep the stored content type of an existing payload instead of sniffing",
    )

    get_parser = subparsers.add_parser("get", help="Read a payload")
    get_parser.add_argument("oid", help="Object ID")
    get_parser.add_argument("pid", help="Payload ID")
    get_parser.add_argument(
        "--out",
        default=None,
        metavar="PATH",
        help="Path to write payload bytes (writes to stdout if omitted)",
    )

    info_parser = subparsers.add_parser("info", help="Show object or payload metadata")
    info_parser.add_argument("oid", help="Object ID")
    info_parser.add_argument("pid", nargs="?", default=None, help="Payload ID")

    rm_parser = subparsers.add_parser("rm", help="Remove an object or one payload")
    rm_parser.add_argument("oid", help="Object ID")
    rm_parser.add_argument("pid", nargs="?", default=None, help="Payload ID")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Storage error or internal error
        2: Configuration or argument error
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)

    try:
        storage = Storage.from_config(args.config)
        storage.init()
    except ConfigError as e:
        _output_json(_make_error_result(e))
        return 2
    except StorageError as e:
        _output_json(_make_error_result(e))
        return 1

    try:
        return COMMAND_DISPATCH[args.command](storage, args)
    except (ConfigError, InvalidArgumentError) as e:
        _output_json(_make_error_result(e))
        return 2
    except StorageError as e:
        _output_json(_make_error_result(e))
        return 1
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        logger.exception("Unexpected error running %s", args.command)
        _output_json(_make_error_result(e))
        return 1
    finally:
        storage.shutdown()


if __name__ == "__main__":
    sys.exit(main())
