"""
Command-line driver for the UploadedImage provider.

JSON documents in (a file path, or "-" for stdin), JSON out on stdout.

Usage (examples):
  - Preview a create (no HTTP, no upload):
      hcloud-upload-image-provider create --name my-image --inputs inputs.json --dry-run

  - Drift check against stored state:
      hcloud-upload-image-provider diff --inputs inputs.json --state state.json

  - Reclaim leftovers of an interrupted upload:
      HCLOUD_TOKEN=... hcloud-upload-image-provider cleanup

Exit codes: 0 success, 1 provider error, 2 configuration/usage error.
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
from typing import Any, Dict, Iterable, Optional

from .core.cancellation import CancelToken
from .core.config import AppConfig, ConfigError, load_config
from .core.errors import ProviderError
from .core.logging_setup import build_logger
from .core.provider import UploadedImageProvider


def _read_json(path: str) -> Dict[str, Any]:
    if path == "-":
        data = json.load(sys.stdin)
    else:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a JSON object in {path}")
    return data


def _emit(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hcloud-upload-image-provider",
        description="Manage custom Hetzner Cloud images uploaded from a URL",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="YAML config file")
    common.add_argument("--endpoint", default=None, help="Hetzner Cloud API endpoint")
    common.add_argument("--uploader-binary", default=None, help="Path to hcloud-upload-image")
    common.add_argument("--timeout-sec", type=float, default=None, help="Overall deadline for the operation")
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("create", parents=[common], help="Upload a new image")
    c.add_argument("--name", required=True, help="Resource name (identity in dry-run)")
    c.add_argument("--inputs", required=True, help="Inputs JSON file or '-'")
    c.add_argument("--dry-run", action="store_true", help="Preview only, no remote calls")

    r = sub.add_parser("read", parents=[common], help="Refresh stored state")
    r.add_argument("--id", required=True, help="Image ID")
    r.add_argument("--inputs", required=True, help="Inputs JSON file or '-'")
    r.add_argument("--state", required=True, help="State JSON file")

    u = sub.add_parser("update", parents=[common], help="Apply description/labels in place")
    u.add_argument("--id", required=True, help="Image ID")
    u.add_argument("--inputs", required=True, help="Inputs JSON file or '-'")
    u.add_argument("--state", required=True, help="State JSON file")

    d = sub.add_parser("delete", parents=[common], help="Delete the image")
    d.add_argument("--id", required=True, help="Image ID")
    d.add_argument("--state", required=True, help="State JSON file or '-'")

    df = sub.add_parser("diff", parents=[common], help="Compare inputs against stored state")
    df.add_argument("--inputs", required=True, help="Inputs JSON file or '-'")
    df.add_argument("--state", required=True, help="State JSON file")

    cl = sub.add_parser("cleanup", parents=[common], help="Remove leftovers of failed uploads")
    cl.add_argument("--token", default=None, help="API token (default: $HCLOUD_TOKEN)")

    return p


def _load_cfg(args: argparse.Namespace) -> AppConfig:
    overrides: Dict[str, Any] = {"app": {}, "hcloud": {}, "uploader": {}, "logging": {}}
    if getattr(args, "dry_run", False):
        overrides["app"]["dry_run"] = True
    if args.timeout_sec is not None:
        overrides["app"]["timeout_sec"] = args.timeout_sec
    if args.endpoint:
        overrides["hcloud"]["endpoint"] = args.endpoint
    if args.uploader_binary:
        overrides["uploader"]["binary"] = args.uploader_binary
    if args.logs_dir:
        overrides["logging"]["base_dir"] = args.logs_dir
    if args.console_level:
        overrides["logging"]["console_level"] = args.console_level
    if args.file_level:
        overrides["logging"]["file_level"] = args.file_level

    if args.config:
        return load_config(overrides, files=(args.config,))
    return load_config(overrides)


def _run(args: argparse.Namespace, provider: UploadedImageProvider, cfg: AppConfig, cancel: CancelToken) -> Optional[Any]:
    if args.cmd == "create":
        image_id, outputs = provider.create(args.name, _read_json(args.inputs), dry_run=cfg.app.dry_run, cancel=cancel)
        return {"id": image_id, "outputs": outputs}
    if args.cmd == "read":
        res = provider.read(args.id, _read_json(args.inputs), _read_json(args.state), cancel=cancel)
        if res is None:
            return None
        image_id, inputs, state = res
        return {"id": image_id, "inputs": inputs, "state": state}
    if args.cmd == "update":
        return {"outputs": provider.update(args.id, _read_json(args.inputs), _read_json(args.state), cancel=cancel)}
    if args.cmd == "delete":
        provider.delete(args.id, _read_json(args.state), cancel=cancel)
        return {"deleted": args.id}
    if args.cmd == "diff":
        return provider.diff(_read_json(args.inputs), _read_json(args.state))
    if args.cmd == "cleanup":
        token = args.token or os.environ.get("HCLOUD_TOKEN", "")
        return provider.cleanup({"hcloudToken": token}, cancel=cancel)
    raise ConfigError(f"Unknown command {args.cmd}")  # pragma: no cover


def main(argv: Iterable[str] | None = None, *, provider: Optional[UploadedImageProvider] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        cfg = _load_cfg(args)
    except (ConfigError, OSError) as e:
        print(json.dumps({"error": "config", "message": str(e)}), file=sys.stderr)
        return 2

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"resource": getattr(args, "name", None) or getattr(args, "id", None) or "-"},
    )
    logger.info("Starting %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    provider = provider or UploadedImageProvider.from_config(cfg, logger=logger)
    cancel = CancelToken(timeout_sec=cfg.app.timeout_sec)
    previous = signal.signal(signal.SIGTERM, lambda *_: cancel.cancel())
    try:
        result = _run(args, provider, cfg, cancel)
    except ProviderError as e:
        logger.error("%s failed: %s", args.cmd, e)
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        logger.error("%s: bad input: %s", args.cmd, e)
        print(json.dumps({"error": "input", "message": str(e)}), file=sys.stderr)
        return 2
    finally:
        signal.signal(signal.SIGTERM, previous)

    logger.info("%s finished", args.cmd)
    _emit(result)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
