"""
Central logging for the provider.

- Console handler on stderr: INFO..CRITICAL by default
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Action-based file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: masks Hetzner tokens in messages and % args
- UTC timestamps in ISO-8601

Library modules log under the "huip.*" namespace; `build_logger` attaches
the handlers to that namespace so their records land in every sink.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class MaskSecretsFilter(logging.Filter):
    """Redact API tokens from log records."""

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(\"?hcloudToken\"?\s*[=:]\s*\"?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(HCLOUD_TOKEN\s*=\s*)([A-Za-z0-9._-]+)"),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(
                    self._mask(a) if isinstance(a, str) else a for a in record.args
                )
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class _ContextDefaults(logging.Filter):
    """Library records carry no run context; fill placeholders for the formatter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in ("run_id", "action", "resource"):
            if not hasattr(record, key):
                setattr(record, key, "-")
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _replace_handlers(base: logging.Logger, kind: type) -> None:
    for h in list(base.handlers):
        if type(h) is kind:
            base.removeHandler(h)
            h.close()


def build_logger(
    *,
    run_id: str,
    action: str,
    name: str = "huip",
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    The base logger `<name>` holds the console, rotating and per-run file
    handlers. Calling again replaces them instead of stacking duplicates.
    """
    mask = MaskSecretsFilter()
    context = _ContextDefaults()
    formatter = _utc_formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s resource=%(resource)s | %(message)s"
    )

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    # console
    _replace_handlers(base, logging.StreamHandler)
    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(context)
    sh.addFilter(mask)
    base.addHandler(sh)

    # rotating app.log
    os.makedirs(base_dir, exist_ok=True)
    _replace_handlers(base, logging.handlers.TimedRotatingFileHandler)
    rh = logging.handlers.TimedRotatingFileHandler(
        os.path.join(base_dir, "app.log"),
        when="midnight",
        backupCount=14,
        encoding="utf-8",
        utc=True,
    )
    rh.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
    rh.setFormatter(formatter)
    rh.addFilter(context)
    rh.addFilter(mask)
    base.addHandler(rh)

    # per-run action file; on the base logger so every huip.* record lands here
    _replace_handlers(base, logging.FileHandler)
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    dated_dir = Path(base_dir) / today
    dated_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(dated_dir / f"{action}_{run_id}.log", encoding="utf-8")
    fh.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
    fh.setFormatter(formatter)
    fh.addFilter(context)
    fh.addFilter(mask)
    base.addHandler(fh)

    adapter = logging.LoggerAdapter(
        logging.getLogger(f"{name}.{action}"),
        {
            "run_id": run_id,
            "action": action,
            "resource": (extra or {}).get("resource", "-"),
        },
    )
    adapter.debug("Logger initialised")
    return adapter
