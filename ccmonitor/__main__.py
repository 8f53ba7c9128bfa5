"""Run the session monitor server.

Usage:
  python -m ccmonitor
  python -m ccmonitor --host 127.0.0.1 --port 3002
"""
from __future__ import annotations

import argparse

import uvicorn

from ccmonitor import config


def main() -> int:
    parser = argparse.ArgumentParser(prog="ccmonitor")
    parser.add_argument("--host", default=config.HOST)
    parser.add_argument("--port", type=int, default=config.PORT)
    parser.add_argument("--log-level", default=config.LOG_LEVEL.lower())
    args = parser.parse_args()

    uvicorn.run("ccmonitor.main:app", host=args.host, port=args.port, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
