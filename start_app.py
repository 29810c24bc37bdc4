#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""Launcher for the tunelib music library server.

This script:
  1) picks a free localhost port (default preference: PORT / config, 4000)
  2) starts the FastAPI backend (uvicorn) as a child process
  3) optionally imports the configured library once the server is up

Notes:
- The server stops when this process stops.
- If the preferred port is occupied, it will automatically pick another free port.
"""

from __future__ import annotations

import argparse
import os
import socket
import subprocess
import sys
import time

from loguru import logger

from tunelib.config import load_config


def _is_port_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(0.2)
        try:
            return s.connect_ex((host, port)) != 0
        except OSError:
            return False


def _find_free_port(host: str, preferred: int, max_tries: int = 50) -> int:
    if preferred <= 0 or preferred > 65535:
        preferred = 4000
    port = preferred
    for _ in range(max_tries):
        if _is_port_free(host, port):
            return port
        port += 1
        if port > 65535:
            port = 1024
    raise RuntimeError("No free TCP port found on localhost.")


def _wait_until_up(host: str, port: int, timeout_sec: float = 10.0) -> bool:
    deadline = time.time() + timeout_sec
    while time.time() < deadline:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.settimeout(0.2)
            if s.connect_ex((host, port)) == 0:
                return True
        time.sleep(0.1)
    return False


def _initial_import() -> None:
    """Run one synchronization pass of the configured library in-process."""
    from tunelib.catalog import LibrarySynchronizer
    from tunelib.store import JsonTrackStore

    cfg = load_config()
    store = JsonTrackStore(cfg.catalog_path)
    sync = LibrarySynchronizer(store, allowed_extensions=cfg.audio_extensions, library_root=cfg.library_dir)
    try:
        summary = sync.synchronize(cfg.library_dir)
    except OSError as e:
        logger.warning(f"Initial import skipped: {e}")
        return
    logger.info(f"Initial import: {summary.as_dict()}")


def main() -> int:
    cfg = load_config()
    parser = argparse.ArgumentParser(description="Start the tunelib music library server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=cfg.port, help="Preferred port (auto-fallback if occupied)")
    parser.add_argument("--import", dest="do_import", action="store_true", help="Import the library before serving")
    parser.add_argument("--reload", action="store_true", help="Enable uvicorn auto-reload (developer mode)")
    args = parser.parse_args()

    # Ensure working directory is project root (where this file lives).
    here = os.path.dirname(os.path.abspath(__file__))
    os.chdir(here)

    if args.do_import:
        _initial_import()

    port = _find_free_port(args.host, args.port)

    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "tunelib.main:app",
        "--host",
        args.host,
        "--port",
        str(port),
    ]
    if args.reload:
        cmd.append("--reload")

    logger.info(f"Starting server on {args.host}:{port} (library: {cfg.library_dir})")

    proc = subprocess.Popen(cmd, stdout=None, stderr=None)

    if _wait_until_up(args.host, port, timeout_sec=12.0):
        logger.info(f"Server is running: http://{args.host}:{port}/")
    else:
        logger.warning(f"Server may still be starting: http://{args.host}:{port}/")

    # Block until server exits
    try:
        return proc.wait()
    except KeyboardInterrupt:
        proc.terminate()
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
