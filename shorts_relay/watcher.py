"""Polling watcher that feeds newly pending items from the items file into the service."""

import os
import sys
import threading
from typing import Optional

from .sources import load_work_items_from_file

DEFAULT_WATCH_INTERVAL = 30.0


def watch_items_file(
    path: str,
    service,
    interval: float = DEFAULT_WATCH_INTERVAL,
    default_owner: Optional[str] = None,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """Watch the items file for changes and submit pending items until *stop_event* is set."""
    interval = interval if interval and interval > 0 else DEFAULT_WATCH_INTERVAL
    stop_event = stop_event or threading.Event()
    last_mtime = None

    print(f"[watch] Watching {path} for pending items (checking every {interval:g} seconds)...")

    while not stop_event.is_set():
        try:
            mtime = os.path.getmtime(path)
        except FileNotFoundError:
            print(f"[watch] Items file not found: {path}. Waiting for it to appear...")
            stop_event.wait(interval)
            continue

        if last_mtime is None or mtime != last_mtime:
            try:
                items = load_work_items_from_file(path, default_owner)
            except (OSError, ValueError) as exc:
                print(f"[watch] Failed to read {path}: {exc}", file=sys.stderr)
                stop_event.wait(interval)
                continue

            added = service.submit(items)
            if added:
                print(f"[watch] Queued {added} new item(s) from {os.path.basename(path)}")
            elif last_mtime is not None:
                print(f"[watch] {os.path.basename(path)} changed but has no new pending items.")
            last_mtime = mtime

        stop_event.wait(interval)


def run_watch_loop(path: str, service, interval: float, default_owner: Optional[str] = None) -> None:
    """Foreground watch loop; Ctrl+C stops the watcher and the service."""
    stop_event = threading.Event()
    try:
        watch_items_file(path, service, interval, default_owner, stop_event)
    except KeyboardInterrupt:
        print("\n[watch] Stopping...")
        stop_event.set()
    finally:
        service.stop()
