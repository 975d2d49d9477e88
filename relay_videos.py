#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
relay_videos.py

Download pending videos listed in a JSON items file and upload them to
object storage, one item at a time.

Usage:
    python relay_videos.py --items-file items.json --storage-bucket shorts
    python relay_videos.py --items-file items.json --api-base-url https://api.example.com --auth-token-file token.txt
    python relay_videos.py --items-file items.json --watch
    python relay_videos.py --health-check
"""

import sys

from shorts_relay import (
    ConsoleProgressSink,
    FailureAnalyzer,
    FanOutSink,
    JsonFileStatusReporter,
    StrategyUnavailable,
    apply_environment_defaults,
    build_service,
    load_work_items_from_file,
    parse_args,
    run_health_check,
    run_watch_loop,
)


def main() -> int:
    args = parse_args()
    apply_environment_defaults(args)

    # Handle health check mode
    if args.health_check:
        return run_health_check(args)

    if not args.items_file:
        print("Error: You must provide --items-file", file=sys.stderr)
        return 1

    analyzer = FailureAnalyzer()
    if args.error_log:
        analyzer.set_error_log_path(args.error_log)
    sink = FanOutSink([ConsoleProgressSink(), analyzer])

    try:
        service = build_service(args, sink=sink, status_reporter=JsonFileStatusReporter(args.items_file))
    except StrategyUnavailable as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.watch:
        service.start()
        run_watch_loop(args.items_file, service, args.watch_interval, args.owner_id)
        analyzer.print_summary()
        return 0

    try:
        items = load_work_items_from_file(args.items_file, args.owner_id)
    except (OSError, ValueError) as exc:
        print(f"Error: Failed to load items from {args.items_file}: {exc}", file=sys.stderr)
        return 1

    if not items:
        print(f"No pending items in {args.items_file}.")
        return 0

    service.submit(items)
    try:
        outcomes = service.process_pending()
    except KeyboardInterrupt:
        print("\nInterrupted; remaining items stay pending in the items file.")
        analyzer.print_summary()
        return 130

    analyzer.print_summary()
    failed = sum(1 for outcome in outcomes if not outcome.success)
    print(f"\nAll done. {len(outcomes) - failed} succeeded, {failed} failed.")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
