#!/usr/bin/env python3
# =============================================================================
# scripts/start_worker.py - Celery Worker Entry Point
# =============================================================================
# Starts a Celery worker consuming the staging and default queues.
#
# Usage:
#   # Worker only
#   python scripts/start_worker.py
#
#   # Worker with embedded beat (runs the cleanup schedules; one per deployment)
#   python scripts/start_worker.py --beat
#
#   # Or use Celery CLI directly
#   celery -A workers.celery_app worker -Q staging,default --loglevel=info
#
# Prerequisites:
#   - Redis must be running
#   - Environment variables must be set (.env file)
#   - QUEUE_BACKEND=celery (the default)
# =============================================================================

import argparse

from workers.celery_app import celery_app


def main():
    """Start the Celery worker."""
    parser = argparse.ArgumentParser(description="Start the Stager Celery worker")
    parser.add_argument("--beat", action="store_true", help="Also run the beat scheduler")
    parser.add_argument("--concurrency", type=int, default=2)
    args = parser.parse_args()

    print("=" * 60)
    print("Stager Celery Worker")
    print("=" * 60)
    print()
    print("Starting worker...")
    print("Press Ctrl+C to stop")
    print()

    argv = [
        "worker",
        "--loglevel=info",
        f"--concurrency={args.concurrency}",
        "--queues=staging,default",
    ]
    if args.beat:
        argv.append("--beat")

    celery_app.worker_main(argv)


if __name__ == "__main__":
    main()
