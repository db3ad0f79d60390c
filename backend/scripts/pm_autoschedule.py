#!/usr/bin/env python
"""Spawn the next routine preventive maintenance tasks that fall due.

Usage:
    python backend/scripts/pm_autoschedule.py                    # run for today
    python backend/scripts/pm_autoschedule.py --date 2026-01-31  # pretend it is that day
    python backend/scripts/pm_autoschedule.py --dry-run          # list what would be created
"""
from __future__ import annotations
import os, sys, argparse, json
from datetime import date

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from cassette_rc import create_app  # type: ignore
from cassette_rc.services.pm_scheduler import run_auto_schedule


def main(argv=None):
    parser = argparse.ArgumentParser(description='Routine PM auto-scheduler')
    parser.add_argument('--date', help='ISO date to treat as today (default: today)')
    parser.add_argument('--dry-run', action='store_true', help='Report due tasks without creating them')
    args = parser.parse_args(argv)
    today = date.fromisoformat(args.date) if args.date else None

    app = create_app()
    with app.app_context():
        result = run_auto_schedule(today=today, dry_run=args.dry_run)
    print(json.dumps(result, indent=2))
    label = '[DRY-RUN]' if args.dry_run else '[DONE]'
    print(f"{label} created: {len(result['created'])}, skipped: {len(result['skipped'])}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
