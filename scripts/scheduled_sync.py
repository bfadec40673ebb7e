#!/usr/bin/env python3
"""
Scheduled synchronization script for the table sync job.

This script performs one incremental synchronization cycle:
- Reads each table's watermark from the run log
- Fetches rows changed since then through the database link
- Merges them into the destination and records the outcome

Designed to be run on a schedule (e.g., via cron, Windows Task Scheduler, or Airflow).

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH] [--dry-run] [--table NAME] [--json]
"""

import sys

from table_sync.runner import main

if __name__ == "__main__":
    sys.exit(main())
