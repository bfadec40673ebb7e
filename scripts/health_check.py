#!/usr/bin/env python3
"""
Health check script for the table sync job.

This script performs health checks on all system components:
- Configuration validation
- Source, destination and run log connectivity
- Run log table presence
- Latest run status per configured table, including runs stuck in Running

Can be used for monitoring, alerting, or pre-deployment validation.

Usage:
    python scripts/health_check.py [--config CONFIG_PATH] [--json]

Exit codes:
    0: All checks passed
    1: One or more checks failed
"""

import argparse
import json
import sys
from datetime import datetime, timedelta

import structlog
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from table_sync.errors import SyncError
from table_sync.models.config import AppConfig
from table_sync.models.run_log import RunStatus
from table_sync.storage.database import check_connection, create_engine_for
from table_sync.sync.run_log_store import RunLogStore
from table_sync.utils.clock import utcnow
from table_sync.utils.config_loader import ConfigLoader

log = structlog.stdlib.get_logger()


class HealthChecker:
    """Performs health checks on system components."""

    def __init__(self, config_path: str | None = None):
        """
        Initialize health checker.

        Args:
            config_path: Optional path to configuration file
        """
        self.config_path = config_path
        self.config: AppConfig | None = None
        self.results: dict[str, dict] = {}

    def check_configuration(self) -> bool:
        """
        Check if configuration is valid.

        Returns:
            True if configuration is valid, False otherwise
        """
        check_name = "configuration"
        log.info("checking_configuration")

        try:
            config_loader = ConfigLoader()
            self.config = config_loader.load_config(self.config_path)
            warnings = config_loader.validate_config(self.config)

            self.results[check_name] = {
                "status": "warn" if warnings else "pass",
                "message": "Configuration loaded successfully",
                "details": {
                    "tables": [table.name for table in self.config.sync.tables],
                    "dry_run": self.config.sync.dry_run,
                    "batch_size": self.config.sync.batch_size,
                    "warnings": warnings,
                },
            }
            return True

        except SyncError as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Configuration error: {str(e)}",
                "details": {},
            }
            return False

    def check_database(self, label: str, url: str) -> bool:
        """
        Check connectivity to one database.

        Returns:
            True if the database answered, False otherwise
        """
        check_name = f"{label}_connectivity"
        log.info("checking_database", database=label)

        try:
            engine = create_engine_for(url, self.config.sync.command_timeout_seconds)
            try:
                check_connection(engine, label)
            finally:
                engine.dispose()

            self.results[check_name] = {
                "status": "pass",
                "message": f"Successfully connected to {label} database",
                "details": {},
            }
            return True

        except SyncError as e:
            self.results[check_name] = {
                "status": "fail",
                "message": str(e),
                "details": {},
            }
            return False

    def check_run_log(self) -> bool:
        """
        Check the run log table and report the latest run of each table.

        Returns:
            True unless the run log could not be read
        """
        check_name = "run_log"
        log.info("checking_run_log")

        database = self.config.database
        engine = create_engine_for(
            database.effective_run_log_url, self.config.sync.command_timeout_seconds
        )
        try:
            if not inspect(engine).has_table(database.run_log_table):
                self.results[check_name] = {
                    "status": "warn",
                    "message": "Run log table does not exist yet; it is created on first sync",
                    "details": {"table": database.run_log_table},
                }
                return True

            store = RunLogStore(engine, table_name=database.run_log_table)
            stale_after = timedelta(seconds=self.config.sync.stale_run_timeout_seconds)
            now = utcnow()
            details: dict[str, str] = {}
            stuck = False
            for table in self.config.sync.tables:
                history = store.recent_runs(table.name, limit=1)
                if not history:
                    details[table.name] = "never run"
                    continue
                latest = history[0]
                details[table.name] = (
                    f"{latest.status.value} at {(latest.completed_at or latest.started_at).isoformat()}"
                )
                if latest.status is RunStatus.FAILED:
                    stuck = True
                elif latest.is_stuck(now, stale_after):
                    details[table.name] += " (stuck past the stale run timeout)"
                    stuck = True

            self.results[check_name] = {
                "status": "warn" if stuck else "pass",
                "message": "Run log is readable",
                "details": details,
            }
            return True

        except (SQLAlchemyError, SyncError) as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Run log error: {str(e)}",
                "details": {},
            }
            return False
        finally:
            engine.dispose()

    def run_all_checks(self) -> bool:
        """
        Run all health checks.

        Returns:
            True if all checks passed, False otherwise
        """
        if not self.check_configuration():
            return False

        database = self.config.database
        all_passed = True
        for label, url in (
            ("source", database.source_url),
            ("destination", database.destination_url),
            ("run_log", database.effective_run_log_url),
        ):
            if not self.check_database(label, url):
                all_passed = False

        if all_passed and not self.check_run_log():
            all_passed = False

        return all_passed

    def get_summary(self) -> dict:
        """
        Get summary of all health check results.

        Returns:
            Dictionary with summary information
        """
        total_checks = len(self.results)
        passed = sum(1 for r in self.results.values() if r["status"] == "pass")
        failed = sum(1 for r in self.results.values() if r["status"] == "fail")
        warnings = sum(1 for r in self.results.values() if r["status"] == "warn")

        return {
            "timestamp": datetime.now().isoformat(),
            "overall_status": "healthy" if failed == 0 else "unhealthy",
            "total_checks": total_checks,
            "passed": passed,
            "failed": failed,
            "warnings": warnings,
            "checks": self.results,
        }


def main():
    """Main entry point for health check script."""
    parser = argparse.ArgumentParser(description="Health check for the table sync job")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )

    args = parser.parse_args()

    checker = HealthChecker(config_path=args.config)
    all_passed = checker.run_all_checks()
    summary = checker.get_summary()

    if args.json:
        print(json.dumps(summary, indent=2, default=str))
    else:
        print("\n" + "=" * 60)
        print("HEALTH CHECK SUMMARY")
        print("=" * 60)
        print(f"Timestamp: {summary['timestamp']}")
        print(f"Overall Status: {summary['overall_status'].upper()}")
        print(f"Total Checks: {summary['total_checks']}")
        print(f"Passed: {summary['passed']}")
        print(f"Failed: {summary['failed']}")
        print(f"Warnings: {summary['warnings']}")
        print("\n" + "-" * 60)
        print("DETAILED RESULTS")
        print("-" * 60)

        for check_name, result in summary["checks"].items():
            status_symbol = {
                "pass": "✓",
                "fail": "✗",
                "warn": "⚠",
            }.get(result["status"], "?")

            print(f"\n{status_symbol} {check_name.replace('_', ' ').title()}")
            print(f"  Status: {result['status'].upper()}")
            print(f"  Message: {result['message']}")

            if result["details"]:
                print("  Details:")
                for key, value in result["details"].items():
                    print(f"    - {key}: {value}")

        print("\n" + "=" * 60)

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
