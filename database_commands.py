#!/usr/bin/env python3
"""
Database Management Commands for STMS

Maintenance commands run outside the web process:
- Table creation
- Row counts and configuration status
- Daily housekeeping (overdue maintenance, recurring incomes and maintenances)
- Audit log retention

Usage:
    python database_commands.py --help
    python database_commands.py init
    python database_commands.py status
    python database_commands.py daily --date 2024-03-31
    python database_commands.py cleanup-audit --days 365
"""

import os
import sys
import argparse
import logging
from datetime import datetime
from app import create_app, db

logger = logging.getLogger(__name__)

def setup_app_context():
    """Setup Flask application context for database operations."""
    # Set a temporary SESSION_SECRET for CLI operations if not set
    if not os.environ.get('SESSION_SECRET'):
        os.environ['SESSION_SECRET'] = 'cli_temp_secret_not_for_production'

    app = create_app()
    return app.app_context()

def cmd_init(args):
    """Create all tables that do not exist yet."""
    with setup_app_context():
        import models  # noqa: F401
        db.create_all()
        print("✅ Database tables created")

def cmd_status(args):
    """Display row counts per entity and the configuration check."""
    from models import Client, Driver, Truck, Trip, Builty, Income, Maintenance, AuditLog
    from utils.config_validator import check_production_readiness

    with setup_app_context():
        print("=" * 60)
        print("DATABASE STATUS REPORT")
        print("=" * 60)

        for model in (Client, Driver, Truck, Trip, Builty, Income, Maintenance, AuditLog):
            print(f"{model.__tablename__:<20} {model.query.count():>8}")

        print()

        readiness = check_production_readiness()
        print(f"Production Ready: {'✅ YES' if readiness['production_ready'] else '❌ NO'}")
        if readiness['issues']:
            print("Issues Found:")
            for issue in readiness['issues']:
                print(f"  ⚠️  {issue}")
        for recommendation in readiness['recommendations']:
            print(f"  💡 {recommendation}")

        print(f"\nReport Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

def cmd_daily(args):
    """Run the daily housekeeping jobs for the given date (default today)."""
    from services import IncomeService, MaintenanceService
    from utils.config_validator import require_valid_business_config
    from utils.converters import to_date

    with setup_app_context():
        require_valid_business_config()
        run_date = to_date(args.date, 'date')

        maintenance_service = MaintenanceService()
        income_service = IncomeService()

        overdue = maintenance_service.mark_as_overdue()
        print(f"Maintenance marked overdue: {overdue}")

        incomes = income_service.generate_recurring_incomes(run_date)
        print(f"Recurring incomes generated: {len(incomes)}")

        maintenances = maintenance_service.generate_recurring_maintenances(run_date)
        print(f"Recurring maintenances generated: {len(maintenances)}")

        logger.info(f"Daily jobs finished: {overdue} overdue, {len(incomes)} incomes, "
                    f"{len(maintenances)} maintenances")

def cmd_cleanup_audit(args):
    """Delete audit log entries older than the retention window."""
    from services import AuditService

    with setup_app_context():
        deleted = AuditService.cleanup_old_logs(args.days)
        print(f"✅ Removed {deleted} audit log entries older than {args.days} days")

COMMANDS = {
    'init': cmd_init,
    'status': cmd_status,
    'daily': cmd_daily,
    'cleanup-audit': cmd_cleanup_audit,
}

def build_parser():
    parser = argparse.ArgumentParser(
        description="Database Management Commands for STMS",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init', help='Create database tables')
    subparsers.add_parser('status', help='Display database status')

    daily_parser = subparsers.add_parser('daily', help='Run daily housekeeping jobs')
    daily_parser.add_argument('--date', help='Run date (YYYY-MM-DD), defaults to today')

    cleanup_parser = subparsers.add_parser('cleanup-audit', help='Delete old audit log entries')
    cleanup_parser.add_argument('--days', type=int, default=365, help='Days of audit logs to keep')

    return parser

def main(argv=None):
    """Main command line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        COMMANDS[args.command](args)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error occurred")
        print(f"❌ Unexpected error: {str(e)}")
        sys.exit(1)

if __name__ == "__main__":
    main()
