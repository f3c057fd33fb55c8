"""
Reporting Service

Handles dashboard statistics, revenue trends and compliance alerts
across clients, drivers, trucks, trips, builties, income and maintenance.
"""

from typing import Dict, Any, List
import logging
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from flask import current_app
from sqlalchemy import func, and_, or_
from models import (db, Client, Driver, Truck, Trip, Builty, Income, Maintenance,
                    TripStatus, BuiltyPaymentStatus, MaintenanceStatus, ZERO)
from timezone_utils import get_ist_today, get_ist_time_naive
from .audit_service import AuditService
from .common import date_range_conditions, as_decimal

logger = logging.getLogger(__name__)


class ReportingService:
    """Service class for dashboard and cross-entity reporting"""

    def get_dashboard_statistics(self) -> Dict[str, Any]:
        """
        Get dashboard statistics for the back-office overview.

        Returns:
            dict: Entity counts, month-to-date revenue and compliance alerts
        """
        today = get_ist_today()
        month_start = today.replace(day=1)

        statistics = {
            'active_clients': Client.query.filter(Client.is_active == True).count(),
            'active_drivers': Driver.query.filter(Driver.is_active == True).count(),
            'active_trucks': Truck.query.filter(Truck.is_active == True).count(),
            'planned_trips': Trip.query.filter(Trip.status == TripStatus.PLANNED).count(),
            'running_trips': Trip.query.filter(Trip.status == TripStatus.RUNNING).count(),
            'pending_builty_payments': Builty.query.filter(
                Builty.payment_status != BuiltyPaymentStatus.PAID).count(),
            'overdue_builty_payments': Builty.query.filter(
                Builty.payment_status != BuiltyPaymentStatus.PAID,
                Builty.payment_due_date < today).count(),
            'overdue_maintenances': Maintenance.query.filter(or_(
                Maintenance.status == MaintenanceStatus.OVERDUE,
                and_(Maintenance.status == MaintenanceStatus.SCHEDULED, Maintenance.scheduled_date < today)
            )).count(),
            'month_to_date_trip_revenue': self._completed_trip_revenue(month_start, today),
            'month_to_date_builty_revenue': self._builty_revenue(month_start, today),
            'month_to_date_income': self._income_total(month_start, today),
            'total_outstanding': self._outstanding_builty_balance(),
            'alerts': self.get_compliance_alerts(),
            'generated_at': get_ist_time_naive()
        }

        logger.debug(f"Dashboard statistics generated for {today}")
        return statistics

    def get_compliance_alerts(self) -> List[Dict[str, Any]]:
        """Truck documents and driver licences that have expired or expire within the warning window."""
        today = get_ist_today()
        warning_days = current_app.config.get('STMS_DOCUMENT_EXPIRY_WARNING_DAYS', 30)
        limit = today + timedelta(days=warning_days)
        alerts = []

        trucks = Truck.query.filter(Truck.is_active == True).order_by(Truck.truck_number).all()
        for truck in trucks:
            for document_type, (_, expiry_field) in Truck.DOCUMENT_FIELDS.items():
                expiry = getattr(truck, expiry_field)
                if expiry is None or expiry > limit:
                    continue
                alerts.append({
                    'alert_type': 'DOCUMENT_EXPIRED' if expiry < today else 'DOCUMENT_EXPIRING',
                    'entity_type': 'truck',
                    'entity_id': truck.id,
                    'reference': truck.truck_number,
                    'document_type': document_type,
                    'expiry_date': expiry,
                    'days_remaining': (expiry - today).days
                })

        drivers = Driver.query.filter(
            Driver.is_active == True,
            Driver.license_expiry_date <= limit
        ).order_by(Driver.license_expiry_date).all()
        for driver in drivers:
            expiry = driver.license_expiry_date
            alerts.append({
                'alert_type': 'LICENSE_EXPIRED' if expiry < today else 'LICENSE_EXPIRING',
                'entity_type': 'driver',
                'entity_id': driver.id,
                'reference': driver.name,
                'document_type': 'LICENSE',
                'expiry_date': expiry,
                'days_remaining': (expiry - today).days
            })

        return sorted(alerts, key=lambda a: a['expiry_date'])

    def get_revenue_trend(self, days: int = 30) -> Dict[str, Any]:
        """
        Daily completed-trip revenue and builty billing for charts.

        Args:
            days: Number of days to analyze, ending today

        Returns:
            dict: One row per day plus period totals
        """
        end_date = get_ist_today()
        start_date = end_date - timedelta(days=days - 1)

        trip_revenue = {}
        trips = Trip.query.filter(
            Trip.status == TripStatus.COMPLETED,
            *date_range_conditions(Trip.actual_end_date, start_date, end_date)
        ).all()
        for trip in trips:
            day = trip.actual_end_date.date()
            trip_revenue[day] = trip_revenue.get(day, ZERO) + (trip.trip_charges or ZERO)

        billed = dict(db.session.query(
            Builty.builty_date,
            func.coalesce(func.sum(Builty.total_amount), 0)
        ).filter(*date_range_conditions(Builty.builty_date, start_date, end_date))
         .group_by(Builty.builty_date).all())

        rows = []
        for offset in range(days):
            day = start_date + timedelta(days=offset)
            rows.append({
                'date': day,
                'trip_revenue': trip_revenue.get(day, ZERO),
                'builty_amount': as_decimal(billed.get(day))
            })

        total_trip_revenue = sum((row['trip_revenue'] for row in rows), ZERO)
        total_billed = sum((row['builty_amount'] for row in rows), ZERO)
        return {
            'days': rows,
            'summary': {
                'total_trip_revenue': total_trip_revenue,
                'total_builty_amount': total_billed,
                'avg_daily_trip_revenue': (total_trip_revenue / days).quantize(
                    Decimal('0.01'), rounding=ROUND_HALF_UP) if days else ZERO,
                'period_days': days
            }
        }

    def get_recent_activities(self, limit: int = 20) -> List[Dict[str, Any]]:
        entries = AuditService.get_recent_activities(limit)
        return [
            {
                'action': entry.action,
                'entity_type': entry.entity_type,
                'entity_id': entry.entity_id,
                'performed_by': entry.performed_by,
                'details': entry.get_details(),
                'created_at': entry.created_at
            }
            for entry in entries
        ]

    def _completed_trip_revenue(self, start_date, end_date) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Trip.trip_charges), 0)).filter(
            Trip.status == TripStatus.COMPLETED,
            *date_range_conditions(Trip.actual_end_date, start_date, end_date)
        ).scalar()
        return as_decimal(total)

    def _builty_revenue(self, start_date, end_date) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Builty.total_amount), 0)) \
                          .filter(*date_range_conditions(Builty.builty_date, start_date, end_date)).scalar()
        return as_decimal(total)

    def _income_total(self, start_date, end_date) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Income.net_amount), 0)) \
                          .filter(*date_range_conditions(Income.income_date, start_date, end_date)).scalar()
        return as_decimal(total)

    def _outstanding_builty_balance(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Builty.balance_amount), 0)) \
                          .filter(Builty.payment_status != BuiltyPaymentStatus.PAID).scalar()
        return as_decimal(total)
