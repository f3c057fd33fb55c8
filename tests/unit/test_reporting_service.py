"""
Unit tests for ReportingService
"""

import pytest
from datetime import datetime, time, timedelta
from decimal import Decimal

from services.reporting_service import ReportingService
from services.audit_service import AuditService
from models import BuiltyPaymentStatus, TripStatus
from timezone_utils import get_ist_today
from tests.unit.conftest import (BuiltyFactory, CompletedTripFactory, DriverFactory, IncomeFactory,
                                 MaintenanceFactory, TripFactory, TruckFactory)


def today_at(hour):
    return datetime.combine(get_ist_today(), time(hour))


@pytest.fixture
def finished_today(db_session):
    return CompletedTripFactory(actual_start_date=today_at(6), actual_end_date=today_at(10))


class TestDashboard:
    """Test dashboard statistics"""

    def test_dashboard_statistics(self, db_session, finished_today):
        """Test counts, month-to-date totals and outstanding balance"""
        today = get_ist_today()
        BuiltyFactory(trip=finished_today)
        BuiltyFactory(trip=finished_today, builty_date=today - timedelta(days=40),
                      payment_due_date=today - timedelta(days=10))
        BuiltyFactory(trip=finished_today, payment_status=BuiltyPaymentStatus.PAID,
                      advance_amount=Decimal('10000'))
        TripFactory(truck=finished_today.truck, driver=finished_today.driver, client=finished_today.client)
        MaintenanceFactory(truck=finished_today.truck, scheduled_date=today - timedelta(days=1))
        IncomeFactory()

        stats = ReportingService().get_dashboard_statistics()

        assert stats['active_clients'] == 1
        assert stats['active_drivers'] == 1
        assert stats['active_trucks'] == 1
        assert stats['planned_trips'] == 1
        assert stats['running_trips'] == 0
        assert stats['pending_builty_payments'] == 2
        assert stats['overdue_builty_payments'] == 1
        assert stats['overdue_maintenances'] == 1
        assert stats['month_to_date_trip_revenue'] == Decimal('20000')
        assert stats['month_to_date_builty_revenue'] == Decimal('20000')
        assert stats['month_to_date_income'] == Decimal('10000')
        assert stats['total_outstanding'] == Decimal('20000')
        assert stats['alerts'] == []

    def test_dashboard_on_empty_database(self, db_session):
        """Test an empty fleet reports zeros"""
        stats = ReportingService().get_dashboard_statistics()

        assert stats['active_trucks'] == 0
        assert stats['total_outstanding'] == Decimal('0')
        assert stats['generated_at'] is not None


class TestComplianceAlerts:
    """Test document and licence expiry alerts"""

    def test_alerts_sorted_by_expiry(self, db_session):
        """Test expired and expiring items within the warning window"""
        today = get_ist_today()
        insured = TruckFactory(insurance_expiry_date=today + timedelta(days=10))
        lapsed_puc = TruckFactory(puc_expiry_date=today - timedelta(days=2))
        driver = DriverFactory(license_expiry_date=today - timedelta(days=5))
        TruckFactory(rc_expiry_date=today - timedelta(days=1), is_active=False)

        alerts = ReportingService().get_compliance_alerts()

        assert [(a['alert_type'], a['entity_id']) for a in alerts] == [
            ('LICENSE_EXPIRED', driver.id),
            ('DOCUMENT_EXPIRED', lapsed_puc.id),
            ('DOCUMENT_EXPIRING', insured.id),
        ]
        assert alerts[1]['document_type'] == 'PUC'
        assert alerts[2]['days_remaining'] == 10
        assert alerts[0]['reference'] == driver.name

    def test_alert_window_from_config(self, app, db_session):
        """Test the warning window follows configuration"""
        TruckFactory(insurance_expiry_date=get_ist_today() + timedelta(days=10))
        app.config['STMS_DOCUMENT_EXPIRY_WARNING_DAYS'] = 5

        assert ReportingService().get_compliance_alerts() == []


class TestRevenueTrend:
    """Test daily revenue trend"""

    def test_revenue_trend(self, db_session, finished_today):
        """Test one row per day and period summary"""
        BuiltyFactory(trip=finished_today)

        trend = ReportingService().get_revenue_trend(days=7)

        assert len(trend['days']) == 7
        assert trend['days'][0]['date'] == get_ist_today() - timedelta(days=6)
        assert trend['days'][-1]['trip_revenue'] == Decimal('20000')
        assert trend['days'][-1]['builty_amount'] == Decimal('10000')
        assert trend['days'][0]['trip_revenue'] == Decimal('0')
        assert trend['summary']['total_trip_revenue'] == Decimal('20000')
        assert trend['summary']['avg_daily_trip_revenue'] == Decimal('2857.14')

    def test_cancelled_trips_excluded(self, db_session):
        """Test only completed trips count as revenue"""
        CompletedTripFactory(actual_start_date=today_at(6), actual_end_date=today_at(9),
                             status=TripStatus.CANCELLED)

        trend = ReportingService().get_revenue_trend(days=1)

        assert trend['summary']['total_trip_revenue'] == Decimal('0')


class TestRecentActivities:
    """Test the audit feed"""

    def test_recent_activities(self, db_session):
        """Test audit entries are exposed newest first"""
        AuditService.log_action('create_client', 'client', 1, {'name': 'Kalyani Steels'})
        AuditService.log_action('create_truck', 'truck', 4)
        db_session.commit()

        activities = ReportingService().get_recent_activities(limit=1)

        assert len(activities) == 1
        assert activities[0]['action'] == 'create_truck'
        assert activities[0]['performed_by'] == 'system'
