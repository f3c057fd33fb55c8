"""
Dashboard API routes
Back-office overview, compliance alerts, revenue trend and recent activity
"""

import logging
from flask import Blueprint

from services import ReportingService, AuditService
from utils.api import arg_int, success

report_bp = Blueprint('report', __name__)

logger = logging.getLogger(__name__)

reporting_service = ReportingService()


@report_bp.route('', methods=['GET'])
def dashboard():
    return success(statistics=reporting_service.get_dashboard_statistics())


@report_bp.route('/alerts', methods=['GET'])
def compliance_alerts():
    return success(alerts=reporting_service.get_compliance_alerts())


@report_bp.route('/revenue-trend', methods=['GET'])
def revenue_trend():
    days = max(1, arg_int('days', 30))
    return success(report=reporting_service.get_revenue_trend(days))


@report_bp.route('/activities', methods=['GET'])
def recent_activities():
    return success(items=reporting_service.get_recent_activities(arg_int('limit', 20)))


@report_bp.route('/history/<entity_type>/<int:entity_id>', methods=['GET'])
def entity_history(entity_type, entity_id):
    """Audit trail of a single record, newest first."""
    entries = AuditService.get_entity_history(entity_type, entity_id, arg_int('limit', 50))
    return success(items=[
        {
            'action': entry.action,
            'performed_by': entry.performed_by,
            'details': entry.get_details(),
            'created_at': entry.created_at
        }
        for entry in entries
    ])
