"""
Audit Service

Centralized audit logging for every state change made through the service
layer. Entries join the caller's transaction and are committed (or rolled
back) together with the change they describe.
"""

from typing import Optional, Dict, Any, List
import logging
import json
from datetime import timedelta
from flask import has_request_context, request
from models import db, AuditLog
from timezone_utils import get_ist_time_naive

logger = logging.getLogger(__name__)

class AuditService:
    """Service class for centralized audit logging"""

    @staticmethod
    def log_action(action: str,
                   entity_type: Optional[str] = None,
                   entity_id: Optional[int] = None,
                   details: Optional[Dict[str, Any]] = None,
                   performed_by: Optional[str] = None) -> bool:
        """
        Log an audit event with request context when available.

        Args:
            action: Action performed (e.g., 'start_trip', 'add_payment')
            entity_type: Type of entity affected (e.g., 'trip', 'builty')
            entity_id: ID of the affected entity
            details: Additional details about the action
            performed_by: Operator name; defaults to the X-Performed-By header

        Returns:
            bool: True if logging successful, False otherwise
        """
        try:
            audit = AuditLog()
            audit.action = action
            audit.entity_type = entity_type
            audit.entity_id = entity_id
            audit.new_values = json.dumps(details, default=str) if details else None

            if has_request_context():
                audit.performed_by = performed_by or request.headers.get('X-Performed-By')
                audit.ip_address = request.remote_addr
                audit.user_agent = request.headers.get('User-Agent', '')[:255]
            else:
                audit.performed_by = performed_by or 'system'

            # Outer transaction commits
            db.session.add(audit)
            logger.debug(f"Audit logged: {action} on {entity_type}:{entity_id}")
            return True

        except Exception as e:
            logger.error(f"Error logging audit action '{action}': {str(e)}")
            return False

    @staticmethod
    def get_entity_history(entity_type: str, entity_id: int, limit: int = 50) -> List[AuditLog]:
        """
        Get audit history for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'trip', 'client')
            entity_id: ID of entity
            limit: Maximum number of records to return

        Returns:
            List of AuditLog records, newest first
        """
        return AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id) \
                             .order_by(AuditLog.created_at.desc(), AuditLog.id.desc()) \
                             .limit(limit).all()

    @staticmethod
    def get_recent_activities(limit: int = 20) -> List[AuditLog]:
        """Get recent system-wide activities for dashboard display."""
        return AuditLog.query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()

    @staticmethod
    def cleanup_old_logs(days_to_keep: int = 365) -> int:
        """
        Delete audit logs older than the retention window.

        Args:
            days_to_keep: Number of days of logs to retain

        Returns:
            int: Number of records deleted
        """
        cutoff_date = get_ist_time_naive() - timedelta(days=days_to_keep)

        try:
            count = AuditLog.query.filter(AuditLog.created_at < cutoff_date).delete()
            db.session.commit()
            if count:
                logger.info(f"Cleaned up {count} audit log records older than {days_to_keep} days")
            return count

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error cleaning up audit logs: {str(e)}")
            raise
