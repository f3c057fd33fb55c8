"""
Builty Service

Handles builties (consignment notes / invoices raised against completed
trips): charges and GST, payment collection, delivery tracking and revenue
reports.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from flask import current_app
from sqlalchemy import func
from models import (db, Builty, BuiltyPaymentStatus, DeliveryStatus, Trip, TripStatus, Client, ZERO)
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_int, to_date, to_enum, to_text
from utils.pagination import paginate
from timezone_utils import get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .common import (generate_document_number, append_remark, apply_fields, reject_blank_required, is_value_unique,
                     month_key, date_range_conditions, as_decimal, OVERDUE_BUCKETS, overdue_bucket)

logger = logging.getLogger(__name__)

BUILTY_NUMBER_PREFIX = 'BL'
INVOICE_PATH_TEMPLATE = '/invoices/builty_{builty_id}.pdf'

ADDITIONAL_CHARGE_FIELDS = {
    'LOADING': 'loading_charges',
    'UNLOADING': 'unloading_charges',
    'OTHER': 'other_charges',
}

_BUILTY_FIELDS = {
    'builty_number': to_text,
    'trip_id': lambda v: to_int(v, 'trip_id'),
    'client_id': lambda v: to_int(v, 'client_id'),
    'consignor_name': to_text,
    'consignor_address': to_text,
    'consignor_phone': to_text,
    'consignee_name': to_text,
    'consignee_address': to_text,
    'consignee_phone': to_text,
    'goods_description': to_text,
    'goods_weight': lambda v: to_decimal(v, 'goods_weight'),
    'goods_value': lambda v: to_decimal(v, 'goods_value'),
    'number_of_packages': lambda v: to_int(v, 'number_of_packages'),
    'package_type': to_text,
    'freight_charges': lambda v: to_decimal(v, 'freight_charges'),
    'loading_charges': lambda v: to_decimal(v, 'loading_charges', ZERO),
    'unloading_charges': lambda v: to_decimal(v, 'unloading_charges', ZERO),
    'other_charges': lambda v: to_decimal(v, 'other_charges', ZERO),
    'gst_amount': lambda v: to_decimal(v, 'gst_amount', ZERO),
    'builty_date': lambda v: to_date(v, 'builty_date'),
    'delivery_date': lambda v: to_date(v, 'delivery_date'),
    'payment_due_date': lambda v: to_date(v, 'payment_due_date'),
    'remarks': to_text,
    'special_instructions': to_text,
}


class BuiltyService:
    """Service class for builty (invoice) operations"""

    def __init__(self):
        self.audit_service = AuditService()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def create_builty(self, data: Dict[str, Any]) -> Builty:
        """
        Raise a builty against a completed trip.

        The client defaults to the trip's client, the builty date to today
        and the payment due date to builty date + STMS_PAYMENT_TERMS_DAYS.

        Args:
            data: Builty DTO dictionary

        Returns:
            The persisted Builty
        """
        builty = self.convert_to_entity(data)

        if builty.client_id is None and builty.trip_id is not None:
            trip = db.session.get(Trip, builty.trip_id)
            if trip is not None:
                builty.client_id = trip.client_id

        self.validate_builty_for_creation(self._snapshot(builty))

        if not builty.builty_number:
            builty.builty_number = self.generate_builty_number()
        if builty.builty_date is None:
            builty.builty_date = get_ist_today()
        if builty.payment_due_date is None:
            terms = current_app.config.get('STMS_PAYMENT_TERMS_DAYS', 30)
            builty.payment_due_date = self.calculate_payment_due_date(builty.builty_date, terms)

        db.session.add(builty)
        db.session.flush()

        self.audit_service.log_action(
            action='create_builty',
            entity_type='builty',
            entity_id=builty.id,
            details={'builty_number': builty.builty_number, 'trip_id': builty.trip_id,
                     'total_amount': builty.total_amount}
        )

        logger.info(f"Builty {builty.builty_number} (ID: {builty.id}) created")
        return builty

    @TransactionHelper.with_transaction
    def update_builty(self, builty_id: int, data: Dict[str, Any]) -> Builty:
        builty = self._get_builty_or_raise(builty_id)
        if (builty.delivery_status == DeliveryStatus.DELIVERED
                and builty.payment_status == BuiltyPaymentStatus.PAID):
            raise BusinessValidationError("Cannot update delivered and paid builty")

        self.validate_builty_for_update(builty_id, data)
        apply_fields(builty, data, _BUILTY_FIELDS)

        self.audit_service.log_action(
            action='update_builty',
            entity_type='builty',
            entity_id=builty.id,
            details={key: data[key] for key in data if key in _BUILTY_FIELDS}
        )
        logger.info(f"Builty {builty.builty_number} (ID: {builty_id}) updated")
        return builty

    def get_builty_by_id(self, builty_id: int) -> Optional[Builty]:
        return db.session.get(Builty, builty_id)

    def get_all_builties(self, page: int = 1, per_page: Optional[int] = None):
        return paginate(Builty.query.order_by(Builty.builty_date.desc(), Builty.id.desc()), page, per_page)

    @TransactionHelper.with_transaction
    def delete_builty(self, builty_id: int) -> None:
        builty = self._get_builty_or_raise(builty_id)
        if not self._can_delete(builty):
            raise BusinessValidationError("Cannot delete builty that is delivered or has payments")

        builty_number = builty.builty_number
        db.session.delete(builty)

        self.audit_service.log_action(
            action='delete_builty',
            entity_type='builty',
            entity_id=builty_id,
            details={'builty_number': builty_number}
        )
        logger.info(f"Builty {builty_number} (ID: {builty_id}) deleted")

    def can_delete_builty(self, builty_id: int) -> bool:
        builty = db.session.get(Builty, builty_id)
        return builty is not None and self._can_delete(builty)

    @staticmethod
    def _can_delete(builty: Builty) -> bool:
        return (builty.delivery_status != DeliveryStatus.DELIVERED
                and (builty.advance_amount or ZERO) == 0)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_builties(self, builty_number: Optional[str] = None, trip_id: Optional[int] = None,
                        client_id: Optional[int] = None, payment_status: Any = None,
                        delivery_status: Any = None, start_date=None, end_date=None,
                        page: int = 1, per_page: Optional[int] = None):
        query = Builty.query

        if builty_number:
            query = query.filter(Builty.builty_number.ilike(f"%{builty_number}%"))
        if trip_id:
            query = query.filter(Builty.trip_id == trip_id)
        if client_id:
            query = query.filter(Builty.client_id == client_id)
        if payment_status:
            query = query.filter(Builty.payment_status == to_enum(BuiltyPaymentStatus, payment_status,
                                                                  'payment_status'))
        if delivery_status:
            query = query.filter(Builty.delivery_status == to_enum(DeliveryStatus, delivery_status,
                                                                   'delivery_status'))
        query = query.filter(*date_range_conditions(Builty.builty_date, start_date, end_date))

        return paginate(query.order_by(Builty.builty_date.desc(), Builty.id.desc()), page, per_page)

    def find_by_builty_number(self, builty_number: str) -> Optional[Builty]:
        return Builty.query.filter_by(builty_number=builty_number).first()

    def get_builties_by_payment_status(self, payment_status: Any, page: int = 1, per_page: Optional[int] = None):
        status = to_enum(BuiltyPaymentStatus, payment_status, 'payment_status')
        query = Builty.query.filter(Builty.payment_status == status)
        return paginate(query.order_by(Builty.builty_date.desc()), page, per_page)

    def get_builties_by_delivery_status(self, delivery_status: Any, page: int = 1, per_page: Optional[int] = None):
        status = to_enum(DeliveryStatus, delivery_status, 'delivery_status')
        query = Builty.query.filter(Builty.delivery_status == status)
        return paginate(query.order_by(Builty.builty_date.desc()), page, per_page)

    def get_builties_by_trip(self, trip_id: int, page: int = 1, per_page: Optional[int] = None):
        query = Builty.query.filter(Builty.trip_id == trip_id)
        return paginate(query.order_by(Builty.builty_date.desc()), page, per_page)

    def get_builties_by_client(self, client_id: int, page: int = 1, per_page: Optional[int] = None):
        query = Builty.query.filter(Builty.client_id == client_id)
        return paginate(query.order_by(Builty.builty_date.desc()), page, per_page)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_payment_status(self, builty_id: int, payment_status: Any, remarks: Optional[str] = None) -> Builty:
        status = to_enum(BuiltyPaymentStatus, payment_status, 'payment_status')
        if status is None:
            raise BusinessValidationError("Payment status is required")

        builty = self._get_builty_or_raise(builty_id)
        old_status = builty.payment_status
        builty.payment_status = status

        message = f"Payment status updated from {old_status.name} to {status.name} on {get_ist_today()}"
        if remarks:
            message += f" - {remarks}"
        append_remark(builty, message)

        self.audit_service.log_action(
            action='update_builty_payment_status',
            entity_type='builty',
            entity_id=builty.id,
            details={'old_status': old_status, 'new_status': status}
        )
        return builty

    @TransactionHelper.with_transaction
    def add_payment(self, builty_id: int, amount: Any, payment_date: Any = None,
                    payment_method: Optional[str] = None, remarks: Optional[str] = None) -> Builty:
        """
        Collect a payment against a builty.

        The collected total moves the builty to PARTIAL, or PAID once the
        full amount is in.

        Args:
            builty_id: ID of builty
            amount: Payment amount, positive and within the balance
            payment_date: Defaults to today
            payment_method: CASH, CHEQUE, NEFT, UPI...
            remarks: Optional note

        Returns:
            The updated Builty
        """
        builty = self._get_builty_or_raise(builty_id)
        value = to_decimal(amount, 'amount')
        if not self.validate_payment_amount(builty_id, value):
            raise BusinessValidationError("Invalid payment amount")

        paid_on = to_date(payment_date, 'payment_date', get_ist_today())
        new_advance = (builty.advance_amount or ZERO) + value
        builty.advance_amount = new_advance

        if new_advance >= builty.total_amount:
            builty.payment_status = BuiltyPaymentStatus.PAID
        elif new_advance > 0:
            builty.payment_status = BuiltyPaymentStatus.PARTIAL

        message = f"Payment of {value} received on {paid_on} via {payment_method or 'N/A'}. Total paid: {new_advance}"
        if remarks:
            message += f" - {remarks}"
        append_remark(builty, message)

        self.audit_service.log_action(
            action='add_builty_payment',
            entity_type='builty',
            entity_id=builty.id,
            details={'amount': value, 'payment_date': paid_on, 'payment_method': payment_method,
                     'payment_status': builty.payment_status}
        )
        logger.info(f"Payment of {value} recorded for builty {builty.builty_number}")
        return builty

    def validate_payment_amount(self, builty_id: int, amount: Any) -> bool:
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            return False
        builty = db.session.get(Builty, builty_id)
        if builty is None:
            return False
        return value <= builty.balance_amount

    def get_pending_payments(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_builties_by_payment_status(BuiltyPaymentStatus.PENDING, page, per_page)

    def get_partial_payments(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_builties_by_payment_status(BuiltyPaymentStatus.PARTIAL, page, per_page)

    def get_overdue_payments(self, page: int = 1, per_page: Optional[int] = None):
        query = Builty.query.filter(
            Builty.payment_status != BuiltyPaymentStatus.PAID,
            Builty.payment_due_date < get_ist_today()
        ).order_by(Builty.payment_due_date)
        return paginate(query, page, per_page)

    def calculate_outstanding_amount(self, client_id: Optional[int] = None) -> Decimal:
        """Unpaid builty balance for one client, or across all clients."""
        query = db.session.query(func.coalesce(func.sum(Builty.balance_amount), 0)) \
                          .filter(Builty.payment_status != BuiltyPaymentStatus.PAID)
        if client_id is not None:
            query = query.filter(Builty.client_id == client_id)
        return as_decimal(query.scalar())

    def get_payment_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = db.session.query(
            Builty.payment_status,
            func.count(Builty.id).label('builty_count'),
            func.coalesce(func.sum(Builty.total_amount), 0).label('total_amount'),
            func.coalesce(func.sum(Builty.advance_amount), 0).label('paid_amount'),
            func.coalesce(func.sum(Builty.balance_amount), 0).label('balance_amount')
        ).filter(*date_range_conditions(Builty.builty_date, start_date, end_date)) \
         .group_by(Builty.payment_status).all()

        by_status = {row.payment_status: row for row in rows}
        summary = []
        for status in BuiltyPaymentStatus:
            row = by_status.get(status)
            summary.append({
                'payment_status': status,
                'builty_count': row.builty_count if row else 0,
                'total_amount': as_decimal(row.total_amount) if row else ZERO,
                'paid_amount': as_decimal(row.paid_amount) if row else ZERO,
                'balance_amount': as_decimal(row.balance_amount) if row else ZERO
            })
        return summary

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_delivery_status(self, builty_id: int, delivery_status: Any, delivery_date: Any = None,
                               remarks: Optional[str] = None) -> Builty:
        status = to_enum(DeliveryStatus, delivery_status, 'delivery_status')
        if status is None:
            raise BusinessValidationError("Delivery status is required")

        builty = self._get_builty_or_raise(builty_id)
        old_status = builty.delivery_status
        builty.delivery_status = status

        delivered_on = to_date(delivery_date, 'delivery_date')
        if delivered_on is not None:
            builty.delivery_date = delivered_on

        message = f"Delivery status updated from {old_status.name} to {status.name} on {get_ist_today()}"
        if remarks:
            message += f" - {remarks}"
        append_remark(builty, message)

        self.audit_service.log_action(
            action='update_delivery_status',
            entity_type='builty',
            entity_id=builty.id,
            details={'old_status': old_status, 'new_status': status}
        )
        return builty

    @TransactionHelper.with_transaction
    def mark_as_delivered(self, builty_id: int, delivery_date: Any = None, received_by: Optional[str] = None,
                          remarks: Optional[str] = None) -> Builty:
        builty = self._get_builty_or_raise(builty_id)
        delivered_on = to_date(delivery_date, 'delivery_date', get_ist_today())
        if builty.builty_date and delivered_on < builty.builty_date:
            raise BusinessValidationError("Delivery date cannot be before builty date")

        builty.delivery_status = DeliveryStatus.DELIVERED
        builty.delivery_date = delivered_on
        builty.received_by = to_text(received_by)

        message = f"Goods delivered on {delivered_on}. Received by: {received_by or 'N/A'}"
        if remarks:
            message += f" - {remarks}"
        append_remark(builty, message)

        self.audit_service.log_action(
            action='mark_builty_delivered',
            entity_type='builty',
            entity_id=builty.id,
            details={'delivery_date': delivered_on, 'received_by': received_by}
        )
        logger.info(f"Builty {builty.builty_number} delivered")
        return builty

    def get_pending_deliveries(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_builties_by_delivery_status(DeliveryStatus.PENDING, page, per_page)

    def get_in_transit_builties(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_builties_by_delivery_status(DeliveryStatus.IN_TRANSIT, page, per_page)

    def get_delivered_builties(self, start_date=None, end_date=None, page: int = 1,
                               per_page: Optional[int] = None):
        query = Builty.query.filter(
            Builty.delivery_status == DeliveryStatus.DELIVERED,
            *date_range_conditions(Builty.delivery_date, start_date, end_date)
        ).order_by(Builty.delivery_date.desc())
        return paginate(query, page, per_page)

    def get_delivery_performance_report(self, start_date=None, end_date=None) -> Dict[str, Any]:
        """
        Delivery status counts and average transit days for builties in a period.
        """
        builties = Builty.query.filter(
            *date_range_conditions(Builty.builty_date, start_date, end_date)
        ).all()

        counts = {status.name: 0 for status in DeliveryStatus}
        transit_days = []
        for builty in builties:
            counts[builty.delivery_status.name] += 1
            if builty.delivery_status == DeliveryStatus.DELIVERED and builty.delivery_date:
                transit_days.append((builty.delivery_date - builty.builty_date).days)

        average_days = ZERO
        if transit_days:
            average_days = (Decimal(sum(transit_days)) / len(transit_days)).quantize(
                Decimal('0.01'), rounding=ROUND_HALF_UP)

        return {
            'total_builties': len(builties),
            'delivery_status_counts': counts,
            'average_delivery_days': average_days,
            'max_delivery_days': max(transit_days) if transit_days else 0
        }

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def calculate_gst_amount(self, total_charges: Any, gst_rate: Any) -> Decimal:
        charges = to_decimal(total_charges, 'total_charges')
        rate = to_decimal(gst_rate, 'gst_rate')
        if charges is None or rate is None:
            return ZERO
        return charges * (rate / 100).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)

    @TransactionHelper.with_transaction
    def update_freight_charges(self, builty_id: int, new_charges: Any, reason: Optional[str] = None) -> Builty:
        charges = to_decimal(new_charges, 'freight_charges')
        if charges is None or charges <= 0:
            raise BusinessValidationError("Freight charges must be greater than zero")

        builty = self._get_builty_or_raise(builty_id)
        old_charges = builty.freight_charges
        builty.freight_charges = charges

        message = f"Freight charges updated from {old_charges} to {charges} on {get_ist_today()}"
        if reason:
            message += f" - Reason: {reason}"
        append_remark(builty, message)

        self.audit_service.log_action(
            action='update_freight_charges',
            entity_type='builty',
            entity_id=builty.id,
            details={'old_charges': old_charges, 'new_charges': charges, 'reason': reason}
        )
        return builty

    @TransactionHelper.with_transaction
    def add_additional_charges(self, builty_id: int, charge_type: str, amount: Any,
                               description: Optional[str] = None) -> Builty:
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            raise BusinessValidationError("Charge amount must be greater than zero")

        kind = (charge_type or '').strip().upper()
        field = ADDITIONAL_CHARGE_FIELDS.get(kind)
        if field is None:
            raise BusinessValidationError(f"Invalid charge type: {charge_type}")

        builty = self._get_builty_or_raise(builty_id)
        setattr(builty, field, (getattr(builty, field) or ZERO) + value)

        message = f"{kind} charges of {value} added on {get_ist_today()}"
        if description:
            message += f" - {description}"
        append_remark(builty, message)

        self.audit_service.log_action(
            action='add_additional_charges',
            entity_type='builty',
            entity_id=builty.id,
            details={'charge_type': kind, 'amount': value}
        )
        return builty

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _in_period(self, start_date=None, end_date=None):
        return Builty.query.filter(*date_range_conditions(Builty.builty_date, start_date, end_date))

    def get_revenue_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """Daily billed, collected and outstanding amounts."""
        days = defaultdict(lambda: {'builty_count': 0, 'total_charges': ZERO, 'gst_amount': ZERO,
                                    'total_amount': ZERO, 'collected_amount': ZERO})
        for builty in self._in_period(start_date, end_date).all():
            bucket = days[builty.builty_date]
            bucket['builty_count'] += 1
            bucket['total_charges'] += builty.total_charges
            bucket['gst_amount'] += builty.gst_amount or ZERO
            bucket['total_amount'] += builty.total_amount
            bucket['collected_amount'] += builty.advance_amount or ZERO

        return [
            dict(date=day, outstanding_amount=values['total_amount'] - values['collected_amount'], **values)
            for day, values in sorted(days.items())
        ]

    def get_client_wise_revenue(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = db.session.query(
            Client.id,
            Client.name,
            func.count(Builty.id).label('builty_count'),
            func.coalesce(func.sum(Builty.total_amount), 0).label('total_amount'),
            func.coalesce(func.sum(Builty.advance_amount), 0).label('paid_amount')
        ).join(Builty, Builty.client_id == Client.id) \
         .filter(*date_range_conditions(Builty.builty_date, start_date, end_date)) \
         .group_by(Client.id, Client.name) \
         .order_by(func.sum(Builty.total_amount).desc()).all()

        return [
            {
                'client_id': row.id,
                'client_name': row.name,
                'builty_count': row.builty_count,
                'total_amount': as_decimal(row.total_amount),
                'paid_amount': as_decimal(row.paid_amount),
                'outstanding_amount': as_decimal(row.total_amount) - as_decimal(row.paid_amount)
            }
            for row in rows
        ]

    def get_top_clients_by_revenue(self, start_date=None, end_date=None, limit: int = 10) -> List[Dict[str, Any]]:
        return self.get_client_wise_revenue(start_date, end_date)[:limit]

    def calculate_total_revenue(self, start_date=None, end_date=None) -> Decimal:
        total = self._in_period(start_date, end_date) \
                    .with_entities(func.coalesce(func.sum(Builty.total_amount), 0)).scalar()
        return as_decimal(total)

    def get_builty_statistics(self) -> Dict[str, Any]:
        payment_counts = dict(db.session.query(Builty.payment_status, func.count(Builty.id))
                              .group_by(Builty.payment_status).all())
        delivery_counts = dict(db.session.query(Builty.delivery_status, func.count(Builty.id))
                               .group_by(Builty.delivery_status).all())
        overdue = Builty.query.filter(
            Builty.payment_status != BuiltyPaymentStatus.PAID,
            Builty.payment_due_date < get_ist_today()
        ).count()

        return {
            'total_builties': Builty.query.count(),
            'payment_status_counts': {status.name: payment_counts.get(status, 0) for status in BuiltyPaymentStatus},
            'delivery_status_counts': {status.name: delivery_counts.get(status, 0) for status in DeliveryStatus},
            'overdue_builties': overdue,
            'total_revenue': self.calculate_total_revenue(),
            'total_outstanding': self.calculate_outstanding_amount()
        }

    def get_monthly_builty_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        months = defaultdict(lambda: {'builty_count': 0, 'total_amount': ZERO, 'collected_amount': ZERO,
                                      'goods_weight': ZERO})
        for builty in self._in_period(start_date, end_date).all():
            bucket = months[month_key(builty.builty_date)]
            bucket['builty_count'] += 1
            bucket['total_amount'] += builty.total_amount
            bucket['collected_amount'] += builty.advance_amount or ZERO
            bucket['goods_weight'] += builty.goods_weight or ZERO

        return [dict(month=month, **values) for month, values in sorted(months.items())]

    def generate_builty_report(self, start_date=None, end_date=None, payment_status: Any = None,
                               delivery_status: Any = None) -> List[Dict[str, Any]]:
        query = self._in_period(start_date, end_date)
        if payment_status:
            query = query.filter(Builty.payment_status == to_enum(BuiltyPaymentStatus, payment_status,
                                                                  'payment_status'))
        if delivery_status:
            query = query.filter(Builty.delivery_status == to_enum(DeliveryStatus, delivery_status,
                                                                   'delivery_status'))
        return [self.convert_to_dict(builty) for builty in query.order_by(Builty.builty_date).all()]

    def get_aging_report(self) -> List[Dict[str, Any]]:
        """
        Unpaid builty balances bucketed by days past the payment due date.

        Builties not yet due fall in the ``current`` bucket.
        """
        today = get_ist_today()
        buckets = {label: {'builty_count': 0, 'outstanding_amount': ZERO} for label, _, _ in OVERDUE_BUCKETS}

        unpaid = Builty.query.filter(Builty.payment_status != BuiltyPaymentStatus.PAID).all()
        for builty in unpaid:
            balance = builty.balance_amount
            if balance <= 0:
                continue
            due = builty.payment_due_date or builty.builty_date
            label = overdue_bucket((today - due).days)
            buckets[label]['builty_count'] += 1
            buckets[label]['outstanding_amount'] += balance

        return [dict(bucket=label, **buckets[label]) for label, _, _ in OVERDUE_BUCKETS]

    def get_goods_analysis_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        goods = defaultdict(lambda: {'builty_count': 0, 'total_weight': ZERO, 'total_value': ZERO,
                                     'total_packages': 0, 'freight_charges': ZERO})
        for builty in self._in_period(start_date, end_date).all():
            key = (builty.goods_description or 'Unspecified', builty.package_type or 'Unspecified')
            bucket = goods[key]
            bucket['builty_count'] += 1
            bucket['total_weight'] += builty.goods_weight or ZERO
            bucket['total_value'] += builty.goods_value or ZERO
            bucket['total_packages'] += builty.number_of_packages or 0
            bucket['freight_charges'] += builty.freight_charges or ZERO

        report = [dict(goods_description=description, package_type=package_type, **values)
                  for (description, package_type), values in goods.items()]
        return sorted(report, key=lambda r: r['total_weight'], reverse=True)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_builty_for_creation(self, data: Dict[str, Any]) -> None:
        self._validate_builty(data, exclude_id=None)

    def validate_builty_for_update(self, builty_id: int, data: Dict[str, Any]) -> None:
        builty = self._get_builty_or_raise(builty_id)
        reject_blank_required(Builty, data, _BUILTY_FIELDS)
        merged = self._snapshot(builty)
        for field, converter in _BUILTY_FIELDS.items():
            if field in data:
                merged[field] = converter(data[field])
        self._validate_builty(merged, exclude_id=builty_id)

    def _validate_builty(self, data: Dict[str, Any], exclude_id: Optional[int]) -> None:
        builty_number = to_text(data.get('builty_number'))
        if builty_number and not self.is_builty_number_unique(builty_number, exclude_id):
            raise DuplicateResourceError("Builty", "builty number", builty_number)

        trip_id = to_int(data.get('trip_id'), 'trip_id')
        if trip_id is None:
            raise BusinessValidationError("Trip is required")
        trip = db.session.get(Trip, trip_id)
        if not trip:
            raise ResourceNotFoundError("Trip", trip_id)
        if trip.status != TripStatus.COMPLETED:
            raise BusinessValidationError("Can only create builty for completed trips")

        client_id = to_int(data.get('client_id'), 'client_id')
        if client_id is None:
            raise BusinessValidationError("Client is required")
        client = db.session.get(Client, client_id)
        if not client:
            raise ResourceNotFoundError("Client", client_id)
        if not client.is_active:
            raise BusinessValidationError("Cannot create builty for inactive client")

        for field, label in (('consignor_name', 'Consignor name'), ('consignee_name', 'Consignee name')):
            if not to_text(data.get(field)):
                raise BusinessValidationError(f"{label} is required")

        freight = to_decimal(data.get('freight_charges'), 'freight_charges')
        if freight is None or freight <= 0:
            raise BusinessValidationError("Freight charges must be greater than zero")

        weight = to_decimal(data.get('goods_weight'), 'goods_weight')
        if weight is None or weight <= 0:
            raise BusinessValidationError("Goods weight must be greater than zero")

        packages = to_int(data.get('number_of_packages'), 'number_of_packages')
        if packages is not None and packages <= 0:
            raise BusinessValidationError("Number of packages must be greater than zero")

        for field in ('loading_charges', 'unloading_charges', 'other_charges', 'gst_amount', 'goods_value'):
            value = to_decimal(data.get(field), field)
            if value is not None and value < 0:
                raise BusinessValidationError(f"{field.replace('_', ' ').capitalize()} cannot be negative")

        builty_date = to_date(data.get('builty_date'), 'builty_date')
        due_date = to_date(data.get('payment_due_date'), 'payment_due_date')
        if builty_date and due_date and due_date < builty_date:
            raise BusinessValidationError("Payment due date cannot be before builty date")

    def is_builty_number_unique(self, builty_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Builty, Builty.builty_number, builty_number, exclude_id)

    # ------------------------------------------------------------------
    # Conversion and helpers
    # ------------------------------------------------------------------

    def convert_to_dict(self, builty: Optional[Builty]) -> Optional[Dict[str, Any]]:
        if builty is None:
            return None

        trip = builty.trip
        return {
            'id': builty.id,
            'builty_number': builty.builty_number,
            'trip_id': builty.trip_id,
            'client_id': builty.client_id,
            'consignor_name': builty.consignor_name,
            'consignor_address': builty.consignor_address,
            'consignor_phone': builty.consignor_phone,
            'consignee_name': builty.consignee_name,
            'consignee_address': builty.consignee_address,
            'consignee_phone': builty.consignee_phone,
            'goods_description': builty.goods_description,
            'goods_weight': builty.goods_weight,
            'goods_value': builty.goods_value,
            'number_of_packages': builty.number_of_packages,
            'package_type': builty.package_type,
            'freight_charges': builty.freight_charges,
            'loading_charges': builty.loading_charges,
            'unloading_charges': builty.unloading_charges,
            'other_charges': builty.other_charges,
            'gst_amount': builty.gst_amount,
            'advance_amount': builty.advance_amount,
            'payment_status': builty.payment_status,
            'delivery_status': builty.delivery_status,
            'builty_date': builty.builty_date,
            'delivery_date': builty.delivery_date,
            'payment_due_date': builty.payment_due_date,
            'received_by': builty.received_by,
            'remarks': builty.remarks,
            'special_instructions': builty.special_instructions,
            'trip_number': trip.trip_number if trip else None,
            'truck_number': trip.truck.truck_number if trip and trip.truck else None,
            'driver_name': trip.driver.name if trip and trip.driver else None,
            'client_name': builty.client.name if builty.client else None,
            'total_charges': builty.total_charges,
            'total_amount': builty.total_amount,
            'balance_amount': builty.balance_amount,
            'is_overdue': builty.is_overdue,
            'days_overdue': builty.days_overdue
        }

    def convert_to_entity(self, data: Dict[str, Any]) -> Builty:
        builty = Builty()
        apply_fields(builty, data, _BUILTY_FIELDS)
        for field in ('loading_charges', 'unloading_charges', 'other_charges', 'gst_amount'):
            if getattr(builty, field) is None:
                setattr(builty, field, ZERO)
        builty.advance_amount = ZERO
        builty.payment_status = BuiltyPaymentStatus.PENDING
        builty.delivery_status = DeliveryStatus.PENDING
        return builty

    def generate_builty_number(self) -> str:
        return generate_document_number(Builty.builty_number, BUILTY_NUMBER_PREFIX,
                                        get_ist_today().strftime('%Y%m%d'))

    def calculate_payment_due_date(self, builty_date: Any, credit_days: int):
        return to_date(builty_date, 'builty_date') + timedelta(days=int(credit_days))

    def get_builty_count(self, payment_status: Any = None, delivery_status: Any = None) -> int:
        query = Builty.query
        if payment_status:
            query = query.filter(Builty.payment_status == to_enum(BuiltyPaymentStatus, payment_status,
                                                                  'payment_status'))
        if delivery_status:
            query = query.filter(Builty.delivery_status == to_enum(DeliveryStatus, delivery_status,
                                                                   'delivery_status'))
        return query.count()

    @TransactionHelper.with_transaction
    def send_payment_reminder(self, builty_id: int) -> bool:
        """
        Trigger a payment reminder for an unpaid builty.

        Delivery over SMS/e-mail is handled outside this service; the
        trigger is recorded in the audit trail.
        """
        builty = self._get_builty_or_raise(builty_id)
        if builty.payment_status == BuiltyPaymentStatus.PAID:
            logger.info(f"Builty {builty.builty_number} already paid; no reminder sent")
            return False

        self.audit_service.log_action(
            action='send_payment_reminder',
            entity_type='builty',
            entity_id=builty.id,
            details={'balance_amount': builty.balance_amount, 'client_id': builty.client_id}
        )
        logger.info(f"Payment reminder triggered for builty {builty.builty_number}")
        return True

    def generate_invoice_pdf(self, builty_id: int) -> str:
        builty = self._get_builty_or_raise(builty_id)
        path = INVOICE_PATH_TEMPLATE.format(builty_id=builty.id)
        logger.info(f"Invoice generation requested for builty {builty.builty_number}: {path}")
        return path

    @staticmethod
    def _snapshot(builty: Builty) -> Dict[str, Any]:
        return {field: getattr(builty, field) for field in _BUILTY_FIELDS}

    def _get_builty_or_raise(self, builty_id: int) -> Builty:
        builty = db.session.get(Builty, builty_id)
        if not builty:
            raise ResourceNotFoundError("Builty", builty_id)
        return builty
