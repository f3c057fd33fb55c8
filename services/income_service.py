"""
Income Service

Handles income records (freight, rental, commission and other receipts):
tax and net amount calculation, payment collection, recurring income
generation and income reports.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import func
from models import (db, Income, IncomePaymentStatus, RecurringFrequency, Trip, Client, Builty, ZERO)
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_int, to_date, to_enum, to_text, to_bool
from utils.pagination import paginate
from timezone_utils import get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .common import (generate_document_number, append_remark, apply_fields, reject_blank_required, is_value_unique,
                     month_key, date_range_conditions, as_decimal, add_months,
                     OVERDUE_BUCKETS, overdue_bucket)

logger = logging.getLogger(__name__)

INCOME_NUMBER_PREFIX = 'IN'

# Frequencies advancing by whole days, the rest by calendar months
FREQUENCY_DAYS = {
    RecurringFrequency.DAILY: 1,
    RecurringFrequency.WEEKLY: 7,
}
FREQUENCY_MONTHS = {
    RecurringFrequency.MONTHLY: 1,
    RecurringFrequency.QUARTERLY: 3,
    RecurringFrequency.HALF_YEARLY: 6,
    RecurringFrequency.YEARLY: 12,
}

_INCOME_FIELDS = {
    'income_number': to_text,
    'income_type': lambda v: to_text(v).upper() if to_text(v) else None,
    'income_category': to_text,
    'description': to_text,
    'payer_name': to_text,
    'trip_id': lambda v: to_int(v, 'trip_id'),
    'client_id': lambda v: to_int(v, 'client_id'),
    'builty_id': lambda v: to_int(v, 'builty_id'),
    'amount': lambda v: to_decimal(v, 'amount'),
    'gst_amount': lambda v: to_decimal(v, 'gst_amount', ZERO),
    'tds_amount': lambda v: to_decimal(v, 'tds_amount', ZERO),
    'income_date': lambda v: to_date(v, 'income_date'),
    'expected_date': lambda v: to_date(v, 'expected_date'),
    'invoice_number': to_text,
    'invoice_date': lambda v: to_date(v, 'invoice_date'),
    'payment_method': to_text,
    'reference_number': to_text,
    'bank_name': to_text,
    'cheque_number': to_text,
    'is_recurring': lambda v: to_bool(v, 'is_recurring', False),
    'recurring_frequency': lambda v: to_enum(RecurringFrequency, v, 'recurring_frequency'),
    'next_recurring_date': lambda v: to_date(v, 'next_recurring_date'),
    'remarks': to_text,
}

# Copied onto each generated occurrence of a recurring income
_RECURRING_TEMPLATE_FIELDS = (
    'income_type', 'income_category', 'description', 'payer_name', 'trip_id', 'client_id',
    'amount', 'gst_amount', 'tds_amount', 'payment_method',
)


def calculate_net_amount(income: Income) -> Decimal:
    """net = amount + gst - tds"""
    income.net_amount = (as_decimal(income.amount) + as_decimal(income.gst_amount)
                         - as_decimal(income.tds_amount))
    return income.net_amount


class IncomeService:
    """Service class for income and receivables operations"""

    def __init__(self):
        self.audit_service = AuditService()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def create_income(self, data: Dict[str, Any]) -> Income:
        """
        Create a new income record.

        Args:
            data: Income DTO dictionary

        Returns:
            The persisted Income, status PENDING
        """
        income = self.convert_to_entity(data)
        self.validate_income_for_creation(self._snapshot(income))

        if not income.income_number:
            income.income_number = self.generate_income_number()
        if income.is_recurring and income.recurring_frequency and income.next_recurring_date is None:
            income.next_recurring_date = self.calculate_next_recurring_date(income.income_date,
                                                                            income.recurring_frequency)
        calculate_net_amount(income)

        db.session.add(income)
        db.session.flush()

        self.audit_service.log_action(
            action='create_income',
            entity_type='income',
            entity_id=income.id,
            details={'income_number': income.income_number, 'income_type': income.income_type,
                     'net_amount': income.net_amount}
        )

        logger.info(f"Income {income.income_number} (ID: {income.id}) created")
        return income

    @TransactionHelper.with_transaction
    def update_income(self, income_id: int, data: Dict[str, Any]) -> Income:
        income = self._get_income_or_raise(income_id)
        self.validate_income_for_update(income_id, data)

        apply_fields(income, data, _INCOME_FIELDS)
        calculate_net_amount(income)
        self._refresh_payment_status(income)

        self.audit_service.log_action(
            action='update_income',
            entity_type='income',
            entity_id=income.id,
            details={key: data[key] for key in data if key in _INCOME_FIELDS}
        )
        logger.info(f"Income {income.income_number} (ID: {income_id}) updated")
        return income

    def get_income_by_id(self, income_id: int) -> Optional[Income]:
        return db.session.get(Income, income_id)

    def get_all_incomes(self, page: int = 1, per_page: Optional[int] = None):
        return paginate(Income.query.order_by(Income.income_date.desc(), Income.id.desc()), page, per_page)

    @TransactionHelper.with_transaction
    def delete_income(self, income_id: int) -> None:
        income = self._get_income_or_raise(income_id)
        if not self._can_delete(income):
            raise BusinessValidationError("Cannot delete received income")

        income_number = income.income_number
        db.session.delete(income)

        self.audit_service.log_action(
            action='delete_income',
            entity_type='income',
            entity_id=income_id,
            details={'income_number': income_number}
        )
        logger.info(f"Income {income_number} (ID: {income_id}) deleted")

    def can_delete_income(self, income_id: int) -> bool:
        income = db.session.get(Income, income_id)
        return income is not None and self._can_delete(income)

    @staticmethod
    def _can_delete(income: Income) -> bool:
        return income.payment_status != IncomePaymentStatus.RECEIVED

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_incomes(self, income_number: Optional[str] = None, income_type: Optional[str] = None,
                       income_category: Optional[str] = None, payment_status: Any = None,
                       client_id: Optional[int] = None, trip_id: Optional[int] = None,
                       start_date=None, end_date=None, page: int = 1, per_page: Optional[int] = None):
        query = Income.query

        if income_number:
            query = query.filter(Income.income_number.ilike(f"%{income_number}%"))
        if income_type:
            query = query.filter(func.upper(Income.income_type) == income_type.strip().upper())
        if income_category:
            query = query.filter(Income.income_category.ilike(income_category.strip()))
        if payment_status:
            query = query.filter(Income.payment_status == to_enum(IncomePaymentStatus, payment_status,
                                                                  'payment_status'))
        if client_id:
            query = query.filter(Income.client_id == client_id)
        if trip_id:
            query = query.filter(Income.trip_id == trip_id)
        query = query.filter(*date_range_conditions(Income.income_date, start_date, end_date))

        return paginate(query.order_by(Income.income_date.desc(), Income.id.desc()), page, per_page)

    def find_by_income_number(self, income_number: str) -> Optional[Income]:
        return Income.query.filter_by(income_number=income_number).first()

    def _paged(self, condition, page, per_page):
        query = Income.query.filter(condition).order_by(Income.income_date.desc(), Income.id.desc())
        return paginate(query, page, per_page)

    def get_incomes_by_type(self, income_type: str, page: int = 1, per_page: Optional[int] = None):
        return self._paged(func.upper(Income.income_type) == (income_type or '').strip().upper(), page, per_page)

    def get_incomes_by_category(self, income_category: str, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Income.income_category.ilike((income_category or '').strip()), page, per_page)

    def get_incomes_by_trip(self, trip_id: int, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Income.trip_id == trip_id, page, per_page)

    def get_incomes_by_client(self, client_id: int, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Income.client_id == client_id, page, per_page)

    def get_incomes_by_builty(self, builty_id: int, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Income.builty_id == builty_id, page, per_page)

    def get_incomes_by_payment_status(self, payment_status: Any, page: int = 1, per_page: Optional[int] = None):
        status = to_enum(IncomePaymentStatus, payment_status, 'payment_status')
        return self._paged(Income.payment_status == status, page, per_page)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def record_payment(self, income_id: int, amount: Any, payment_date: Any = None,
                       payment_method: Optional[str] = None, reference_number: Optional[str] = None,
                       remarks: Optional[str] = None) -> Income:
        """
        Record money received against an income.

        Args:
            income_id: ID of income
            amount: Received amount, positive and within the balance
            payment_date: Defaults to today
            payment_method: CASH, CHEQUE, NEFT, UPI...
            reference_number: Bank / UTR reference
            remarks: Optional note

        Returns:
            The updated Income, PARTIALLY_RECEIVED or RECEIVED
        """
        income = self._get_income_or_raise(income_id)
        value = to_decimal(amount, 'amount')
        if not self.validate_payment_amount(income_id, value):
            raise BusinessValidationError("Invalid payment amount")

        paid_on = to_date(payment_date, 'payment_date', get_ist_today())
        income.received_amount = as_decimal(income.received_amount) + value
        income.payment_date = paid_on
        if payment_method:
            income.payment_method = to_text(payment_method)
        if reference_number:
            income.reference_number = to_text(reference_number)
        self._refresh_payment_status(income)

        message = f"Payment of {value} received on {paid_on}. Total received: {income.received_amount}"
        if remarks:
            message += f" - {remarks}"
        append_remark(income, message)

        self.audit_service.log_action(
            action='record_income_payment',
            entity_type='income',
            entity_id=income.id,
            details={'amount': value, 'payment_date': paid_on, 'payment_status': income.payment_status}
        )
        logger.info(f"Payment of {value} recorded for income {income.income_number}")
        return income

    @TransactionHelper.with_transaction
    def mark_as_received(self, income_id: int, payment_date: Any = None, payment_method: Optional[str] = None,
                         reference_number: Optional[str] = None) -> Income:
        """Settle the full outstanding balance of an income."""
        income = self._get_income_or_raise(income_id)
        if income.payment_status == IncomePaymentStatus.RECEIVED:
            raise BusinessValidationError("Income is already received")

        paid_on = to_date(payment_date, 'payment_date', get_ist_today())
        outstanding = income.balance_amount
        income.received_amount = as_decimal(income.net_amount)
        income.payment_status = IncomePaymentStatus.RECEIVED
        income.payment_date = paid_on
        if payment_method:
            income.payment_method = to_text(payment_method)
        if reference_number:
            income.reference_number = to_text(reference_number)

        append_remark(income, f"Marked as received on {paid_on}. Amount settled: {outstanding}")

        self.audit_service.log_action(
            action='mark_income_received',
            entity_type='income',
            entity_id=income.id,
            details={'amount': outstanding, 'payment_date': paid_on}
        )
        return income

    @TransactionHelper.with_transaction
    def update_payment_status(self, income_id: int, payment_status: Any, remarks: Optional[str] = None) -> Income:
        status = to_enum(IncomePaymentStatus, payment_status, 'payment_status')
        if status is None:
            raise BusinessValidationError("Payment status is required")

        income = self._get_income_or_raise(income_id)
        old_status = income.payment_status
        income.payment_status = status

        message = f"Payment status updated from {old_status.name} to {status.name} on {get_ist_today()}"
        if remarks:
            message += f" - {remarks}"
        append_remark(income, message)

        self.audit_service.log_action(
            action='update_income_payment_status',
            entity_type='income',
            entity_id=income.id,
            details={'old_status': old_status, 'new_status': status}
        )
        return income

    def validate_payment_amount(self, income_id: int, amount: Any) -> bool:
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            return False
        income = db.session.get(Income, income_id)
        if income is None:
            return False
        return value <= income.balance_amount

    def get_pending_payments(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_incomes_by_payment_status(IncomePaymentStatus.PENDING, page, per_page)

    def get_partially_received_incomes(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_incomes_by_payment_status(IncomePaymentStatus.PARTIALLY_RECEIVED, page, per_page)

    def get_overdue_incomes(self, page: int = 1, per_page: Optional[int] = None):
        query = Income.query.filter(
            Income.payment_status != IncomePaymentStatus.RECEIVED,
            Income.expected_date < get_ist_today()
        ).order_by(Income.expected_date)
        return paginate(query, page, per_page)

    def calculate_total_pending_amount(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Income.balance_amount), 0)) \
                          .filter(Income.payment_status != IncomePaymentStatus.RECEIVED).scalar()
        return as_decimal(total)

    def calculate_total_received_amount(self, start_date=None, end_date=None) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Income.received_amount), 0)) \
                          .filter(*date_range_conditions(Income.payment_date, start_date, end_date)).scalar()
        return as_decimal(total)

    @TransactionHelper.with_transaction
    def update_tax_details(self, income_id: int, gst_amount: Any = None, tds_amount: Any = None,
                           remarks: Optional[str] = None) -> Income:
        income = self._get_income_or_raise(income_id)
        gst = to_decimal(gst_amount, 'gst_amount')
        tds = to_decimal(tds_amount, 'tds_amount')
        for value, label in ((gst, 'GST amount'), (tds, 'TDS amount')):
            if value is not None and value < 0:
                raise BusinessValidationError(f"{label} cannot be negative")

        if gst is not None:
            income.gst_amount = gst
        if tds is not None:
            income.tds_amount = tds
        calculate_net_amount(income)
        self._refresh_payment_status(income)

        message = f"Tax details updated on {get_ist_today()}: GST {income.gst_amount}, TDS {income.tds_amount}"
        if remarks:
            message += f" - {remarks}"
        append_remark(income, message)

        self.audit_service.log_action(
            action='update_income_tax',
            entity_type='income',
            entity_id=income.id,
            details={'gst_amount': income.gst_amount, 'tds_amount': income.tds_amount,
                     'net_amount': income.net_amount}
        )
        return income

    @staticmethod
    def _refresh_payment_status(income: Income) -> None:
        received = as_decimal(income.received_amount)
        if received <= 0:
            return
        if received >= as_decimal(income.net_amount):
            income.payment_status = IncomePaymentStatus.RECEIVED
        else:
            income.payment_status = IncomePaymentStatus.PARTIALLY_RECEIVED

    # ------------------------------------------------------------------
    # Recurring incomes
    # ------------------------------------------------------------------

    def create_recurring_income(self, data: Dict[str, Any], frequency: Any) -> Income:
        recurring_frequency = to_enum(RecurringFrequency, frequency, 'recurring_frequency')
        if recurring_frequency is None:
            raise BusinessValidationError("Recurring frequency is required")
        payload = dict(data, is_recurring=True, recurring_frequency=recurring_frequency)
        return self.create_income(payload)

    @TransactionHelper.with_transaction
    def generate_recurring_incomes(self, for_date: Any = None) -> List[Income]:
        """
        Clone every recurring income whose next date has arrived.

        Each template produces one occurrence per elapsed period up to
        ``for_date`` and its schedule moves past ``for_date``.

        Returns:
            The newly created Income occurrences
        """
        run_date = to_date(for_date, 'for_date', get_ist_today())
        due = Income.query.filter(
            Income.is_recurring.is_(True),
            Income.recurring_frequency.isnot(None),
            Income.next_recurring_date <= run_date
        ).order_by(Income.next_recurring_date, Income.id).all()

        created = []
        for template in due:
            while template.next_recurring_date <= run_date:
                occurrence = Income()
                for field in _RECURRING_TEMPLATE_FIELDS:
                    setattr(occurrence, field, getattr(template, field))
                occurrence.income_date = template.next_recurring_date
                occurrence.income_number = self.generate_income_number()
                occurrence.received_amount = ZERO
                occurrence.payment_status = IncomePaymentStatus.PENDING
                occurrence.is_recurring = False
                occurrence.remarks = f"Generated from recurring income {template.income_number}"
                calculate_net_amount(occurrence)
                db.session.add(occurrence)
                db.session.flush()
                created.append(occurrence)

                template.next_recurring_date = self.calculate_next_recurring_date(
                    template.next_recurring_date, template.recurring_frequency)

            self.audit_service.log_action(
                action='generate_recurring_income',
                entity_type='income',
                entity_id=template.id,
                details={'next_recurring_date': template.next_recurring_date}
            )

        if created:
            logger.info(f"Generated {len(created)} recurring income records for {run_date}")
        return created

    def get_recurring_incomes(self, page: int = 1, per_page: Optional[int] = None):
        query = Income.query.filter(Income.is_recurring.is_(True)).order_by(Income.next_recurring_date)
        return paginate(query, page, per_page)

    def get_recurring_incomes_due(self, for_date: Any = None) -> List[Income]:
        run_date = to_date(for_date, 'for_date', get_ist_today())
        return Income.query.filter(
            Income.is_recurring.is_(True),
            Income.next_recurring_date <= run_date
        ).order_by(Income.next_recurring_date).all()

    @TransactionHelper.with_transaction
    def update_recurring_schedule(self, income_id: int, is_recurring: Any, frequency: Any = None,
                                  next_date: Any = None) -> Income:
        income = self._get_income_or_raise(income_id)
        recurring = to_bool(is_recurring, 'is_recurring', False)
        recurring_frequency = to_enum(RecurringFrequency, frequency, 'recurring_frequency')

        if recurring:
            recurring_frequency = recurring_frequency or income.recurring_frequency
            if recurring_frequency is None:
                raise BusinessValidationError("Recurring frequency is required for recurring income")
            next_recurring = to_date(next_date, 'next_recurring_date') or \
                self.calculate_next_recurring_date(income.income_date, recurring_frequency)
        else:
            recurring_frequency = None
            next_recurring = None

        income.is_recurring = recurring
        income.recurring_frequency = recurring_frequency
        income.next_recurring_date = next_recurring

        self.audit_service.log_action(
            action='update_recurring_schedule',
            entity_type='income',
            entity_id=income.id,
            details={'is_recurring': recurring, 'recurring_frequency': recurring_frequency,
                     'next_recurring_date': next_recurring}
        )
        return income

    def calculate_next_recurring_date(self, current_date: Any, frequency: Any):
        base = to_date(current_date, 'current_date')
        recurring_frequency = to_enum(RecurringFrequency, frequency, 'recurring_frequency')
        if base is None or recurring_frequency is None:
            return None
        if recurring_frequency in FREQUENCY_DAYS:
            return base + timedelta(days=FREQUENCY_DAYS[recurring_frequency])
        return add_months(base, FREQUENCY_MONTHS[recurring_frequency])

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _in_period(self, start_date=None, end_date=None):
        return Income.query.filter(*date_range_conditions(Income.income_date, start_date, end_date))

    def calculate_total_income(self, start_date=None, end_date=None) -> Decimal:
        total = self._in_period(start_date, end_date) \
                    .with_entities(func.coalesce(func.sum(Income.net_amount), 0)).scalar()
        return as_decimal(total)

    def get_income_statistics(self) -> Dict[str, Any]:
        status_counts = dict(db.session.query(Income.payment_status, func.count(Income.id))
                             .group_by(Income.payment_status).all())
        overdue = Income.query.filter(
            Income.payment_status != IncomePaymentStatus.RECEIVED,
            Income.expected_date < get_ist_today()
        ).count()
        totals = db.session.query(
            func.coalesce(func.sum(Income.net_amount), 0),
            func.coalesce(func.sum(Income.received_amount), 0)
        ).one()

        return {
            'total_incomes': Income.query.count(),
            'payment_status_counts': {status.name: status_counts.get(status, 0) for status in IncomePaymentStatus},
            'overdue_incomes': overdue,
            'recurring_incomes': Income.query.filter(Income.is_recurring.is_(True)).count(),
            'total_net_amount': as_decimal(totals[0]),
            'total_received_amount': as_decimal(totals[1]),
            'total_pending_amount': self.calculate_total_pending_amount()
        }

    def _group_by(self, key_columns, start_date=None, end_date=None, join=None):
        query = db.session.query(
            *key_columns,
            func.count(Income.id).label('income_count'),
            func.coalesce(func.sum(Income.amount), 0).label('total_amount'),
            func.coalesce(func.sum(Income.net_amount), 0).label('net_amount'),
            func.coalesce(func.sum(Income.received_amount), 0).label('received_amount')
        ).select_from(Income)
        if join is not None:
            query = query.join(*join)
        return query.filter(*date_range_conditions(Income.income_date, start_date, end_date)) \
                    .group_by(*key_columns)

    @staticmethod
    def _amounts(row) -> Dict[str, Any]:
        return {
            'income_count': row.income_count,
            'total_amount': as_decimal(row.total_amount),
            'net_amount': as_decimal(row.net_amount),
            'received_amount': as_decimal(row.received_amount),
            'pending_amount': as_decimal(row.net_amount) - as_decimal(row.received_amount)
        }

    def get_income_by_type_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._group_by([Income.income_type], start_date, end_date) \
                   .order_by(func.sum(Income.net_amount).desc()).all()
        return [dict(income_type=row.income_type, **self._amounts(row)) for row in rows]

    def get_income_by_category_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._group_by([Income.income_category], start_date, end_date) \
                   .order_by(func.sum(Income.net_amount).desc()).all()
        return [dict(income_category=row.income_category or 'Uncategorized', **self._amounts(row))
                for row in rows]

    def get_client_wise_income_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._group_by([Client.id, Client.name], start_date, end_date,
                              join=(Client, Income.client_id == Client.id)) \
                   .order_by(func.sum(Income.net_amount).desc()).all()
        return [dict(client_id=row.id, client_name=row.name, **self._amounts(row)) for row in rows]

    def get_trip_wise_income_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._group_by([Trip.id, Trip.trip_number], start_date, end_date,
                              join=(Trip, Income.trip_id == Trip.id)) \
                   .order_by(func.sum(Income.net_amount).desc()).all()
        return [dict(trip_id=row.id, trip_number=row.trip_number, **self._amounts(row)) for row in rows]

    def get_monthly_income_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        months = defaultdict(lambda: {'income_count': 0, 'total_amount': ZERO, 'gst_amount': ZERO,
                                      'tds_amount': ZERO, 'net_amount': ZERO, 'received_amount': ZERO})
        for income in self._in_period(start_date, end_date).all():
            bucket = months[month_key(income.income_date)]
            bucket['income_count'] += 1
            bucket['total_amount'] += as_decimal(income.amount)
            bucket['gst_amount'] += as_decimal(income.gst_amount)
            bucket['tds_amount'] += as_decimal(income.tds_amount)
            bucket['net_amount'] += as_decimal(income.net_amount)
            bucket['received_amount'] += as_decimal(income.received_amount)

        return [dict(month=month, **values) for month, values in sorted(months.items())]

    def get_payment_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._group_by([Income.payment_status], start_date, end_date).all()
        by_status = {row.payment_status: row for row in rows}
        summary = []
        for status in IncomePaymentStatus:
            row = by_status.get(status)
            if row:
                summary.append(dict(payment_status=status, **self._amounts(row)))
            else:
                summary.append({'payment_status': status, 'income_count': 0, 'total_amount': ZERO,
                                'net_amount': ZERO, 'received_amount': ZERO, 'pending_amount': ZERO})
        return summary

    def get_cash_flow_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """
        Monthly billed versus collected amounts.

        Billed amounts are grouped by income date, collections by payment date.
        """
        months = defaultdict(lambda: {'billed_amount': ZERO, 'received_amount': ZERO})
        for income in self._in_period(start_date, end_date).all():
            months[month_key(income.income_date)]['billed_amount'] += as_decimal(income.net_amount)

        collected = Income.query.filter(
            Income.payment_date.isnot(None),
            *date_range_conditions(Income.payment_date, start_date, end_date)
        ).all()
        for income in collected:
            months[month_key(income.payment_date)]['received_amount'] += as_decimal(income.received_amount)

        report = []
        running = ZERO
        for month, values in sorted(months.items()):
            net_flow = values['received_amount'] - values['billed_amount']
            running += values['received_amount']
            report.append(dict(month=month, net_flow=net_flow, cumulative_received=running, **values))
        return report

    def get_aging_report(self) -> List[Dict[str, Any]]:
        """Outstanding income balances bucketed by days past the expected date."""
        today = get_ist_today()
        buckets = {label: {'income_count': 0, 'outstanding_amount': ZERO} for label, _, _ in OVERDUE_BUCKETS}

        unsettled = Income.query.filter(Income.payment_status != IncomePaymentStatus.RECEIVED).all()
        for income in unsettled:
            balance = income.balance_amount
            if balance <= 0:
                continue
            due = income.expected_date or income.income_date
            label = overdue_bucket((today - due).days)
            buckets[label]['income_count'] += 1
            buckets[label]['outstanding_amount'] += balance

        return [dict(bucket=label, **buckets[label]) for label, _, _ in OVERDUE_BUCKETS]

    def generate_income_report(self, income_type: Optional[str] = None, payment_status: Any = None,
                               start_date=None, end_date=None) -> List[Dict[str, Any]]:
        query = self._in_period(start_date, end_date)
        if income_type:
            query = query.filter(func.upper(Income.income_type) == income_type.strip().upper())
        if payment_status:
            query = query.filter(Income.payment_status == to_enum(IncomePaymentStatus, payment_status,
                                                                  'payment_status'))
        return [self.convert_to_dict(income) for income in query.order_by(Income.income_date).all()]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_income_for_creation(self, data: Dict[str, Any]) -> None:
        self._validate_income(data, exclude_id=None)

    def validate_income_for_update(self, income_id: int, data: Dict[str, Any]) -> None:
        income = self._get_income_or_raise(income_id)
        reject_blank_required(Income, data, _INCOME_FIELDS)
        merged = self._snapshot(income)
        for field, converter in _INCOME_FIELDS.items():
            if field in data:
                merged[field] = converter(data[field])
        self._validate_income(merged, exclude_id=income_id)

    def _validate_income(self, data: Dict[str, Any], exclude_id: Optional[int]) -> None:
        income_number = to_text(data.get('income_number'))
        if income_number and not self.is_income_number_unique(income_number, exclude_id):
            raise DuplicateResourceError("Income", "income number", income_number)

        if not to_text(data.get('income_type')):
            raise BusinessValidationError("Income type is required")

        amount = to_decimal(data.get('amount'), 'amount')
        if amount is None or amount <= 0:
            raise BusinessValidationError("Amount must be greater than zero")

        if to_date(data.get('income_date'), 'income_date') is None:
            raise BusinessValidationError("Income date is required")

        for field, label in (('gst_amount', 'GST amount'), ('tds_amount', 'TDS amount')):
            value = to_decimal(data.get(field), field)
            if value is not None and value < 0:
                raise BusinessValidationError(f"{label} cannot be negative")

        for field, model, resource in (('trip_id', Trip, 'Trip'), ('client_id', Client, 'Client'),
                                       ('builty_id', Builty, 'Builty')):
            linked_id = to_int(data.get(field), field)
            if linked_id is not None and db.session.get(model, linked_id) is None:
                raise ResourceNotFoundError(resource, linked_id)

        if to_bool(data.get('is_recurring'), 'is_recurring', False) and not data.get('recurring_frequency'):
            raise BusinessValidationError("Recurring frequency is required for recurring income")

    def is_income_number_unique(self, income_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Income, Income.income_number, income_number, exclude_id)

    # ------------------------------------------------------------------
    # Conversion and helpers
    # ------------------------------------------------------------------

    def convert_to_dict(self, income: Optional[Income]) -> Optional[Dict[str, Any]]:
        if income is None:
            return None

        return {
            'id': income.id,
            'income_number': income.income_number,
            'income_type': income.income_type,
            'income_category': income.income_category,
            'description': income.description,
            'payer_name': income.payer_name,
            'trip_id': income.trip_id,
            'client_id': income.client_id,
            'builty_id': income.builty_id,
            'amount': income.amount,
            'gst_amount': income.gst_amount,
            'tds_amount': income.tds_amount,
            'net_amount': income.net_amount,
            'received_amount': income.received_amount,
            'income_date': income.income_date,
            'expected_date': income.expected_date,
            'payment_date': income.payment_date,
            'invoice_number': income.invoice_number,
            'invoice_date': income.invoice_date,
            'payment_status': income.payment_status,
            'payment_method': income.payment_method,
            'reference_number': income.reference_number,
            'bank_name': income.bank_name,
            'cheque_number': income.cheque_number,
            'is_recurring': income.is_recurring,
            'recurring_frequency': income.recurring_frequency,
            'next_recurring_date': income.next_recurring_date,
            'remarks': income.remarks,
            'total_amount': income.total_amount,
            'balance_amount': income.balance_amount,
            'is_overdue': income.is_overdue,
            'days_overdue': income.days_overdue,
            'trip_number': income.trip.trip_number if income.trip else None,
            'client_name': income.client.name if income.client else None,
            'builty_number': income.builty.builty_number if income.builty else None
        }

    def convert_to_entity(self, data: Dict[str, Any]) -> Income:
        income = Income()
        apply_fields(income, data, _INCOME_FIELDS)
        if income.gst_amount is None:
            income.gst_amount = ZERO
        if income.tds_amount is None:
            income.tds_amount = ZERO
        if income.is_recurring is None:
            income.is_recurring = False
        income.received_amount = ZERO
        income.payment_status = IncomePaymentStatus.PENDING
        return income

    def generate_income_number(self) -> str:
        return generate_document_number(Income.income_number, INCOME_NUMBER_PREFIX,
                                        get_ist_today().strftime('%Y%m'))

    def get_income_count(self, income_type: Optional[str] = None, payment_status: Any = None) -> int:
        query = Income.query
        if income_type:
            query = query.filter(func.upper(Income.income_type) == income_type.strip().upper())
        if payment_status:
            query = query.filter(Income.payment_status == to_enum(IncomePaymentStatus, payment_status,
                                                                  'payment_status'))
        return query.count()

    @staticmethod
    def _snapshot(income: Income) -> Dict[str, Any]:
        return {field: getattr(income, field) for field in _INCOME_FIELDS}

    def _get_income_or_raise(self, income_id: int) -> Income:
        income = db.session.get(Income, income_id)
        if not income:
            raise ResourceNotFoundError("Income", income_id)
        return income
