"""
Client Service

Handles client records, credit limits and outstanding balances, payment
behaviour scoring and client-level business reports built from builties.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import func, and_, or_
from models import db, Client, Builty, BuiltyPaymentStatus, ZERO
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_bool, to_text
from utils.pagination import paginate
from timezone_utils import get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .common import append_remark, apply_fields, reject_blank_required, is_value_unique, month_key, as_decimal

logger = logging.getLogger(__name__)

GOOD = 'GOOD'
AVERAGE = 'AVERAGE'
POOR = 'POOR'
PAYMENT_BEHAVIORS = (GOOD, AVERAGE, POOR)
DEFAULT_GOOD_HISTORY_UTILIZATION = Decimal('0.5')

AGING_BUCKETS = (
    ('0-30', 0, 30),
    ('31-60', 31, 60),
    ('61-90', 61, 90),
    ('90+', 91, None),
)

_CLIENT_FIELDS = {
    'name': to_text,
    'company_name': to_text,
    'contact_number': to_text,
    'alternate_contact_number': to_text,
    'email': to_text,
    'address': to_text,
    'gst_number': to_text,
    'pan_number': to_text,
    'credit_limit': lambda v: to_decimal(v, 'credit_limit', ZERO),
    'outstanding_balance': lambda v: to_decimal(v, 'outstanding_balance', ZERO),
    'contact_person': to_text,
    'contact_person_number': to_text,
    'payment_terms': to_text,
    'remarks': to_text,
}


def aging_bucket(days: int) -> str:
    for label, low, high in AGING_BUCKETS:
        if days >= low and (high is None or days <= high):
            return label
    return AGING_BUCKETS[0][0]


class ClientService:
    """Service class for client and credit management operations"""

    def __init__(self):
        self.audit_service = AuditService()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def create_client(self, data: Dict[str, Any]) -> Client:
        """
        Create a new client after validating uniqueness and credit values.

        Args:
            data: Client DTO dictionary

        Returns:
            The persisted Client
        """
        self.validate_client_for_creation(data)

        client = self.convert_to_entity(data)
        db.session.add(client)
        db.session.flush()

        self.audit_service.log_action(
            action='create_client',
            entity_type='client',
            entity_id=client.id,
            details={'name': client.name, 'contact_number': client.contact_number}
        )

        logger.info(f"Client {client.name} (ID: {client.id}) created")
        return client

    @TransactionHelper.with_transaction
    def update_client(self, client_id: int, data: Dict[str, Any]) -> Client:
        """
        Update an existing client.

        Args:
            client_id: ID of client to update
            data: Client DTO dictionary; only supplied keys change

        Returns:
            The updated Client
        """
        client = self._get_client_or_raise(client_id)
        self.validate_client_for_update(client_id, data)

        apply_fields(client, data, _CLIENT_FIELDS)

        self.audit_service.log_action(
            action='update_client',
            entity_type='client',
            entity_id=client.id,
            details={key: data[key] for key in data if key in _CLIENT_FIELDS}
        )

        logger.info(f"Client {client.name} (ID: {client_id}) updated")
        return client

    def get_client_by_id(self, client_id: int) -> Optional[Client]:
        return db.session.get(Client, client_id)

    def get_all_active_clients(self) -> List[Client]:
        return Client.query.filter(Client.is_active == True).order_by(Client.name).all()

    def get_all_clients(self, page: int = 1, per_page: Optional[int] = None):
        return paginate(Client.query.order_by(Client.name), page, per_page)

    @TransactionHelper.with_transaction
    def delete_client(self, client_id: int) -> None:
        """
        Soft-delete a client. Clients that still owe money cannot be removed.
        """
        client = self._get_client_or_raise(client_id)

        if client.outstanding_balance and client.outstanding_balance > 0:
            raise BusinessValidationError("Cannot delete client with outstanding balance")

        client.is_active = False

        self.audit_service.log_action(
            action='delete_client',
            entity_type='client',
            entity_id=client.id,
            details={'name': client.name}
        )
        logger.info(f"Client {client.name} (ID: {client_id}) deactivated")

    @TransactionHelper.with_transaction
    def activate_client(self, client_id: int) -> Client:
        client = self._get_client_or_raise(client_id)
        client.is_active = True

        self.audit_service.log_action(action='activate_client', entity_type='client', entity_id=client.id)
        logger.info(f"Client {client.name} (ID: {client_id}) activated")
        return client

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_clients(self, name: Optional[str] = None, company_name: Optional[str] = None,
                       contact_number: Optional[str] = None, gst_number: Optional[str] = None,
                       is_active: Optional[bool] = None, page: int = 1,
                       per_page: Optional[int] = None):
        """
        Search clients with optional filters.

        Text filters are case-insensitive substring matches; ``is_active``
        matches exactly.
        """
        query = Client.query

        if name:
            query = query.filter(Client.name.ilike(f"%{name}%"))
        if company_name:
            query = query.filter(Client.company_name.ilike(f"%{company_name}%"))
        if contact_number:
            query = query.filter(Client.contact_number.ilike(f"%{contact_number}%"))
        if gst_number:
            query = query.filter(Client.gst_number.ilike(f"%{gst_number}%"))
        if is_active is not None:
            query = query.filter(Client.is_active == is_active)

        return paginate(query.order_by(Client.name), page, per_page)

    def find_by_contact_number(self, contact_number: str) -> Optional[Client]:
        return Client.query.filter_by(contact_number=contact_number).first()

    def find_by_gst_number(self, gst_number: str) -> Optional[Client]:
        return Client.query.filter_by(gst_number=gst_number).first()

    def find_by_pan_number(self, pan_number: str) -> Optional[Client]:
        return Client.query.filter_by(pan_number=pan_number).first()

    # ------------------------------------------------------------------
    # Credit management
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_credit_limit(self, client_id: int, new_credit_limit: Any,
                            reason: Optional[str] = None) -> Client:
        """
        Change a client's credit limit and record the change in remarks.

        Args:
            client_id: ID of client
            new_credit_limit: New limit, must not be negative
            reason: Free-text reason stored with the audit line

        Returns:
            The updated Client
        """
        new_limit = to_decimal(new_credit_limit, 'credit_limit')
        if new_limit is None or new_limit < 0:
            raise BusinessValidationError("Credit limit cannot be negative")

        client = self._get_client_or_raise(client_id)
        old_limit = client.credit_limit

        client.credit_limit = new_limit
        append_remark(client, f"Credit limit updated from {old_limit} to {new_limit} on "
                              f"{get_ist_today()}. Reason: {reason or 'Not specified'}")

        self.audit_service.log_action(
            action='update_credit_limit',
            entity_type='client',
            entity_id=client.id,
            details={'old_limit': old_limit, 'new_limit': new_limit, 'reason': reason}
        )
        logger.info(f"Credit limit for client {client_id} changed from {old_limit} to {new_limit}")
        return client

    def get_clients_with_outstanding_balance(self, page: int = 1, per_page: Optional[int] = None):
        query = Client.query.filter(Client.outstanding_balance > 0) \
                            .order_by(Client.outstanding_balance.desc())
        return paginate(query, page, per_page)

    def get_clients_exceeding_credit_limit(self) -> List[Client]:
        return Client.query.filter(
            Client.credit_limit > 0,
            Client.outstanding_balance > Client.credit_limit
        ).order_by(Client.outstanding_balance.desc()).all()

    def get_clients_with_good_payment_history(
            self, max_utilization: Any = DEFAULT_GOOD_HISTORY_UTILIZATION) -> List[Client]:
        """Active clients using at most ``max_utilization`` (a ratio) of their credit."""
        ratio = to_decimal(max_utilization, 'max_utilization', DEFAULT_GOOD_HISTORY_UTILIZATION)
        return Client.query.filter(
            Client.is_active == True,
            Client.credit_limit > 0,
            Client.outstanding_balance <= Client.credit_limit * ratio
        ).order_by(Client.name).all()

    def calculate_total_outstanding_balance(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Client.outstanding_balance), 0)) \
                          .filter(Client.is_active == True).scalar()
        return as_decimal(total)

    def calculate_total_credit_limit(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Client.credit_limit), 0)) \
                          .filter(Client.is_active == True).scalar()
        return as_decimal(total)

    # ------------------------------------------------------------------
    # Outstanding balance
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_outstanding_balance(self, client_id: int, new_balance: Any,
                                   reason: Optional[str] = None) -> Client:
        balance = to_decimal(new_balance, 'outstanding_balance')
        if balance is None or balance < 0:
            raise BusinessValidationError("Outstanding balance cannot be negative")

        client = self._get_client_or_raise(client_id)
        old_balance = client.outstanding_balance

        client.outstanding_balance = balance
        append_remark(client, f"Outstanding balance updated from {old_balance} to {balance} on "
                              f"{get_ist_today()}. Reason: {reason or 'Not specified'}")

        self.audit_service.log_action(
            action='update_outstanding_balance',
            entity_type='client',
            entity_id=client.id,
            details={'old_balance': old_balance, 'new_balance': balance, 'reason': reason}
        )
        return client

    @TransactionHelper.with_transaction
    def add_to_outstanding_balance(self, client_id: int, amount: Any,
                                   reason: Optional[str] = None) -> Client:
        """
        Increase a client's outstanding balance.

        Exceeding the credit limit is allowed but logged as a warning.
        """
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            raise BusinessValidationError("Amount must be greater than zero")

        client = self._get_client_or_raise(client_id)
        new_balance = (client.outstanding_balance or ZERO) + value

        if client.credit_limit and client.credit_limit > 0 and new_balance > client.credit_limit:
            logger.warning(f"Client {client_id} balance {new_balance} exceeds credit limit {client.credit_limit}")

        client.outstanding_balance = new_balance
        append_remark(client, f"Added {value} to outstanding balance on {get_ist_today()}. "
                              f"Reason: {reason or 'Not specified'}")

        self.audit_service.log_action(
            action='add_to_outstanding_balance',
            entity_type='client',
            entity_id=client.id,
            details={'amount': value, 'new_balance': new_balance, 'reason': reason}
        )
        return client

    @TransactionHelper.with_transaction
    def reduce_outstanding_balance(self, client_id: int, amount: Any,
                                   reason: Optional[str] = None) -> Client:
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            raise BusinessValidationError("Amount must be greater than zero")

        client = self._get_client_or_raise(client_id)
        current = client.outstanding_balance or ZERO
        if value > current:
            raise BusinessValidationError("Reduction amount cannot exceed outstanding balance")

        client.outstanding_balance = current - value
        append_remark(client, f"Reduced outstanding balance by {value} on {get_ist_today()}. "
                              f"Reason: {reason or 'Not specified'}")

        self.audit_service.log_action(
            action='reduce_outstanding_balance',
            entity_type='client',
            entity_id=client.id,
            details={'amount': value, 'new_balance': client.outstanding_balance, 'reason': reason}
        )
        return client

    def can_take_additional_credit(self, client_id: int, amount: Any) -> bool:
        client = self._get_client_or_raise(client_id)
        value = to_decimal(amount, 'amount', ZERO)

        if not client.credit_limit or client.credit_limit <= 0:
            return False
        return (client.outstanding_balance or ZERO) + value <= client.credit_limit

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_client_business_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """
        Per-client builty totals for a period.

        Returns:
            List of dicts with builty count, business value, paid and
            outstanding amounts, highest business value first
        """
        join_condition = Builty.client_id == Client.id
        if start_date:
            join_condition = and_(join_condition, Builty.builty_date >= start_date)
        if end_date:
            join_condition = and_(join_condition, Builty.builty_date <= end_date)

        rows = db.session.query(
            Client.id,
            Client.name,
            Client.company_name,
            func.count(Builty.id).label('builty_count'),
            func.coalesce(func.sum(Builty.total_amount), 0).label('business_value'),
            func.coalesce(func.sum(Builty.advance_amount), 0).label('paid_amount'),
            func.coalesce(func.sum(Builty.balance_amount), 0).label('outstanding_amount')
        ).outerjoin(Builty, join_condition) \
         .filter(Client.is_active == True) \
         .group_by(Client.id, Client.name, Client.company_name) \
         .order_by(func.coalesce(func.sum(Builty.total_amount), 0).desc()) \
         .all()

        return [
            {
                'client_id': row.id,
                'client_name': row.name,
                'company_name': row.company_name,
                'builty_count': row.builty_count,
                'business_value': as_decimal(row.business_value),
                'paid_amount': as_decimal(row.paid_amount),
                'outstanding_amount': as_decimal(row.outstanding_amount)
            }
            for row in rows
        ]

    def get_top_clients_by_business_value(self, limit: int = 10) -> List[Dict[str, Any]]:
        summary = self.get_client_business_summary()
        return [row for row in summary if row['builty_count'] > 0][:limit]

    def get_client_payment_statistics(self) -> Dict[str, Any]:
        clients = self.get_all_active_clients()
        behaviour_counts = {behavior: 0 for behavior in PAYMENT_BEHAVIORS}
        utilizations = []

        for client in clients:
            behaviour_counts[self._payment_behavior(client)] += 1
            if client.credit_limit and client.credit_limit > 0:
                utilizations.append(self.calculate_credit_utilization(client))

        average_utilization = (sum(utilizations) / len(utilizations)).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP) if utilizations else ZERO

        return {
            'active_clients': len(clients),
            'clients_with_outstanding': sum(1 for c in clients if c.outstanding_balance and c.outstanding_balance > 0),
            'clients_exceeding_limit': sum(
                1 for c in clients
                if c.credit_limit and c.credit_limit > 0 and (c.outstanding_balance or ZERO) > c.credit_limit),
            'total_outstanding': self.calculate_total_outstanding_balance(),
            'total_credit_limit': self.calculate_total_credit_limit(),
            'average_credit_utilization': average_utilization,
            'payment_behavior': behaviour_counts
        }

    def get_client_aging_report(self) -> List[Dict[str, Any]]:
        """
        Outstanding builty balances per client, bucketed by builty age.

        Returns:
            One row per client owing money, with 0-30/31-60/61-90/90+ totals
        """
        today = get_ist_today()
        unpaid = Builty.query.join(Client, Builty.client_id == Client.id) \
                             .filter(Builty.payment_status != BuiltyPaymentStatus.PAID) \
                             .all()

        report: Dict[int, Dict[str, Any]] = {}
        for builty in unpaid:
            balance = builty.balance_amount
            if balance <= 0:
                continue
            row = report.setdefault(builty.client_id, {
                'client_id': builty.client_id,
                'client_name': builty.client.name,
                'total_outstanding': ZERO,
                **{label: ZERO for label, _, _ in AGING_BUCKETS}
            })
            row[aging_bucket((today - builty.builty_date).days)] += balance
            row['total_outstanding'] += balance

        return sorted(report.values(), key=lambda r: r['total_outstanding'], reverse=True)

    def get_aging_summary(self) -> Dict[str, Any]:
        summary = {label: ZERO for label, _, _ in AGING_BUCKETS}
        summary['total_outstanding'] = ZERO
        rows = self.get_client_aging_report()
        for row in rows:
            for label, _, _ in AGING_BUCKETS:
                summary[label] += row[label]
            summary['total_outstanding'] += row['total_outstanding']
        summary['client_count'] = len(rows)
        return summary

    def get_monthly_client_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        query = Builty.query
        if start_date:
            query = query.filter(Builty.builty_date >= start_date)
        if end_date:
            query = query.filter(Builty.builty_date <= end_date)

        months = defaultdict(lambda: {'clients': set(), 'builty_count': 0, 'business_value': ZERO})
        for builty in query.all():
            bucket = months[month_key(builty.builty_date)]
            bucket['clients'].add(builty.client_id)
            bucket['builty_count'] += 1
            bucket['business_value'] += builty.total_amount

        return [
            {
                'month': month,
                'active_clients': len(values['clients']),
                'builty_count': values['builty_count'],
                'business_value': values['business_value']
            }
            for month, values in sorted(months.items())
        ]

    def get_client_statistics(self) -> Dict[str, Any]:
        total = Client.query.count()
        active = Client.query.filter(Client.is_active == True).count()
        return {
            'total_clients': total,
            'active_clients': active,
            'inactive_clients': total - active,
            'clients_with_outstanding': Client.query.filter(Client.outstanding_balance > 0).count(),
            'clients_exceeding_limit': len(self.get_clients_exceeding_credit_limit()),
            'total_outstanding': self.calculate_total_outstanding_balance(),
            'total_credit_limit': self.calculate_total_credit_limit()
        }

    def generate_client_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """Active clients with their business value for the period."""
        business = {row['client_id']: row for row in self.get_client_business_summary(start_date, end_date)}
        report = []
        for client in self.get_all_active_clients():
            entry = self.convert_to_dict(client)
            period = business.get(client.id)
            entry['period_builty_count'] = period['builty_count'] if period else 0
            entry['period_business_value'] = period['business_value'] if period else ZERO
            report.append(entry)
        return report

    def generate_credit_analysis_report(self) -> List[Dict[str, Any]]:
        clients = Client.query.filter(
            Client.is_active == True,
            or_(Client.credit_limit > 0, Client.outstanding_balance > 0)
        ).order_by(Client.outstanding_balance.desc()).all()

        return [
            {
                'client_id': client.id,
                'client_name': client.name,
                'credit_limit': client.credit_limit,
                'outstanding_balance': client.outstanding_balance,
                'available_credit': max(ZERO, (client.credit_limit or ZERO) - (client.outstanding_balance or ZERO)),
                'credit_utilization': self.calculate_credit_utilization(client),
                'payment_behavior': self._payment_behavior(client),
                'credit_score': self._credit_score(client)
            }
            for client in clients
        ]

    # ------------------------------------------------------------------
    # Payment behaviour
    # ------------------------------------------------------------------

    def analyze_payment_behavior(self, client_id: int) -> str:
        return self._payment_behavior(self._get_client_or_raise(client_id))

    def get_clients_by_payment_behavior(self, behavior: str) -> List[Client]:
        wanted = (behavior or '').strip().upper()
        if wanted not in PAYMENT_BEHAVIORS:
            raise BusinessValidationError(
                f"Invalid payment behavior: {behavior!r}. Allowed values: {', '.join(PAYMENT_BEHAVIORS)}")
        return [client for client in self.get_all_active_clients()
                if self._payment_behavior(client) == wanted]

    def calculate_credit_score(self, client_id: int) -> int:
        """
        Score a client's credit health from 0 to 100.

        Starts at 100, loses 30/20/10 points for utilization above
        80/60/40 percent and a further 40 when the balance exceeds the limit.
        """
        return self._credit_score(self._get_client_or_raise(client_id))

    def calculate_credit_utilization(self, client: Client) -> Decimal:
        """Outstanding balance as a percentage of the credit limit."""
        if not client.credit_limit or client.credit_limit == 0:
            return ZERO
        ratio = ((client.outstanding_balance or ZERO) / client.credit_limit) \
            .quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)
        return ratio * 100

    def _payment_behavior(self, client: Client) -> str:
        if not client.credit_limit or client.credit_limit == 0:
            return AVERAGE
        utilization = self.calculate_credit_utilization(client)
        if utilization <= 30:
            return GOOD
        if utilization <= 70:
            return AVERAGE
        return POOR

    def _credit_score(self, client: Client) -> int:
        score = 100
        utilization = self.calculate_credit_utilization(client)

        if utilization > 80:
            score -= 30
        elif utilization > 60:
            score -= 20
        elif utilization > 40:
            score -= 10

        if client.credit_limit and (client.outstanding_balance or ZERO) > client.credit_limit:
            score -= 40

        return max(0, min(100, score))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_client_for_creation(self, data: Dict[str, Any]) -> None:
        if not to_text(data.get('name')):
            raise BusinessValidationError("Client name is required")
        if not to_text(data.get('contact_number')):
            raise BusinessValidationError("Contact number is required")
        self._validate_client_fields(data, exclude_id=None)

    def validate_client_for_update(self, client_id: int, data: Dict[str, Any]) -> None:
        if 'name' in data and not to_text(data.get('name')):
            raise BusinessValidationError("Client name is required")
        if 'contact_number' in data and not to_text(data.get('contact_number')):
            raise BusinessValidationError("Contact number is required")
        reject_blank_required(Client, data, _CLIENT_FIELDS)
        self._validate_client_fields(data, exclude_id=client_id)

    def _validate_client_fields(self, data: Dict[str, Any], exclude_id: Optional[int]) -> None:
        contact_number = to_text(data.get('contact_number'))
        if contact_number and not self.is_contact_number_unique(contact_number, exclude_id):
            raise DuplicateResourceError("Client", "contact number", contact_number)

        gst_number = to_text(data.get('gst_number'))
        if gst_number and not self.is_gst_number_unique(gst_number, exclude_id):
            raise DuplicateResourceError("Client", "GST number", gst_number)

        pan_number = to_text(data.get('pan_number'))
        if pan_number and not self.is_pan_number_unique(pan_number, exclude_id):
            raise DuplicateResourceError("Client", "PAN number", pan_number)

        credit_limit = to_decimal(data.get('credit_limit'), 'credit_limit')
        if credit_limit is not None and credit_limit < 0:
            raise BusinessValidationError("Credit limit cannot be negative")

        outstanding = to_decimal(data.get('outstanding_balance'), 'outstanding_balance')
        if outstanding is not None and outstanding < 0:
            raise BusinessValidationError("Outstanding balance cannot be negative")

    def is_contact_number_unique(self, contact_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Client, Client.contact_number, contact_number, exclude_id)

    def is_gst_number_unique(self, gst_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Client, Client.gst_number, gst_number, exclude_id)

    def is_pan_number_unique(self, pan_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Client, Client.pan_number, pan_number, exclude_id)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_to_dict(self, client: Optional[Client]) -> Optional[Dict[str, Any]]:
        if client is None:
            return None

        builty_totals = db.session.query(
            func.count(Builty.id),
            func.coalesce(func.sum(Builty.total_amount), 0),
            func.coalesce(func.sum(Builty.advance_amount), 0)
        ).filter(Builty.client_id == client.id).one()

        overdue_builties = Builty.query.filter(
            Builty.client_id == client.id,
            Builty.payment_status != BuiltyPaymentStatus.PAID,
            Builty.payment_due_date < get_ist_today()
        ).count()

        return {
            'id': client.id,
            'name': client.name,
            'company_name': client.company_name,
            'contact_number': client.contact_number,
            'alternate_contact_number': client.alternate_contact_number,
            'email': client.email,
            'address': client.address,
            'gst_number': client.gst_number,
            'pan_number': client.pan_number,
            'credit_limit': client.credit_limit,
            'outstanding_balance': client.outstanding_balance,
            'contact_person': client.contact_person,
            'contact_person_number': client.contact_person_number,
            'payment_terms': client.payment_terms,
            'remarks': client.remarks,
            'is_active': client.is_active,
            'total_builties': builty_totals[0],
            'total_business_value': as_decimal(builty_totals[1]),
            'total_paid_amount': as_decimal(builty_totals[2]),
            'credit_utilization': self.calculate_credit_utilization(client),
            'payment_behavior': self._payment_behavior(client),
            'overdue_builties': overdue_builties
        }

    def convert_to_entity(self, data: Dict[str, Any]) -> Client:
        client = Client()
        apply_fields(client, data, _CLIENT_FIELDS)
        if client.credit_limit is None:
            client.credit_limit = ZERO
        if client.outstanding_balance is None:
            client.outstanding_balance = ZERO
        client.is_active = to_bool(data.get('is_active'), 'is_active', True)
        return client

    def get_client_count(self, is_active: Optional[bool] = None) -> int:
        query = Client.query
        if is_active is not None:
            query = query.filter(Client.is_active == is_active)
        return query.count()

    def _get_client_or_raise(self, client_id: int) -> Client:
        client = db.session.get(Client, client_id)
        if not client:
            raise ResourceNotFoundError("Client", client_id)
        return client
