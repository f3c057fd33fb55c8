from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP
import json
from app import db
from sqlalchemy import func, Index, CheckConstraint
from sqlalchemy.ext.hybrid import hybrid_property
from enum import Enum
import uuid
from timezone_utils import get_ist_time_naive, get_ist_today

ZERO = Decimal('0')

# Enums for better data integrity
class TripStatus(Enum):
    PLANNED = 'planned'
    RUNNING = 'running'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

class BuiltyPaymentStatus(Enum):
    PENDING = 'pending'
    PARTIAL = 'partial'
    PAID = 'paid'

class DeliveryStatus(Enum):
    PENDING = 'pending'
    IN_TRANSIT = 'in_transit'
    DELIVERED = 'delivered'

class IncomePaymentStatus(Enum):
    PENDING = 'pending'
    PARTIALLY_RECEIVED = 'partially_received'
    RECEIVED = 'received'

class MaintenanceStatus(Enum):
    SCHEDULED = 'scheduled'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    OVERDUE = 'overdue'

class MaintenancePriority(Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

class RecurringFrequency(Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    QUARTERLY = 'quarterly'
    HALF_YEARLY = 'half_yearly'
    YEARLY = 'yearly'


def _amount(value):
    return value if value is not None else ZERO


class Client(db.Model):
    __tablename__ = 'clients'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    # Identity and contact
    name = db.Column(db.String(100), nullable=False, index=True)
    company_name = db.Column(db.String(150))
    contact_number = db.Column(db.String(15), unique=True, nullable=False, index=True)
    alternate_contact_number = db.Column(db.String(15))
    email = db.Column(db.String(120))
    address = db.Column(db.Text)
    contact_person = db.Column(db.String(100))
    contact_person_number = db.Column(db.String(15))

    # Tax registration
    gst_number = db.Column(db.String(15), unique=True, index=True)
    pan_number = db.Column(db.String(10), unique=True)

    # Credit
    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    outstanding_balance = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    payment_terms = db.Column(db.String(100))

    remarks = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    # Relationships
    trips = db.relationship('Trip', back_populates='client', lazy='dynamic')
    builties = db.relationship('Builty', back_populates='client', lazy='dynamic')

    __table_args__ = (
        CheckConstraint('credit_limit >= 0', name='ck_client_credit_limit'),
        CheckConstraint('outstanding_balance >= 0', name='ck_client_outstanding_balance'),
    )

    @hybrid_property
    def display_name(self):
        return self.company_name or self.name

    def __repr__(self):
        return f'<Client {self.name}>'


class Driver(db.Model):
    __tablename__ = 'drivers'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    # Personal information
    name = db.Column(db.String(100), nullable=False, index=True)
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.Text)
    blood_group = db.Column(db.String(5))
    contact_number = db.Column(db.String(15), unique=True, nullable=False, index=True)
    alternate_contact_number = db.Column(db.String(15))
    emergency_contact_name = db.Column(db.String(100))
    emergency_contact_number = db.Column(db.String(15))

    # License
    license_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    license_expiry_date = db.Column(db.Date, nullable=False, index=True)

    # Employment and pay
    joining_date = db.Column(db.Date)
    salary = db.Column(db.Numeric(12, 2), nullable=False)
    advance_paid = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    remarks = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    trips = db.relationship('Trip', back_populates='driver', lazy='dynamic')

    @hybrid_property
    def is_license_expired(self):
        return self.license_expiry_date is not None and self.license_expiry_date < get_ist_today()

    def __repr__(self):
        return f'<Driver {self.name}>'


class Truck(db.Model):
    __tablename__ = 'trucks'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    # Truck identification
    truck_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    model = db.Column(db.String(100))
    fuel_type = db.Column(db.String(20), index=True)  # DIESEL, CNG, PETROL

    # Capacity and specifications
    capacity = db.Column(db.Numeric(10, 2), nullable=False)  # tons
    fuel_tank_capacity = db.Column(db.Numeric(10, 2))  # liters
    mileage = db.Column(db.Numeric(10, 2))  # km per liter

    purchase_date = db.Column(db.Date)
    purchase_price = db.Column(db.Numeric(14, 2))

    # Compliance documents
    rc_book_number = db.Column(db.String(50), unique=True)
    rc_expiry_date = db.Column(db.Date, index=True)
    insurance_policy_number = db.Column(db.String(100))
    insurance_expiry_date = db.Column(db.Date, index=True)
    permit_number = db.Column(db.String(50))
    permit_expiry_date = db.Column(db.Date, index=True)
    fitness_certificate_number = db.Column(db.String(50))
    fitness_expiry_date = db.Column(db.Date, index=True)
    puc_certificate_number = db.Column(db.String(50))
    puc_expiry_date = db.Column(db.Date)

    # Service tracking
    current_odometer_reading = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    last_service_date = db.Column(db.Date)
    next_service_due = db.Column(db.Numeric(12, 2))  # odometer reading

    remarks = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    trips = db.relationship('Trip', back_populates='truck', lazy='dynamic')
    maintenances = db.relationship('Maintenance', back_populates='truck', lazy='dynamic')

    DOCUMENT_FIELDS = {
        'RC': ('rc_book_number', 'rc_expiry_date'),
        'INSURANCE': ('insurance_policy_number', 'insurance_expiry_date'),
        'PERMIT': ('permit_number', 'permit_expiry_date'),
        'FITNESS': ('fitness_certificate_number', 'fitness_expiry_date'),
        'PUC': ('puc_certificate_number', 'puc_expiry_date'),
    }

    def expired_documents(self, on_date: date = None):
        """Names of compliance documents that have lapsed on the given date"""
        on_date = on_date or get_ist_today()
        expired = []
        for doc_type, (_, expiry_field) in self.DOCUMENT_FIELDS.items():
            expiry = getattr(self, expiry_field)
            if expiry is not None and expiry < on_date:
                expired.append(doc_type)
        return expired

    def __repr__(self):
        return f'<Truck {self.truck_number}>'


class Trip(db.Model):
    __tablename__ = 'trips'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    trip_number = db.Column(db.String(20), unique=True, nullable=False, index=True)

    truck_id = db.Column(db.Integer, db.ForeignKey('trucks.id'), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)

    # Route
    source_location = db.Column(db.String(200), nullable=False)
    destination_location = db.Column(db.String(200), nullable=False)
    distance = db.Column(db.Numeric(10, 2))  # km

    # Schedule
    planned_start_date = db.Column(db.DateTime, nullable=False)
    planned_end_date = db.Column(db.DateTime)
    actual_start_date = db.Column(db.DateTime)
    actual_end_date = db.Column(db.DateTime)

    # Load
    load_weight = db.Column(db.Numeric(10, 2))  # tons
    load_description = db.Column(db.String(255))

    # Financial
    trip_charges = db.Column(db.Numeric(12, 2), nullable=False)
    advance_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    fuel_consumed = db.Column(db.Numeric(10, 2))  # liters
    fuel_cost = db.Column(db.Numeric(12, 2))
    toll_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    other_expenses = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    status = db.Column(db.Enum(TripStatus), nullable=False, default=TripStatus.PLANNED, index=True)
    remarks = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    # Relationships
    truck = db.relationship('Truck', back_populates='trips')
    driver = db.relationship('Driver', back_populates='trips')
    client = db.relationship('Client', back_populates='trips')
    builties = db.relationship('Builty', back_populates='trip', lazy='dynamic')

    __table_args__ = (
        Index('idx_trip_truck_status', 'truck_id', 'status'),
        Index('idx_trip_driver_status', 'driver_id', 'status'),
        Index('idx_trip_planned_start', 'planned_start_date'),
    )

    @hybrid_property
    def total_expenses(self):
        return _amount(self.fuel_cost) + _amount(self.toll_charges) + _amount(self.other_expenses)

    @total_expenses.expression
    def total_expenses(cls):
        return (func.coalesce(cls.fuel_cost, 0) + func.coalesce(cls.toll_charges, 0)
                + func.coalesce(cls.other_expenses, 0))

    @hybrid_property
    def net_profit(self):
        if self.trip_charges is None:
            return ZERO
        return self.trip_charges - self.total_expenses

    @net_profit.expression
    def net_profit(cls):
        return cls.trip_charges - cls.total_expenses

    @hybrid_property
    def balance_amount(self):
        return _amount(self.trip_charges) - _amount(self.advance_amount)

    @balance_amount.expression
    def balance_amount(cls):
        return cls.trip_charges - func.coalesce(cls.advance_amount, 0)

    @property
    def profit_margin(self):
        if not self.trip_charges:
            return ZERO
        ratio = (self.net_profit / self.trip_charges).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)
        return ratio * 100

    @property
    def fuel_efficiency(self):
        if self.distance is None or not self.fuel_consumed:
            return ZERO
        return (self.distance / self.fuel_consumed).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    @property
    def capacity_utilization(self):
        capacity = self.truck.capacity if self.truck else None
        if self.load_weight is None or not capacity:
            return 0.0
        ratio = (self.load_weight / capacity).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)
        return float(ratio * 100)

    @property
    def duration_hours(self):
        if self.actual_start_date and self.actual_end_date:
            return int((self.actual_end_date - self.actual_start_date).total_seconds() // 3600)
        return None

    @property
    def average_speed(self):
        hours = self.duration_hours
        if hours and hours > 0 and self.distance is not None:
            return (self.distance / Decimal(hours)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        return None

    def __repr__(self):
        return f'<Trip {self.trip_number}>'


class Builty(db.Model):
    __tablename__ = 'builties'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    builty_number = db.Column(db.String(20), unique=True, nullable=False, index=True)

    trip_id = db.Column(db.Integer, db.ForeignKey('trips.id'), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)

    # Consignor / consignee
    consignor_name = db.Column(db.String(150), nullable=False)
    consignor_address = db.Column(db.Text)
    consignor_phone = db.Column(db.String(15))
    consignee_name = db.Column(db.String(150), nullable=False)
    consignee_address = db.Column(db.Text)
    consignee_phone = db.Column(db.String(15))

    # Goods
    goods_description = db.Column(db.String(255))
    goods_weight = db.Column(db.Numeric(10, 2), nullable=False)  # tons
    goods_value = db.Column(db.Numeric(14, 2))
    number_of_packages = db.Column(db.Integer)
    package_type = db.Column(db.String(50))

    # Charges
    freight_charges = db.Column(db.Numeric(12, 2), nullable=False)
    loading_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    unloading_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    other_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    advance_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    # Status
    payment_status = db.Column(db.Enum(BuiltyPaymentStatus), nullable=False,
                               default=BuiltyPaymentStatus.PENDING, index=True)
    delivery_status = db.Column(db.Enum(DeliveryStatus), nullable=False,
                                default=DeliveryStatus.PENDING, index=True)

    # Dates
    builty_date = db.Column(db.Date, nullable=False, index=True)
    delivery_date = db.Column(db.Date)
    payment_due_date = db.Column(db.Date, index=True)

    received_by = db.Column(db.String(100))
    remarks = db.Column(db.Text)
    special_instructions = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    trip = db.relationship('Trip', back_populates='builties')
    client = db.relationship('Client', back_populates='builties')

    __table_args__ = (
        Index('idx_builty_client_payment', 'client_id', 'payment_status'),
    )

    @hybrid_property
    def total_charges(self):
        return (_amount(self.freight_charges) + _amount(self.loading_charges)
                + _amount(self.unloading_charges) + _amount(self.other_charges))

    @total_charges.expression
    def total_charges(cls):
        return (cls.freight_charges + func.coalesce(cls.loading_charges, 0)
                + func.coalesce(cls.unloading_charges, 0) + func.coalesce(cls.other_charges, 0))

    @hybrid_property
    def total_amount(self):
        return self.total_charges + _amount(self.gst_amount)

    @total_amount.expression
    def total_amount(cls):
        return cls.total_charges + func.coalesce(cls.gst_amount, 0)

    @hybrid_property
    def balance_amount(self):
        return self.total_amount - _amount(self.advance_amount)

    @balance_amount.expression
    def balance_amount(cls):
        return cls.total_amount - func.coalesce(cls.advance_amount, 0)

    @property
    def is_overdue(self):
        return (self.payment_due_date is not None
                and self.payment_status != BuiltyPaymentStatus.PAID
                and self.payment_due_date < get_ist_today())

    @property
    def days_overdue(self):
        if not self.is_overdue:
            return 0
        return (get_ist_today() - self.payment_due_date).days

    def __repr__(self):
        return f'<Builty {self.builty_number}>'


class Income(db.Model):
    __tablename__ = 'incomes'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    income_number = db.Column(db.String(20), unique=True, nullable=False, index=True)

    income_type = db.Column(db.String(50), nullable=False, index=True)  # FREIGHT, RENTAL, COMMISSION, OTHER
    income_category = db.Column(db.String(50), index=True)
    description = db.Column(db.Text)
    payer_name = db.Column(db.String(150))

    trip_id = db.Column(db.Integer, db.ForeignKey('trips.id'), index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), index=True)
    builty_id = db.Column(db.Integer, db.ForeignKey('builties.id'), index=True)

    # Amounts
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    tds_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    net_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    received_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    # Dates
    income_date = db.Column(db.Date, nullable=False, index=True)
    expected_date = db.Column(db.Date)
    payment_date = db.Column(db.Date)

    # Invoice and payment details
    invoice_number = db.Column(db.String(50))
    invoice_date = db.Column(db.Date)
    payment_status = db.Column(db.Enum(IncomePaymentStatus), nullable=False,
                               default=IncomePaymentStatus.PENDING, index=True)
    payment_method = db.Column(db.String(30))  # CASH, CHEQUE, NEFT, UPI
    reference_number = db.Column(db.String(100))
    bank_name = db.Column(db.String(100))
    cheque_number = db.Column(db.String(30))

    # Recurrence
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurring_frequency = db.Column(db.Enum(RecurringFrequency))
    next_recurring_date = db.Column(db.Date, index=True)

    remarks = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    trip = db.relationship('Trip')
    client = db.relationship('Client')
    builty = db.relationship('Builty')

    @property
    def total_amount(self):
        return _amount(self.amount) + _amount(self.gst_amount)

    @hybrid_property
    def balance_amount(self):
        return _amount(self.net_amount) - _amount(self.received_amount)

    @balance_amount.expression
    def balance_amount(cls):
        return cls.net_amount - func.coalesce(cls.received_amount, 0)

    @property
    def is_overdue(self):
        return (self.expected_date is not None
                and self.payment_status != IncomePaymentStatus.RECEIVED
                and self.expected_date < get_ist_today())

    @property
    def days_overdue(self):
        if not self.is_overdue:
            return 0
        return (get_ist_today() - self.expected_date).days

    def __repr__(self):
        return f'<Income {self.income_number}>'


class Maintenance(db.Model):
    __tablename__ = 'maintenances'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    maintenance_number = db.Column(db.String(20), unique=True, nullable=False, index=True)

    truck_id = db.Column(db.Integer, db.ForeignKey('trucks.id'), nullable=False, index=True)

    # Maintenance details
    maintenance_type = db.Column(db.String(50), nullable=False, index=True)  # PREVENTIVE, BREAKDOWN, ACCIDENT
    service_category = db.Column(db.String(50), index=True)  # ENGINE, TYRE, BRAKES, ELECTRICAL
    description = db.Column(db.Text)
    status = db.Column(db.Enum(MaintenanceStatus), nullable=False,
                       default=MaintenanceStatus.SCHEDULED, index=True)
    priority = db.Column(db.Enum(MaintenancePriority), nullable=False,
                         default=MaintenancePriority.MEDIUM)

    # Dates and odometer
    scheduled_date = db.Column(db.Date, nullable=False, index=True)
    completed_date = db.Column(db.Date)
    current_odometer = db.Column(db.Numeric(12, 2))
    next_service_odometer = db.Column(db.Numeric(12, 2))

    # Service details
    service_provider = db.Column(db.String(150), index=True)
    service_location = db.Column(db.String(200))

    # Costs
    labor_cost = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    parts_cost = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    other_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    # Work record
    work_performed = db.Column(db.Text)
    parts_replaced = db.Column(db.Text)
    recommendations = db.Column(db.Text)
    remarks = db.Column(db.Text)

    # Documentation
    invoice_number = db.Column(db.String(50))
    invoice_date = db.Column(db.Date)
    warranty_period = db.Column(db.String(50))
    warranty_expiry_date = db.Column(db.Date)

    # Recurrence
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    service_interval_days = db.Column(db.Integer)
    service_interval_km = db.Column(db.Numeric(12, 2))
    next_service_date = db.Column(db.Date, index=True)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    truck = db.relationship('Truck', back_populates='maintenances')

    __table_args__ = (
        Index('idx_maintenance_truck_status', 'truck_id', 'status'),
    )

    def recalculate_total_cost(self):
        self.total_cost = (_amount(self.labor_cost) + _amount(self.parts_cost)
                           + _amount(self.other_charges) + _amount(self.gst_amount))
        return self.total_cost

    @property
    def is_overdue(self):
        if self.status == MaintenanceStatus.OVERDUE:
            return True
        return (self.status == MaintenanceStatus.SCHEDULED
                and self.scheduled_date is not None
                and self.scheduled_date < get_ist_today())

    @property
    def days_overdue(self):
        if not self.is_overdue or self.scheduled_date is None:
            return 0
        return (get_ist_today() - self.scheduled_date).days

    def __repr__(self):
        return f'<Maintenance {self.maintenance_number}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    performed_by = db.Column(db.String(100))
    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50), index=True)
    entity_id = db.Column(db.Integer)
    new_values = db.Column(db.Text)  # JSON
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=get_ist_time_naive, index=True)

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )

    def get_details(self):
        return json.loads(self.new_values) if self.new_values else {}

    def __repr__(self):
        return f'<AuditLog {self.action} {self.entity_type}:{self.entity_id}>'
