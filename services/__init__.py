"""
Service Layer Architecture

This package contains the business logic of the transport back office. Route
handlers stay thin and delegate to these services, which provide:

1. **Transaction Management**: Atomic operations with proper rollback
2. **Business Rules**: Validation and status transitions raise domain errors
3. **Testability**: Business logic can be unit tested without HTTP
4. **Audit Trail**: Every state change is recorded through AuditService

Services Architecture:
- **ClientService**: Client records, credit limits, outstanding balances, aging
- **DriverService**: Driver records, licences, salary and advances
- **TruckService**: Fleet, compliance documents, odometer and service tracking
- **TripService**: Trip lifecycle, planning, profitability and route analytics
- **BuiltyService**: Consignment invoices, payments, delivery tracking
- **IncomeService**: Receipts, tax, recurring income, cash flow
- **MaintenanceService**: Maintenance scheduling, lifecycle and cost reports
- **ReportingService**: Dashboard statistics and compliance alerts
- **AuditService**: Centralized audit logging
"""

from .client_service import ClientService
from .driver_service import DriverService
from .truck_service import TruckService
from .trip_service import TripService
from .builty_service import BuiltyService
from .income_service import IncomeService
from .maintenance_service import MaintenanceService
from .reporting_service import ReportingService
from .audit_service import AuditService
from .transaction_helper import TransactionHelper

__all__ = [
    'ClientService',
    'DriverService',
    'TruckService',
    'TripService',
    'BuiltyService',
    'IncomeService',
    'MaintenanceService',
    'ReportingService',
    'AuditService',
    'TransactionHelper'
]
