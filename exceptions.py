"""
Domain exceptions for STMS

Services raise these when an operation violates a business rule; the API
layer maps them onto HTTP status codes.
"""

from typing import Any, Optional


class STMSError(Exception):
    """Base class for all transport management errors"""

    error_code = 'STMS_ERROR'
    status_code = 500

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def to_dict(self):
        return {
            'success': False,
            'error': self.error_code,
            'message': self.message
        }


class BusinessValidationError(STMSError):
    """Raised when input or a state transition breaks a business rule"""

    error_code = 'BUSINESS_VALIDATION_ERROR'
    status_code = 400


class DuplicateResourceError(STMSError):
    """Raised when a unique field already exists on another record"""

    error_code = 'DUPLICATE_RESOURCE'
    status_code = 409

    def __init__(self, resource: str, field: str, value: Any):
        super().__init__(f"{resource} with {field} '{value}' already exists")
        self.resource = resource
        self.field = field
        self.value = value


class ResourceNotFoundError(STMSError):
    """Raised when an operation targets a record that does not exist"""

    error_code = 'RESOURCE_NOT_FOUND'
    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} with id '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id
