"""
Configuration validation for STMS
Ensures required environment variables and business settings are sane
"""
import os
import logging
from typing import Dict, List, Tuple, Any

logger = logging.getLogger(__name__)

class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid"""
    pass

# Business settings that must parse as positive integers when provided
BUSINESS_SETTINGS = {
    'STMS_DEFAULT_PAGE_SIZE': 'Default page size',
    'STMS_MAX_PAGE_SIZE': 'Maximum page size',
    'STMS_PAYMENT_TERMS_DAYS': 'Builty payment terms (days)',
    'STMS_DEFAULT_AVERAGE_SPEED_KMPH': 'Average truck speed (km/h)',
    'STMS_DOCUMENT_EXPIRY_WARNING_DAYS': 'Document expiry warning window (days)',
}

def validate_flask_config() -> Tuple[bool, List[str]]:
    """
    Validate Flask configuration for production.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    session_secret = os.getenv('SESSION_SECRET')
    if not session_secret:
        issues.append("Missing SESSION_SECRET environment variable")
    elif len(session_secret) < 32:
        issues.append("SESSION_SECRET should be at least 32 characters for security")

    debug_mode = os.getenv('DEBUG', 'False').lower()
    if debug_mode in ('true', '1', 'yes'):
        issues.append("DEBUG mode is enabled - should be disabled in production")

    return len(issues) == 0, issues

def validate_database_config() -> Tuple[bool, List[str]]:
    """
    Validate the database URL.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    database_url = os.getenv('DATABASE_URL', '')
    if not database_url:
        issues.append("DATABASE_URL not set - falling back to local SQLite database")
    elif not database_url.startswith(('postgresql://', 'postgres://', 'sqlite:///')):
        issues.append("DATABASE_URL must be a PostgreSQL or SQLite URL")
    elif database_url.startswith('sqlite:///'):
        issues.append("SQLite database configured - use PostgreSQL in production")

    return len(issues) == 0, issues

def validate_business_config() -> Tuple[bool, List[str]]:
    """
    Validate numeric business settings.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    for var_name, description in BUSINESS_SETTINGS.items():
        value = os.getenv(var_name)
        if value is None or value.strip() == '':
            continue
        try:
            if int(value) <= 0:
                issues.append(f"{description} ({var_name}) must be greater than zero")
        except ValueError:
            issues.append(f"{description} ({var_name}) must be an integer, got {value!r}")

    default_size = os.getenv('STMS_DEFAULT_PAGE_SIZE')
    max_size = os.getenv('STMS_MAX_PAGE_SIZE')
    if default_size and max_size and default_size.isdigit() and max_size.isdigit():
        if int(default_size) > int(max_size):
            issues.append("STMS_DEFAULT_PAGE_SIZE cannot exceed STMS_MAX_PAGE_SIZE")

    return len(issues) == 0, issues

def check_production_readiness() -> Dict[str, Any]:
    """
    Comprehensive check of production readiness.

    Returns:
        dict: Status information including issues and recommendations
    """
    debug_mode = os.getenv('DEBUG', 'False').lower() in ('true', '1', 'yes')

    flask_valid, flask_issues = validate_flask_config()
    database_valid, database_issues = validate_database_config()
    business_valid, business_issues = validate_business_config()

    all_issues = flask_issues + database_issues + business_issues
    is_production_ready = bool(len(all_issues) == 0 and not debug_mode)

    result = {
        'production_ready': is_production_ready,
        'debug_mode': debug_mode,
        'database_configured': database_valid,
        'business_settings_valid': business_valid,
        'issues': all_issues,
        'recommendations': []
    }

    if debug_mode:
        result['recommendations'].append("Disable DEBUG mode for production deployment")

    if not database_valid:
        result['recommendations'].append("Point DATABASE_URL at a PostgreSQL database")

    if not business_valid:
        result['recommendations'].append("Fix STMS_* business settings; defaults are used meanwhile")

    if is_production_ready:
        logger.info("STMS_CONFIG: Production readiness check PASSED")
    else:
        logger.warning(f"STMS_CONFIG: Production readiness check FAILED - Issues: {len(all_issues)}")
        for issue in all_issues:
            logger.warning(f"STMS_CONFIG: Issue - {issue}")

    return result

def require_valid_business_config():
    """
    Raise ConfigValidationError when business settings are invalid.

    Used by the command line tools, which should not run with bad settings.
    """
    is_valid, issues = validate_business_config()
    if not is_valid:
        raise ConfigValidationError("; ".join(issues))
