"""
Unit tests for configuration checks, the app factory and logging
"""

import json
import sys
import logging
import pytest

from app import create_app
from utils.config_validator import (ConfigValidationError, check_production_readiness,
                                    require_valid_business_config, validate_business_config,
                                    validate_database_config, validate_flask_config)
from utils.logging_config import JSONFormatter


class TestConfigValidator:
    """Test environment validation"""

    def test_short_session_secret(self, monkeypatch):
        monkeypatch.setenv('SESSION_SECRET', 'short')

        is_valid, issues = validate_flask_config()

        assert is_valid is False
        assert "at least 32 characters" in issues[0]

    def test_debug_mode_flagged(self, monkeypatch):
        monkeypatch.setenv('DEBUG', 'true')

        result = check_production_readiness()

        assert result['production_ready'] is False
        assert result['debug_mode'] is True
        assert "Disable DEBUG mode for production deployment" in result['recommendations']

    @pytest.mark.parametrize('url, valid', [
        ('postgresql://stms@db/stms', True),
        ('postgres://stms@db/stms', True),
        ('sqlite:///stms.db', False),
        ('mysql://stms@db/stms', False),
        ('', False),
    ])
    def test_database_url(self, monkeypatch, url, valid):
        monkeypatch.setenv('DATABASE_URL', url)

        assert validate_database_config()[0] is valid

    def test_business_settings(self, monkeypatch):
        monkeypatch.setenv('STMS_PAYMENT_TERMS_DAYS', 'thirty')
        monkeypatch.setenv('STMS_MAX_PAGE_SIZE', '0')

        is_valid, issues = validate_business_config()

        assert is_valid is False
        assert len(issues) == 2
        with pytest.raises(ConfigValidationError, match="STMS_PAYMENT_TERMS_DAYS"):
            require_valid_business_config()

    def test_page_size_order(self, monkeypatch):
        monkeypatch.setenv('STMS_DEFAULT_PAGE_SIZE', '50')
        monkeypatch.setenv('STMS_MAX_PAGE_SIZE', '25')

        assert "cannot exceed" in validate_business_config()[1][0]


class TestAppFactory:
    """Test application creation"""

    def test_session_secret_required(self, monkeypatch):
        monkeypatch.delenv('SESSION_SECRET', raising=False)

        with pytest.raises(RuntimeError, match="SESSION_SECRET"):
            create_app()

    def test_business_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv('STMS_PAYMENT_TERMS_DAYS', '45')
        monkeypatch.setenv('STMS_DEFAULT_PAGE_SIZE', 'lots')

        app = create_app()

        assert app.config['STMS_PAYMENT_TERMS_DAYS'] == 45
        assert app.config['STMS_DEFAULT_PAGE_SIZE'] == 20

    def test_overrides_win(self):
        app = create_app({'STMS_MAX_PAGE_SIZE': 10})

        assert app.config['STMS_MAX_PAGE_SIZE'] == 10


class TestJSONFormatter:
    """Test structured log output"""

    def test_format_includes_extra_fields(self):
        record = logging.LogRecord('services.trip', logging.INFO, __file__, 10,
                                   "Trip %s started", ('TR202403150001',), None)
        record.trip_id = 7

        payload = json.loads(JSONFormatter().format(record))

        assert payload['message'] == 'Trip TR202403150001 started'
        assert payload['application'] == 'stms'
        assert payload['extra'] == {'trip_id': 7}
        assert 'location' not in payload

    def test_format_exception(self):
        try:
            raise ValueError("bad odometer")
        except ValueError:
            record = logging.LogRecord('services.truck', logging.ERROR, __file__, 20,
                                       "failed", None, sys.exc_info())

        payload = json.loads(JSONFormatter().format(record))

        assert payload['exception']['type'] == 'ValueError'
        assert payload['exception']['message'] == 'bad odometer'
        assert payload['location']['line'] == 20
