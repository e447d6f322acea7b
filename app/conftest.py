"""
Project-wide pytest configuration.

Tunes settings for fast, isolated test runs and auto-marks tests by
filename so that ``pytest -m unit`` and friends work without decorators.
"""

import pytest


def pytest_configure():
    """Adjust settings once Django is configured."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Celery tasks queued by code under test never reach a broker
    settings.CELERY_TASK_ALWAYS_EAGER = False

    if settings.DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
        _patch_postgresql_flush_for_cascade()


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full payment journeys)
    - test_views.py, test_handlers.py, test_tasks.py, service tests → integration
    - test_models.py, test_state_transitions.py, test_client.py → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_webhook_pipeline.py",
        "test_payment_orchestrator.py",
        "test_payout_orchestrator.py",
        "test_reconciliation_service.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_state_transitions.py",
        "test_client.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


def _patch_postgresql_flush_for_cascade():
    """
    Patch PostgreSQL flush to always use CASCADE.

    TransactionTestCase flushes with TRUNCATE, which fails on tables
    referenced by foreign keys unless CASCADE is used.
    """
    from django.db.backends.postgresql import operations

    original_sql_flush = operations.DatabaseOperations.sql_flush

    def sql_flush_with_cascade(self, style, tables, *, reset_sequences=False, allow_cascade=False):
        return original_sql_flush(
            self, style, tables, reset_sequences=reset_sequences, allow_cascade=True
        )

    operations.DatabaseOperations.sql_flush = sql_flush_with_cascade
