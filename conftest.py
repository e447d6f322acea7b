"""
Root pytest configuration for the Django project.

This module points pytest at the project settings and initializes Django.
App-specific fixtures are defined in each app's conftest.py.
"""

import os

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
