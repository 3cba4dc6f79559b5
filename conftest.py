"""
Root pytest configuration for the Django project.

This module points pytest at the Django settings and supplies the
environment the settings module requires, so the suite runs against
SQLite without a .env file. App-specific fixtures are defined in each
app's tests/conftest.py.
"""

import os

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DEBUG", "True")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "True")
os.environ.setdefault("LOG_LEVEL", "WARNING")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
