#!/usr/bin/env python
"""
Command-line entry point for ledger administrative tasks.

Runs Django management commands (migrate, runserver, run_scheduled_operations,
check_ledger_integrity) against the settings module named by
DJANGO_SETTINGS_MODULE, defaulting to development settings.
"""

import os
import sys


def main():
    """Configure settings and dispatch the management command."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings.dev")

    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Are you sure it's installed and "
            "available on your PYTHONPATH environment variable? Did you "
            "forget to activate a virtual environment?"
        ) from exc

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
