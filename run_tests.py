#!/usr/bin/env python
"""
Test runner script for the backend apps
Usage: python run_tests.py [--parallel]
"""
import os
import sys
import django
from django.conf import settings
from django.test.utils import get_runner

if __name__ == "__main__":
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.config.settings')
    django.setup()
    TestRunner = get_runner(settings)
    test_runner = TestRunner(parallel=0 if '--parallel' in sys.argv else 1)
    failures = test_runner.run_tests([
        'backend.core',
        'backend.companies',
        'backend.ledger',
    ])
    sys.exit(bool(failures))
