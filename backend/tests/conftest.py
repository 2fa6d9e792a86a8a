# backend/tests/conftest.py
"""
Pytest configuration for the ledger test suite.

Environment is pinned BEFORE any auditoryx import so the settings object and
the module-level engine never point at a real database or payment account.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = ""
# Skip the developer's .env file
os.environ.setdefault("CI", "1")
