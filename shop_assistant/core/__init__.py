"""
Core modules for the shop assistant.

This package contains the session engine: budget ledger, cost
estimation, catalog retrieval, session state and orchestration.
"""
