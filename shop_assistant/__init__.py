"""
Shop Assistant.

Conversational shopping assistant session engine with catalog retrieval
and a shared AI spending budget.
"""

__version__ = "0.1.0"
