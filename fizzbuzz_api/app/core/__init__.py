"""
Core infrastructure: settings, logging, errors, locking and SQLite access.
"""
