"""
Core modules for the skill usage tracker.

This package contains identity hashing, event ingestion and the
analytics queries behind the dashboard.
"""
