"""
Core modules for Claudelytics.

This package contains pricing, aggregation, burn rate, projection
and report-building functionality of the analytics engine.
"""
