"""
Claudelytics - usage analytics for local coding assistant logs.

Reads JSONL conversation logs and reports tokens, costs, sessions,
billing blocks, burn rates and budget projections.
"""

__version__ = "0.4.0"
