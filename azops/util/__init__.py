"""
Utility functions and helpers.

This package contains reusable utilities shared by the individual tools.

Modules:
- cidr: IP network arithmetic (validation, longest-prefix match, range summarizing)
- export: CSV/JSON export of result rows
- files: File writing and removal helpers
- hashing: SHA256 of files and bytes
- logging: Logging configuration
- progress: Rich progress bars and summary panels
- redact: Scrubbing of SAS tokens, keys and passwords from text
- retry: Exponential backoff for transient Azure failures
"""
