"""Utilities and helper functions.

- storage: diskcache-backed database
- persistence: JSON file store
- locks: Per-key locks
- versions: Extension version parsing
- logging: loguru setup
- exceptions: Error hierarchy
"""
