"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction and interruptible waits
- exceptions: Custom exception hierarchy
- logging_config: Process logging setup and secret masking
"""
