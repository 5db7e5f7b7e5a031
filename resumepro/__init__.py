"""
ResumeCustomizer Pro - Authentication & Session Lifecycle

FastAPI service for credential verification, email two-factor login,
multi-device sessions, suspicious-login detection and a tamper-evident
login audit log, plus a Python client with auth-loop protection.
"""

__version__ = "1.0.0"
