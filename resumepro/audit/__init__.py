"""
ResumeCustomizer Pro - Login Audit Package

Append-only, hash-chained record of login, logout, 2FA, reset and
verification events.
"""
