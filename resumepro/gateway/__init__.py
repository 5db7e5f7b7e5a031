"""
ResumeCustomizer Pro - Gateway Package

Request middleware, rate limiting and role/permission policy.
"""
