"""
ResumeCustomizer Pro - Services Package

Outbound integrations used by the auth flows. Both degrade gracefully:
email falls back to log-only delivery, geolocation to an empty location.
"""

from resumepro.services.email import EmailService
from resumepro.services.geolocation import GeoLocation, GeoLocationService

__all__ = [
    "EmailService",
    "GeoLocation",
    "GeoLocationService",
]
