# Identity Service API Utilities
"""
Shared utility functions for the identity service.
"""

from api.utils.datetime_utils import make_aware, parse_timestamp, utc_now

__all__ = ["make_aware", "parse_timestamp", "utc_now"]
