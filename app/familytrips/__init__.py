"""Family Trips API: trip coordination for families with a cached read path."""

__version__ = "1.0.0"
__author__ = "Family Trips Team"
__description__ = "Family trip coordination API with role-based access and response caching"
