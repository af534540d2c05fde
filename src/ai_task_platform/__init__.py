"""Credit-metered AI/SEO task platform."""

__version__ = "0.1.0"
