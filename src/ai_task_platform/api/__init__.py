"""External API services with caching, sandboxing and credit accounting."""
