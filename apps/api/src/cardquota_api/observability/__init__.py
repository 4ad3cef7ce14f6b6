"""In-process observability stores and tracing setup."""
