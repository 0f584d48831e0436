"""Core domain, models, errors and interfaces."""
