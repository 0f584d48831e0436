"""Persistence services (module-level async functions over an AsyncSession)."""
