"""Fixtures for service layer unit tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def db() -> MagicMock:
    """AsyncSession stand-in; tests set db.get / db.execute results."""
    session = MagicMock()
    session.get = AsyncMock(return_value=None)
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


def _scalar_result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    result.scalars.return_value.all.return_value = value if isinstance(value, list) else []
    return result


@pytest.fixture
def scalar_result():
    """Build a db.execute() result whose scalar accessors return value."""
    return _scalar_result

