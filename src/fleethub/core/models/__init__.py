"""Database models for fleethub.

Models are defined using SQLModel (SQLAlchemy + Pydantic).
"""

from fleethub.core.models.base import generate_ulid, utc_now
from fleethub.core.models.container import ApiEndpoint, Container, FrontendEndpoint
from fleethub.core.models.host import Host

__all__ = [
    "ApiEndpoint",
    "Container",
    "FrontendEndpoint",
    "Host",
    "generate_ulid",
    "utc_now",
]
