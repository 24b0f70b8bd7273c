"""Declarative base shared by every rewards table."""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Keeps generated constraint names stable between create_all and Alembic.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models.

    Tables are registered when ``rewards_api.models`` is imported; Alembic and
    the test-suite import it explicitly before touching ``Base.metadata``.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
