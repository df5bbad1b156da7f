"""INSERT ... ON CONFLICT builders for the dialects we run on."""
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_for(session: AsyncSession, model):
    """Dialect-specific ``insert(model)`` supporting ``on_conflict_do_*``.

    PostgreSQL in production, SQLite in tests and local runs.
    """
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect](model)
    except KeyError:
        raise NotImplementedError(f"Upserts are not supported on {dialect!r}") from None
