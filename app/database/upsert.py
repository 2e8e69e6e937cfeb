"""
Dialect aware INSERT ... ON CONFLICT helpers.
"""
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

logger = logging.getLogger("app.database")

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _insert_for(db: Session, table):
    dialect = db.get_bind().dialect.name
    try:
        return _INSERT_BY_DIALECT[dialect](table)
    except KeyError:
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect}")


def upsert(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    update_columns: Optional[Iterable[str]] = None,
    update_expressions: Optional[Mapping[str, Any]] = None,
) -> None:
    """
    Insert a row or update the existing row with the same conflict key.

    Args:
        db: Database session
        model: SQLModel table class
        values: Column values for the inserted row
        conflict_columns: Columns of the unique constraint
        update_columns: Columns copied from the proposed row on conflict
        update_expressions: Column -> SQL expression evaluated against the existing row
    """
    table = model.__table__
    stmt = _insert_for(db, table).values(**values)

    set_ = {}
    for column in update_columns or ():
        set_[column] = stmt.excluded[column]
    set_.update(update_expressions or {})

    if set_:
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))

    db.execute(stmt)


def insert_ignore(db: Session, model, values: Dict[str, Any], conflict_columns: Iterable[str]) -> bool:
    """
    Insert a row unless one with the same key exists.

    Returns:
        True when the row was inserted
    """
    stmt = _insert_for(db, model.__table__).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = db.execute(stmt)
    return result.rowcount == 1
