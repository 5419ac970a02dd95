# Overview: Transaction helpers shared by the stock-mutating services.

from __future__ import annotations

from sqlalchemy import text

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Open the current session's transaction as a writer.

    SQLite has no row locks, so the whole database is reserved up front
    (BEGIN IMMEDIATE): a concurrent checkout waits for this one to commit and
    then validates against the committed stock. Other dialects rely on
    lock_for_update() on the rows that are read for validation.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))
