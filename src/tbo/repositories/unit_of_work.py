from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol


class UnitOfWork(Protocol):
    cur: sqlite3.Cursor

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


class SqliteUnitOfWork:
    """One connection, one ``BEGIN IMMEDIATE`` transaction.

    The reserved lock is taken up front, so every read made through ``cur``
    sees the state the writes will be applied to. Concurrent writers wait for
    the connection busy timeout. Commits when the block exits normally and
    rolls back on any exception.
    """

    def __init__(self, repo):
        self.repo = repo
        self.conn: Optional[sqlite3.Connection] = None
        self.cur: Optional[sqlite3.Cursor] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        self.conn = self.repo._conn()
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except Exception:
            self.conn.close()
            raise
        self.cur = self.conn.cursor()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
        finally:
            self.conn.close()
            self.conn = None
            self.cur = None


@contextmanager
def joined(uow: Optional[UnitOfWork], factory: Callable[[], UnitOfWork]) -> Iterator[UnitOfWork]:
    """Reuse the caller's unit of work, or open (and finish) a fresh one."""
    if uow is not None:
        yield uow
        return
    with factory() as fresh:
        yield fresh
