# Overview: Generic record store over SQLAlchemy; the only place that talks to the database.

"""
Ledger Store

WHY: The billing and shift services only need create/read/update/delete over
typed records plus atomic single-record updates. Keeping that behind one
small interface means the services never branch on the storage backend.

INVARIANTS:
- Every write call is its own unit of work: commit on success, rollback on failure.
- update_by_id / update_where issue a single UPDATE statement, so increments
  (col = col + delta) and conditional writes (WHERE invoice_id IS NULL) are atomic.
- expected_version turns an update into an optimistic compare-and-swap and bumps
  version_id. A mismatch raises StaleDataError (retried by run_with_retry).
- Driver timeouts surface as StoreTimeoutError, other driver failures as
  StoreUnavailableError, unique violations as ConflictError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

from sqlalchemy import select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stationledger.errors import (
    ConflictError,
    NotFoundError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from stationledger.extensions import db


logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "database is locked",
    "canceling statement",
    "lock wait",
)


def _is_timeout(exc: DBAPIError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def _criteria(model, where: dict | None) -> list:
    clauses = []
    for key, expected in (where or {}).items():
        column = getattr(model, key)
        clauses.append(column.is_(None) if expected is None else column == expected)
    return clauses


def _order_by(model, sort: Iterable[Any] | None) -> list:
    """Accept "col" / "-col" strings or ready-made SQLAlchemy expressions."""
    ordering = []
    for key in sort or ():
        if isinstance(key, str):
            column = getattr(model, key.lstrip("-"))
            ordering.append(column.desc() if key.startswith("-") else column.asc())
        else:
            ordering.append(key)
    return ordering


class LedgerStore:
    """
    Record store for ledger models.

    Args:
        session: SQLAlchemy session (defaults to the Flask-SQLAlchemy scoped session)
        timeout: default per-call timeout in seconds (None = backend default)
    """

    def __init__(self, session=None, *, timeout: float | None = None):
        self._session = session if session is not None else db.session
        self.timeout = timeout

    @property
    def session(self):
        return self._session

    def close(self) -> None:
        """Release the current session (request/app-context teardown)."""
        remove = getattr(self._session, "remove", None)
        if remove is not None:
            remove()
        else:
            self._session.close()

    # =========================================================================
    # UNITS OF WORK
    # =========================================================================

    def _apply_timeout(self, timeout: float | None) -> None:
        seconds = self.timeout if timeout is None else timeout
        if not seconds:
            return
        millis = max(int(seconds * 1000), 1)
        dialect = self._session.get_bind().dialect.name
        if dialect == "sqlite":
            self._session.execute(text(f"PRAGMA busy_timeout = {millis}"))
        elif dialect == "postgresql":
            self._session.execute(text(f"SET LOCAL statement_timeout = {millis}"))
        elif dialect in ("mysql", "mariadb"):
            self._session.execute(text(f"SET SESSION max_execution_time = {millis}"))

    @contextmanager
    def _guard(self, timeout: float | None, *, commit: bool):
        try:
            self._apply_timeout(timeout)
            yield self._session
            if commit:
                self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ConflictError(
                "Record conflicts with an existing record",
                details={"reason": str(exc.orig)},
            ) from exc
        except OperationalError as exc:
            self._session.rollback()
            if _is_timeout(exc):
                raise StoreTimeoutError("Ledger store timed out", details={"reason": str(exc.orig)}) from exc
            raise StoreUnavailableError("Ledger store unavailable", details={"reason": str(exc.orig)}) from exc
        except DBAPIError as exc:
            self._session.rollback()
            raise StoreUnavailableError("Ledger store unavailable", details={"reason": str(exc.orig)}) from exc
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # CRUD
    # =========================================================================

    def create(self, model, *, timeout: float | None = None, **fields):
        record = model(**fields)
        with self._guard(timeout, commit=True) as session:
            session.add(record)
            session.flush()
            record_id = record.id
        logger.debug("Created %s %s", model.__tablename__, record_id)
        return record

    def get_by_id(self, model, record_id: int, *, timeout: float | None = None):
        with self._guard(timeout, commit=False) as session:
            return session.get(model, record_id, populate_existing=True)

    def require(self, model, record_id: int, *, label: str | None = None, timeout: float | None = None):
        record = self.get_by_id(model, record_id, timeout=timeout)
        if record is None:
            name = label or model.__name__
            raise NotFoundError(f"{name} {record_id} not found", details={"id": record_id})
        return record

    def update_where(
        self,
        model,
        where: dict,
        values: dict | None = None,
        *,
        increments: dict | None = None,
        conditions: Iterable[Any] = (),
        timeout: float | None = None,
    ) -> int:
        """
        Single-statement conditional update. Returns the number of rows matched.

        increments: {"current_balance_cents": -500} -> col = col + (-500)
        where: {"invoice_id": None} -> invoice_id IS NULL
        """
        changes = dict(values or {})
        for key, delta in (increments or {}).items():
            changes[key] = getattr(model, key) + delta
        if not changes:
            raise ValueError("update requires values or increments")

        if hasattr(model, "version_id"):
            changes["version_id"] = model.version_id + 1

        stmt = (
            update(model)
            .where(*_criteria(model, where), *conditions)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        with self._guard(timeout, commit=True) as session:
            result = session.execute(stmt)
            return result.rowcount

    def update_by_id(
        self,
        model,
        record_id: int,
        values: dict | None = None,
        *,
        increments: dict | None = None,
        where: dict | None = None,
        expected_version: int | None = None,
        timeout: float | None = None,
    ):
        """
        Partial/atomic update of one record.

        Returns the refreshed record, or None when the record is missing or
        a `where` condition did not hold. With expected_version, a record that
        exists under a different version raises StaleDataError.
        """
        criteria = {"id": record_id, **(where or {})}
        if expected_version is not None:
            criteria["version_id"] = expected_version

        matched = self.update_where(model, criteria, values, increments=increments, timeout=timeout)
        if not matched:
            if expected_version is not None and self.get_by_id(model, record_id, timeout=timeout) is not None:
                raise StaleDataError(
                    f"{model.__name__} {record_id} changed since version {expected_version}"
                )
            return None
        return self.get_by_id(model, record_id, timeout=timeout)

    def find(
        self,
        model,
        filters: dict | None = None,
        sort: Iterable[Any] | None = None,
        *,
        conditions: Iterable[Any] = (),
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list:
        stmt = select(model).where(*_criteria(model, filters), *conditions).order_by(*_order_by(model, sort))
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._guard(timeout, commit=False) as session:
            return list(session.execute(stmt).scalars().all())

    def iter_find(
        self,
        model,
        filters: dict | None = None,
        sort: Iterable[Any] | None = None,
        *,
        conditions: Iterable[Any] = (),
        batch_size: int = 200,
        timeout: float | None = None,
    ) -> Iterator:
        """Lazily stream matching records in batches of batch_size."""
        stmt = (
            select(model)
            .where(*_criteria(model, filters), *conditions)
            .order_by(*_order_by(model, sort))
            .execution_options(yield_per=batch_size)
        )
        with self._guard(timeout, commit=False) as session:
            for record in session.execute(stmt).scalars():
                yield record

    def delete_by_id(self, model, record_id: int, *, timeout: float | None = None) -> bool:
        with self._guard(timeout, commit=True) as session:
            record = session.get(model, record_id, populate_existing=True)
            if record is None:
                return False
            session.delete(record)
        return True
