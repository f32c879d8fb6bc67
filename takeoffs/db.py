"""
Document store for takeoff records: SQL (via SQLAlchemy) and an in-memory
implementation for development and tests.

Records are exchanged as plain dicts with snake_case keys. Attachments are
nested dicts kept in JSON columns, so a takeoff reads and writes as a single
document.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from takeoffs.query import SEARCH_FIELDS, TakeoffQuery

CREATOR_FIELDS = ("email", "first_name", "last_name")


class TakeoffStore(Protocol):
    """Interface for takeoff persistence."""

    def insert_takeoff(self, doc: dict) -> dict:
        ...

    def get_takeoff(self, takeoff_id: str) -> Optional[dict]:
        ...

    def list_takeoffs(self, query: TakeoffQuery) -> list[dict]:
        ...

    def update_takeoff(
        self,
        takeoff_id: str,
        fields: dict,
        *,
        append_files: Iterable[dict] = (),
        append_pdf_preview: Iterable[dict] = (),
    ) -> Optional[dict]:
        ...

    def delete_takeoff(self, takeoff_id: str) -> bool:
        ...

    def save_user(self, user: dict) -> None:
        ...

    def get_creators(self, user_ids: Iterable[str]) -> dict[str, dict]:
        ...


def _creator_summary(user: dict) -> dict:
    summary = {"id": user["id"]}
    summary.update({key: user.get(key) for key in CREATOR_FIELDS})
    return summary


class InMemoryTakeoffStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.takeoffs: Dict[str, dict] = {}
        self.users: Dict[str, dict] = {}

    def insert_takeoff(self, doc: dict) -> dict:
        self.takeoffs[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    def get_takeoff(self, takeoff_id: str) -> Optional[dict]:
        doc = self.takeoffs.get(takeoff_id)
        return copy.deepcopy(doc) if doc else None

    def list_takeoffs(self, query: TakeoffQuery) -> list[dict]:
        return [copy.deepcopy(doc) for doc in query.apply(list(self.takeoffs.values()))]

    def update_takeoff(
        self,
        takeoff_id: str,
        fields: dict,
        *,
        append_files: Iterable[dict] = (),
        append_pdf_preview: Iterable[dict] = (),
    ) -> Optional[dict]:
        doc = self.takeoffs.get(takeoff_id)
        if not doc:
            return None
        doc.update(copy.deepcopy(fields))
        doc["files"] = list(doc.get("files") or []) + copy.deepcopy(list(append_files))
        doc["pdf_preview"] = list(doc.get("pdf_preview") or []) + copy.deepcopy(
            list(append_pdf_preview)
        )
        return copy.deepcopy(doc)

    def delete_takeoff(self, takeoff_id: str) -> bool:
        return self.takeoffs.pop(takeoff_id, None) is not None

    def save_user(self, user: dict) -> None:
        self.users[user["id"]] = dict(user)

    def get_creators(self, user_ids: Iterable[str]) -> dict[str, dict]:
        return {
            user_id: _creator_summary(self.users[user_id])
            for user_id in set(user_ids)
            if user_id in self.users
        }

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.takeoffs.clear()
        self.users.clear()


class SqlTakeoffStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlTakeoffStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_doc(self, row: "TakeoffRow") -> dict:
        return {column.name: getattr(row, column.name) for column in TakeoffRow.__table__.columns}

    def insert_takeoff(self, doc: dict) -> dict:
        with self.Session() as session:
            row = TakeoffRow(**doc)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_doc(row)

    def get_takeoff(self, takeoff_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(TakeoffRow, takeoff_id)
            return self._to_doc(row) if row else None

    def _conditions(self, query: TakeoffQuery) -> list:
        conditions = []
        if query.zip_code:
            conditions.append(TakeoffRow.zip_code == query.zip_code)
        if query.size:
            conditions.append(TakeoffRow.project_size == query.size)
        if query.types:
            conditions.append(func.lower(TakeoffRow.project_type).in_(query.types))
        if query.price_min is not None:
            conditions.append(TakeoffRow.price >= query.price_min)
        if query.price_max is not None:
            conditions.append(TakeoffRow.price <= query.price_max)
        if query.search:
            pattern = "%" + _escape_like(query.search) + "%"
            conditions.append(
                or_(
                    *(
                        getattr(TakeoffRow, name).ilike(pattern, escape="\\")
                        for name in SEARCH_FIELDS
                    )
                )
            )
        return conditions

    def list_takeoffs(self, query: TakeoffQuery) -> list[dict]:
        column = getattr(TakeoffRow, query.sort_field)
        # id breaks ties so pages never overlap or skip rows.
        if query.descending:
            order = (column.desc(), TakeoffRow.id.desc())
        else:
            order = (column.asc(), TakeoffRow.id.asc())
        stmt = (
            select(TakeoffRow)
            .where(*self._conditions(query))
            .order_by(*order)
            .offset(query.offset)
            .limit(query.limit)
        )
        with self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_doc(row) for row in rows]

    def update_takeoff(
        self,
        takeoff_id: str,
        fields: dict,
        *,
        append_files: Iterable[dict] = (),
        append_pdf_preview: Iterable[dict] = (),
    ) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(TakeoffRow, takeoff_id)
            if not row:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            # Reassign so SQLAlchemy notices the JSON column changed.
            row.files = list(row.files or []) + list(append_files)
            row.pdf_preview = list(row.pdf_preview or []) + list(append_pdf_preview)
            session.commit()
            session.refresh(row)
            return self._to_doc(row)

    def delete_takeoff(self, takeoff_id: str) -> bool:
        with self.Session() as session:
            row = session.get(TakeoffRow, takeoff_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def save_user(self, user: dict) -> None:
        with self.Session() as session:
            existing = session.get(UserRow, user["id"])
            if existing:
                for key in CREATOR_FIELDS:
                    setattr(existing, key, user.get(key))
            else:
                session.add(
                    UserRow(id=user["id"], **{key: user.get(key) for key in CREATOR_FIELDS})
                )
            session.commit()

    def get_creators(self, user_ids: Iterable[str]) -> dict[str, dict]:
        ids = set(user_ids)
        if not ids:
            return {}
        with self.Session() as session:
            rows = session.execute(select(UserRow).where(UserRow.id.in_(ids))).scalars()
            return {
                row.id: _creator_summary(
                    {"id": row.id, **{key: getattr(row, key) for key in CREATOR_FIELDS}}
                )
                for row in rows
            }


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()


class TakeoffRow(Base):
    __tablename__ = "takeoffs"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    project_type = Column(String, nullable=False, index=True)
    project_size = Column(String, nullable=False, index=True)
    zip_code = Column(String, nullable=False, index=True)
    address = Column(String, nullable=True)
    price = Column(Float, nullable=False, index=True)
    features = Column(JSON, nullable=True)
    specifications = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expiration_date = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, nullable=True, index=True)
    files = Column(JSON, nullable=False, default=list)
    pdf_preview = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
