"""Persistence for users and links.

Every decision about the short-code namespace is made against a store; the
rest of the service keeps no copy of it between calls.  Two implementations
share the ``LinkStore`` contract: ``SQLLinkStore`` for real deployments and
``MemoryLinkStore`` for tests and local runs.
"""
import abc
import dataclasses
import itertools
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from tinylink import models
from tinylink.errors import Conflict, NotFound, StoreUnavailable
from tinylink.records import Link, User

logger = logging.getLogger("tinylink.store")

LINK_FIELDS = {"destination", "code", "is_active"}
USER_FIELDS = {"display_name", "email"}


class LinkStore(abc.ABC):
    @abc.abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abc.abstractmethod
    def get_user_by_external_id(self, external_id: str) -> User | None: ...

    @abc.abstractmethod
    def insert_user(self, external_id: str, display_name: str, email: str) -> User:
        """Raises Conflict when the external identity is already registered."""

    @abc.abstractmethod
    def update_user(self, user_id: int, **fields) -> User: ...

    @abc.abstractmethod
    def get_link(self, link_id: int) -> Link | None: ...

    @abc.abstractmethod
    def get_link_by_code(self, code: str) -> Link | None: ...

    @abc.abstractmethod
    def code_exists(self, code: str, exclude_id: int | None = None) -> bool: ...

    @abc.abstractmethod
    def list_links(self, owner_id: int, skip: int = 0, limit: int = 100) -> list[Link]:
        """Owner's links, newest first."""

    @abc.abstractmethod
    def count_links(self, owner_id: int) -> int: ...

    @abc.abstractmethod
    def insert_link(self, destination: str, code: str, owner_id: int | None, is_active: bool = True) -> Link:
        """Insert with clicks = 0. Raises Conflict if the code is taken."""

    @abc.abstractmethod
    def update_link(self, link_id: int, **fields) -> Link:
        """Raises NotFound for a missing row and Conflict for a taken code."""

    @abc.abstractmethod
    def delete_link(self, link_id: int) -> bool: ...

    @abc.abstractmethod
    def increment_clicks(self, link_id: int) -> bool:
        """Atomically add one to the click counter."""

    @abc.abstractmethod
    def click_totals(self, owner_id: int) -> tuple[int, int]:
        """(number of links, sum of clicks) for an owner."""


def _check_fields(fields: dict, allowed: set) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")


def _user(row: models.User) -> User:
    return User(id=row.id, external_id=row.external_id, display_name=row.display_name, email=row.email)


def _link(row: models.Link) -> Link:
    return Link(
        id=row.id,
        destination=row.destination,
        code=row.code,
        owner_id=row.owner_id,
        is_active=row.is_active,
        created_at=row.created_at,
        clicks=row.clicks or 0,
    )


class SQLLinkStore(LinkStore):
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, conflict: str | None = None):
        try:
            yield
        except IntegrityError as exc:
            self.db.rollback()
            if conflict is None:
                raise
            logger.debug("Integrity violation: %s", exc.orig)
            raise Conflict(conflict) from exc
        except (OperationalError, DBAPIError) as exc:
            self.db.rollback()
            logger.error("Store unavailable: %s", exc)
            raise StoreUnavailable() from exc

    def get_user(self, user_id):
        with self._guard():
            row = self.db.get(models.User, user_id)
            return _user(row) if row else None

    def get_user_by_external_id(self, external_id):
        with self._guard():
            row = self.db.query(models.User).filter_by(external_id=external_id).first()
            return _user(row) if row else None

    def insert_user(self, external_id, display_name, email):
        row = models.User(external_id=external_id, display_name=display_name, email=email)
        with self._guard(conflict="User already registered"):
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        return _user(row)

    def update_user(self, user_id, **fields):
        _check_fields(fields, USER_FIELDS)
        with self._guard():
            row = self.db.get(models.User, user_id)
            if not row:
                raise NotFound("User not found")
            for name, value in fields.items():
                setattr(row, name, value)
            self.db.commit()
            self.db.refresh(row)
            return _user(row)

    def get_link(self, link_id):
        with self._guard():
            row = self.db.get(models.Link, link_id)
            return _link(row) if row else None

    def get_link_by_code(self, code):
        with self._guard():
            row = self.db.query(models.Link).filter_by(code=code).first()
            return _link(row) if row else None

    def code_exists(self, code, exclude_id=None):
        with self._guard():
            q = self.db.query(models.Link.id).filter(models.Link.code == code)
            if exclude_id is not None:
                q = q.filter(models.Link.id != exclude_id)
            return self.db.query(q.exists()).scalar()

    def list_links(self, owner_id, skip=0, limit=100):
        with self._guard():
            rows = (
                self.db.query(models.Link)
                .filter(models.Link.owner_id == owner_id)
                .order_by(models.Link.created_at.desc(), models.Link.id.desc())
                .offset(skip)
                .limit(limit)
                .all()
            )
            return [_link(r) for r in rows]

    def count_links(self, owner_id):
        with self._guard():
            return self.db.query(models.Link).filter(models.Link.owner_id == owner_id).count()

    def insert_link(self, destination, code, owner_id, is_active=True):
        row = models.Link(
            destination=destination,
            code=code,
            owner_id=owner_id,
            is_active=is_active,
            created_at=datetime.now(timezone.utc),
            clicks=0,
        )
        with self._guard(conflict=f"Short code '{code}' already in use"):
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        return _link(row)

    def update_link(self, link_id, **fields):
        _check_fields(fields, LINK_FIELDS)
        with self._guard(conflict=f"Short code '{fields.get('code')}' already in use"):
            row = self.db.get(models.Link, link_id)
            if not row:
                raise NotFound("Link not found")
            for name, value in fields.items():
                setattr(row, name, value)
            self.db.commit()
            self.db.refresh(row)
            return _link(row)

    def delete_link(self, link_id):
        with self._guard():
            deleted = self.db.query(models.Link).filter(models.Link.id == link_id).delete(synchronize_session=False)
            self.db.commit()
            return deleted > 0

    def increment_clicks(self, link_id):
        with self._guard():
            # Single UPDATE ... SET clicks = clicks + 1, no read-modify-write
            updated = (
                self.db.query(models.Link)
                .filter(models.Link.id == link_id)
                .update({models.Link.clicks: models.Link.clicks + 1}, synchronize_session=False)
            )
            self.db.commit()
            return updated > 0

    def click_totals(self, owner_id):
        with self._guard():
            count, total = (
                self.db.query(func.count(models.Link.id), func.coalesce(func.sum(models.Link.clicks), 0))
                .filter(models.Link.owner_id == owner_id)
                .one()
            )
            return int(count), int(total)


class MemoryLinkStore(LinkStore):
    """Thread-safe in-process store; not shared between processes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[int, User] = {}
        self._links: dict[int, Link] = {}
        self._user_ids = itertools.count(1)
        self._link_ids = itertools.count(1)

    def get_user(self, user_id):
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_external_id(self, external_id):
        with self._lock:
            return next((u for u in self._users.values() if u.external_id == external_id), None)

    def insert_user(self, external_id, display_name, email):
        with self._lock:
            if any(u.external_id == external_id for u in self._users.values()):
                raise Conflict("User already registered")
            user = User(id=next(self._user_ids), external_id=external_id, display_name=display_name, email=email)
            self._users[user.id] = user
            return user

    def update_user(self, user_id, **fields):
        _check_fields(fields, USER_FIELDS)
        with self._lock:
            if user_id not in self._users:
                raise NotFound("User not found")
            user = dataclasses.replace(self._users[user_id], **fields)
            self._users[user_id] = user
            return user

    def get_link(self, link_id):
        with self._lock:
            return self._links.get(link_id)

    def get_link_by_code(self, code):
        with self._lock:
            return self._find_code(code)

    def _find_code(self, code, exclude_id=None):
        return next((l for l in self._links.values() if l.code == code and l.id != exclude_id), None)

    def code_exists(self, code, exclude_id=None):
        with self._lock:
            return self._find_code(code, exclude_id) is not None

    def list_links(self, owner_id, skip=0, limit=100):
        with self._lock:
            owned = [l for l in self._links.values() if l.owner_id == owner_id]
        owned.sort(key=lambda l: (l.created_at, l.id), reverse=True)
        return owned[skip:skip + limit]

    def count_links(self, owner_id):
        with self._lock:
            return sum(1 for l in self._links.values() if l.owner_id == owner_id)

    def insert_link(self, destination, code, owner_id, is_active=True):
        with self._lock:
            if self._find_code(code):
                raise Conflict(f"Short code '{code}' already in use")
            link = Link(
                id=next(self._link_ids),
                destination=destination,
                code=code,
                owner_id=owner_id,
                is_active=is_active,
                created_at=datetime.now(timezone.utc),
                clicks=0,
            )
            self._links[link.id] = link
            return link

    def update_link(self, link_id, **fields):
        _check_fields(fields, LINK_FIELDS)
        with self._lock:
            if link_id not in self._links:
                raise NotFound("Link not found")
            if "code" in fields and self._find_code(fields["code"], exclude_id=link_id):
                raise Conflict(f"Short code '{fields['code']}' already in use")
            link = dataclasses.replace(self._links[link_id], **fields)
            self._links[link_id] = link
            return link

    def delete_link(self, link_id):
        with self._lock:
            return self._links.pop(link_id, None) is not None

    def increment_clicks(self, link_id):
        with self._lock:
            link = self._links.get(link_id)
            if link is None:
                return False
            self._links[link_id] = dataclasses.replace(link, clicks=link.clicks + 1)
            return True

    def click_totals(self, owner_id):
        with self._lock:
            owned = [l.clicks for l in self._links.values() if l.owner_id == owner_id]
        return len(owned), sum(owned)
