from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import uuid4

import bcrypt
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from catalogclone.accounts.types import AccountSnapshot, CreatedAccount, NewAccountAttributes
from catalogclone.db.models import Account, Product, ProductCategory

logger = logging.getLogger(__name__)

# Profile columns carried over from the source account; identity, credentials
# and timestamps are always fresh.
_PROFILE_FIELDS = ("role", "country_code", "whatsapp", "avatar_url", "bio", "storefront_settings")


class AccountNotFoundError(RuntimeError):
    pass


class AccountConflictError(RuntimeError):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


class AccountService:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def get_account(self, account_id: str) -> AccountSnapshot | None:
        with self._session_factory() as session:
            account = session.get(Account, account_id)
            return None if account is None else self._to_snapshot(account)

    def count_products(self, account_id: str) -> int:
        with self._session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(Product).where(Product.account_id == account_id)) or 0)

    def create_account(self, attrs: NewAccountAttributes, *, profile_from: str | None = None) -> CreatedAccount:
        """Create an account, optionally copying another account's profile and categories.

        Everything happens in one transaction: on any error nothing is created.
        """
        with self._session_factory() as session:
            source = None
            if profile_from is not None:
                source = session.get(Account, profile_from)
                if source is None:
                    raise AccountNotFoundError(f"Account not found: {profile_from}")

            taken = session.scalar(
                select(Account.id).where(or_(Account.email == attrs.email, Account.slug == attrs.slug))
            )
            if taken is not None:
                raise AccountConflictError("Email or slug is already in use")

            now = self._now()
            account = Account(
                id=str(uuid4()),
                email=attrs.email,
                password_hash=hash_password(attrs.password),
                name=attrs.name,
                slug=attrs.slug,
                created_at=now,
                updated_at=now,
            )
            if source is not None:
                for field in _PROFILE_FIELDS:
                    value = getattr(source, field)
                    setattr(account, field, dict(value) if isinstance(value, dict) else value)
            session.add(account)

            copied_categories = 0
            if source is not None:
                session.flush()
                copied_categories = self._copy_categories(session, source_id=source.id, target_id=account.id)

            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise AccountConflictError("Email or slug is already in use") from exc

            session.refresh(account)
            logger.info(
                "Created account %s (%s) with %d categories copied from %s",
                account.id,
                account.slug,
                copied_categories,
                profile_from,
            )
            return CreatedAccount(account=self._to_snapshot(account), copied_categories=copied_categories)

    def _copy_categories(self, session: Session, *, source_id: str, target_id: str) -> int:
        names: set[str] = set()
        names.update(session.scalars(select(ProductCategory.name).where(ProductCategory.account_id == source_id)).all())
        # Categories referenced only by products still belong to the catalog.
        names.update(
            session.scalars(
                select(Product.category).where(Product.account_id == source_id, Product.category.is_not(None)).distinct()
            ).all()
        )
        return self.add_categories(session, account_id=target_id, names=names)

    def add_categories(self, session: Session, *, account_id: str, names: Iterable[str | None]) -> int:
        """Add the trimmed ``names`` the account does not have yet; the caller commits."""
        cleaned = {name.strip() for name in names if name and name.strip()}
        existing = set(
            session.scalars(select(ProductCategory.name).where(ProductCategory.account_id == account_id)).all()
        )

        now = self._now()
        to_create = sorted(cleaned - existing)
        for name in to_create:
            session.add(ProductCategory(account_id=account_id, name=name, created_at=now, updated_at=now))
        return len(to_create)

    def _to_snapshot(self, account: Account) -> AccountSnapshot:
        return AccountSnapshot(
            id=account.id,
            email=account.email,
            name=account.name,
            slug=account.slug,
            role=account.role,
            created_at=account.created_at,
        )
