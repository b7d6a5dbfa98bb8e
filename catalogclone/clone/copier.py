from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from catalogclone.accounts.service import AccountNotFoundError, AccountService
from catalogclone.clone.types import CopyStats
from catalogclone.clone.worker import CLONED_PRODUCT_FIELDS, CLONED_TIER_FIELDS, copy_column_value
from catalogclone.core.slugs import generate_unique, seed_known_slugs, slugify_name
from catalogclone.db.models import Account, Product, ProductImage, ProductPriceTier

logger = logging.getLogger(__name__)


class ProductSelectionError(ValueError):
    pass


class NoProductsToCopyError(RuntimeError):
    pass


class ProductCopier:
    """Copies selected products of one account into another existing account.

    Unlike a clone job this runs synchronously in one transaction. Image rows
    keep pointing at the source URLs; slugs are re-minted against the target.
    """

    def __init__(self, session_factory: sessionmaker[Session], accounts: AccountService):
        self._session_factory = session_factory
        self._accounts = accounts

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def copy_products(
        self,
        source_account_id: str,
        target_account_id: str,
        product_ids: Sequence[str] | None = None,
    ) -> CopyStats:
        """Copy ``product_ids`` (every source product when ``None``) to the target account."""
        if product_ids is not None and not product_ids:
            raise ProductSelectionError("No products specified for copying")

        with self._session_factory() as session:
            for account_id in (source_account_id, target_account_id):
                if session.get(Account, account_id) is None:
                    raise AccountNotFoundError(f"Account not found: {account_id}")

            query = select(Product).where(Product.account_id == source_account_id)
            if product_ids is not None:
                query = query.where(Product.id.in_(list(dict.fromkeys(product_ids))))
            products = list(session.scalars(query.order_by(Product.created_at.asc(), Product.id.asc())).all())
            if not products:
                raise NoProductsToCopyError(f"No products found to copy from {source_account_id}")

            copied_categories = self._accounts.add_categories(
                session, account_id=target_account_id, names=[product.category for product in products]
            )
            known_slugs = seed_known_slugs(
                session.scalars(select(Product.slug).where(Product.account_id == target_account_id)).all()
            )

            now = self._now()
            id_map: dict[str, str] = {}
            for product in products:
                new_id = str(uuid4())
                fields = {field: copy_column_value(getattr(product, field)) for field in CLONED_PRODUCT_FIELDS}
                session.add(
                    Product(
                        id=new_id,
                        account_id=target_account_id,
                        slug=generate_unique(product.slug or slugify_name(product.title), known_slugs),
                        featured_image_url=product.featured_image_url,
                        created_at=now,
                        updated_at=now,
                        **fields,
                    )
                )
                id_map[product.id] = new_id
            session.flush()

            copied_images = 0
            for image in session.scalars(
                select(ProductImage)
                .where(ProductImage.product_id.in_(list(id_map)))
                .order_by(ProductImage.product_id, ProductImage.position, ProductImage.id)
            ).all():
                session.add(
                    ProductImage(
                        product_id=id_map[image.product_id],
                        url=image.url,
                        is_featured=image.is_featured,
                        position=image.position,
                        created_at=now,
                    )
                )
                copied_images += 1

            copied_tiers = 0
            for tier in session.scalars(
                select(ProductPriceTier)
                .where(ProductPriceTier.product_id.in_(list(id_map)))
                .order_by(ProductPriceTier.product_id, ProductPriceTier.min_quantity, ProductPriceTier.id)
            ).all():
                session.add(
                    ProductPriceTier(
                        product_id=id_map[tier.product_id],
                        created_at=now,
                        updated_at=now,
                        **{field: getattr(tier, field) for field in CLONED_TIER_FIELDS},
                    )
                )
                copied_tiers += 1

            session.commit()

        stats = CopyStats(
            copied_products=len(id_map),
            copied_images=copied_images,
            copied_price_tiers=copied_tiers,
            copied_categories=copied_categories,
        )
        logger.info(
            "Copied %d products with %d images, %d price tiers and %d categories from %s to %s",
            stats.copied_products,
            stats.copied_images,
            stats.copied_price_tiers,
            stats.copied_categories,
            source_account_id,
            target_account_id,
        )
        return stats
