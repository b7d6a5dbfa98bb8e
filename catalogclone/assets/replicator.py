from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from catalogclone.assets.storage import AssetStorage
from catalogclone.core.config import Settings
from catalogclone.core.path_safety import PathSafetyError
from catalogclone.core.pool import BoundedPool
from catalogclone.db.models import ProductImage

logger = logging.getLogger(__name__)


class AssetTransferError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class AssetReference:
    url: str
    is_primary: bool = False
    position: int = 0


@dataclass(frozen=True, slots=True)
class StoredAsset:
    source: AssetReference
    key: str
    url: str


class AssetReplicator:
    """Copies an item's binary assets to keys owned by a new item.

    Transfers run through a :class:`BoundedPool`, so no more than
    ``asset_concurrency`` fetches are in flight for one item. A failed
    transfer is logged and skipped; the others still land.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        storage: AssetStorage,
        client: httpx.Client | None = None,
    ):
        self._session_factory = session_factory
        self._storage = storage
        self._timeout = settings.asset_fetch_timeout_seconds
        self._pool: BoundedPool[AssetReference, StoredAsset] = BoundedPool(
            settings.asset_concurrency, thread_name_prefix="asset-transfer"
        )
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout, follow_redirects=True)

    @property
    def window_size(self) -> int:
        return self._pool.window_size

    @property
    def pool(self) -> BoundedPool[AssetReference, StoredAsset]:
        return self._pool

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _fetch(self, url: str) -> tuple[bytes, str | None]:
        # httpx timeouts cover each network step; the deadline covers the whole body.
        deadline = time.monotonic() + self._timeout
        chunks: list[bytes] = []
        with self._client.stream("GET", url, timeout=self._timeout) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes():
                if time.monotonic() > deadline:
                    raise AssetTransferError(f"Fetching {url} took longer than {self._timeout:g}s")
                chunks.append(chunk)
            content_type = response.headers.get("content-type")
        if time.monotonic() > deadline:
            raise AssetTransferError(f"Fetching {url} took longer than {self._timeout:g}s")
        return b"".join(chunks), content_type

    def _transfer(self, asset: AssetReference, new_item_id: str) -> StoredAsset:
        try:
            content, content_type = self._fetch(asset.url)
            key = self._storage.build_key(
                owner_id=new_item_id,
                source_url=asset.url,
                content_type=content_type,
            )
            url = self._storage.store(key, content)
        except (httpx.HTTPError, OSError, PathSafetyError) as exc:
            raise AssetTransferError(f"Failed to copy asset {asset.url}: {exc}") from exc
        return StoredAsset(source=asset, key=key, url=url)

    def _record(self, stored: StoredAsset, new_item_id: str) -> bool:
        try:
            with self._session_factory() as session:
                session.add(
                    ProductImage(
                        product_id=new_item_id,
                        url=stored.url,
                        is_featured=stored.source.is_primary,
                        position=stored.source.position,
                    )
                )
                session.commit()
        except SQLAlchemyError:
            logger.warning("Could not record copied asset %s for %s", stored.key, new_item_id, exc_info=True)
            return False
        return True

    def replicate(self, assets: Sequence[AssetReference], new_item_id: str) -> str | None:
        """Copy ``assets`` onto ``new_item_id`` and return the new primary URL, if any."""
        if not assets:
            return None

        primary_url: str | None = None
        copied = 0
        outcomes = self._pool.map(lambda asset: self._transfer(asset, new_item_id), list(assets))
        for outcome in outcomes:
            if not outcome.ok or outcome.result is None:
                logger.warning("Skipping asset for %s: %s", new_item_id, outcome.error)
                continue
            if not self._record(outcome.result, new_item_id):
                continue
            copied += 1
            if outcome.item.is_primary and primary_url is None:
                primary_url = outcome.result.url

        logger.debug("Copied %d/%d assets for %s", copied, len(assets), new_item_id)
        return primary_url
