from __future__ import annotations

import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import httpx
from sqlalchemy import select

import catalogclone.db.session as db_session_module
from catalogclone.assets.replicator import AssetReference, AssetReplicator
from catalogclone.assets.storage import AssetStorage
from catalogclone.core.config import get_settings
from catalogclone.core.path_safety import PathSafetyError
from catalogclone.db.init_db import initialize_database
from catalogclone.db.models import Account, Product, ProductImage


def _prepare_env(tmp_path: Path) -> None:
    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)

    os.environ["CATALOGCLONE_STATE_ROOT"] = state_root.as_posix()
    os.environ["CATALOGCLONE_ASSET_PUBLIC_BASE_URL"] = "https://cdn.example.test/assets/"
    os.environ["CATALOGCLONE_CLONE_DISPATCH_MODE"] = "queue"
    os.environ.pop("CATALOGCLONE_CLONE_JOB_DEADLINE_SECONDS", None)

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()


def _make_product() -> str:
    now = datetime.now(tz=timezone.utc)
    account_id = str(uuid4())
    product_id = str(uuid4())
    with db_session_module.get_session_factory()() as session:
        session.add(
            Account(
                id=account_id,
                email=f"{account_id}@example.com",
                password_hash="x",
                name="Owner",
                slug=account_id,
                created_at=now,
                updated_at=now,
            )
        )
        session.add(
            Product(id=product_id, account_id=account_id, title="Lamp", slug="lamp", created_at=now, updated_at=now)
        )
        session.commit()
    return product_id


def _images(product_id: str) -> list[ProductImage]:
    with db_session_module.get_session_factory()() as session:
        return list(
            session.scalars(
                select(ProductImage).where(ProductImage.product_id == product_id).order_by(ProductImage.position)
            ).all()
        )


def test_replicate_copies_bytes_and_returns_new_primary_url(tmp_path: Path) -> None:
    _prepare_env(tmp_path)
    product_id = _make_product()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=f"bytes:{request.url.path}".encode(), headers={"content-type": "image/png"})

    settings = get_settings()
    replicator = AssetReplicator(
        settings,
        db_session_module.get_session_factory(),
        AssetStorage(settings),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    primary = replicator.replicate(
        [
            AssetReference(url="https://old.example.test/a.png", is_primary=False, position=0),
            AssetReference(url="https://old.example.test/b.png", is_primary=True, position=1),
        ],
        product_id,
    )

    assert primary is not None
    assert primary.startswith(f"https://cdn.example.test/assets/products/{product_id}/")
    assert primary.endswith(".png")

    images = _images(product_id)
    assert [image.position for image in images] == [0, 1]
    assert [image.is_featured for image in images] == [False, True]
    assert images[1].url == primary

    key = primary.removeprefix("https://cdn.example.test/assets/")
    stored = settings.assets_root / key
    assert stored.read_bytes() == b"bytes:/b.png"


def test_unreachable_assets_are_skipped(tmp_path: Path) -> None:
    _prepare_env(tmp_path)
    product_id = _make_product()

    def handler(request: httpx.Request) -> httpx.Response:
        if "missing" in request.url.path:
            return httpx.Response(404)
        if "slow" in request.url.path:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, content=b"ok")

    settings = get_settings()
    replicator = AssetReplicator(
        settings,
        db_session_module.get_session_factory(),
        AssetStorage(settings),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    primary = replicator.replicate(
        [
            AssetReference(url="https://old.example.test/missing.jpg", is_primary=True, position=0),
            AssetReference(url="https://old.example.test/slow.jpg", position=1),
            AssetReference(url="https://old.example.test/fine.jpg", position=2),
        ],
        product_id,
    )

    assert primary is None
    images = _images(product_id)
    assert len(images) == 1
    assert images[0].position == 2
    assert images[0].is_featured is False


def test_transfers_run_in_windows_of_configured_size(tmp_path: Path, monkeypatch) -> None:
    _prepare_env(tmp_path)
    product_id = _make_product()
    lock = threading.Lock()
    in_flight = 0
    peak = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.01)
        with lock:
            in_flight -= 1
        return httpx.Response(200, content=b"img")

    settings = get_settings()
    replicator = AssetReplicator(
        settings,
        db_session_module.get_session_factory(),
        AssetStorage(settings),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    assets = [AssetReference(url=f"https://old.example.test/{index}.jpg", position=index) for index in range(23)]
    window_sizes: list[int] = []
    split = replicator.pool.windows

    def recording_windows(items):
        windows = split(items)
        window_sizes.extend(len(window) for window in windows)
        return windows

    monkeypatch.setattr(replicator.pool, "windows", recording_windows)

    replicator.replicate(assets, product_id)

    assert replicator.window_size == 5
    assert window_sizes == [5, 5, 5, 5, 3]
    assert 1 <= peak <= 5
    assert len(_images(product_id)) == 23


class _DripStream(httpx.SyncByteStream):
    def __init__(self, size: int, delay: float):
        self._size = size
        self._delay = delay

    def __iter__(self):
        for _ in range(self._size):
            time.sleep(self._delay)
            yield b"x"


def test_slow_transfer_is_cut_off_at_the_fetch_timeout(tmp_path: Path) -> None:
    _prepare_env(tmp_path)
    product_id = _make_product()

    def handler(request: httpx.Request) -> httpx.Response:
        if "drip" in request.url.path:
            return httpx.Response(200, stream=_DripStream(size=12, delay=0.2))
        return httpx.Response(200, content=b"fast")

    settings = get_settings().model_copy(update={"asset_fetch_timeout_seconds": 0.5})
    replicator = AssetReplicator(
        settings,
        db_session_module.get_session_factory(),
        AssetStorage(settings),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    started = time.monotonic()
    primary = replicator.replicate(
        [
            AssetReference(url="https://old.example.test/drip.jpg", is_primary=True, position=0),
            AssetReference(url="https://old.example.test/fast.jpg", position=1),
        ],
        product_id,
    )
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert primary is None
    images = _images(product_id)
    assert [image.position for image in images] == [1]
    stored = [path for path in (settings.assets_root / "products" / product_id).rglob("*") if path.is_file()]
    assert len(stored) == 1


def test_storage_rejects_keys_outside_root(tmp_path: Path) -> None:
    _prepare_env(tmp_path)
    storage = AssetStorage(get_settings())

    for key in ("../escape.jpg", "/abs/key.jpg", "products/~/x.jpg", ""):
        try:
            storage.resolve_path(key)
        except PathSafetyError:
            continue
        raise AssertionError(f"expected PathSafetyError for {key!r}")
