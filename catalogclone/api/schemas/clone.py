from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class CloneAccountRequest(BaseModel):
    """Credentials and identity of the account to create.

    Field rules are enforced by the orchestrator so that API callers and
    in-process callers get the same validation.
    """

    model_config = ConfigDict(extra="forbid")

    email: str
    password: str
    name: str
    slug: str


class CloneAccountResponse(BaseModel):
    new_account_id: str
    job_id: str | None
    total_items: int


class CopyProductsRequest(BaseModel):
    """Products to copy into an existing account; ``None`` copies them all."""

    model_config = ConfigDict(extra="forbid")

    target_account_id: str
    product_ids: list[str] | None = None


class CopyProductsResponse(BaseModel):
    copied_products: int
    copied_images: int
    copied_price_tiers: int
    copied_categories: int
