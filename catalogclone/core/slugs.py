from __future__ import annotations

from typing import Iterable, MutableSet

from slugify import slugify


def slugify_name(value: str) -> str:
    slug = slugify(value or "")
    return slug or "item"


def seed_known_slugs(existing: Iterable[str | None]) -> set[str]:
    return {slug for slug in existing if slug}


def generate_unique(base: str, known: MutableSet[str]) -> str:
    """Return ``base`` or the first free ``base-N`` and record it in ``known``.

    ``known`` is mutated in place so repeated calls during one batch never
    hand out the same slug twice.
    """
    if not base:
        raise ValueError("base slug cannot be blank")

    candidate = base
    counter = 1
    while candidate in known:
        candidate = f"{base}-{counter}"
        counter += 1
    known.add(candidate)
    return candidate
