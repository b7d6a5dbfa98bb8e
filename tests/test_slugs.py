from __future__ import annotations

from catalogclone.core.slugs import generate_unique, seed_known_slugs, slugify_name


def test_free_base_is_returned_and_recorded() -> None:
    known: set[str] = set()
    assert generate_unique("chair", known) == "chair"
    assert known == {"chair"}


def test_collisions_get_increasing_suffixes() -> None:
    known = seed_known_slugs(["chair", "table", None, ""])
    assert known == {"chair", "table"}

    assert generate_unique("chair", known) == "chair-1"
    assert generate_unique("chair", known) == "chair-2"
    assert generate_unique("table", known) == "table-1"
    assert {"chair", "chair-1", "chair-2", "table", "table-1"} <= known


def test_suffix_skips_names_already_taken() -> None:
    known = {"lamp", "lamp-1", "lamp-2"}
    assert generate_unique("lamp", known) == "lamp-3"


def test_blank_base_is_rejected() -> None:
    try:
        generate_unique("", set())
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")


def test_slugify_name_falls_back_for_empty_titles() -> None:
    assert slugify_name("Cadeira Gamer Azul") == "cadeira-gamer-azul"
    assert slugify_name("Ação & Reação") == "acao-reacao"
    assert slugify_name("!!!") == "item"
