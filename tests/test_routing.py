import asyncio

import pytest

from comandera.errors import message
from comandera.models import Category, Destination, Printer
from comandera.routing import (
    apply_auto_configuration,
    auto_configure,
    destination_for,
    find_printer,
    general_printer,
    printer_destination,
    printer_for_destination,
    printer_matches,
)
from comandera.store import MemoryStore

from conftest import BRANCH, printer_row


def _printers(*names):
    return [Printer.from_row(printer_row(f"p{i}", name)) for i, name in enumerate(names)]


@pytest.mark.parametrize("category", [None, "", "Bebidas", "Sushi Roll", "Parrilla Mixta", "Entradas"])
def test_destination_for_is_total(category):
    assert destination_for(category) in set(Destination)


@pytest.mark.parametrize("category,expected", [
    (None, Destination.KITCHEN),
    ("", Destination.KITCHEN),
    ("Entradas", Destination.KITCHEN),
    ("Bebidas", Destination.BAR),
    ("CERVEZAS ARTESANALES", Destination.BAR),
    ("Sushi Roll", Destination.SUSHI_BAR),
    ("Tempura", Destination.SUSHI_BAR),
    ("Parrilla Mixta", Destination.GRILL),
    ("Steaks", Destination.GRILL),
])
def test_destination_for(category, expected):
    assert destination_for(category) == expected


@pytest.mark.parametrize("name,expected", [
    ("Cocina Caliente", Destination.KITCHEN),
    ("Kitchen 1", Destination.KITCHEN),
    ("Bar Principal", Destination.BAR),
    ("Barra Sushi", Destination.SUSHI_BAR),
    ("Parrilla", Destination.GRILL),
    ("Barbacoa", Destination.GRILL),
    ("Cocina y Bar", Destination.BAR),
    ("Caja", None),
    (None, None),
])
def test_printer_destination(name, expected):
    assert printer_destination(name) == expected


def test_printer_matches_uses_name_keywords():
    assert printer_matches("BAR 2", Destination.BAR)
    assert printer_matches("Barra Sushi", Destination.SUSHI_BAR)
    assert not printer_matches("Caja", Destination.KITCHEN)
    assert not printer_matches(None, Destination.BAR)


@pytest.mark.parametrize("destination", [Destination.KITCHEN, Destination.BAR])
def test_printer_matches_every_area_in_the_name(destination):
    assert printer_matches("Cocina y Bar", destination)
    assert not printer_matches("Cocina y Bar", Destination.GRILL)


def test_printer_matches_grill_synonyms():
    assert printer_matches("Barbacoa", Destination.GRILL)
    assert printer_matches("BBQ Patio", Destination.GRILL)


def test_find_printer_uses_any_matching_keyword():
    printers = _printers("Caja", "Cocina y Bar")
    assert find_printer(printers, Destination.BAR).name == "Cocina y Bar"
    assert find_printer(printers, Destination.KITCHEN).name == "Cocina y Bar"
    assert find_printer(printers, Destination.SUSHI_BAR) is None


def test_general_printer_prefers_undedicated():
    printers = _printers("Bar Principal", "Caja", "Cocina")
    assert general_printer(printers).name == "Caja"
    assert general_printer(_printers("Bar Principal", "Cocina")).name == "Bar Principal"
    assert general_printer([]) is None


def test_kitchen_falls_back_to_general_printer():
    printers = _printers("Bar Principal", "Caja")
    assert printer_for_destination(printers, Destination.KITCHEN).name == "Caja"


def test_kitchen_never_falls_back_to_area_printer():
    printers = _printers("Bar Principal", "Barra Sushi")
    assert printer_for_destination(printers, Destination.KITCHEN) is None


def test_auto_configure_plan():
    printers = _printers("Bar Principal", "Cocina")
    categories = [
        Category("c1", "Bebidas"),
        Category("c2", "Entradas"),
        Category("c3", "Sushi"),
    ]

    result = auto_configure(categories, printers)

    assert result.updates == [("c1", "p0"), ("c2", "p1")]
    assert result.updated_count == 2
    assert result.unresolved == ["Sushi"]


def test_auto_configure_skips_categories_already_assigned():
    printers = _printers("Bar Principal", "Cocina")
    result = auto_configure([Category("c1", "Bebidas", printer_id="p0")], printers)
    assert result.updated_count == 0
    assert result.to_dict() == {"updatedCount": 0, "unresolved": []}


def test_auto_configure_without_printers():
    result = auto_configure([Category("c1", "Bebidas")], [])
    assert result.error == message("no_printers")
    assert result.to_dict() == {"error": message("no_printers")}


def test_apply_auto_configuration_is_idempotent():
    store = MemoryStore(
        printers=[printer_row("p-bar", "Bar Principal"), printer_row("p-kitchen", "Cocina")],
        categories=[
            {"id": "c1", "name": "Bebidas", "printer_id": None},
            {"id": "c2", "name": "Entradas", "printer_id": None},
            {"id": "c3", "name": "Sushi", "printer_id": None},
        ],
    )

    first = asyncio.run(apply_auto_configuration(store, BRANCH))
    second = asyncio.run(apply_auto_configuration(store, BRANCH))

    assert first.updated_count == 2
    assert {row["id"]: row["printer_id"] for row in store.categories} == {
        "c1": "p-bar",
        "c2": "p-kitchen",
        "c3": None,
    }
    assert second.to_dict() == {"updatedCount": 0, "unresolved": ["Sushi"]}


def test_apply_auto_configuration_writes_nothing_without_printers():
    store = MemoryStore(categories=[{"id": "c1", "name": "Bebidas", "printer_id": None}])

    result = asyncio.run(apply_auto_configuration(store, BRANCH))

    assert result.error == message("no_printers")
    assert "update_category_printer" not in store.calls


def test_apply_auto_configuration_without_branch():
    store = MemoryStore()
    result = asyncio.run(apply_auto_configuration(store, None))
    assert result.error == message("no_printers")
    assert store.calls == []


def test_apply_auto_configuration_skips_invalid_printer_rows():
    store = MemoryStore(
        printers=[printer_row("p-broken", "Bar Viejo", port="9100a"), printer_row("p-bar", "Bar Principal")],
        categories=[{"id": "c1", "name": "Bebidas", "printer_id": None}],
    )

    result = asyncio.run(apply_auto_configuration(store, BRANCH))

    assert result.updated_count == 1
    assert store.categories[0]["printer_id"] == "p-bar"
