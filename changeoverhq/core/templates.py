"""Welcome pack, cleaning bundle and bed templates.

Everything here is a pure function over plain ``dict`` records shaped like the
persisted JSON (``{"id", "name", "qty", "enabled", "isCustom"}`` for items and
``{"type", "count"}`` for beds). Edits return new lists and never mutate their
input, so a caller can hold on to the previous snapshot.
"""

from __future__ import annotations

import enum
import inspect
from typing import Any, Callable, Iterable, Sequence

from .errors import ValidationError
from .ids import short_id


class TemplateCatalog(str, enum.Enum):
    """The two item catalogs. Values double as the config field names."""

    WELCOME_PACK = "welcomePack"
    CLEANING_BUNDLE = "cleaningBundle"

    @property
    def slug(self) -> str:
        return "welcome-pack" if self is TemplateCatalog.WELCOME_PACK else "cleaning-bundle"

    @classmethod
    def parse(cls, value: "str | TemplateCatalog") -> "TemplateCatalog":
        if isinstance(value, cls):
            return value
        for catalog in cls:
            if value in (catalog.value, catalog.slug, catalog.name.lower()):
                return catalog
        raise ValidationError(f"Unknown template catalog: {value}", field="catalog")


STARTER_WELCOME_PACK: tuple[dict, ...] = (
    {"id": "milk", "name": "Milk", "qty": 1, "enabled": True},
    {"id": "eggs", "name": "Eggs", "qty": 1, "enabled": False},
    {"id": "biscuits", "name": "Biscuits", "qty": 2, "enabled": True},
    {"id": "tea", "name": "Tea bags", "qty": 1, "enabled": True},
)

STARTER_CLEANING_BUNDLE: tuple[dict, ...] = (
    {"id": "toilet-roll", "name": "Toilet roll", "qty": 2, "enabled": True},
    {"id": "bin-bags", "name": "Bin bags", "qty": 2, "enabled": True},
    {"id": "dishwasher-tabs", "name": "Dishwasher tabs", "qty": 3, "enabled": True},
    {"id": "sponges", "name": "Sponges", "qty": 1, "enabled": True},
)

BED_TYPES = ("Double", "King", "Single", "Bunk", "Sofa bed")
DEFAULT_BEDS: tuple[dict, ...] = (
    {"type": "Double", "count": 1},
    {"type": "Single", "count": 2},
)

SETUP_SECTIONS = ("beds", TemplateCatalog.WELCOME_PACK.value, TemplateCatalog.CLEANING_BUNDLE.value)


def clone_items(items: Iterable[dict]) -> list[dict]:
    return [dict(item) for item in items]


def starter_items(catalog: TemplateCatalog | str) -> list[dict]:
    catalog = TemplateCatalog.parse(catalog)
    if catalog is TemplateCatalog.WELCOME_PACK:
        return clone_items(STARTER_WELCOME_PACK)
    return clone_items(STARTER_CLEANING_BUNDLE)


def default_beds() -> list[dict]:
    return [dict(row) for row in DEFAULT_BEDS]


# ----------------------------------------------------------------------
# Shape checks for persisted data
# ----------------------------------------------------------------------
def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def parse_template_item(value: Any) -> dict | None:
    if not isinstance(value, dict):
        return None
    if not isinstance(value.get("id"), str) or not isinstance(value.get("name"), str):
        return None
    if not _is_count(value.get("qty")) or not isinstance(value.get("enabled"), bool):
        return None
    item = {
        "id": value["id"],
        "name": value["name"],
        "qty": value["qty"],
        "enabled": value["enabled"],
    }
    if "isCustom" in value:
        if not isinstance(value["isCustom"], bool):
            return None
        item["isCustom"] = value["isCustom"]
    return item


def parse_template_items(value: Any) -> list[dict] | None:
    """Return a clean copy of an item list, or ``None`` if any entry is malformed."""

    if not isinstance(value, list):
        return None
    items = []
    for entry in value:
        item = parse_template_item(entry)
        if item is None:
            return None
        items.append(item)
    return items


def parse_beds(value: Any) -> list[dict] | None:
    if not isinstance(value, list):
        return None
    beds = []
    for entry in value:
        if not isinstance(entry, dict):
            return None
        if entry.get("type") not in BED_TYPES or not _is_count(entry.get("count")):
            return None
        beds.append({"type": entry["type"], "count": entry["count"]})
    return beds


def parse_seed(value: Any) -> dict | None:
    if not isinstance(value, dict):
        return None
    seed = {}
    for catalog in TemplateCatalog:
        items = parse_template_items(value.get(catalog.value))
        if items is None:
            return None
        seed[catalog.value] = items
    return seed


def parse_config(value: Any) -> dict | None:
    if not isinstance(value, dict):
        return None
    beds = parse_beds(value.get("beds"))
    seed = parse_seed(value)
    if beds is None or seed is None:
        return None
    return {"beds": beds, **seed}


def validate_items(value: Any, field: str) -> list[dict]:
    items = parse_template_items(value)
    if items is None:
        raise ValidationError(f"{field} must be a list of template items", field=field)
    return items


def validate_config(value: Any) -> dict:
    """Like :func:`parse_config` but names the offending section."""

    if not isinstance(value, dict):
        raise ValidationError("Property setup must be an object", field="config")
    beds = parse_beds(value.get("beds"))
    if beds is None:
        raise ValidationError("beds must be a list of bed rows", field="beds")
    config = {"beds": beds}
    for catalog in TemplateCatalog:
        config[catalog.value] = validate_items(value.get(catalog.value), catalog.value)
    return config


# ----------------------------------------------------------------------
# Item actions
# ----------------------------------------------------------------------
def _non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, str) and value.strip().isdecimal():
        value = int(value)
    if not _is_count(value):
        raise ValidationError(f"{field} must be a whole number of zero or more", field=field)
    return value


def _item_index(items: Sequence[dict], item_id: str) -> int:
    for index, item in enumerate(items):
        if item["id"] == item_id:
            return index
    raise ValidationError("Template item not found", field="item_id")


def _replace(items: Sequence[dict], index: int, **changes: Any) -> list[dict]:
    updated = clone_items(items)
    updated[index].update(changes)
    return updated


def toggle_item(items: Sequence[dict], item_id: str) -> list[dict]:
    index = _item_index(items, item_id)
    return _replace(items, index, enabled=not items[index]["enabled"])


def set_item_quantity(items: Sequence[dict], item_id: str, qty: Any) -> list[dict]:
    qty = _non_negative_int(qty, "qty")
    return _replace(items, _item_index(items, item_id), qty=qty)


def rename_item(items: Sequence[dict], item_id: str, name: Any) -> list[dict]:
    if not isinstance(name, str):
        raise ValidationError("name must be text", field="name")
    return _replace(items, _item_index(items, item_id), name=name)


def new_custom_item_id(items: Sequence[dict]) -> str:
    taken = {item["id"] for item in items}
    while True:
        candidate = f"custom-{short_id(8)}"
        if candidate not in taken:
            return candidate


def add_custom_item(items: Sequence[dict], name: str = "", qty: Any = 1) -> list[dict]:
    if not isinstance(name, str):
        raise ValidationError("name must be text", field="name")
    item = {
        "id": new_custom_item_id(items),
        "name": name,
        "qty": _non_negative_int(qty, "qty"),
        "enabled": True,
        "isCustom": True,
    }
    return clone_items(items) + [item]


def remove_custom_item(items: Sequence[dict], item_id: str) -> list[dict]:
    index = _item_index(items, item_id)
    if not items[index].get("isCustom"):
        raise ValidationError(
            "Only custom items can be removed; disable built-in items instead", field="item_id"
        )
    return [dict(item) for position, item in enumerate(items) if position != index]


ITEM_ACTIONS: dict[str, Callable[..., list[dict]]] = {
    "toggle": toggle_item,
    "set_quantity": set_item_quantity,
    "rename": rename_item,
    "add_custom": add_custom_item,
    "remove": remove_custom_item,
}


# ----------------------------------------------------------------------
# Bed actions
# ----------------------------------------------------------------------
def _bed_index(beds: Sequence[dict], index: Any) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(beds):
        raise ValidationError("Bed row not found", field="index")
    return index


def _bed_type(value: Any) -> str:
    if value not in BED_TYPES:
        raise ValidationError(f"Bed type must be one of: {', '.join(BED_TYPES)}", field="bed_type")
    return value


def add_bed_row(beds: Sequence[dict], bed_type: str = "Double", count: Any = 1) -> list[dict]:
    row = {"type": _bed_type(bed_type), "count": _non_negative_int(count, "count")}
    return [dict(existing) for existing in beds] + [row]


def remove_bed_row(beds: Sequence[dict], index: int) -> list[dict]:
    index = _bed_index(beds, index)
    return [dict(row) for position, row in enumerate(beds) if position != index]


def set_bed_count(beds: Sequence[dict], index: int, count: Any) -> list[dict]:
    index = _bed_index(beds, index)
    return _replace(beds, index, count=_non_negative_int(count, "count"))


def set_bed_type(beds: Sequence[dict], index: int, bed_type: str) -> list[dict]:
    index = _bed_index(beds, index)
    return _replace(beds, index, type=_bed_type(bed_type))


BED_ACTIONS: dict[str, Callable[..., list[dict]]] = {
    "add": add_bed_row,
    "remove": remove_bed_row,
    "set_count": set_bed_count,
    "set_type": set_bed_type,
}


def _dispatch(
    table: dict[str, Callable[..., list[dict]]], rows: Sequence[dict], action: str, params: dict
) -> list[dict]:
    handler = table.get(action) if isinstance(action, str) else None
    if handler is None:
        raise ValidationError(f"Unknown action: {action}", field="action")
    try:
        inspect.signature(handler).bind(rows, **params)
    except TypeError as exc:
        raise ValidationError(f"Invalid parameters for {action}: {exc}", field="action") from exc
    return handler(rows, **params)


def apply_item_action(items: Sequence[dict], action: str, /, **params: Any) -> list[dict]:
    return _dispatch(ITEM_ACTIONS, items, action, params)


def apply_bed_action(beds: Sequence[dict], action: str, /, **params: Any) -> list[dict]:
    return _dispatch(BED_ACTIONS, beds, action, params)


# ----------------------------------------------------------------------
# Derived state
# ----------------------------------------------------------------------
def enabled_items(items: Iterable[dict]) -> list[dict]:
    return [item for item in items if item["enabled"]]


def beds_total(beds: Iterable[dict]) -> int:
    return sum(row["count"] for row in beds)


def summarize_items(items: Iterable[dict], sample_size: int = 3) -> str:
    enabled = enabled_items(items)
    if not enabled:
        return "Not set (enable at least 1 item)"
    sample = " • ".join(item["name"] for item in enabled[:sample_size])
    more = f" • +{len(enabled) - sample_size} more" if len(enabled) > sample_size else ""
    return f"Configured ✓ • {sample}{more}"


def summarize_beds(beds: Sequence[dict]) -> str:
    if beds_total(beds) <= 0:
        return "Not set (add at least 1 bed)"
    return "Configured ✓ • " + ", ".join(f"{row['count']} {row['type']}" for row in beds)


def section_status(config: dict) -> dict[str, bool]:
    return {
        "beds": beds_total(config["beds"]) > 0,
        TemplateCatalog.WELCOME_PACK.value: bool(enabled_items(config[TemplateCatalog.WELCOME_PACK.value])),
        TemplateCatalog.CLEANING_BUNDLE.value: bool(
            enabled_items(config[TemplateCatalog.CLEANING_BUNDLE.value])
        ),
    }


def next_incomplete_section(config: dict, current: str | None = None) -> str | None:
    """First unconfigured section after ``current``, wrapping to the start."""

    status = section_status(config)
    start = SETUP_SECTIONS.index(current) + 1 if current in SETUP_SECTIONS else 0
    for section in SETUP_SECTIONS[start:] + SETUP_SECTIONS[:start]:
        if not status[section]:
            return section
    return None


def setup_progress(config: dict) -> dict:
    status = section_status(config)
    return {
        "sections": status,
        "summaries": {
            "beds": summarize_beds(config["beds"]),
            TemplateCatalog.WELCOME_PACK.value: summarize_items(config[TemplateCatalog.WELCOME_PACK.value]),
            TemplateCatalog.CLEANING_BUNDLE.value: summarize_items(
                config[TemplateCatalog.CLEANING_BUNDLE.value]
            ),
        },
        "doneCount": sum(status.values()),
        "total": len(SETUP_SECTIONS),
        "nextIncomplete": next_incomplete_section(config),
    }
