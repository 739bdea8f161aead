"""Core orchestration logic for the ChangeoverHQ workspace."""

from __future__ import annotations

import copy
import datetime as dt
import logging
from typing import Any

from . import templates
from .changeovers import (
    GenerationOutcome,
    GenerationResult,
    demo_bookings,
    generate_changeovers,
    is_iso_date,
    parse_booking,
    parse_changeover,
    parse_rows,
    sort_by,
)
from .database import (
    BOOKINGS_KEY,
    CHANGEOVERS_KEY,
    PROPERTIES_KEY,
    KeyValueStore,
    SQLiteStore,
    property_config_key,
    property_prefix,
    property_seed_key,
    read_json,
    workspace_defaults_key,
    write_json,
)
from .errors import RecordNotFound, StorageWriteError, ValidationError
from .ids import short_id, slugify
from .templates import TemplateCatalog

MIN_PROPERTY_NAME_LENGTH = 2

logger = logging.getLogger(__name__)

__all__ = [
    "ChangeoverSystem",
    "RecordNotFound",
    "StorageWriteError",
    "ValidationError",
    "parse_property",
]


def parse_property(value: Any) -> dict | None:
    if not isinstance(value, dict):
        return None
    for name in ("id", "name", "createdAt"):
        if not isinstance(value.get(name), str):
            return None
    # Rows written before the active flag existed count as active.
    is_active = value.get("isActive")
    if not isinstance(is_active, bool):
        is_active = True
    return {
        "id": value["id"],
        "name": value["name"],
        "createdAt": value["createdAt"],
        "isActive": is_active,
    }


class ChangeoverSystem:
    """High level façade over the properties, templates, bookings and changeovers."""

    def __init__(self, store: KeyValueStore | None = None) -> None:
        self.store = store if store is not None else SQLiteStore()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _write(self, key: str, value: Any) -> None:
        if not write_json(self.store, key, value):
            raise StorageWriteError("Could not save to storage. Try again.", key=key)

    def _timestamp(self) -> str:
        now = dt.datetime.now(dt.timezone.utc)
        return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _today(self) -> str:
        return dt.date.today().isoformat()

    def _load_properties(self) -> list[dict]:
        return parse_rows(read_json(self.store, PROPERTIES_KEY), parse_property)

    def _load_bookings(self) -> list[dict]:
        return parse_rows(read_json(self.store, BOOKINGS_KEY), parse_booking)

    def _load_changeovers(self) -> list[dict]:
        return parse_rows(read_json(self.store, CHANGEOVERS_KEY), parse_changeover)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    def create_property(self, *, name: str) -> dict:
        trimmed = name.strip() if isinstance(name, str) else ""
        if len(trimmed) < MIN_PROPERTY_NAME_LENGTH:
            raise ValidationError(
                "Give the property a name (at least 2 characters).", field="name"
            )
        row = {
            "id": f"{slugify(trimmed)}-{short_id()}",
            "name": trimmed,
            "createdAt": self._timestamp(),
            "isActive": True,
        }
        self._write(PROPERTIES_KEY, [row] + self._load_properties())
        logger.info("Created property %s", row["id"])
        return dict(row)

    def get_property(self, property_id: str) -> dict:
        for row in self._load_properties():
            if row["id"] == property_id:
                return row
        raise RecordNotFound("Property not found", field="property_id")

    def list_properties(self) -> list[dict]:
        """Return active properties first, newest first within each group."""

        rows = sorted(self._load_properties(), key=lambda row: row["createdAt"], reverse=True)
        rows.sort(key=lambda row: not row["isActive"])
        return rows

    def set_property_active(self, property_id: str, is_active: bool) -> dict:
        rows = self._load_properties()
        for row in rows:
            if row["id"] == property_id:
                row["isActive"] = bool(is_active)
                self._write(PROPERTIES_KEY, rows)
                return dict(row)
        raise RecordNotFound("Property not found", field="property_id")

    def has_saved_config(self, property_id: str) -> bool:
        return self.load_property_config(property_id) is not None

    def delete_property(self, property_id: str) -> dict:
        """Remove a property, then clear every key scoped to it.

        The key cleanup is best effort: a key that cannot be removed is logged
        and reported, but the property itself stays deleted.
        """

        rows = self._load_properties()
        remaining = [row for row in rows if row["id"] != property_id]
        if len(remaining) == len(rows):
            raise RecordNotFound("Property not found", field="property_id")
        self._write(PROPERTIES_KEY, remaining)

        prefix = property_prefix(property_id)
        removed: list[str] = []
        failed: list[str] = []
        for key in sorted(self.store.list_keys()):
            if not key.startswith(prefix):
                continue
            if self.store.remove_key(key):
                removed.append(key)
            else:
                failed.append(key)
        if failed:
            logger.warning("Property %s deleted but %d key(s) remain: %s", property_id, len(failed), failed)
        logger.info("Deleted property %s", property_id)
        return {"id": property_id, "deleted": True, "removed_keys": removed, "failed_keys": failed}

    # ------------------------------------------------------------------
    # Workspace defaults
    # ------------------------------------------------------------------
    def _saved_workspace_template(self, catalog: TemplateCatalog) -> list[dict] | None:
        return templates.parse_template_items(read_json(self.store, workspace_defaults_key(catalog.slug)))

    def workspace_defaults_saved(self, catalog: TemplateCatalog | str) -> bool:
        return self._saved_workspace_template(TemplateCatalog.parse(catalog)) is not None

    def get_workspace_template(self, catalog: TemplateCatalog | str) -> list[dict]:
        catalog = TemplateCatalog.parse(catalog)
        saved = self._saved_workspace_template(catalog)
        return saved if saved is not None else templates.starter_items(catalog)

    def save_workspace_template(self, catalog: TemplateCatalog | str, items: Any) -> list[dict]:
        catalog = TemplateCatalog.parse(catalog)
        items = templates.validate_items(items, "items")
        self._write(workspace_defaults_key(catalog.slug), items)
        return templates.clone_items(items)

    def reset_workspace_template(self, catalog: TemplateCatalog | str) -> list[dict]:
        catalog = TemplateCatalog.parse(catalog)
        return self.save_workspace_template(catalog, templates.starter_items(catalog))

    def update_workspace_template(
        self, catalog: TemplateCatalog | str, action: str, /, **params: Any
    ) -> list[dict]:
        catalog = TemplateCatalog.parse(catalog)
        items = templates.apply_item_action(self.get_workspace_template(catalog), action, **params)
        return self.save_workspace_template(catalog, items)

    # ------------------------------------------------------------------
    # Property setup
    # ------------------------------------------------------------------
    def _read_seed(self, property_id: str) -> dict | None:
        return templates.parse_seed(read_json(self.store, property_seed_key(property_id)))

    def ensure_property_seed(self, property_id: str) -> tuple[dict, bool]:
        """Return the property's template seed, capturing it on first use.

        The seed is a snapshot of the workspace defaults taken once. Later edits
        to those defaults only reach properties seeded afterwards. The flag
        tells the caller whether the seed is safely in storage.
        """

        self.get_property(property_id)
        existing = self._read_seed(property_id)
        if existing is not None:
            return copy.deepcopy(existing), True

        seed = {catalog.value: self.get_workspace_template(catalog) for catalog in TemplateCatalog}
        persisted = write_json(self.store, property_seed_key(property_id), seed)
        if persisted:
            logger.info("Seeded templates for property %s", property_id)
        else:
            logger.warning("Could not persist template seed for property %s", property_id)
        return copy.deepcopy(seed), persisted

    def load_property_config(self, property_id: str) -> dict | None:
        return templates.parse_config(read_json(self.store, property_config_key(property_id)))

    def open_property_setup(self, property_id: str) -> dict:
        """Build the working copy shown on a property's setup screens."""

        self.get_property(property_id)
        saved = self.load_property_config(property_id)
        seed, seed_persisted = self.ensure_property_seed(property_id)
        if saved is not None:
            config = saved
        else:
            config = {
                "beds": templates.default_beds(),
                TemplateCatalog.WELCOME_PACK.value: seed[TemplateCatalog.WELCOME_PACK.value],
                TemplateCatalog.CLEANING_BUNDLE.value: seed[TemplateCatalog.CLEANING_BUNDLE.value],
            }
        return {
            "propertyId": property_id,
            "saved": saved is not None,
            "seedPersisted": seed_persisted,
            "config": config,
            "progress": templates.setup_progress(config),
        }

    def save_property_setup(self, property_id: str, config: Any) -> dict:
        self.get_property(property_id)
        config = templates.validate_config(config)
        self._write(property_config_key(property_id), config)
        logger.info("Saved setup for property %s", property_id)
        return {
            "propertyId": property_id,
            "saved": True,
            "config": copy.deepcopy(config),
            "progress": templates.setup_progress(config),
        }

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def list_bookings(self) -> list[dict]:
        return sort_by(self._load_bookings(), "checkInDate")

    def add_booking(
        self,
        *,
        property_id: str,
        guest_name: str,
        check_in_date: str,
        check_out_date: str,
        channel: str | None = None,
    ) -> dict:
        prop = self.get_property(property_id)
        guest = guest_name.strip() if isinstance(guest_name, str) else ""
        if not guest:
            raise ValidationError("Guest name is required", field="guest_name")
        if not is_iso_date(check_in_date):
            raise ValidationError("Check-in must be a YYYY-MM-DD date", field="check_in_date")
        if not is_iso_date(check_out_date):
            raise ValidationError("Check-out must be a YYYY-MM-DD date", field="check_out_date")
        booking = {
            "id": f"bk-{short_id()}",
            "propertyId": prop["id"],
            "propertyName": prop["name"],
            "guestName": guest,
            "checkInDate": check_in_date,
            "checkOutDate": check_out_date,
        }
        if channel is not None and not isinstance(channel, str):
            raise ValidationError("Channel must be text", field="channel")
        if channel and channel.strip():
            booking["channel"] = channel.strip()
        self._write(BOOKINGS_KEY, self._load_bookings() + [booking])
        return dict(booking)

    def seed_demo_bookings(self) -> list[dict]:
        rows = demo_bookings()
        self._write(BOOKINGS_KEY, rows)
        return sort_by(rows, "checkInDate")

    # ------------------------------------------------------------------
    # Changeovers
    # ------------------------------------------------------------------
    def list_changeovers(self) -> list[dict]:
        return sort_by(self._load_changeovers(), "date")

    def get_changeover(self, changeover_id: str) -> dict:
        for row in self._load_changeovers():
            if row["id"] == changeover_id:
                return row
        raise RecordNotFound("Changeover not found", field="changeover_id")

    def generate_changeovers(self, *, today: str | None = None) -> GenerationResult:
        today = today or self._today()
        if not is_iso_date(today):
            raise ValidationError("today must be a YYYY-MM-DD date", field="today")
        result = generate_changeovers(self._load_bookings(), self._load_changeovers(), today)
        if result.outcome is GenerationOutcome.GENERATED:
            self._write(CHANGEOVERS_KEY, result.changeovers)
            logger.info("Generated %d changeover(s)", len(result.generated))
        return result

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
