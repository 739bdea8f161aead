import json
import re
import unittest

from changeoverhq.core.database import (
    BOOKINGS_KEY,
    CHANGEOVERS_KEY,
    PROPERTIES_KEY,
    MemoryStore,
    property_config_key,
    property_seed_key,
    workspace_defaults_key,
)
from changeoverhq.core.changeovers import GenerationOutcome
from changeoverhq.core.system import (
    ChangeoverSystem,
    RecordNotFound,
    StorageWriteError,
    ValidationError,
)
from changeoverhq.core.templates import STARTER_CLEANING_BUNDLE, STARTER_WELCOME_PACK, TemplateCatalog


class StubbornStore(MemoryStore):
    """Memory store whose removals fail for keys containing a marker."""

    def __init__(self, marker: str) -> None:
        super().__init__()
        self.marker = marker

    def remove_key(self, key: str) -> bool:
        if self.marker in key:
            return False
        return super().remove_key(key)


class ChangeoverSystemTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStore()
        self.system = ChangeoverSystem(self.store)
        self.rose = self.system.create_property(name="Rose Cottage")
        self.seaview = self.system.create_property(name="Seaview Apartment")

    def tearDown(self) -> None:
        self.system.close()

    def _booking(self, prop: dict, check_in: str, check_out: str, guest: str = "Guest") -> dict:
        return self.system.add_booking(
            property_id=prop["id"],
            guest_name=guest,
            check_in_date=check_in,
            check_out_date=check_out,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    def test_create_property_slugifies_name(self) -> None:
        prop = self.system.create_property(name="Rose Cottage!!")
        self.assertRegex(prop["id"], r"^rose-cottage-[a-z0-9]{6}$")
        self.assertEqual(prop["name"], "Rose Cottage!!")
        self.assertTrue(prop["isActive"])
        self.assertTrue(prop["createdAt"].endswith("Z"))

    def test_create_property_rejects_short_names(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.system.create_property(name="  a  ")
        self.assertEqual(ctx.exception.field, "name")
        self.assertEqual(len(self.system.list_properties()), 2)

    def test_symbol_only_name_falls_back_to_property_slug(self) -> None:
        prop = self.system.create_property(name="!!??")
        self.assertRegex(prop["id"], r"^property-[a-z0-9]{6}$")

    def test_new_properties_are_prepended(self) -> None:
        stored = json.loads(self.store.read_key(PROPERTIES_KEY))
        self.assertEqual([row["id"] for row in stored], [self.seaview["id"], self.rose["id"]])

    def test_list_properties_puts_active_first(self) -> None:
        self.store.write_key(
            PROPERTIES_KEY,
            json.dumps(
                [
                    {"id": "old-active", "name": "Old", "createdAt": "2025-01-01T00:00:00.000Z", "isActive": True},
                    {"id": "new-inactive", "name": "New", "createdAt": "2025-06-01T00:00:00.000Z", "isActive": False},
                    {"id": "new-active", "name": "Newer", "createdAt": "2025-05-01T00:00:00.000Z", "isActive": True},
                ]
            ),
        )
        ids = [row["id"] for row in self.system.list_properties()]
        self.assertEqual(ids, ["new-active", "old-active", "new-inactive"])

    def test_legacy_rows_default_to_active_and_bad_rows_are_skipped(self) -> None:
        self.store.write_key(
            PROPERTIES_KEY,
            json.dumps(
                [
                    {"id": "legacy", "name": "Legacy", "createdAt": "2025-01-01T00:00:00.000Z"},
                    {"id": 7, "name": "Broken", "createdAt": "2025-01-01T00:00:00.000Z"},
                    "nonsense",
                ]
            ),
        )
        rows = self.system.list_properties()
        self.assertEqual(len(rows), 1)
        self.assertTrue(rows[0]["isActive"])

    def test_corrupt_property_list_reads_as_empty(self) -> None:
        self.store.write_key(PROPERTIES_KEY, "{not json")
        self.assertEqual(self.system.list_properties(), [])

    def test_deeply_nested_property_list_reads_as_empty(self) -> None:
        self.store.write_key(PROPERTIES_KEY, "[" * 200000 + "]" * 200000)
        self.assertEqual(self.system.list_properties(), [])

    def test_set_property_active(self) -> None:
        updated = self.system.set_property_active(self.rose["id"], False)
        self.assertFalse(updated["isActive"])
        ids = [row["id"] for row in self.system.list_properties()]
        self.assertEqual(ids[-1], self.rose["id"])
        with self.assertRaises(RecordNotFound):
            self.system.set_property_active("missing", True)

    def test_delete_property_cascades_scoped_keys(self) -> None:
        self.system.open_property_setup(self.rose["id"])
        self.system.save_property_setup(self.rose["id"], self.system.open_property_setup(self.rose["id"])["config"])
        self.store.write_key(f"changeoverhq.property.{self.rose['id']}.initialised", "true")
        self.system.open_property_setup(self.seaview["id"])

        result = self.system.delete_property(self.rose["id"])

        self.assertTrue(result["deleted"])
        self.assertEqual(len(result["removed_keys"]), 3)
        self.assertIsNone(self.store.read_key(property_config_key(self.rose["id"])))
        self.assertIsNone(self.store.read_key(property_seed_key(self.rose["id"])))
        self.assertIsNotNone(self.store.read_key(property_seed_key(self.seaview["id"])))
        self.assertNotIn(self.rose["id"], [row["id"] for row in self.system.list_properties()])
        self.assertFalse(self.system.has_saved_config(self.rose["id"]))

    def test_delete_property_survives_failed_key_removal(self) -> None:
        store = StubbornStore(marker=".seed.")
        system = ChangeoverSystem(store)
        prop = system.create_property(name="Harbour Loft")
        system.open_property_setup(prop["id"])

        result = system.delete_property(prop["id"])

        self.assertEqual(result["failed_keys"], [property_seed_key(prop["id"])])
        self.assertEqual(system.list_properties(), [])
        with self.assertRaises(RecordNotFound):
            system.delete_property(prop["id"])

    def test_failed_write_leaves_properties_unchanged(self) -> None:
        used = sum(len(k) + len(v) for k, v in self.store.data.items())
        self.store.quota_bytes = used
        with self.assertRaises(StorageWriteError):
            self.system.create_property(name="Quota Cottage")
        self.assertEqual(len(self.system.list_properties()), 2)

    # ------------------------------------------------------------------
    # Workspace defaults & seeding
    # ------------------------------------------------------------------
    def test_workspace_defaults_fall_back_to_starters(self) -> None:
        items = self.system.get_workspace_template("welcome-pack")
        self.assertEqual(items, [dict(item) for item in STARTER_WELCOME_PACK])
        self.assertFalse(self.system.workspace_defaults_saved(TemplateCatalog.WELCOME_PACK))

    def test_workspace_template_edits_persist_and_reset(self) -> None:
        items = self.system.update_workspace_template("cleaning-bundle", "toggle", item_id="sponges")
        self.assertFalse(next(i for i in items if i["id"] == "sponges")["enabled"])
        self.assertTrue(self.system.workspace_defaults_saved("cleaningBundle"))

        reloaded = self.system.get_workspace_template(TemplateCatalog.CLEANING_BUNDLE)
        self.assertEqual(reloaded, items)

        reset = self.system.reset_workspace_template("cleaning-bundle")
        self.assertEqual(reset, [dict(item) for item in STARTER_CLEANING_BUNDLE])
        # Resetting one catalog leaves the other alone.
        self.assertIsNone(self.store.read_key(workspace_defaults_key("welcome-pack")))

    def test_seed_uses_starters_when_no_defaults_saved(self) -> None:
        seed, persisted = self.system.ensure_property_seed(self.rose["id"])
        self.assertTrue(persisted)
        self.assertEqual(seed["welcomePack"], [dict(item) for item in STARTER_WELCOME_PACK])
        self.assertEqual(seed["cleaningBundle"], [dict(item) for item in STARTER_CLEANING_BUNDLE])

    def test_seed_uses_saved_workspace_defaults(self) -> None:
        self.system.update_workspace_template("welcome-pack", "set_quantity", item_id="milk", qty=4)
        seed, _ = self.system.ensure_property_seed(self.rose["id"])
        milk = next(item for item in seed["welcomePack"] if item["id"] == "milk")
        self.assertEqual(milk["qty"], 4)
        self.assertEqual(seed["cleaningBundle"], [dict(item) for item in STARTER_CLEANING_BUNDLE])

    def test_seed_is_not_overwritten_by_later_default_changes(self) -> None:
        first = self.system.open_property_setup(self.rose["id"])
        self.system.update_workspace_template("welcome-pack", "add_custom", name="Wine")
        self.system.update_workspace_template("welcome-pack", "toggle", item_id="milk")

        again = self.system.open_property_setup(self.rose["id"])
        self.assertEqual(again["config"]["welcomePack"], first["config"]["welcomePack"])

        fresh = self.system.open_property_setup(self.seaview["id"])
        names = [item["name"] for item in fresh["config"]["welcomePack"]]
        self.assertIn("Wine", names)

    def test_seed_copies_are_not_shared(self) -> None:
        seed, _ = self.system.ensure_property_seed(self.rose["id"])
        seed["welcomePack"][0]["name"] = "Changed in memory"
        again, _ = self.system.ensure_property_seed(self.rose["id"])
        self.assertEqual(again["welcomePack"][0]["name"], "Milk")

    def test_seed_write_failure_is_reported(self) -> None:
        used = sum(len(k) + len(v) for k, v in self.store.data.items())
        self.store.quota_bytes = used
        setup = self.system.open_property_setup(self.rose["id"])
        self.assertFalse(setup["seedPersisted"])
        self.assertEqual(setup["config"]["welcomePack"], [dict(item) for item in STARTER_WELCOME_PACK])
        self.assertIsNone(self.store.read_key(property_seed_key(self.rose["id"])))

    def test_open_property_setup_before_save(self) -> None:
        setup = self.system.open_property_setup(self.rose["id"])
        self.assertFalse(setup["saved"])
        self.assertEqual(setup["config"]["beds"], [{"type": "Double", "count": 1}, {"type": "Single", "count": 2}])
        self.assertEqual(setup["progress"]["doneCount"], 3)
        self.assertIsNone(setup["progress"]["nextIncomplete"])

    def test_seed_requires_known_property(self) -> None:
        with self.assertRaises(RecordNotFound):
            self.system.ensure_property_seed("missing")
        self.assertIsNone(self.store.read_key(property_seed_key("missing")))

    def test_saved_config_wins_over_seed(self) -> None:
        config = self.system.open_property_setup(self.rose["id"])["config"]
        config["beds"] = [{"type": "King", "count": 1}]
        config["welcomePack"] = [dict(item, enabled=False) for item in config["welcomePack"]]
        saved = self.system.save_property_setup(self.rose["id"], config)
        self.assertEqual(saved["progress"]["nextIncomplete"], "welcomePack")

        reopened = self.system.open_property_setup(self.rose["id"])
        self.assertTrue(reopened["saved"])
        self.assertEqual(reopened["config"]["beds"], [{"type": "King", "count": 1}])
        self.assertTrue(self.system.has_saved_config(self.rose["id"]))

    def test_save_property_setup_validates_shape(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.system.save_property_setup(
                self.rose["id"],
                {"beds": [{"type": "Hammock", "count": 1}], "welcomePack": [], "cleaningBundle": []},
            )
        self.assertEqual(ctx.exception.field, "beds")
        with self.assertRaises(RecordNotFound):
            self.system.open_property_setup("missing")

    def test_corrupt_config_falls_back_to_seed(self) -> None:
        self.store.write_key(property_config_key(self.rose["id"]), json.dumps({"beds": "two"}))
        setup = self.system.open_property_setup(self.rose["id"])
        self.assertFalse(setup["saved"])
        self.assertFalse(self.system.has_saved_config(self.rose["id"]))

    # ------------------------------------------------------------------
    # Bookings & changeovers
    # ------------------------------------------------------------------
    def test_add_booking_denormalises_property_name(self) -> None:
        booking = self.system.add_booking(
            property_id=self.rose["id"],
            guest_name=" Jamie S. ",
            check_in_date="2026-01-05",
            check_out_date="2026-01-08",
            channel="Airbnb",
        )
        self.assertTrue(booking["id"].startswith("bk-"))
        self.assertEqual(booking["propertyName"], "Rose Cottage")
        self.assertEqual(booking["guestName"], "Jamie S.")
        self.assertEqual(booking["channel"], "Airbnb")

    def test_add_booking_validation(self) -> None:
        with self.assertRaises(ValidationError):
            self._booking(self.rose, "2026-01-05", "08/01/2026")
        with self.assertRaises(ValidationError):
            self._booking(self.rose, "2026-01-05", "2026-01-08", guest="   ")
        with self.assertRaises(RecordNotFound):
            self.system.add_booking(
                property_id="missing",
                guest_name="Ghost",
                check_in_date="2026-01-05",
                check_out_date="2026-01-08",
            )

    def test_checkout_before_checkin_is_accepted(self) -> None:
        booking = self._booking(self.rose, "2026-01-10", "2026-01-08")
        self.assertEqual(booking["checkOutDate"], "2026-01-08")

    def test_bookings_listed_by_check_in(self) -> None:
        self._booking(self.rose, "2026-02-01", "2026-02-03")
        self._booking(self.seaview, "2026-01-01", "2026-01-04")
        dates = [row["checkInDate"] for row in self.system.list_bookings()]
        self.assertEqual(dates, ["2026-01-01", "2026-02-01"])

    def test_generate_without_bookings(self) -> None:
        result = self.system.generate_changeovers(today="2026-01-08")
        self.assertIs(result.outcome, GenerationOutcome.NO_BOOKINGS)
        self.assertIsNone(self.store.read_key(CHANGEOVERS_KEY))

    def test_generate_is_idempotent(self) -> None:
        self._booking(self.rose, "2026-01-05", "2026-01-08")
        self._booking(self.rose, "2026-01-06", "2026-01-08")
        self._booking(self.seaview, "2026-01-01", "2026-01-03")
        self._booking(self.rose, "2026-01-10", "2026-01-14")

        first = self.system.generate_changeovers(today="2026-01-08")
        self.assertIs(first.outcome, GenerationOutcome.GENERATED)
        self.assertEqual(len(first.generated), 3)
        self.assertEqual(first.message, "Generated 3 changeover(s).")

        second = self.system.generate_changeovers(today="2026-01-08")
        self.assertIs(second.outcome, GenerationOutcome.UP_TO_DATE)
        stored = self.system.list_changeovers()
        self.assertEqual(len(stored), 3)
        keys = {(row["propertyId"], row["date"]) for row in stored}
        self.assertEqual(len(keys), 3)
        self.assertEqual([row["status"] for row in stored], ["completed", "today", "upcoming"])

    def test_generate_picks_up_new_bookings_only(self) -> None:
        self._booking(self.rose, "2026-01-05", "2026-01-08")
        self.system.generate_changeovers(today="2026-01-01")
        self._booking(self.seaview, "2026-01-02", "2026-01-04")
        result = self.system.generate_changeovers(today="2026-01-01")
        self.assertEqual([row["propertyId"] for row in result.generated], [self.seaview["id"]])
        self.assertEqual([row["date"] for row in self.system.list_changeovers()], ["2026-01-04", "2026-01-08"])

    def test_generate_rejects_bad_today(self) -> None:
        with self.assertRaises(ValidationError):
            self.system.generate_changeovers(today="tomorrow")

    def test_generation_write_failure(self) -> None:
        self._booking(self.rose, "2026-01-05", "2026-01-08")
        used = sum(len(k) + len(v) for k, v in self.store.data.items())
        self.store.quota_bytes = used
        with self.assertRaises(StorageWriteError):
            self.system.generate_changeovers(today="2026-01-01")
        self.assertEqual(self.system.list_changeovers(), [])

    def test_get_changeover(self) -> None:
        self._booking(self.rose, "2026-01-05", "2026-01-08")
        generated = self.system.generate_changeovers(today="2026-01-01").generated[0]
        self.assertTrue(re.match(rf"^ch-{self.rose['id']}-2026-01-08-[a-z0-9]{{6}}$", generated["id"]))
        self.assertEqual(self.system.get_changeover(generated["id"]), generated)
        with self.assertRaises(RecordNotFound):
            self.system.get_changeover("ch-missing")

    def test_seed_demo_bookings(self) -> None:
        rows = self.system.seed_demo_bookings()
        self.assertEqual([row["guestName"] for row in rows], ["Jamie S.", "Taylor R.", "Alex P."])
        self.assertEqual(len(json.loads(self.store.read_key(BOOKINGS_KEY))), 3)
        result = self.system.generate_changeovers(today="2026-01-09")
        self.assertEqual(
            [(row["propertyName"], row["status"]) for row in result.changeovers],
            [("Rose Cottage", "completed"), ("Seaview Apartment", "today"), ("Rose Cottage", "upcoming")],
        )


if __name__ == "__main__":
    unittest.main()
