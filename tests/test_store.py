import os
import tempfile
import unittest

from tripspot.models import Place, Route, Settings
from tripspot.store import EXPORT_VERSION, Store


def _place(pid, lat=30.6, lon=104.0):
    return Place(id=pid, name=f"place {pid}", city="成都", category="spot", note="", latitude=lat, longitude=lon)


class TestStore(unittest.TestCase):
    def setUp(self):
        self.store = Store(":memory:", defaults=Settings(amap_key="seed"))

    def tearDown(self):
        self.store.close()

    def test_place_crud(self):
        self.store.add_place(_place("a"))
        self.store.add_place(_place("b"))
        self.assertEqual([p.id for p in self.store.list_places()], ["a", "b"])

        edited = self.store.update_place(_place("a", lat=31.0, lon=105.0))
        self.assertEqual(self.store.get_place("a"), edited)

        self.assertTrue(self.store.delete_place("a"))
        self.assertFalse(self.store.delete_place("a"))
        self.assertIsNone(self.store.get_place("a"))
        self.assertEqual([p.id for p in self.store.list_places()], ["b"])

    def test_duplicate_id_rejected(self):
        self.store.add_place(_place("a"))
        with self.assertRaises(ValueError):
            self.store.add_place(_place("a"))

    def test_update_unknown_place(self):
        with self.assertRaises(KeyError):
            self.store.update_place(_place("ghost"))

    def test_unlocated_place_round_trips(self):
        self.store.add_place(Place(id="u", name="手动添加"))
        self.assertFalse(self.store.get_place("u").located)

    def test_deleting_routed_place_clears_route(self):
        self.store.replace_places([_place("a"), _place("b")])
        self.store.save_route(Route(sequence=["a", "b"], total_duration_minutes=10, advice="x"))
        self.assertIsNotNone(self.store.get_route())

        self.store.delete_place("b")
        self.assertIsNone(self.store.get_route())

    def test_editing_place_clears_route(self):
        self.store.replace_places([_place("a"), _place("b")])
        self.store.save_route(Route(sequence=["a", "b"], total_duration_minutes=10))
        self.store.update_place(_place("a", lat=31.0))
        self.assertIsNone(self.store.get_route())

    def test_route_must_reference_stored_places(self):
        self.store.add_place(_place("a"))
        with self.assertRaises(ValueError):
            self.store.save_route(Route(sequence=["a", "missing"]))
        with self.assertRaises(ValueError):
            self.store.save_route(Route(sequence=["a", "a"]))
        self.assertIsNone(self.store.get_route())

    def test_settings_seeded_and_saved(self):
        self.assertEqual(self.store.get_settings().amap_key, "seed")
        self.store.save_settings(Settings(amap_key="k2", llm_api_key="sk", llm_model="m"))
        saved = self.store.get_settings()
        self.assertEqual((saved.amap_key, saved.llm_api_key, saved.llm_model), ("k2", "sk", "m"))

    def test_subscribers_receive_snapshots(self):
        seen = []
        unsubscribe = self.store.subscribe("places", lambda places: seen.append([p.id for p in places]))
        self.store.add_place(_place("a"))
        self.store.add_place(_place("b"))
        unsubscribe()
        self.store.add_place(_place("c"))
        self.assertEqual(seen, [["a"], ["a", "b"]])

    def test_route_subscriber_sees_clearing(self):
        self.store.replace_places([_place("a"), _place("b")])
        seen = []
        self.store.subscribe("route", seen.append)
        route = Route(sequence=["a", "b"], total_duration_minutes=3)
        self.store.save_route(route)
        self.store.delete_place("a")
        self.assertEqual(seen, [route, None])

    def test_transaction_notifies_once_with_final_state(self):
        self.store.replace_places([_place("a"), _place("b")])
        self.store.save_route(Route(sequence=["a", "b"], total_duration_minutes=3))
        places_seen, routes_seen = [], []
        self.store.subscribe("places", lambda places: places_seen.append([p.id for p in places]))
        self.store.subscribe("route", routes_seen.append)

        with self.store.transaction():
            self.store.replace_places([_place("c"), _place("d")])
            self.store.save_route(Route(sequence=["d", "c"], total_duration_minutes=7))
            self.assertEqual(places_seen, [])

        self.assertEqual(places_seen, [["c", "d"]])
        self.assertEqual([r.sequence for r in routes_seen], [["d", "c"]])

    def test_rollback_discards_writes_and_notifications(self):
        self.store.add_place(_place("a"))
        seen = []
        self.store.subscribe("places", seen.append)
        with self.assertRaises(RuntimeError):
            with self.store.transaction():
                self.store.add_place(_place("b"))
                raise RuntimeError("abort")
        self.assertEqual([p.id for p in self.store.list_places()], ["a"])
        self.assertEqual(seen, [])

    def test_failing_listener_does_not_break_writes(self):
        def broken(_):
            raise RuntimeError("listener bug")

        self.store.subscribe("places", broken)
        self.store.add_place(_place("a"))
        self.assertEqual(len(self.store.list_places()), 1)

    def test_unknown_topic(self):
        with self.assertRaises(ValueError):
            self.store.subscribe("weather", print)

    def test_export_import_round_trip(self):
        self.store.replace_places([_place("a", 30.1, 104.1), Place(id="b", name="未定位", category="food")])
        self.store.save_route(Route(sequence=["a"], total_duration_minutes=42, advice="走吧"))
        document = self.store.export_document()

        self.assertEqual(document["version"], EXPORT_VERSION)
        self.assertIn("exportedAt", document)
        self.assertEqual(document["locations"][1]["lat"], 0)

        other = Store(":memory:")
        try:
            other.import_document(document)
            self.assertEqual(other.list_places(), self.store.list_places())
            self.assertEqual(other.get_route(), self.store.get_route())
            self.assertEqual(other.get_route().total_duration_minutes, 42)
        finally:
            other.close()

    def test_import_rejects_unknown_version(self):
        with self.assertRaises(ValueError):
            self.store.import_document({"version": 99, "locations": [], "route": None})

    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "trip.sqlite")
            first = Store(path)
            first.add_place(_place("a"))
            first.close()

            second = Store(path)
            try:
                self.assertEqual([p.id for p in second.list_places()], ["a"])
            finally:
                second.close()


if __name__ == "__main__":
    unittest.main()
