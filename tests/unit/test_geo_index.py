import unittest

from vsearch_data_model.field_values import GeoValue
from vsearch_db.indexing.geo.geo_index import GeoIndex, haversine_distance, to_meters


class TestGeoIndex(unittest.TestCase):

    def setUp(self):
        self.index = GeoIndex(["location"])
        # San Francisco, Oakland, Los Angeles
        self.index.add("sf", {"location": GeoValue(-122.4194, 37.7749)})
        self.index.add("oak", {"location": GeoValue(-122.2711, 37.8044)})
        self.index.add("la", {"location": GeoValue(-118.2437, 34.0522)})

    def test_haversine(self):
        d = haversine_distance(-122.4194, 37.7749, -118.2437, 34.0522)
        self.assertAlmostEqual(559, d / 1000.0, delta=2)
        self.assertEqual(0.0, haversine_distance(1.0, 2.0, 1.0, 2.0))

    def test_units(self):
        self.assertEqual(1500.0, to_meters(1.5, "km"))
        self.assertAlmostEqual(1609.34, to_meters(1, "MI"))
        with self.assertRaises(ValueError):
            to_meters(1, "parsec")

    def test_radius_query(self):
        self.assertEqual({"sf", "oak"}, self.index.radius_ids("location", -122.4194, 37.7749, 20, "km"))
        self.assertEqual({"sf"}, self.index.radius_ids("location", -122.4194, 37.7749, 1, "mi"))
        self.assertEqual({"sf", "oak", "la"}, self.index.radius_ids("location", -122.4194, 37.7749, 600, "km"))

    def test_delete(self):
        self.index.delete("oak", {"location": GeoValue(-122.2711, 37.8044)})
        self.assertEqual({"sf"}, self.index.radius_ids("location", -122.4194, 37.7749, 20, "km"))
        self.assertEqual({"sf", "la"}, self.index.get_all_ids())


if __name__ == '__main__':
    unittest.main()
