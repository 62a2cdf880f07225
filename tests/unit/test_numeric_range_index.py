import math
import unittest

from vsearch_data_model.field_values import NumericValue
from vsearch_db.indexing.numeric.numeric_range_index import NumericRangeIndex


class TestNumericRangeIndex(unittest.TestCase):

    def setUp(self):
        self.index = NumericRangeIndex(["price"])
        for key, price in (("a", 10.0), ("b", 20.0), ("c", 20.0), ("d", 30.0), ("e", -5.0)):
            self.index.add(key, {"price": NumericValue(price)})

    def test_inclusive_range(self):
        self.assertEqual({"a", "b", "c"}, self.index.range_ids("price", 10, 20))

    def test_exclusive_bounds(self):
        self.assertEqual({"b", "c"}, self.index.range_ids("price", 10, 30, low_exclusive=True, high_exclusive=True))

    def test_infinite_bounds(self):
        self.assertEqual({"e", "a"}, self.index.range_ids("price", -math.inf, 10))
        self.assertEqual({"d"}, self.index.range_ids("price", 25, math.inf))

    def test_inverted_range_is_empty(self):
        self.assertEqual(set(), self.index.range_ids("price", 30, 10))

    def test_delete(self):
        self.index.delete("b", {"price": NumericValue(20.0)})
        self.assertEqual({"c"}, self.index.range_ids("price", 20, 20))
        self.assertNotIn("b", self.index.get_all_ids())

    def test_update(self):
        self.index.update("a", {"price": NumericValue(10.0)}, {"price": NumericValue(100.0)})
        self.assertEqual({"a"}, self.index.range_ids("price", 99, 101))
        self.assertEqual(set(), self.index.range_ids("price", 9, 11))


if __name__ == '__main__':
    unittest.main()
