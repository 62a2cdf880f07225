import unittest

from vsearch_data_model.field_values import TagValue
from vsearch_db.indexing.text.tag_index import TagIndex


class TestTagIndex(unittest.TestCase):

    def setUp(self):
        self.index = TagIndex({"category": False, "sku": True})
        self.index.add("p:1", {"category": TagValue(frozenset({"computer", "sale"})), "sku": TagValue(frozenset({"AB-1"}))})
        self.index.add("p:2", {"category": TagValue(frozenset({"book"}))})
        self.index.add("p:3", {"category": TagValue(frozenset({"computer"})), "sku": TagValue(frozenset({"ab-1"}))})

    def test_exact_match_union(self):
        self.assertEqual({"p:1", "p:3"}, self.index.matching_ids("category", ["computer"]))
        self.assertEqual({"p:1", "p:2", "p:3"}, self.index.matching_ids("category", ["book", "computer"]))
        self.assertEqual(set(), self.index.matching_ids("category", ["comp"]))

    def test_case_folding_per_field(self):
        self.assertEqual({"p:1", "p:3"}, self.index.matching_ids("category", [" Computer "]))
        self.assertEqual({"p:1"}, self.index.matching_ids("sku", ["AB-1"]))
        self.assertEqual({"p:3"}, self.index.matching_ids("sku", ["ab-1"]))

    def test_delete(self):
        self.index.delete("p:1", {"category": TagValue(frozenset({"computer", "sale"})),
                                  "sku": TagValue(frozenset({"AB-1"}))})
        self.assertEqual({"p:3"}, self.index.matching_ids("category", ["computer"]))
        self.assertNotIn("sale", self.index.tag_values("category"))
        self.assertEqual({"p:2", "p:3"}, self.index.get_all_ids())


if __name__ == '__main__':
    unittest.main()
