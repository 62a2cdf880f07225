import unittest
from unittest.mock import MagicMock

from vsearch_data_model.field_values import FieldType, TagValue
from vsearch_data_model.index_definition import IndexDefinition, FieldSpec
from vsearch_data_model.search_result import SearchOptions
from vsearch_db.config import EngineSettings
from vsearch_db.engine.search_engine import SearchEngine


class TestCrossIndexRollback(unittest.TestCase):
    """A write failing in one index must leave the store and every index as before."""

    def setUp(self):
        self.engine = SearchEngine(EngineSettings(hnsw_seed=1))
        self.engine.define_index(IndexDefinition(
            name="a_vectors", prefixes=("doc:",),
            fields=[FieldSpec("title", FieldType.TEXT),
                    FieldSpec("v", FieldType.VECTOR, options={"dim": 2})],
        ))
        self.engine.define_index(IndexDefinition(
            name="b_tags", prefixes=("doc:",),
            fields=[FieldSpec("color", FieldType.TAG)],
        ))
        self.engine.put("doc:1", {"title": "old title", "v": [1.0, 0.0], "color": "red"})
        self.engine.put("doc:2", {"title": "other", "v": [0.0, 1.0], "color": "blue"})

    def _fail_tag_writes(self, color):
        """Make the tag index of b_tags reject documents carrying ``color``."""
        tag_index = self.engine._registry.get("b_tags").tag
        original_add = tag_index.add

        def add(key, values):
            if values.get("color") == TagValue(frozenset({color})):
                raise RuntimeError("tag index failure")
            original_add(key, values)

        tag_index.add = MagicMock(side_effect=add)

    def _knn(self, vector):
        return self.engine.search("a_vectors", "*=>[KNN 1 @v $q]", SearchOptions(params={"q": vector}))

    def test_failed_update_is_rolled_back_everywhere(self):
        self._fail_tag_writes("green")
        with self.assertRaises(RuntimeError):
            self.engine.put("doc:1", {"title": "new title", "v": [5.0, 5.0], "color": "green"})

        doc = self.engine.get("doc:1")
        self.assertEqual("old title", doc.fields["title"])
        self.assertEqual(1, doc.version)

        self.assertEqual(["doc:1"], self.engine.search("a_vectors", "old").keys)
        self.assertEqual([], self.engine.search("a_vectors", "new").keys)
        self.assertEqual(["doc:1"], self._knn([1.0, 0.0]).keys)
        self.assertEqual(["doc:2"], self._knn([0.0, 1.0]).keys)
        self.assertEqual(2, self.engine.info("a_vectors")["vector_indexes"]["v"]["num_vectors"])

        self.assertEqual(["doc:1"], self.engine.search("b_tags", "@color:{red}").keys)
        self.assertEqual([], self.engine.search("b_tags", "@color:{green}").keys)
        self.assertEqual(1, self.engine.info("b_tags")["indexing_failures"])

    def test_failed_insert_leaves_no_trace(self):
        self._fail_tag_writes("red")
        with self.assertRaises(RuntimeError):
            self.engine.put("doc:3", {"title": "fresh", "v": [3.0, 3.0], "color": "red"})
        self.assertTrue(self.engine.get("doc:3").is_nonexistent())
        self.assertEqual([], self.engine.search("a_vectors", "fresh").keys)
        self.assertEqual(["doc:1"], self.engine.search("b_tags", "@color:{red}").keys)
        self.assertNotEqual("doc:3", self._knn([3.0, 3.0]).keys[0])

    def test_failed_delete_restores_document(self):
        self.engine._registry.get("b_tags").tag.delete = MagicMock(side_effect=RuntimeError("tag index failure"))
        with self.assertRaises(RuntimeError):
            self.engine.delete("doc:2")
        self.assertTrue(self.engine.get("doc:2").is_record())
        self.assertEqual(["doc:2"], self._knn([0.0, 1.0]).keys)
        self.assertEqual(["doc:2"], self.engine.search("a_vectors", "other").keys)

    def test_writes_succeed_after_failure_clears(self):
        index = self.engine._registry.get("b_tags")
        original_add = index.tag.add
        index.tag.add = MagicMock(side_effect=RuntimeError("transient"))
        with self.assertRaises(RuntimeError):
            self.engine.put("doc:1", {"title": "new title", "v": [5.0, 5.0], "color": "green"})
        index.tag.add = original_add
        self.engine.put("doc:1", {"title": "new title", "v": [5.0, 5.0], "color": "green"})
        self.assertEqual(["doc:1"], self.engine.search("b_tags", "@color:{green}").keys)
        self.assertEqual(["doc:1"], self._knn([5.0, 5.0]).keys)


if __name__ == '__main__':
    unittest.main()
