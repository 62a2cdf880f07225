import shutil
import tempfile
import unittest

import numpy as np

from vsearch_data_model.field_values import FieldType
from vsearch_data_model.index_definition import IndexDefinition, FieldSpec
from vsearch_data_model.search_result import SearchOptions
from vsearch_db.client.search_client import SearchClient
from vsearch_db.config import EngineSettings
from vsearch_exception_model.exception import ChecksumValidationFailureError


class TestSearchClient(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.client = SearchClient(self.temp_dir, EngineSettings(hnsw_seed=11))
        self.search = self.client.search_commands()
        self.documents = self.client.document_commands()
        self.search.define_index(IndexDefinition(
            name="products",
            prefixes=("product:",),
            fields=[FieldSpec("name", FieldType.TEXT),
                    FieldSpec("category", FieldType.TAG),
                    FieldSpec("embedding", FieldType.VECTOR, options={"dim": 3, "distance_metric": "COSINE"})],
        ))

    def tearDown(self):
        self.client.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_end_to_end_tag_query(self):
        self.documents.put("product:1", {"name": "Laptop", "category": "computer"})
        self.documents.put("product:2", {"name": "Novel", "category": "book"})
        self.documents.put("product:3", {"name": "Desktop", "category": "computer"})
        result = self.search.search("products", "@category:{computer}")
        self.assertEqual(2, result.total)
        self.assertEqual(["product:1", "product:3"], result.keys)

    def test_knn_with_keyword_options(self):
        rng = np.random.default_rng(4)
        vectors = {f"product:{i}": rng.normal(size=3).astype(np.float32) for i in range(30)}
        for key, vec in vectors.items():
            self.documents.put(key, {"name": key, "category": "x", "embedding": vec.tobytes()})
        query = vectors["product:7"]
        result = self.search.search("products", "*=>[KNN 3 @embedding $q]", params={"q": query.tolist()}, limit=3)
        self.assertEqual("product:7", result.keys[0])
        self.assertAlmostEqual(0.0, result.hits[0].score, places=5)
        with self.assertRaises(TypeError):
            self.search.search("products", "*", SearchOptions(), limit=3)

    def test_get_validates_checksum(self):
        self.documents.put("product:1", {"name": "Laptop"})
        doc = self.documents.get("product:1")
        self.assertEqual({"name": "Laptop"}, doc.fields)
        self.assertTrue(self.documents.get("product:9").is_nonexistent())

        definition = IndexDefinition(name="tampered", fields=[FieldSpec("name", FieldType.TEXT)])
        definition.name = "renamed"
        with self.assertRaises(ChecksumValidationFailureError):
            self.search.define_index(definition)

    def test_schema_commands(self):
        self.assertEqual(["products"], self.search.list_indexes())
        self.assertEqual(0, self.search.info("products")["num_docs"])
        self.assertTrue(self.search.drop_index("products"))
        self.assertFalse(self.search.drop_index("products", if_exists=True))

    def test_delete(self):
        self.documents.put("product:1", {"name": "Laptop", "category": "computer"})
        self.assertTrue(self.documents.delete("product:1"))
        self.assertEqual(0, self.search.search("products", "@category:{computer}").total)

    def test_reopen_client(self):
        self.documents.put("product:1", {"name": "Laptop", "category": "computer"})
        self.client.close()
        self.client = SearchClient(self.temp_dir, EngineSettings(hnsw_seed=11))
        search = self.client.search_commands()
        self.assertEqual(["product:1"], search.search("products", "laptop").keys)


if __name__ == '__main__':
    unittest.main()
