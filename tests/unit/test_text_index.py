import math
import unittest

from vsearch_data_model.field_values import TextValue, NumericValue
from vsearch_db.indexing.text.inverted_text_index import InvertedTextIndex
from vsearch_db.indexing.text.tokenizer import tokenize, term_frequencies


class TestTokenizer(unittest.TestCase):

    def test_lowercases_and_splits_on_punctuation(self):
        self.assertEqual(["hello", "world", "2024", "a", "b"], tokenize("Hello, WORLD! 2024 a_b"))

    def test_stopwords_dropped(self):
        self.assertEqual(["quick", "fox"], tokenize("the quick fox", {"the"}))

    def test_unicode_words(self):
        self.assertEqual(["café", "über"], tokenize("Café über"))

    def test_empty(self):
        self.assertEqual([], tokenize(""))
        self.assertEqual({"a": 2, "b": 1}, dict(term_frequencies("a b a")))


class TestInvertedTextIndex(unittest.TestCase):

    def setUp(self):
        self.index = InvertedTextIndex({"title": 2.0, "body": 1.0}, stopwords={"the"})
        self.index.add("doc:1", {"title": TextValue("Wireless mouse"), "body": TextValue("the mouse mouse")})
        self.index.add("doc:2", {"title": TextValue("Wired keyboard"), "body": TextValue("a wireless option")})
        self.index.add("doc:3", {"title": TextValue("Monitor"), "price": NumericValue(3.0)})

    def test_matching_ids_all_fields(self):
        self.assertEqual({"doc:1", "doc:2"}, self.index.matching_ids("wireless"))
        self.assertEqual(set(), self.index.matching_ids("the"))

    def test_matching_ids_field_scoped(self):
        self.assertEqual({"doc:1"}, self.index.matching_ids("wireless", ["title"]))
        self.assertEqual(set(), self.index.matching_ids("wireless", ["unknown"]))

    def test_prefix_expansion(self):
        self.assertEqual(["wired", "wireless"], self.index.expand("title", "wire", prefix=True))
        self.assertEqual({"doc:1", "doc:2"}, self.index.matching_ids("wire", ["title"], prefix=True))

    def test_delete_removes_postings(self):
        self.index.delete("doc:1", {"title": TextValue("Wireless mouse"), "body": TextValue("the mouse mouse")})
        self.assertEqual(set(), self.index.matching_ids("mouse"))
        self.assertEqual([], self.index.expand("title", "wirel", prefix=True))
        self.assertEqual({"doc:2", "doc:3"}, self.index.get_all_ids())

    def test_tf_idf_score(self):
        scores = self.index.score({"doc:1", "doc:2", "doc:3"}, [(None, "mouse", False)])
        idf = math.log(1.0 + 3 / 1)
        # title weight 2 * tf 1 + body weight 1 * tf 2
        self.assertAlmostEqual(2.0 * idf + 2.0 * idf, scores["doc:1"])
        self.assertEqual(0.0, scores["doc:2"])

    def test_field_weight_ranks_title_matches_higher(self):
        scores = self.index.score({"doc:1", "doc:2"}, [(None, "wireless", False)])
        self.assertGreater(scores["doc:1"], scores["doc:2"])


if __name__ == '__main__':
    unittest.main()
