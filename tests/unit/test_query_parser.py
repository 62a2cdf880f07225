import math
import unittest

from vsearch_db.query.query_ast import (
    MatchAll, MatchNone, TermNode, TagNode, NumericRangeNode, GeoRadiusNode, AndNode, OrNode, NotNode, Param,
    positive_terms
)
from vsearch_db.query.query_parser import parse_query
from vsearch_exception_model.exception import MalformedQueryException


class TestQueryParser(unittest.TestCase):

    def test_match_all(self):
        parsed = parse_query("*")
        self.assertTrue(parsed.is_match_all)
        self.assertIsNone(parsed.knn)

    def test_terms_are_intersected_and_lowercased(self):
        parsed = parse_query("Wireless Mouse")
        self.assertIsInstance(parsed.filter, AndNode)
        self.assertEqual(["wireless", "mouse"], [c.token for c in parsed.filter.children])

    def test_or_binds_looser_than_and(self):
        node = parse_query("a1 b1 | c1").filter
        self.assertIsInstance(node, OrNode)
        self.assertIsInstance(node.children[0], AndNode)
        self.assertEqual(TermNode("c1", None, False, 8), node.children[1])

    def test_negation_and_grouping(self):
        node = parse_query("laptop -(refurbished | used)").filter
        self.assertIsInstance(node, AndNode)
        negated = node.children[1]
        self.assertIsInstance(negated, NotNode)
        self.assertIsInstance(negated.child, OrNode)
        self.assertEqual(["laptop"], [t.token for t in positive_terms(node)])

    def test_field_scoped_terms_and_prefix(self):
        node = parse_query("@title:(wire* mouse)").filter
        self.assertEqual(TermNode("wire", ("title",), True, 8), node.children[0])
        self.assertEqual(("title",), node.children[1].fields)

    def test_phrase(self):
        node = parse_query('@title:"gaming laptop"').filter
        self.assertEqual(["gaming", "laptop"], [c.token for c in node.children])

    def test_tag_list_with_escapes(self):
        node = parse_query(r"@category:{computer | home\ office | a\|b}").filter
        self.assertEqual(TagNode("category", ("computer", "home office", "a|b"), 0), node)

    def test_numeric_ranges(self):
        node = parse_query("@price:[10 (100]").filter
        self.assertEqual(NumericRangeNode("price", 10.0, 100.0, False, True, 0), node)
        node = parse_query("@price:[(10 +inf]").filter
        self.assertTrue(node.low_exclusive)
        self.assertEqual(math.inf, node.high)
        node = parse_query("@price:[-inf (5]").filter
        self.assertEqual(-math.inf, node.low)
        self.assertTrue(node.high_exclusive)

    def test_geo_radius(self):
        node = parse_query("@location:[-122.41 37.77 5 km]").filter
        self.assertEqual(GeoRadiusNode("location", -122.41, 37.77, 5.0, "km", 0), node)

    def test_knn_clause(self):
        parsed = parse_query("@category:{book}=>[KNN 5 @embedding $vec EF_RUNTIME 50 AS dist]")
        self.assertIsInstance(parsed.filter, TagNode)
        knn = parsed.knn
        self.assertEqual(5, knn.k)
        self.assertEqual("embedding", knn.field)
        self.assertEqual("vec", knn.vector.name)
        self.assertEqual(50, knn.ef_runtime)
        self.assertEqual("dist", knn.score_alias)

    def test_knn_with_parameters_and_default_alias(self):
        parsed = parse_query("*=>[KNN $k @v $q EF_RUNTIME $ef]")
        self.assertIsInstance(parsed.filter, MatchAll)
        self.assertEqual(Param("k", 8), parsed.knn.k)
        self.assertIsInstance(parsed.knn.ef_runtime, Param)
        self.assertEqual("__v_score", parsed.knn.score_alias)

    def test_stopwords_only_matches_nothing(self):
        parsed = parse_query("the a", stopwords={"the", "a"})
        self.assertIsInstance(parsed.filter, MatchNone)
        node = parse_query("the laptop", stopwords={"the"}).filter
        self.assertEqual("laptop", node.token)

    def test_malformed_queries(self):
        cases = {
            "": 0,
            "@category:{book": 15,
            "@price:[1 2 3]": 8,
            "@price:[abc 2]": 8,
            "@loc:[1 2 3 parsecs]": 6,
            "w*": 0,
            "(a1 b1": 6,
            "*=>[KNN 3 @v]": 12,
            "*=>[KNN 3 @v $q FOO 1]": 19,
            "a1 )": 3,
        }
        for query, position in cases.items():
            with self.subTest(query=query):
                with self.assertRaises(MalformedQueryException) as ctx:
                    parse_query(query)
                self.assertEqual(position, ctx.exception.position)
                self.assertEqual(query, ctx.exception.query)


if __name__ == '__main__':
    unittest.main()
