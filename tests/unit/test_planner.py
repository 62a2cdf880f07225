import unittest
from unittest.mock import MagicMock

from vsearch_data_model.field_values import FieldType
from vsearch_data_model.index_definition import IndexDefinition, FieldSpec
from vsearch_data_model.search_result import SearchOptions
from vsearch_db.query.executor import Executor
from vsearch_db.query.plan_nodes import DefineIndexNode, SearchNode, PutNode
from vsearch_db.query.planner import Planner


class TestPlannerAndExecutor(unittest.TestCase):

    def setUp(self):
        self.engine = MagicMock()
        self.planner = Planner()
        self.executor = Executor(self.engine)

    def test_define_index_plan(self):
        definition = IndexDefinition(name="idx", fields=[FieldSpec("title", FieldType.TEXT)])
        plan = self.planner.plan_define_index(definition)
        self.assertIsInstance(plan, DefineIndexNode)
        self.executor.execute(plan)
        self.engine.define_index.assert_called_once_with(definition, cancellation=None)

    def test_search_plan_defaults_options(self):
        plan = self.planner.plan_search("idx", "*")
        self.assertIsInstance(plan, SearchNode)
        self.engine.search.return_value = "result"
        self.assertEqual("result", self.executor.execute(plan))
        index_name, query, options = self.engine.search.call_args[0]
        self.assertEqual(("idx", "*"), (index_name, query))
        self.assertIsInstance(options, SearchOptions)

    def test_document_plans(self):
        plan = self.planner.plan_put("doc:1", {"a": 1}, partial=True)
        self.assertIsInstance(plan, PutNode)
        self.executor.execute(plan)
        self.engine.put.assert_called_once_with("doc:1", {"a": 1}, partial=True)

        self.executor.execute(self.planner.plan_get("doc:1"))
        self.engine.get.assert_called_once_with("doc:1")
        self.executor.execute(self.planner.plan_delete("doc:1"))
        self.engine.delete.assert_called_once_with("doc:1")

    def test_schema_plans(self):
        self.executor.execute(self.planner.plan_drop_index("idx", delete_documents=True))
        self.engine.drop_index.assert_called_once_with("idx", delete_documents=True, if_exists=False)
        self.executor.execute(self.planner.plan_info("idx"))
        self.engine.info.assert_called_once_with("idx")
        self.executor.execute(self.planner.plan_list_indexes())
        self.engine.list_indexes.assert_called_once_with()


if __name__ == '__main__':
    unittest.main()
