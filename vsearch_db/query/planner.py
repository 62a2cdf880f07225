from typing import Any, Dict, Optional

from vsearch_data_model.index_definition import IndexDefinition
from vsearch_data_model.search_result import SearchOptions
from vsearch_db.query.plan_nodes import (
    PlanNode, DefineIndexNode, DropIndexNode, PutNode, GetNode, DeleteNode, SearchNode, InfoNode, ListIndexesNode
)


class Planner:
    """
    Planner turns user-level operations into an execution plan (tree of PlanNodes).
    """
    def plan_define_index(self, definition: IndexDefinition, cancellation=None) -> PlanNode:
        return DefineIndexNode(definition, cancellation)

    def plan_drop_index(self, index_name: str, delete_documents: bool = False, if_exists: bool = False) -> PlanNode:
        return DropIndexNode(index_name, delete_documents, if_exists)

    def plan_put(self, key: str, fields: Dict[str, Any], partial: bool = False) -> PlanNode:
        return PutNode(key, fields, partial)

    def plan_get(self, key: str) -> PlanNode:
        return GetNode(key)

    def plan_delete(self, key: str) -> PlanNode:
        return DeleteNode(key)

    def plan_search(self, index_name: str, query: str, options: Optional[SearchOptions] = None) -> PlanNode:
        return SearchNode(index_name, query, options or SearchOptions())

    def plan_info(self, index_name: str) -> PlanNode:
        return InfoNode(index_name)

    def plan_list_indexes(self) -> PlanNode:
        return ListIndexesNode()
