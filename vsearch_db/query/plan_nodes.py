from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from vsearch_data_model.document import Document
from vsearch_data_model.index_definition import IndexDefinition
from vsearch_data_model.search_result import SearchOptions, SearchResult


class PlanNode(ABC):
    @abstractmethod
    def execute(self, context: Dict[str, Any]) -> Any:
        """
        Execute this plan node in the given context and return its result.
        Context holds references like the search engine instance.
        """
        pass


class DefineIndexNode(PlanNode):
    def __init__(self, definition: IndexDefinition, cancellation=None):
        self.definition = definition
        self.cancellation = cancellation

    def execute(self, context: Dict[str, Any]) -> IndexDefinition:
        engine = context['search_engine']
        return engine.define_index(self.definition, cancellation=self.cancellation)


class DropIndexNode(PlanNode):
    def __init__(self, index_name: str, delete_documents: bool = False, if_exists: bool = False):
        self.index_name = index_name
        self.delete_documents = delete_documents
        self.if_exists = if_exists

    def execute(self, context: Dict[str, Any]) -> bool:
        engine = context['search_engine']
        return engine.drop_index(self.index_name, delete_documents=self.delete_documents,
                                 if_exists=self.if_exists)


class PutNode(PlanNode):
    def __init__(self, key: str, fields: Dict[str, Any], partial: bool = False):
        self.key = key
        self.fields = fields
        self.partial = partial

    def execute(self, context: Dict[str, Any]) -> int:
        engine = context['search_engine']
        return engine.put(self.key, self.fields, partial=self.partial)


class GetNode(PlanNode):
    def __init__(self, key: str):
        self.key = key

    def execute(self, context: Dict[str, Any]) -> Document:
        engine = context['search_engine']
        return engine.get(self.key)


class DeleteNode(PlanNode):
    def __init__(self, key: str):
        self.key = key

    def execute(self, context: Dict[str, Any]) -> bool:
        engine = context['search_engine']
        return engine.delete(self.key)


class SearchNode(PlanNode):
    def __init__(self, index_name: str, query: Any, options: Optional[SearchOptions] = None):
        self.index_name = index_name
        self.query = query
        self.options = options

    def execute(self, context: Dict[str, Any]) -> SearchResult:
        engine = context['search_engine']
        return engine.search(self.index_name, self.query, self.options)


class InfoNode(PlanNode):
    def __init__(self, index_name: str):
        self.index_name = index_name

    def execute(self, context: Dict[str, Any]) -> Dict[str, Any]:
        engine = context['search_engine']
        return engine.info(self.index_name)


class ListIndexesNode(PlanNode):
    def execute(self, context: Dict[str, Any]) -> List[str]:
        engine = context['search_engine']
        return engine.list_indexes()
