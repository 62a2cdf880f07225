"""
SearchClient - entry point for applications embedding the engine.

The client owns one SearchEngine and hands out two capability handles over
it: ``search_commands()`` for schema and query operations and
``document_commands()`` for the document store. Both route every call
through the planner and executor, so there is one execution path no matter
which handle issued the command.
"""
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from vsearch_data_model.document import Document
from vsearch_data_model.index_definition import IndexDefinition
from vsearch_data_model.search_result import SearchOptions, SearchResult
from vsearch_db.config import EngineSettings
from vsearch_db.engine.search_engine import SearchEngine
from vsearch_db.query.executor import Executor
from vsearch_db.query.planner import Planner


class SearchCommands:
    """Schema and query commands (FT.CREATE, FT.SEARCH, FT.INFO, FT._LIST, FT.DROPINDEX)."""

    def __init__(self, planner: Planner, executor: Executor):
        self._planner = planner
        self._executor = executor

    def define_index(self, definition: IndexDefinition, cancellation=None) -> IndexDefinition:
        """
        Create an index and index every existing document it covers.

        Raises:
            DuplicateIndexException: If an index with the same name exists.
            InvalidFieldSpecException: If the definition is rejected.
        """
        definition.validate_checksum()
        plan = self._planner.plan_define_index(definition, cancellation)
        return self._executor.execute(plan)

    def drop_index(self, index_name: str, delete_documents: bool = False, if_exists: bool = False) -> bool:
        plan = self._planner.plan_drop_index(index_name, delete_documents, if_exists)
        return self._executor.execute(plan)

    def search(self, index_name: str, query: str, options: Optional[SearchOptions] = None,
               **kwargs) -> SearchResult:
        """
        Run a query. Keyword arguments are a shorthand for ``SearchOptions``
        fields, e.g. ``search("idx", "*=>[KNN 3 @v $q]", params={"q": vec}, limit=3)``.
        """
        if options is None:
            options = SearchOptions(**kwargs)
        elif kwargs:
            raise TypeError("Pass either a SearchOptions instance or option keywords, not both")
        plan = self._planner.plan_search(index_name, query, options)
        return self._executor.execute(plan)

    def info(self, index_name: str) -> Dict[str, Any]:
        return self._executor.execute(self._planner.plan_info(index_name))

    def list_indexes(self) -> List[str]:
        return self._executor.execute(self._planner.plan_list_indexes())


class DocumentCommands:
    """Document store commands (HSET / JSON.SET, HGETALL / JSON.GET, DEL)."""

    def __init__(self, planner: Planner, executor: Executor):
        self._planner = planner
        self._executor = executor

    def put(self, key: str, fields: Dict[str, Any], partial: bool = False) -> int:
        plan = self._planner.plan_put(key, fields, partial)
        return self._executor.execute(plan)

    def get(self, key: str) -> Document:
        document = self._executor.execute(self._planner.plan_get(key))
        document.validate_checksum()
        return document

    def delete(self, key: str) -> bool:
        return self._executor.execute(self._planner.plan_delete(key))


class SearchClient:
    """
    Embedded client for the search engine.

    Args:
        data_path: Directory for the SQLite write-through store; None keeps
            everything in memory.
        settings: Engine settings; defaults are read from ``VSEARCH_*``
            environment variables.
        engine: An already constructed engine to wrap instead of opening one.
    """

    def __init__(self, data_path: Optional[Union[str, Path]] = None,
                 settings: Optional[EngineSettings] = None,
                 engine: Optional[SearchEngine] = None):
        self.engine = engine or SearchEngine.open(data_path, settings)
        self.planner = Planner()
        self.executor = Executor(self.engine)
        self._search_commands = SearchCommands(self.planner, self.executor)
        self._document_commands = DocumentCommands(self.planner, self.executor)

    def search_commands(self) -> SearchCommands:
        return self._search_commands

    def document_commands(self) -> DocumentCommands:
        return self._document_commands

    def close(self) -> None:
        self.engine.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
