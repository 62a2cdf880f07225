from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from vsearch_data_model.document import Document


class DocumentWriteListener(ABC):
    """
    Receives every document write before the store acknowledges it.

    The store calls ``prepare`` before changing anything; an exception there
    aborts the write. After the store has swapped in the new document it calls
    ``commit``; an exception there makes the store restore the old document
    and re-raise. ``abort`` releases a prepared write that will not be
    committed.
    """

    @abstractmethod
    def prepare(self, old: Document, new: Document) -> Any:
        ...

    @abstractmethod
    def commit(self, prepared: Any) -> None:
        ...

    @abstractmethod
    def abort(self, prepared: Any) -> None:
        ...


class DocumentPersistence(ABC):
    """Durable copy of documents and index definitions."""

    @abstractmethod
    def save_document(self, document: Document) -> None:
        ...

    @abstractmethod
    def delete_document(self, key: str) -> None:
        ...

    @abstractmethod
    def load_documents(self) -> Iterable[Document]:
        ...

    @abstractmethod
    def save_definition(self, definition: Any) -> None:
        ...

    @abstractmethod
    def delete_definition(self, name: str) -> None:
        ...

    @abstractmethod
    def load_definitions(self) -> List[Any]:
        ...

    def close(self) -> None:
        return None


class DocumentStoreInterface(ABC):

    @abstractmethod
    def put(self, key: str, fields: Dict[str, Any], partial: bool = False) -> int:
        ...

    @abstractmethod
    def get(self, key: str) -> Document:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def keys(self, prefixes: Optional[Iterable[str]] = None) -> List[str]:
        ...
