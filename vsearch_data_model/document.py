import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from vsearch_data_model.checksum_util import canonical_bytes, checksum_of
from vsearch_exception_model.exception import ChecksumValidationFailureError


@dataclass
class Document:
    """
    A keyed document held by the document store.

    A document is either a RECORD (it exists and carries ``fields``) or
    NONEXISTENT, the typed empty result returned for a missing key. Each
    instance carries a checksum computed at construction so later readers can
    detect in-memory corruption.

    Attributes:
        type (DocumentType): RECORD or NONEXISTENT.
        key (str): Unique document key.
        fields (Optional[Dict[str, Any]]): Raw field values. Flat for hash-like
            documents, nested for JSON-like documents.
        version (int): Monotonic per-key write counter; 0 for NONEXISTENT.
        checksum_algorithm (str): Algorithm used for ``checksum``.
        checksum (str): Automatically calculated checksum.
    """
    class DocumentType(Enum):
        RECORD = 1
        NONEXISTENT = 2

    type: DocumentType
    key: str
    fields: Optional[Dict[str, Any]] = None
    version: int = 0
    checksum_algorithm: str = 'sha256'

    checksum: str = field(init=False)

    def __post_init__(self):
        self.checksum = checksum_of(self.checksum_algorithm, self._checksum_parts())

    @staticmethod
    def create_record(key: str, fields: Dict[str, Any], version: int = 1,
                      checksum_algorithm: str = 'sha256') -> "Document":
        return Document(
            type=Document.DocumentType.RECORD,
            key=key,
            fields=fields,
            version=version,
            checksum_algorithm=checksum_algorithm,
        )

    @staticmethod
    def create_nonexistent(key: str, checksum_algorithm: str = 'sha256') -> "Document":
        return Document(
            type=Document.DocumentType.NONEXISTENT,
            key=key,
            fields=None,
            version=0,
            checksum_algorithm=checksum_algorithm,
        )

    def is_record(self) -> bool:
        return self.type == self.DocumentType.RECORD

    def is_nonexistent(self) -> bool:
        return self.type == self.DocumentType.NONEXISTENT

    def _checksum_parts(self) -> List[bytes]:
        return [
            self.type.name.encode('utf-8'),
            self.key.encode('utf-8'),
            canonical_bytes(self.fields),
            str(self.version).encode('ascii'),
        ]

    def validate_checksum(self) -> bool:
        """
        Recompute checksum and compare. Raises ChecksumValidationFailureError if data was corrupted.
        """
        if checksum_of(self.checksum_algorithm, self._checksum_parts()) != self.checksum:
            raise ChecksumValidationFailureError("Document checksum validation failed", record_id=self.key)
        return True

    def copy_fields(self) -> Dict[str, Any]:
        """Deep copy of the raw fields, safe to hand to callers."""
        return copy.deepcopy(self.fields) if self.fields is not None else {}

    def __eq__(self, other):
        if not isinstance(other, type(self)):
            return False
        return (self.type == other.type and
                self.key == other.key and
                self.version == other.version and
                self.checksum == other.checksum)
