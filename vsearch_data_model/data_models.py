"""Pydantic models for the persisted index-definition record."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from vsearch_data_model.field_values import FieldType
from vsearch_data_model.index_definition import FieldSpec, IndexDefinition, DocumentType


class FieldSpecModel(BaseModel):
    """Model for a single field spec"""
    path: str = Field(..., description="Field name (HASH) or JSONPath (JSON)")
    field_type: FieldType = Field(..., description="Indexed field type")
    alias: Optional[str] = Field(None, description="Query-facing field name")
    options: Dict[str, Any] = Field(default_factory=dict, description="Type-specific options")

    def to_field_spec(self) -> FieldSpec:
        return FieldSpec(path=self.path, field_type=self.field_type, alias=self.alias,
                         options=dict(self.options))

    @classmethod
    def from_field_spec(cls, spec: FieldSpec) -> 'FieldSpecModel':
        return cls(**spec.to_dict())


class IndexDefinitionModel(BaseModel):
    """Model for an index definition record"""
    name: str = Field(..., description="Index name")
    on: DocumentType = Field(DocumentType.HASH, description="Document shape")
    prefixes: List[str] = Field(default_factory=list, description="Covered key prefixes")
    stopwords: Optional[List[str]] = Field(None, description="Stopwords; None uses the default list")
    fields: List[FieldSpecModel] = Field(..., description="Ordered field specs")
    checksum_algorithm: str = Field(default='sha256', description="Checksum algorithm")
    checksum: Optional[str] = Field(None, description="Checksum recorded when persisted")

    def to_definition(self) -> IndexDefinition:
        definition = IndexDefinition(
            name=self.name,
            fields=[f.to_field_spec() for f in self.fields],
            prefixes=tuple(self.prefixes),
            on=self.on,
            stopwords=tuple(self.stopwords) if self.stopwords is not None else None,
            checksum_algorithm=self.checksum_algorithm,
        )
        if self.checksum is not None:
            definition.checksum = self.checksum
            definition.validate_checksum()
        return definition

    @classmethod
    def from_definition(cls, definition: IndexDefinition) -> 'IndexDefinitionModel':
        return cls(
            name=definition.name,
            on=definition.on,
            prefixes=list(definition.prefixes),
            stopwords=list(definition.stopwords) if definition.stopwords is not None else None,
            fields=[FieldSpecModel.from_field_spec(f) for f in definition.fields],
            checksum_algorithm=definition.checksum_algorithm,
            checksum=definition.checksum,
        )
