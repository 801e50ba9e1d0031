from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from datetime import datetime
import uuid

from nanna_agent.domain.entities.entity_types import EntityType, RelationshipType
from nanna_agent.domain.entities.payloads import EntityPayload
from nanna_agent.domain.entities.errors import EntitySerializationError


class EntityMetadata(BaseModel):
    """Metadata shared by every entity variant"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Stable unique identifier")
    entity_type: EntityType
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = Field(default=1, ge=1)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, tags: List[str]) -> List[str]:
        return sorted(set(tags))


class Entity(BaseModel):
    """A typed workspace artifact: common metadata plus a variant payload"""
    metadata: EntityMetadata
    payload: EntityPayload

    @model_validator(mode="after")
    def _check_variant(self) -> "Entity":
        if self.payload.entity_type != self.metadata.entity_type:
            raise ValueError(
                f"Payload '{self.payload.kind}' does not belong to entity type "
                f"'{self.metadata.entity_type.value}'"
            )
        return self

    @classmethod
    def create(cls, payload: BaseModel, tags: Optional[List[str]] = None) -> "Entity":
        """Create a new entity with fresh metadata"""

        metadata = EntityMetadata(entity_type=payload.entity_type, tags=tags or [])
        return cls(metadata=metadata, payload=payload)

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def entity_type(self) -> EntityType:
        return self.metadata.entity_type

    @property
    def version(self) -> int:
        return self.metadata.version

    def revised(self, tags: Optional[List[str]] = None, **payload_changes: Any) -> "Entity":
        """Return a copy carrying the next version"""

        metadata = self.metadata.model_copy(update={
            "version": self.metadata.version + 1,
            "updated_at": datetime.utcnow(),
            "tags": sorted(set(self.metadata.tags) | set(tags or [])),
        })
        payload = self.payload.model_copy(update=payload_changes) if payload_changes else self.payload
        return Entity(metadata=metadata, payload=payload)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Entity":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise EntitySerializationError(f"Invalid entity JSON: {e}") from e

    def search_text(self) -> str:
        """Lowercased canonical form used for substring matching"""

        return self.to_json().lower()


class EntityRelationship(BaseModel):
    """Directed labeled edge between two stored entities"""
    from_id: str
    to_id: str
    kind: RelationshipType
    label: Optional[str] = Field(None, description="Name of a custom relationship")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _check_label(self) -> "EntityRelationship":
        if self.kind == RelationshipType.CUSTOM and not self.label:
            raise ValueError("Custom relationships require a label")
        return self

    def involves(self, entity_id: str) -> bool:
        return self.from_id == entity_id or self.to_id == entity_id

    def matches(self, from_id: str, to_id: str, kind: RelationshipType, label: Optional[str] = None) -> bool:
        return (
            self.from_id == from_id
            and self.to_id == to_id
            and self.kind == kind
            and (kind != RelationshipType.CUSTOM or self.label == label)
        )


class TimeRange(BaseModel):
    """Inclusive creation-time window"""
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.start > self.end:
            raise ValueError("Time range start must not be after its end")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class EntityQuery(BaseModel):
    """Predicate over stored entities"""
    entity_types: List[EntityType] = Field(default_factory=list, description="Empty means all types")
    text_query: Optional[str] = None
    tags: List[str] = Field(default_factory=list, description="Entity must carry at least one")
    time_range: Optional[TimeRange] = None
    limit: Optional[int] = Field(None, ge=0)


class QueryResult(BaseModel):
    """Lightweight summary of a matched entity"""
    entity_id: str
    entity_type: EntityType
    relevance: float = Field(ge=0.0, le=1.0)
    snippet: Optional[str] = None
