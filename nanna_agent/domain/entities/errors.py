from typing import Optional


class EntityStoreError(Exception):
    """Base class for entity store failures"""


class EntityNotFoundError(EntityStoreError):
    """Raised when an entity id is not present in the store"""

    def __init__(self, entity_id: str, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"Entity not found: {entity_id}")


class EntityAlreadyExistsError(EntityStoreError):
    """Raised when inserting an entity whose id is already stored"""

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Entity already exists: {entity_id}")


class StaleVersionError(EntityStoreError):
    """Raised when an update does not advance the stored version"""

    def __init__(self, entity_id: str, stored_version: int, supplied_version: int):
        self.entity_id = entity_id
        self.stored_version = stored_version
        self.supplied_version = supplied_version
        super().__init__(
            f"Stale version for entity {entity_id}: "
            f"supplied {supplied_version}, stored {stored_version}"
        )


class InvalidRelationshipError(EntityNotFoundError):
    """Raised when a relationship endpoint is missing from the store"""

    def __init__(self, from_id: str, to_id: str, missing_id: str):
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(
            missing_id,
            f"Relationship {from_id} -> {to_id} references missing entity {missing_id}",
        )


class EntitySerializationError(EntityStoreError):
    """Raised when an entity cannot be converted to or from JSON"""


class GitOperationError(Exception):
    """Raised when git state cannot be read from a workspace"""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)
