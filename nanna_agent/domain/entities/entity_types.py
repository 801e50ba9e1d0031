from enum import Enum


class EntityType(str, Enum):
    """Variant tag shared by every entity payload"""
    GIT = "git"
    FILE = "file"
    TEST = "test"
    CONTEXT = "context"
    ENVIRONMENT = "environment"
    TELEMETRY = "telemetry"


class RelationshipType(str, Enum):
    """Label of a directed edge between two entities"""
    CONTAINS = "contains"
    DEPENDS_ON = "depends_on"
    IMPLEMENTS = "implements"
    CALLS = "calls"
    TESTS = "tests"
    DOCUMENTS = "documents"
    REFERENCES = "references"
    MODIFIES = "modifies"
    VALIDATES = "validates"
    CUSTOM = "custom"
