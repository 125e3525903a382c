"""Persistence — Mongo connection, requirement sources and result stores."""

from assessment_validator.persistence.mongo_client import MongoConnection, get_mongo
from assessment_validator.persistence.requirement_source import (
    InMemoryRequirementSource,
    MongoRequirementSource,
    RequirementSource,
    get_requirement_source,
)
from assessment_validator.persistence.result_store import (
    InMemoryResultStore,
    MongoResultStore,
    ResultStore,
    finalize_status,
    get_result_store,
)

__all__ = [
    "MongoConnection",
    "get_mongo",
    "InMemoryRequirementSource",
    "MongoRequirementSource",
    "RequirementSource",
    "get_requirement_source",
    "InMemoryResultStore",
    "MongoResultStore",
    "ResultStore",
    "finalize_status",
    "get_result_store",
]
