"""
Metadata filter predicates.

A small tagged union evaluated by ``matches`` for the in-memory index and
rendered by ``to_mongo_filter`` into the ``$eq`` / ``$in`` / ``$and``
dialect shared by Pinecone and Chroma.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class OneOf:
    field: str
    values: Tuple[Any, ...]

    def __init__(self, field: str, values):
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class And:
    clauses: Tuple["MetadataFilter", ...]

    def __init__(self, *clauses: "MetadataFilter"):
        # accept And(a, b) and And([a, b])
        if len(clauses) == 1 and isinstance(clauses[0], (list, tuple)):
            clauses = tuple(clauses[0])
        object.__setattr__(self, "clauses", tuple(clauses))


MetadataFilter = Union[Equals, OneOf, And]


def _field_matches(actual: Any, wanted: Any) -> bool:
    if isinstance(actual, (list, tuple)):
        return wanted in actual
    return actual == wanted


def matches(predicate: Optional[MetadataFilter], metadata: Mapping[str, Any]) -> bool:
    """Evaluate ``predicate`` against a metadata mapping. ``None`` matches everything."""
    if predicate is None:
        return True
    if isinstance(predicate, Equals):
        if predicate.field not in metadata:
            return False
        return _field_matches(metadata[predicate.field], predicate.value)
    if isinstance(predicate, OneOf):
        if predicate.field not in metadata:
            return False
        actual = metadata[predicate.field]
        return any(_field_matches(actual, v) for v in predicate.values)
    if isinstance(predicate, And):
        return all(matches(clause, metadata) for clause in predicate.clauses)
    raise TypeError(f"Unsupported filter type: {type(predicate).__name__}")


def to_mongo_filter(predicate: Optional[MetadataFilter]) -> Optional[Dict[str, Any]]:
    """Render a predicate as a Mongo-style filter document."""
    if predicate is None:
        return None
    if isinstance(predicate, Equals):
        return {predicate.field: {"$eq": predicate.value}}
    if isinstance(predicate, OneOf):
        return {predicate.field: {"$in": list(predicate.values)}}
    if isinstance(predicate, And):
        rendered = [to_mongo_filter(c) for c in predicate.clauses]
        rendered = [r for r in rendered if r]
        if not rendered:
            return None
        # Chroma rejects $and with fewer than two operands
        if len(rendered) == 1:
            return rendered[0]
        return {"$and": rendered}
    raise TypeError(f"Unsupported filter type: {type(predicate).__name__}")


def combine(*predicates: Optional[MetadataFilter]) -> Optional[MetadataFilter]:
    """AND together the non-empty predicates."""
    present = [p for p in predicates if p is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(present)


def from_mapping(mapping: Optional[Mapping[str, Any]]) -> Optional[MetadataFilter]:
    """
    Build a predicate from a plain ``{field: value}`` mapping.

    List values become ``OneOf``, scalars become ``Equals``.
    """
    if not mapping:
        return None
    clauses = []
    for key, value in mapping.items():
        if isinstance(value, (list, tuple, set)):
            clauses.append(OneOf(key, sorted(value) if isinstance(value, set) else value))
        else:
            clauses.append(Equals(key, value))
    return combine(*clauses)
