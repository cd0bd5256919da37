import pytest

from rag.filters import And, Equals, OneOf, combine, from_mapping, matches, to_mongo_filter


META = {"fileType": "document", "sourceDocId": "doc-1", "tags": ["steel", "girder"], "span": 40}


def test_none_matches_everything():
    assert matches(None, META) is True
    assert matches(None, {}) is True


@pytest.mark.parametrize(
    "predicate,expected",
    [
        (Equals("fileType", "document"), True),
        (Equals("fileType", "drawing"), False),
        (Equals("missing", "x"), False),
        (Equals("tags", "girder"), True),
        (Equals("span", 40), True),
        (OneOf("fileType", ["model", "document"]), True),
        (OneOf("fileType", ["model", "drawing"]), False),
        (OneOf("tags", ["concrete", "steel"]), True),
        (And(Equals("fileType", "document"), Equals("sourceDocId", "doc-1")), True),
        (And(Equals("fileType", "document"), Equals("sourceDocId", "doc-2")), False),
        (And([]), True),
    ],
)
def test_matches(predicate, expected):
    assert matches(predicate, META) is expected


def test_to_mongo_filter_renders_each_variant():
    assert to_mongo_filter(Equals("fileType", "document")) == {"fileType": {"$eq": "document"}}
    assert to_mongo_filter(OneOf("fileType", ("model", "drawing"))) == {"fileType": {"$in": ["model", "drawing"]}}
    assert to_mongo_filter(And(Equals("a", 1), OneOf("b", [2, 3]))) == {
        "$and": [{"a": {"$eq": 1}}, {"b": {"$in": [2, 3]}}]
    }


def test_single_clause_and_is_unwrapped():
    assert to_mongo_filter(And(Equals("a", 1))) == {"a": {"$eq": 1}}
    assert to_mongo_filter(And()) is None
    assert to_mongo_filter(None) is None


def test_combine_skips_missing_predicates():
    eq = Equals("a", 1)
    assert combine() is None
    assert combine(None, eq) is eq
    assert combine(eq, Equals("b", 2)) == And(eq, Equals("b", 2))


def test_from_mapping_builds_equals_and_one_of():
    predicate = from_mapping({"fileType": "document", "tags": ["steel", "girder"]})
    assert predicate == And(Equals("fileType", "document"), OneOf("tags", ["steel", "girder"]))
    assert from_mapping(None) is None
    assert from_mapping({}) is None
