import pytest

from rag.enrichment import (
    DEFAULT_CONTENT_TYPE,
    chunk_metadata,
    classify_content,
    document_metadata,
    extract_technical_figures,
    find_bridge_terms,
)
from rag.models import is_valid_metadata


def test_chinese_and_english_terms_share_one_name():
    assert find_bridge_terms("桥墩与桥台的支座更换") == ["pier", "abutment", "bearing"]
    assert find_bridge_terms("Pier P3 and the north abutment bearings") == ["pier", "abutment", "bearing"]


def test_english_terms_match_whole_words_only():
    assert find_bridge_terms("Download the spanner deckhand notes") == []
    assert find_bridge_terms("Wind  load on the main\ngirder") == ["load", "main girder", "wind load"]


@pytest.mark.parametrize(
    "text,expected",
    [
        ("公路桥涵设计通用规范 JTG D60", "design_code"),
        ("Girder bending analysis for span 2", "structural_calculation"),
        ("预制梁施工工艺", "construction"),
        ("Load testing and inspection report", "quality_inspection"),
        ("Meeting notes", DEFAULT_CONTENT_TYPE),
    ],
)
def test_content_type_classification(text, expected):
    assert classify_content(text) == expected


def test_technical_figures_are_extracted_as_strings():
    text = "承载力：500 kN，混凝土强度: 50MPa。Span: 40 m, bearing capacity: 1200kN"
    assert extract_technical_figures(text) == [
        "承载力=500kN",
        "bearing capacity=1200kN",
        "强度=50MPa",
        "Span=40m",
    ]


def test_metadata_is_storable_and_omits_empty_lists():
    assert chunk_metadata("Meeting notes") == {}

    meta = {**document_metadata("预应力主梁计算", "2026-01-01T00:00:00+00:00"), **chunk_metadata("预应力主梁计算")}

    assert meta == {
        "contentType": "structural_calculation",
        "addedToKB": "2026-01-01T00:00:00+00:00",
        "bridgeTerms": ["prestress", "main girder"],
    }
    assert is_valid_metadata(meta)
