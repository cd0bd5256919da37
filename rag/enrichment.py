"""
Bridge-domain metadata for ingested chunks.

Detects bridge engineering terms, the kind of document and quoted technical
figures, and returns them as filterable metadata. Chunk text is never
rewritten.
"""

import re
from typing import Any, Dict, List

# Chinese terms as used in design codes, with their English counterparts
BRIDGE_TERMS: Dict[str, str] = {
    "承载力": "bearing capacity",
    "安全系数": "safety factor",
    "荷载": "load",
    "弯矩": "bending moment",
    "剪力": "shear force",
    "挠度": "deflection",
    "混凝土": "concrete",
    "钢筋": "reinforcement",
    "预应力": "prestress",
    "徐变": "creep",
    "收缩": "shrinkage",
    "疲劳": "fatigue",
    "桥墩": "pier",
    "桥台": "abutment",
    "桥面": "deck",
    "主梁": "main girder",
    "桥跨": "span",
    "支座": "bearing",
    "伸缩缝": "expansion joint",
    "排水": "drainage",
    "护栏": "guardrail",
    "抗震": "seismic",
    "风荷载": "wind load",
    "温度荷载": "temperature load",
}

# checked in order; the first match wins
CONTENT_TYPES = [
    ("design_code", ("规范", "标准", "specification", "design code", "standard")),
    ("structural_calculation", ("计算", "分析", "calculation", "analysis")),
    ("construction", ("施工", "工艺", "construction", "erection")),
    ("quality_inspection", ("检测", "试验", "inspection", "testing")),
]
DEFAULT_CONTENT_TYPE = "technical_document"

TECHNICAL_FIGURES = [
    re.compile(r"(承载力|bearing capacity)\s*[：:]\s*([0-9.]+)\s*(kN|MPa|t)\b", re.IGNORECASE),
    re.compile(r"(强度|strength)\s*[：:]\s*([0-9.]+)\s*(MPa|kPa)\b", re.IGNORECASE),
    re.compile(r"(跨径|span)\s*[：:]\s*([0-9.]+)\s*(m|米)(?![a-z])", re.IGNORECASE),
]

_ENGLISH_TERMS = {
    english: re.compile(r"\b" + re.escape(english).replace(r"\ ", r"\s+") + r"s?\b", re.IGNORECASE)
    for english in BRIDGE_TERMS.values()
}


def find_bridge_terms(text: str) -> List[str]:
    """Bridge terms present in ``text``, in glossary order, as English names."""
    found = []
    for chinese, english in BRIDGE_TERMS.items():
        if chinese in text or _ENGLISH_TERMS[english].search(text):
            found.append(english)
    return found


def classify_content(text: str) -> str:
    lowered = text.lower()
    for content_type, keywords in CONTENT_TYPES:
        if any(k in lowered for k in keywords):
            return content_type
    return DEFAULT_CONTENT_TYPE


def extract_technical_figures(text: str) -> List[str]:
    """Quoted figures such as ``承载力: 500 kN`` as ``"承载力=500kN"`` strings."""
    figures = []
    for pattern in TECHNICAL_FIGURES:
        for match in pattern.finditer(text):
            figures.append(f"{match.group(1)}={match.group(2)}{match.group(3)}")
    return figures


def document_metadata(text: str, added_at: str) -> Dict[str, Any]:
    """Fields shared by every chunk of one ingested document."""
    return {"contentType": classify_content(text), "addedToKB": added_at}


def chunk_metadata(chunk: str) -> Dict[str, Any]:
    """Per-chunk fields; empty lists are left out."""
    metadata: Dict[str, Any] = {}
    terms = find_bridge_terms(chunk)
    if terms:
        metadata["bridgeTerms"] = terms
    figures = extract_technical_figures(chunk)
    if figures:
        metadata["technicalFigures"] = figures
    return metadata
