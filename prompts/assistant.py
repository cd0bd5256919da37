from typing import Sequence

from rag.models import KnowledgeBaseStats, QueryMatch


BRIDGE_ASSISTANT_PREAMBLE = """
You are a professional bridge engineering assistant. Your expertise covers:
1. Bridge design principles, structural mechanics and materials science
2. Domestic and international bridge design codes and standards
3. Reading BIM models, CAD drawings and technical documents
4. Design recommendations and safety assessment
5. Construction, maintenance and inspection of bridges

Answer bridge-related questions in professional but accessible language.
""".strip()

GROUNDED_CONTEXT_PROMPT = """
Answer the user's question using the relevant documents below.

Relevant documents:
{context}

User question: {question}

Base your answer on the documents above and cite the specific document sources you use.
If the documents do not fully answer the question, say so and add your own professional advice.
""".strip()

SOURCE_ENTRY = "[Document {index}] {file_name} (relevance: {percent}%)\n{text}"


def format_context_prompt(question: str, matches: Sequence[QueryMatch]) -> str:
    context = "\n\n".join(
        SOURCE_ENTRY.format(
            index=i,
            file_name=m.chunk.file_name,
            percent=round(m.score * 100),
            text=m.chunk.text,
        )
        for i, m in enumerate(matches, 1)
    )
    return GROUNDED_CONTEXT_PROMPT.format(context=context, question=question)


def format_status_summary(stats: KnowledgeBaseStats) -> str:
    breakdown = stats.category_breakdown
    lines = [
        "Bridge knowledge base status:",
        f"Vectors: {stats.vector_count}",
        f"Documents: {stats.document_count}",
        f"Specifications and reports: {breakdown.get('document', 0)}",
        f"BIM models: {breakdown.get('model', 0)}",
        f"CAD drawings: {breakdown.get('drawing', 0)}",
        f"Last updated: {stats.last_updated or 'never'}",
    ]
    return "\n".join(lines)
