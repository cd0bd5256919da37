"""
Retrieval-augmented question answering over bridge-engineering documents.

Entry point is ``rag.coordinator.build_coordinator``.
"""
