"""RAG: state-aware story context retrieval."""
from backend.app.rag.context_retriever import ContextRetriever, context_summary

__all__ = ["ContextRetriever", "context_summary"]
