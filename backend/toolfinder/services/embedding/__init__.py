"""Embedding model wrapper, embedding cache and reranker."""
