"""
Semantic search — in-memory vector index plus ranked, scope-aware queries.
"""
