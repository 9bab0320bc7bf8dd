"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document text extraction
- Document chunking with overlap
- Local hash embedding generation
- SQLite vector storage
- Material processing pipeline
- Course-scoped semantic retrieval
"""
