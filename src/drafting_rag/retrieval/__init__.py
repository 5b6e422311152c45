"""
Retrieval layer of the drafting RAG system.

This package covers everything needed to turn reference documents into
searchable vectors and to fetch and render the most relevant chunks for a
query.

Submodules
----------
document_loader
    Loads ``.txt``/``.md`` documents from a directory.
text_splitter
    Section-aware recursive splitter producing overlapping chunks.
splitter_factory
    Named splitting policies (``"generic"``, ``"legal"``).
embedder
    Embedding model wrappers.
vector_store
    Qdrant-backed embedding index.
retriever
    Query -> ordered chunks, with retries.
context_assembler
    Grouping, budgeting and rendering of retrieved chunks.
types
    Protocols shared by the retrieval components.
"""
