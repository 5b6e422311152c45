"""drafting_rag.pipelines

Pipeline orchestration components for the drafting RAG system.

Pipelines coordinate the retrieval components. They are stateless beyond
their configured components, making them safe to reuse across turns and
threads.

Modules
-------
retrieval_pipeline
    Per-turn query extraction, retrieval and context assembly.
ingestion_pipeline
    Batch chunking, versioning and indexing of reference documents.
"""
