"""
Ingestion — PDF loading, chunking, embedding and vector storage.

This package is the offline half of the system: it turns the shareholder
letters in a source directory into embedded chunks stored in the vector
database.  Entry point: :func:`berkshire_rag.ingestion.pipeline.run_ingestion`.
"""
