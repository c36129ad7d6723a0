"""
Ingestion — chunking, embedding, and persisting resource text.

Raw text is split into overlapping fixed-size windows, embedded in
batches by the configured embedding service, and written to the chunk
store all-or-nothing.
"""
