"""
rag_chat — retrieval-augmented chat core.

Ingestion chunks text into fixed overlapping windows, embeds the chunks
in batches and stores them atomically; retrieval embeds a query, ranks
stored chunks by cosine similarity and assembles a token-bounded context
for the chat model.
"""

__version__ = "0.1.0"
