"""
Serving — FastAPI application for ingestion, retrieval, and chat.

The app is built by :func:`rag_chat.serving.app.create_app`; services are
wired once in the lifespan and injected into every request handler.
"""
