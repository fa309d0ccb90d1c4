"""
Serving — FastAPI application for letter search and the chat agent.

Run with ``uvicorn --factory berkshire_rag.serving.app:create_app``.
"""
