"""Sankey Flow backend - FastAPI app and WebSocket change feed over one editor session."""
