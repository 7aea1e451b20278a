"""HTTP API route modules."""

from . import chat, data, folders, graph, notes, studio

__all__ = ["chat", "data", "folders", "graph", "notes", "studio"]
