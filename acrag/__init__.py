"""
acrag: retrieval-augmented test tooling.

Indexes acceptance criteria from requirement documents, retrieves them by
semantic similarity, and feeds them to a generation model for test
generation, failure analysis and traceability.

Entry points: ``acrag.factory.create_plugin`` and the ``acrag-server`` MCP
tool server.
"""

from __future__ import annotations

from acrag.config import PluginConfig
from acrag.errors import AcragError
from acrag.factory import build_plugin, create_plugin
from acrag.plugin import RAGPlugin

__version__ = "0.1.0"

__all__ = [
    "AcragError",
    "PluginConfig",
    "RAGPlugin",
    "build_plugin",
    "create_plugin",
]
