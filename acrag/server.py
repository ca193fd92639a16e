from __future__ import annotations

import logging
import os
from typing import Dict, Optional

from acrag.errors import AcragError
from acrag.factory import create_plugin
from acrag.plugin import RAGPlugin
from acrag.prompts import DEFAULT_TEMPLATE

LOG_LEVEL = os.environ.get("RAG_LOG_LEVEL", "INFO").upper()

LOG = logging.getLogger("acrag.server")

try:
    from mcp.server.fastmcp import FastMCP
except ImportError as exc:  # pragma: no cover - dependency is optional at import time
    FastMCP = None
    _IMPORT_ERROR = exc
else:
    _IMPORT_ERROR = None


def _require_server() -> "FastMCP":
    if FastMCP is None:
        raise SystemExit(
            "The mcp package is required to run the server. "
            "Install it with `pip install mcp`."
        ) from _IMPORT_ERROR
    return FastMCP("acrag-server")


def _validate_required(name: str, value: Optional[str]) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing required field: {name}")


def _json_payload(model) -> dict:
    return model.model_dump(mode="json")


def build_server(plugin: Optional[RAGPlugin] = None) -> "FastMCP":
    """
    Build the MCP server. Without an explicit ``plugin`` one is created from
    the environment on the first tool call.
    """
    server = _require_server()
    state: Dict[str, Optional[RAGPlugin]] = {"plugin": plugin}

    async def _plugin() -> RAGPlugin:
        current = state["plugin"]
        if current is None:
            current = await create_plugin()
            if current is None:
                raise AcragError("RAG plugin is disabled (RAG_ENABLED=false)")
            state["plugin"] = current
        elif not current.initialized:
            await current.init()
        return current

    @server.tool(description="Semantic search over indexed records. Returns ranked records with scores.")
    async def search_records(query: str, topK: Optional[int] = None, threshold: Optional[float] = None) -> dict:
        _validate_required("query", query)
        rag = await _plugin()
        results = await rag.search(query, top_k=topK, threshold=threshold)
        return {"results": [_json_payload(r) for r in results]}

    @server.tool(description="Index bullet acceptance criteria from requirement documents in a directory.")
    async def index_requirements(directory: Optional[str] = None) -> dict:
        rag = await _plugin()
        indexed = await rag.index_requirements(directory)
        return {"indexed": indexed}

    @server.tool(description="Generate an end-to-end test for an acceptance criterion.")
    async def generate_test(acText: str) -> dict:
        _validate_required("acText", acText)
        rag = await _plugin()
        return _json_payload(await rag.generate_test(acText))

    @server.tool(description="Analyze a test failure log and suggest a cause, fix and retry policy.")
    async def analyze_failure(errorLog: str) -> dict:
        _validate_required("errorLog", errorLog)
        rag = await _plugin()
        return _json_payload(await rag.analyze_failure(errorLog))

    @server.tool(description="Estimate a wait time in milliseconds for a CSS selector.")
    async def estimate_wait_time(selector: str) -> dict:
        _validate_required("selector", selector)
        rag = await _plugin()
        return {"selector": selector, "waitMs": await rag.estimate_wait_time(selector)}

    @server.tool(description="Trace a test's source back to the acceptance criteria it covers.")
    async def trace_test(testCode: str, testPath: str = "") -> dict:
        _validate_required("testCode", testCode)
        rag = await _plugin()
        return _json_payload(await rag.get_traceable(testCode, testPath))

    @server.tool(description="Answer a free-form question using indexed records as context and a named prompt template.")
    async def ask(query: str, templateName: str = DEFAULT_TEMPLATE, topK: int = 3) -> dict:
        _validate_required("query", query)
        rag = await _plugin()
        return {"answer": await rag.ask(templateName, query, top_k=topK)}

    @server.tool(description="Return index statistics and the active provider names.")
    async def get_stats() -> dict:
        rag = await _plugin()
        return _json_payload(await rag.get_stats())

    return server


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    server = build_server()
    server.run()


if __name__ == "__main__":
    main()
