"""
RAG plugin façade.

The single entry point for test generation, requirement indexing, test
selection, failure analysis, traceability and knowledge lookups. Every
operation is a thin composition over the injected store, retriever and
providers; the plugin never branches on which backend it was given.

Usage::

    plugin = RAGPlugin(config, embedder, llm, store, renderer, retriever)
    await plugin.init()
    await plugin.index_requirements("rag/requirements")
    generated = await plugin.generate_test("User can log in with valid credentials")
    await plugin.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from acrag.config import PluginConfig
from acrag.errors import FeatureDisabled, InvalidTemplate, MalformedResponse, NotInitialized, ProviderUnavailable
from acrag.models import (
    CodeChange,
    FailureAnalysis,
    GeneratedTest,
    PatternSuggestion,
    RAGStats,
    Record,
    RecordMetadata,
    RecordType,
    SearchResult,
    SimilarFailure,
    TraceResult,
)
from acrag.prompts import (
    CHECKOUT_TEMPLATE,
    DEFAULT_TEMPLATE,
    FAILURE_TEMPLATE,
    FRAMEWORK_CONTEXT,
    LOGIN_TEMPLATE,
    PATTERNS_TEMPLATE,
    WAIT_TIME_TEMPLATE,
    PromptLibrary,
)
from acrag.providers.embedding import EmbeddingProvider
from acrag.providers.generation import GenerationOptions, GenerationProvider
from acrag.providers.renderer import PromptRenderer
from acrag.requirements import iter_requirement_files, parse_requirements
from acrag.retriever import Retriever
from acrag.storage.record_store import RecordStore

LOG = logging.getLogger("acrag.plugin")

# Tunable heuristic: used when the wait-time reply has no leading integer.
DEFAULT_WAIT_MS = 5000

GENERATION_CONTEXT_SIZE = 3
NO_SIMILAR_TESTS = "(no similar tests found)"
UNKNOWN_TEST = "unknown-test"

_TEST_OPTIONS = GenerationOptions(max_tokens=1024, temperature=0.7)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")
_JS_TEST_NAME_RE = re.compile(r"test\(['\"`]([^'\"`]+)['\"` ]")
_PY_TEST_NAME_RE = re.compile(r"def\s+(test_\w+)")


class _FailureVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cause: Optional[str] = None
    suggestion: str = ""
    retry: bool = False
    wait_ms: Optional[int] = Field(default=None, alias="waitMs")


def select_template(ac_text: str) -> str:
    """Pick a generation template by keyword sniffing on the AC text."""
    lowered = ac_text.lower()
    if "login" in lowered or "auth" in lowered:
        return LOGIN_TEMPLATE
    if "checkout" in lowered or "order" in lowered:
        return CHECKOUT_TEMPLATE
    return DEFAULT_TEMPLATE


def _extract_json(text: str) -> Any:
    """Decode JSON from a model reply, tolerating a markdown fence around it."""
    matches = _FENCE_RE.findall(text)
    payload = matches[0] if matches else text
    try:
        return json.loads(payload.strip())
    except ValueError as exc:
        raise MalformedResponse(f"Reply is not JSON: {exc}") from exc


def parse_failure_verdict(text: str) -> _FailureVerdict:
    data = _extract_json(text)
    try:
        return _FailureVerdict.model_validate(data)
    except ValueError as exc:
        raise MalformedResponse(f"Reply does not match the failure analysis shape: {exc}") from exc


def parse_wait_ms(text: str) -> Optional[int]:
    """Leading integer of the reply, or None."""
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else None


def parse_patterns(text: str) -> List[PatternSuggestion]:
    data = _extract_json(text)
    if not isinstance(data, list):
        raise MalformedResponse("Expected a JSON array of patterns")

    patterns: List[PatternSuggestion] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        note = item.get("note")
        patterns.append(
            PatternSuggestion(
                name=str(item.get("name", "")),
                description=str(item.get("description", "")),
                code=str(item.get("code", "")),
                usage_count=0,
                examples=[str(note)] if note else [],
            )
        )
    return patterns


def extract_test_name(test_code: str) -> str:
    match = _JS_TEST_NAME_RE.search(test_code) or _PY_TEST_NAME_RE.search(test_code)
    return match.group(1) if match else UNKNOWN_TEST


class RAGPlugin:
    """
    Retrieval-augmented test tooling over swappable providers.

    Lifecycle: ``init()`` before anything else (idempotent); ``close()``
    releases the store and provider clients. Operations outside that window
    raise NotInitialized. A closed plugin cannot be re-initialized.
    """

    def __init__(
        self,
        config: PluginConfig,
        embedding_provider: EmbeddingProvider,
        generation_provider: GenerationProvider,
        store: RecordStore,
        renderer: PromptRenderer,
        retriever: Retriever,
        prompts: Optional[PromptLibrary] = None,
    ) -> None:
        self._config = config
        self._embed = embedding_provider
        self._llm = generation_provider
        self._store = store
        self._renderer = renderer
        self._retriever = retriever
        self._prompts = prompts or PromptLibrary(config.paths.prompts_dir)
        self._validated_templates: Set[str] = set()
        self._initialized = False
        self._closed = False
        self._last_indexed: Optional[datetime] = None

    @property
    def config(self) -> PluginConfig:
        return self._config

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def __aenter__(self) -> "RAGPlugin":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def init(self, strict: bool = False) -> None:
        """
        Check the providers and initialize the store.

        An unavailable provider is logged and tolerated (its calls degrade to
        sentinels) unless ``strict`` is set, which raises ProviderUnavailable.
        """
        if self._closed:
            raise NotInitialized("RAG plugin has been closed; create a new instance")
        if self._initialized:
            return

        LOG.info(
            "Initializing RAG plugin (store=%s, embedding=%s, llm=%s)",
            self._store.name,
            self._embed.name,
            self._llm.name,
        )
        for kind, provider in (("Embedding", self._embed), ("Generation", self._llm)):
            if await provider.is_available():
                continue
            if strict:
                raise ProviderUnavailable(f"{kind} provider {provider.name} is not available")
            LOG.warning("%s provider %s not available; its calls will return fallbacks", kind, provider.name)

        # A strict failure above leaves the store unopened and the plugin uninitialized.
        await self._store.init()
        self._initialized = True

    async def close(self) -> None:
        if self._closed:
            return
        await self._store.close()
        await self._embed.close()
        await self._llm.close()
        self._initialized = False
        self._closed = True
        LOG.info("RAG plugin closed")

    def _require_init(self) -> None:
        if not self._initialized:
            raise NotInitialized("RAG plugin is not initialized; call init() first")

    def _require_feature(self, feature: str) -> None:
        self._require_init()
        if not getattr(self._config.features, feature):
            raise FeatureDisabled(f"Feature {feature!r} is disabled in the plugin configuration")

    def _render(self, template_name: str, values: Mapping[str, Any]) -> str:
        template = self._prompts.load(template_name)
        if template_name not in self._validated_templates:
            check = self._renderer.validate(template)
            if not check.valid:
                raise InvalidTemplate(f"Template {template_name!r} is invalid: {check.error}")
            self._validated_templates.add(template_name)
        return self._renderer.render(template, values)

    # ── Indexing ──────────────────────────────────────────────────────

    async def index_requirements(self, directory: Union[str, Path, None] = None) -> int:
        """
        Index bullet acceptance criteria from every requirement document.

        ACs whose text is already stored (ignoring case) are skipped. Returns
        the number of records written.
        """
        self._require_init()
        root = Path(directory or self._config.paths.requirements_dir)
        if not root.is_dir():
            LOG.warning("Requirements directory not found: %s", root)
            return 0

        total = 0
        embedded = 0
        for filename, content in iter_requirement_files(root):
            acs = parse_requirements(content)
            LOG.info("Indexing %s (%d ACs)", filename, len(acs))

            for i, ac in enumerate(acs, 1):
                record_id = f"{filename}-ac-{i}"
                if await self._store.find_by_text(ac):
                    LOG.debug("Duplicate AC %s skipped", record_id)
                    continue

                # Rate-limit courtesy for remote embedding backends.
                if embedded and self._config.index_delay > 0:
                    await asyncio.sleep(self._config.index_delay)

                result = await self._embed.embed_result(ac)
                embedded += 1
                if result.degraded:
                    LOG.warning("AC %s stored with a zero vector: %s", record_id, result.error)

                await self._store.add_record(
                    Record(
                        id=record_id,
                        text=ac,
                        embedding=result.vector,
                        source_file=filename,
                        metadata=RecordMetadata(type=RecordType.AC),
                    )
                )
                total += 1

        self._last_indexed = datetime.now(timezone.utc)
        LOG.info("Indexed %d ACs from %s", total, root)
        return total

    # ── Test generation ───────────────────────────────────────────────

    async def generate_test(self, ac_text: str, context: Optional[Mapping[str, str]] = None) -> GeneratedTest:
        self._require_feature("test_generation")
        LOG.info("Generating test for AC: %s...", ac_text[:50])

        template_name = select_template(ac_text)
        similar = await self._retriever.retrieve(ac_text, top_k=GENERATION_CONTEXT_SIZE)
        similar_text = "\n".join(f"- {r.record.text} (confidence: {r.score * 100:.0f}%)" for r in similar)

        values: Dict[str, Any] = dict(context or {})
        values.update(
            ac_text=ac_text,
            framework_context=self.get_framework_context(),
            similar_tests=similar_text or NO_SIMILAR_TESTS,
        )
        prompt = self._render(template_name, values)
        result = await self._llm.generate_result(prompt, _TEST_OPTIONS)

        return GeneratedTest(
            test_code=result.text,
            ac_id=f"ac-{int(time.time() * 1000)}",
            ac_text=ac_text,
            confidence=similar[0].score if similar else 0.0,
            reasoning=f"Generated using template {template_name} with {len(similar)} similar references",
            template=template_name,
            degraded=result.degraded,
        )

    # ── Test selection ────────────────────────────────────────────────

    async def find_related_tests(self, query: str, limit: int = 10) -> List[str]:
        """Record texts related to ``query``, standing in for test identifiers."""
        self._require_feature("test_selection")
        results = await self.search(query, top_k=limit)
        return [r.record.text for r in results]

    async def find_affected_tests(self, change: CodeChange) -> List[str]:
        return await self.find_related_tests(f"{change.before}\n---\n{change.after}")

    # ── Failure analysis ──────────────────────────────────────────────

    async def find_similar_failures(self, error_log: str, limit: int = 5) -> List[FailureAnalysis]:
        self._require_feature("failure_analysis")
        results = await self._retriever.retrieve(error_log, top_k=limit)
        return [
            FailureAnalysis(
                error_message=r.record.text,
                suggestion=f"Similar to: {r.record.source_file}",
                retry=True,
            )
            for r in results
        ]

    async def analyze_failure(self, error_log: str) -> FailureAnalysis:
        """
        Best-effort diagnosis of a test failure.

        The generation provider is asked for JSON; an unparseable reply is
        kept verbatim as the suggestion with retry disabled and ``degraded``
        set.
        """
        similar = await self.find_similar_failures(error_log, limit=3)
        similar_failures = [SimilarFailure(cause=f.suggestion) for f in similar]

        prompt = self._render(
            FAILURE_TEMPLATE,
            {"error_log": error_log, "similar_failures": "\n".join(f.suggestion for f in similar)},
        )
        result = await self._llm.generate_result(prompt)

        try:
            verdict = parse_failure_verdict(result.text)
        except MalformedResponse as exc:
            LOG.warning("Failure analysis reply unparseable, using raw text: %s", exc)
            return FailureAnalysis(
                error_message=error_log,
                similar_failures=similar_failures,
                suggestion=result.text,
                retry=False,
                degraded=True,
            )

        return FailureAnalysis(
            error_message=error_log,
            similar_failures=similar_failures,
            cause=verdict.cause,
            suggestion=verdict.suggestion,
            retry=verdict.retry,
            wait_ms=verdict.wait_ms,
            degraded=result.degraded,
        )

    async def estimate_wait_time(self, selector: str) -> int:
        """Milliseconds to wait for ``selector``; DEFAULT_WAIT_MS if the reply is unusable."""
        self._require_feature("failure_analysis")
        prompt = self._render(WAIT_TIME_TEMPLATE, {"selector": selector})
        result = await self._llm.generate_result(prompt)
        if result.degraded:
            return DEFAULT_WAIT_MS

        wait_ms = parse_wait_ms(result.text)
        if wait_ms is None:
            LOG.debug("Wait-time reply %r has no integer, using default", result.text[:40])
            return DEFAULT_WAIT_MS
        return wait_ms

    # ── Traceability ──────────────────────────────────────────────────

    async def get_traceable(self, test_code: str, test_path: str = "") -> TraceResult:
        """Map a test's source back to the stored records it most resembles."""
        self._require_feature("traceability")
        related = await self._retriever.retrieve(test_code, top_k=GENERATION_CONTEXT_SIZE)
        return TraceResult(
            test_name=extract_test_name(test_code),
            test_path=test_path,
            test_code=test_code,
            related_acs=[r.record for r in related],
            confidence=related[0].score if related else 0.0,
        )

    async def generate_trace_matrix(self, tests: Optional[Mapping[str, str]] = None) -> Dict[str, List[str]]:
        """
        AC record id → names of tests that trace to it.

        Every stored AC gets an entry. ``tests`` maps test name to test source;
        without it all entries are empty.
        """
        self._require_feature("traceability")
        records = await self._store.get_all_records()
        matrix: Dict[str, List[str]] = {r.id: [] for r in records if r.metadata.type == RecordType.AC}

        for test_name, test_code in (tests or {}).items():
            trace = await self.get_traceable(test_code)
            for ac in trace.related_acs:
                linked = matrix.get(ac.id)
                if linked is not None and test_name not in linked:
                    linked.append(test_name)

        return matrix

    # ── Knowledge ─────────────────────────────────────────────────────

    async def find_similar_tests(self, query: str, limit: int = 5) -> List[PatternSuggestion]:
        self._require_feature("knowledge")
        results = await self.search(query, top_k=limit)
        return [
            PatternSuggestion(
                name=f"Pattern {idx}",
                description=r.record.text[:100],
                code=f"// See {r.record.source_file}",
                usage_count=1,
                examples=[r.record.text],
            )
            for idx, r in enumerate(results, 1)
        ]

    async def suggest_test_patterns(self, task: str, limit: int = 5) -> List[PatternSuggestion]:
        self._require_feature("knowledge")
        prompt = self._render(PATTERNS_TEMPLATE, {"task": task, "limit": str(limit)})
        result = await self._llm.generate_result(prompt)
        try:
            return parse_patterns(result.text)[:limit]
        except MalformedResponse as exc:
            LOG.warning("Pattern suggestion reply unparseable: %s", exc)
            return []

    async def ask(self, template_name: str, query: str, top_k: int = GENERATION_CONTEXT_SIZE) -> str:
        """
        Free-form question over the index through a caller-named template.

        The template sees ``ac_text`` (the query), ``framework_context`` and
        ``similar_tests`` (up to ``top_k`` retrieved records with their source
        files). Returns the generated text, or the generation fallback when
        the provider fails. An unknown template raises TemplateNotFound.
        """
        self._require_feature("knowledge")
        LOG.info("Answering with template %s: %s...", template_name, query[:50])

        similar = await self._retriever.retrieve(query, top_k=top_k)
        context = "\n".join(f"- {r.record.text} (source: {r.record.source_file})" for r in similar)
        prompt = self._render(
            template_name,
            {
                "ac_text": query,
                "framework_context": self.get_framework_context(),
                "similar_tests": context or NO_SIMILAR_TESTS,
            },
        )
        result = await self._llm.generate_result(prompt)
        return result.text

    def get_framework_context(self) -> str:
        return FRAMEWORK_CONTEXT

    # ── Direct access ─────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        self._require_init()
        return await self._retriever.retrieve(query, top_k=top_k, threshold=threshold)

    async def search_by_vector(
        self,
        query_vector: Sequence[float],
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        self._require_init()
        return await self._retriever.retrieve_by_vector(query_vector, top_k=top_k, threshold=threshold)

    async def add_record(self, record: Record) -> None:
        self._require_init()
        await self._store.add_record(record)

    async def get_stats(self) -> RAGStats:
        self._require_init()
        total = await self._store.get_record_count()
        by_type = Counter(r.metadata.type.value for r in await self._store.get_all_records())

        return RAGStats(
            total_records=total,
            embedding_model=self._embed.name,
            vector_store=self._store.name,
            llm_provider=self._llm.name,
            indexed_acs=by_type.get(RecordType.AC.value, 0),
            indexed_tests=by_type.get(RecordType.TEST.value, 0),
            records_by_type=dict(by_type),
            last_indexed=self._last_indexed,
        )
