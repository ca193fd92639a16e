"""
Prompt renderers: ``{{key}}`` interpolation over raw template strings.

A placeholder whose value is missing or empty renders as EMPTY_MARKER so a
prompt never silently loses a slot.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import jinja2

from acrag.errors import InvalidTemplate

LOG = logging.getLogger("providers.renderer")

EMPTY_MARKER = "(empty)"

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None


def check_delimiters(template: str) -> ValidationResult:
    """Every ``{{`` must have a matching ``}}``."""
    open_count = template.count("{{")
    close_count = template.count("}}")
    if open_count != close_count:
        return ValidationResult(valid=False, error=f"Unmatched braces: {open_count} {{{{ vs {close_count} }}}}")
    return ValidationResult(valid=True)


def _display(value: Any) -> str:
    if value is None or value == "":
        return EMPTY_MARKER
    return str(value)


class PromptRenderer(ABC):
    """Abstract template renderer."""

    name: str = "abstract"

    @abstractmethod
    def render(self, template: str, values: Mapping[str, Any]) -> str:
        """Substitute ``values`` into ``template``."""

    @abstractmethod
    def validate(self, template: str) -> ValidationResult:
        """Check template syntax before first use."""


class SimpleRenderer(PromptRenderer):
    """Plain ``{{key}}`` substitution, no logic."""

    name = "Simple"

    def render(self, template: str, values: Mapping[str, Any]) -> str:
        def _sub(match: "re.Match[str]") -> str:
            key = match.group(1)
            if key not in values:
                LOG.debug("No value for placeholder %r", key)
            return _display(values.get(key))

        return _PLACEHOLDER_RE.sub(_sub, template)

    def validate(self, template: str) -> ValidationResult:
        return check_delimiters(template)


class _EmptyUndefined(jinja2.Undefined):
    def __str__(self) -> str:
        return EMPTY_MARKER


class JinjaRenderer(PromptRenderer):
    """
    Handlebars-style templates rendered with jinja2.

    Accepts the same ``{{key}}`` templates as SimpleRenderer, plus jinja2
    blocks (``{% if %}``, ``{% for %}``) for richer prompts.
    """

    name = "Jinja2"

    def __init__(self) -> None:
        self._env = jinja2.Environment(
            undefined=_EmptyUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(self, template: str, values: Mapping[str, Any]) -> str:
        context = {key: _display(value) if isinstance(value, str) or value is None else value for key, value in values.items()}
        try:
            return self._env.from_string(template).render(**context)
        except jinja2.TemplateSyntaxError as exc:
            raise InvalidTemplate(f"Template syntax error at line {exc.lineno}: {exc.message}") from exc

    def validate(self, template: str) -> ValidationResult:
        result = check_delimiters(template)
        if not result.valid:
            return result
        try:
            self._env.parse(template)
        except jinja2.TemplateSyntaxError as exc:
            return ValidationResult(valid=False, error=f"line {exc.lineno}: {exc.message}")
        return ValidationResult(valid=True)


def build_renderer(kind: str = "simple") -> PromptRenderer:
    """
    Factory: create a PromptRenderer.

    Args:
        kind: "simple" or "handlebars" (rendered by jinja2)

    Raises:
        ValueError: Unknown renderer
    """
    if kind == "simple":
        return SimpleRenderer()
    elif kind in ("handlebars", "jinja2"):
        return JinjaRenderer()
    else:
        raise ValueError(f"Unknown prompt renderer: {kind!r}. Supported: 'simple', 'handlebars'")
