"""
Prompt template library.

Templates are looked up by name (``login/user_flow``) in a prompts directory
as ``<name>.txt`` then ``<name>.yaml``; names with no file fall back to the
built-in templates below. Loaded text is cached per library instance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Union

LOG = logging.getLogger("acrag.prompts")

TEMPLATE_SUFFIXES = (".txt", ".yaml")

DEFAULT_TEMPLATE = "shared/default"
LOGIN_TEMPLATE = "login/user_flow"
CHECKOUT_TEMPLATE = "checkout/order_flow"
FAILURE_TEMPLATE = "failure/analysis"
WAIT_TIME_TEMPLATE = "selector/wait_time"
PATTERNS_TEMPLATE = "knowledge/patterns"

FRAMEWORK_CONTEXT = """\
Playwright + TypeScript Framework with layers:
- Pages: Locator registry (pages.login, pages.inventory, etc.)
- Core: ElementActions wrapper (click, type, getText, assertText, waitForVisible)
- Flows: Business flows (loginFlow, addItemToCartFlow, checkoutFlow, completeOrderFlow)
- Fixtures: Playwright test injection (test, expect, { actions, pages })
- Tests: Spec files using flows and fixtures

Rules:
1. Always import from fixtures, not directly from Playwright
2. Use flows for business logic; keep tests thin
3. Never hardcode selectors in tests; use pages registry
4. Each test should verify one feature/AC
5. Use preconditions for test setup (userLoggedIn, userHasItemInCart)
"""

BUILTIN_TEMPLATES: Dict[str, str] = {
    DEFAULT_TEMPLATE: """\
You are writing an end-to-end test for the framework described below.

{{framework_context}}

Acceptance criterion:
{{ac_text}}

Similar acceptance criteria already indexed:
{{similar_tests}}

Write one Playwright test in TypeScript that verifies the acceptance criterion.
Return only the code.
""",
    LOGIN_TEMPLATE: """\
You are writing an authentication test for the framework described below.

{{framework_context}}

Acceptance criterion:
{{ac_text}}

Similar acceptance criteria already indexed:
{{similar_tests}}

Use loginFlow for signing in and assert on the resulting page state.
Cover the failure message when credentials are rejected, if the criterion mentions it.
Return only the code.
""",
    CHECKOUT_TEMPLATE: """\
You are writing a checkout/order test for the framework described below.

{{framework_context}}

Acceptance criterion:
{{ac_text}}

Similar acceptance criteria already indexed:
{{similar_tests}}

Start from the userHasItemInCart precondition and drive checkoutFlow and
completeOrderFlow. Assert on totals and the confirmation page.
Return only the code.
""",
    FAILURE_TEMPLATE: """\
Error Log:
{{error_log}}

Similar Past Failures:
{{similar_failures}}

Based on this error and similar failures, suggest:
1. What is the likely root cause?
2. How should this be fixed?
3. Should we retry?
4. If retry, recommended wait time in ms?

Format as JSON: { "cause": "...", "suggestion": "...", "retry": true/false, "waitMs": 1000 }
""",
    WAIT_TIME_TEMPLATE: """\
CSS Selector: {{selector}}

Based on common web element waits:
- Simple selectors (button, input): 3000ms
- Complex selectors (nested, dynamic): 5000ms
- API-dependent elements: 8000ms

Estimate reasonable wait time in ms for this selector. Return only a number.
""",
    PATTERNS_TEMPLATE: """\
Task: {{task}}

Suggest {{limit}} common test patterns for this task. Include:
1. Pattern name
2. Description
3. Code example
4. When to use

Format as JSON array of objects with fields: name, description, code, note
""",
}


class TemplateNotFound(KeyError):
    """Raised when a template name has neither a file nor a built-in."""

    pass


class PromptLibrary:
    """Resolves template names to raw template text."""

    def __init__(self, prompts_dir: Union[str, Path, None] = None) -> None:
        self._dir = Path(prompts_dir) if prompts_dir else None
        self._cache: Dict[str, str] = {}

    def load(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]

        text = self._read_file(name)
        if text is None:
            if name not in BUILTIN_TEMPLATES:
                raise TemplateNotFound(f"Prompt template not found: {name}")
            text = BUILTIN_TEMPLATES[name]

        self._cache[name] = text
        return text

    def _read_file(self, name: str) -> Optional[str]:
        if self._dir is None:
            return None
        for suffix in TEMPLATE_SUFFIXES:
            path = self._dir / f"{name}{suffix}"
            if path.is_file():
                LOG.debug("Loaded prompt template %s from %s", name, path)
                return path.read_text(encoding="utf-8")
        return None
