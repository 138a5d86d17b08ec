"""
Hybrid templating: fast boolean conditions and full Jinja2 rendering.

This module provides:
1. ExpressionCache: compiled condition programs keyed by expression text
2. TemplatingEngine: condition evaluation plus template rendering of inline
   strings, template files, and import paths

Condition Syntax (infix):
- Comparison: ==, !=, <, <=, >, >=
- Boolean: and / &&, or / ||, not / !
- Membership: "docker" in Platform.Tags, "x" not in List
- String: Name contains "sub", Name startsWith "a", Name endsWith "z"
- Regex: Platform.Distro matches "^Ubuntu"

Conditions are translated to Jinja2 expression syntax (the word operators
become Jinja2 tests) and compiled once with ``compile_expression``. Missing
keys at any depth evaluate as an undefined "zero" value. It is falsy and equals
only ``none``, so ``X != nil`` is false for a missing key. An undefined result
counts as false.

Template Syntax (Jinja2):
- {{ Platform.OS }}
- {% if Platform.OS == "linux" %}...{% endif %}
- {% for pkg in packages %}{{ pkg }}{% endfor %}
- {{ Platform.OS | upper }}
"""

import base64
import hashlib
import json
import logging
import os
import re
import shlex
import shutil
import subprocess
import traceback
from collections.abc import Callable
from pathlib import Path
from typing import Any

from jinja2 import (
    BaseLoader,
    ChainableUndefined,
    DebugUndefined,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateSyntaxError,
    Undefined,
)
from jinja2.environment import TemplateExpression
from jinja2.sandbox import SandboxedEnvironment

from .exceptions import ConditionEvaluationError, TemplateRenderError

logger = logging.getLogger(__name__)

INLINE_TEMPLATE_NAME = "<inline template>"

# Jinja2 reports from_string() templates under this filename in tracebacks
_JINJA_STRING_FILENAME = "<template>"

# Word operators mapped to the Jinja2 tests registered below
_WORD_OPERATORS = {
    "matches": "matching",
    "contains": "containing",
    "startsWith": "startingwith",
    "endsWith": "endingwith",
}

_STRING_LITERAL = re.compile(r"(\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*')")
_WORD_OPERATOR = re.compile(r"(?<![\w.])(matches|contains|startsWith|endsWith)\b")
_NEGATION = re.compile(r"!(?!=)")
_NIL = re.compile(r"(?<![\w.])nil\b")
_QUOTED = re.compile(r"'([^']+)'")


class ZeroUndefined(ChainableUndefined):
    """
    Undefined that chains through attribute access and orders as false.

    It equals ``none`` (and other undefined values) only, so ``X == nil``
    holds for a missing fact and ``X != nil`` fails closed.
    """

    __slots__ = ()

    def _false(self, *args: Any, **kwargs: Any) -> bool:
        return False

    __lt__ = __le__ = __gt__ = __ge__ = _false  # type: ignore[assignment]

    def __eq__(self, other: Any) -> bool:
        return other is None or isinstance(other, Undefined)

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    __hash__ = ChainableUndefined.__hash__


class PlaceholderUndefined(ChainableUndefined, DebugUndefined):
    """Undefined that renders back as ``{{ name }}`` so callers can detect it."""

    __slots__ = ()


# =============================================================================
# Condition tests and template helpers
# =============================================================================


def _test_matching(value: Any, pattern: Any) -> bool:
    return isinstance(value, str) and re.search(str(pattern), value) is not None


def _test_containing(value: Any, item: Any) -> bool:
    if isinstance(value, str):
        return isinstance(item, str) and item in value
    if isinstance(value, (list, tuple, set, dict)):
        return item in value
    return False


def _test_startingwith(value: Any, prefix: Any) -> bool:
    return isinstance(value, str) and value.startswith(str(prefix))


def _test_endingwith(value: Any, suffix: Any) -> bool:
    return isinstance(value, str) and value.endswith(str(suffix))


def op_read(reference: str) -> str:
    """Read a secret through the 1Password CLI (``op read <reference>``)."""
    if not reference:
        raise ValueError("1Password reference cannot be empty")

    if shutil.which("op") is None:
        raise RuntimeError("1Password CLI (op) not found in PATH")

    result = subprocess.run(
        ["op", "read", reference], capture_output=True, text=True, check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"1Password CLI error for '{reference}': {result.stderr.strip()}")

    return result.stdout.strip()


TEMPLATE_FILTERS: dict[str, Callable[..., Any]] = {
    "quote": shlex.quote,
    "prettyjson": lambda x: json.dumps(x, indent=2),
    "tojson": json.dumps,
    "b64encode": lambda x: base64.b64encode(x.encode()).decode(),
    "b64decode": lambda x: base64.b64decode(x).decode(),
    "hash": lambda x, algo="sha256": hashlib.new(algo, x.encode()).hexdigest(),
    "keys": lambda x: list(x.keys()) if isinstance(x, dict) else [],
    "values": lambda x: list(x.values()) if isinstance(x, dict) else [],
    "basename": os.path.basename,
    "dirname": os.path.dirname,
    "expanduser": os.path.expanduser,
    "path_clean": os.path.normpath,
}

TEMPLATE_GLOBALS: dict[str, Any] = {
    "path_join": os.path.join,
    "path_clean": os.path.normpath,
    "path_sep": lambda: os.sep,
    "op_read": op_read,
}

CONDITION_TESTS: dict[str, Callable[..., bool]] = {
    "matching": _test_matching,
    "containing": _test_containing,
    "startingwith": _test_startingwith,
    "endingwith": _test_endingwith,
}


def translate_condition(expression: str) -> str:
    """
    Translate an infix condition into Jinja2 expression syntax.

    String literals are left untouched; only the code between them is rewritten.

    Examples:
        >>> translate_condition('Platform.OS == "linux" && !Platform.IsRoot')
        'Platform.OS == "linux"  and   not Platform.IsRoot'
        >>> translate_condition('Platform.Distro matches "^Ubuntu"')
        'Platform.Distro  is matching  "^Ubuntu"'
    """
    parts = _STRING_LITERAL.split(expression)
    for index in range(0, len(parts), 2):
        code = parts[index]
        code = code.replace("&&", " and ").replace("||", " or ")
        code = _NEGATION.sub(" not ", code)
        code = _NIL.sub("none", code)
        code = _WORD_OPERATOR.sub(lambda m: f" is {_WORD_OPERATORS[m.group(1)]} ", code)
        parts[index] = code
    return "".join(parts).replace("\n", " ").strip()


# =============================================================================
# Expression cache
# =============================================================================


class ExpressionCache:
    """
    Compiled condition programs keyed by expression text.

    One cache belongs to one TemplatingEngine, and one engine serves one
    resolution run. The cache is a plain dict and is not safe for concurrent
    resolutions; construct a new engine per run instead of sharing one.
    """

    def __init__(self) -> None:
        self._programs: dict[str, TemplateExpression] = {}
        self.compile_count = 0

    def get_or_compile(
        self, expression: str, compiler: Callable[[str], TemplateExpression]
    ) -> TemplateExpression:
        """Return the cached program for expression, compiling it on first use."""
        program = self._programs.get(expression)
        if program is None:
            program = compiler(expression)
            self._programs[expression] = program
            self.compile_count += 1
            logger.debug(f"Compiled condition: {expression!r}")
        return program

    def clear(self) -> None:
        self._programs.clear()

    def __contains__(self, expression: object) -> bool:
        return expression in self._programs

    def __len__(self) -> int:
        return len(self._programs)


# =============================================================================
# Templating engine
# =============================================================================


class TemplatingEngine:
    """
    Condition evaluation and template rendering over one shared context.

    Example:
        engine = TemplatingEngine(base_path=Path("~/.dotfiles").expanduser())
        context = {"Platform": {"OS": "linux"}, "name": "world"}

        engine.evaluate_condition('Platform.OS == "linux"', context)  # True
        engine.render_string("hello {{ name }}", context)  # "hello world"
    """

    def __init__(
        self,
        base_path: str | Path | None = None,
        strict: bool = False,
        cache: ExpressionCache | None = None,
    ):
        """
        Initialize templating engine.

        Args:
            base_path: Directory used to resolve {% include %} and template files
            strict: Raise on undefined variables while rendering (default: render empty)
            cache: Expression cache to use (default: a fresh cache owned by this engine)
        """
        self.base_path = Path(base_path) if base_path else Path(".")
        self.strict = strict
        self.cache = cache if cache is not None else ExpressionCache()

        render_undefined: type[Undefined] = StrictUndefined if strict else ChainableUndefined
        self.env = self._create_environment(
            render_undefined, FileSystemLoader(str(self.base_path))
        )
        self.path_env = self._create_environment(PlaceholderUndefined)
        self.condition_env = self._create_environment(ZeroUndefined)

    @staticmethod
    def _create_environment(
        undefined: type[Undefined], loader: BaseLoader | None = None
    ) -> SandboxedEnvironment:
        env = SandboxedEnvironment(
            undefined=undefined,
            loader=loader,
            autoescape=False,
            keep_trailing_newline=True,
        )
        env.filters.update(TEMPLATE_FILTERS)
        env.globals.update(TEMPLATE_GLOBALS)
        env.tests.update(CONDITION_TESTS)
        return env

    # -------------------------------------------------------------------------
    # Conditions
    # -------------------------------------------------------------------------

    def evaluate_condition(self, condition: str, variables: dict[str, Any]) -> bool:
        """
        Evaluate a boolean condition against variables.

        Args:
            condition: Infix condition expression (empty means always true)
            variables: Context the expression is evaluated against

        Returns:
            Boolean result of evaluation

        Raises:
            ConditionEvaluationError: If the condition fails to compile, fails
                to run, or evaluates to a non-boolean value
        """
        if not condition or not condition.strip():
            return True

        program = self.cache.get_or_compile(condition, self._compile_condition)

        try:
            result = program(variables)
        except Exception as e:
            raise ConditionEvaluationError(condition, f"evaluation failed: {e}") from e

        # compile_expression maps an undefined result to None
        if result is None or isinstance(result, Undefined):
            logger.debug(f"Condition {condition!r} referenced undefined values, treating as false")
            return False

        if not isinstance(result, bool):
            raise ConditionEvaluationError(
                condition, f"did not evaluate to boolean, got {type(result).__name__}: {result!r}"
            )

        return result

    def _compile_condition(self, condition: str) -> TemplateExpression:
        translated = translate_condition(condition)
        try:
            return self.condition_env.compile_expression(translated)
        except TemplateSyntaxError as e:
            raise ConditionEvaluationError(condition, f"invalid syntax: {e.message}") from e

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    @staticmethod
    def is_template(content: str) -> bool:
        """Check whether a string contains template syntax."""
        return "{{" in content or "{%" in content

    def render_string(
        self,
        template: str,
        variables: dict[str, Any],
        name: str = INLINE_TEMPLATE_NAME,
    ) -> str:
        """
        Render an inline template string.

        Args:
            template: Template source
            variables: Rendering context
            name: Name shown in error messages (e.g. the file the string came from)

        Returns:
            Rendered string

        Raises:
            TemplateRenderError: On syntax or runtime errors, with line context
        """
        if not self.is_template(template):
            return template

        try:
            return self.env.from_string(template).render(variables)
        except Exception as e:
            raise self._enhance_error(e, template, name) from e

    def render_file(self, template_path: str | Path, variables: dict[str, Any]) -> str:
        """
        Render a template file.

        Relative paths are resolved against base_path. Includes inside the
        template are resolved by the environment loader (also base_path).

        Raises:
            TemplateRenderError: If the file cannot be read or fails to render
        """
        path = Path(template_path)
        if not path.is_absolute():
            path = self.base_path / path

        try:
            source = path.read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateRenderError(str(path), f"cannot read template file: {e}") from e

        try:
            return self.env.from_string(source).render(variables)
        except Exception as e:
            raise self._enhance_error(e, source, str(path)) from e

    def render_path(self, path_template: str, variables: dict[str, Any]) -> str:
        """
        Render an import path.

        Undefined references are kept verbatim as ``{{ name }}`` so the caller
        can detect them with :meth:`has_unresolved_placeholders`. Forward
        slashes are converted to the OS separator.

        Raises:
            TemplateRenderError: On template syntax errors
        """
        rendered = path_template
        if self.is_template(path_template):
            try:
                rendered = self.path_env.from_string(path_template).render(variables)
            except Exception as e:
                raise self._enhance_error(e, path_template, INLINE_TEMPLATE_NAME) from e

        return rendered.replace("/", os.sep)

    @staticmethod
    def has_unresolved_placeholders(rendered: str) -> bool:
        return "{{" in rendered or "{%" in rendered

    # -------------------------------------------------------------------------
    # Error enhancement
    # -------------------------------------------------------------------------

    def _enhance_error(self, error: Exception, source: str, name: str) -> TemplateRenderError:
        if isinstance(error, TemplateError) and error.message:
            reason = error.message
        else:
            reason = str(error) or type(error).__name__

        line = _error_line(error, name)
        lines = source.split("\n")
        column = None
        if line is not None and 1 <= line <= len(lines):
            column = _error_column(reason, lines[line - 1])

        context = format_error_context(source, line, column) if line else ""
        return TemplateRenderError(name, reason, line, column, context, _common_fixes(reason))

    def syntax_help(self) -> str:
        """Return help text describing condition and template syntax."""
        return """Templating Syntax:

Job Conditions (infix expressions):
  Platform.OS == "linux"
  Platform.OS == "linux" && !Platform.IsElevated
  Platform.OS == "linux" and not Platform.IsElevated
  "docker" in Platform.Tags
  Platform.Distro matches "Ubuntu"
  Platform.Version matches "^22\\\\."
  Platform.Hostname startsWith "work-"

File Templates (Jinja2):
  {{ Platform.OS }}
  {% if Platform.OS == "linux" %}...{% endif %}
  {% for pkg in packages %}{{ pkg }}{% endfor %}
  {{ Platform.OS | upper }}

Variable Templates (Jinja2):
  {{ Platform.OS }}-config
  {% if Platform.IsElevated %}admin{% else %}user{% endif %}

Path Helpers:
  {{ path_join(User.Home, ".config", "nvim") }}
  {{ "~/bin" | expanduser }}

1Password Integration:
  {{ op_read("op://Private/SSH/private_key") }}
  {{ op_read("op://Work/Database/password") }}
"""


def _error_line(error: Exception, name: str) -> int | None:
    """Recover the failing template line from a Jinja2 error."""
    if isinstance(error, TemplateSyntaxError) and error.lineno:
        return error.lineno

    # Jinja2 rewrites runtime tracebacks so template frames carry template lines
    template_line = None
    for frame in traceback.extract_tb(error.__traceback__):
        if frame.filename in (_JINJA_STRING_FILENAME, name):
            template_line = frame.lineno
    return template_line


def _error_column(reason: str, line_text: str) -> int | None:
    """Locate the first quoted token of the message within the failing line."""
    for token in _QUOTED.findall(reason):
        index = line_text.find(token)
        if index >= 0:
            return index + 1
    return None


def _common_fixes(reason: str) -> list[str]:
    hints = []
    if "expected token" in reason or "unexpected '}'" in reason or "unexpected end" in reason:
        hints.append("Check for unmatched template brackets {{ }} or {% %}")
        hints.append("Avoid nesting {{ }} inside {% %} expressions")
    if "is undefined" in reason:
        hints.append("Check the variable name, or guard it with 'is defined'")
    if "has no attribute" in reason:
        hints.append("Use dict['key'] or dict.get('key') for keys that may be missing")
    if "items" in reason:
        hints.append("Use 'for key, value in dict.items()' for dictionary iteration")
    return hints


def format_error_context(source: str, line: int | None, column: int | None = None) -> str:
    """
    Format the lines around a failing template line.

    Shows two lines before and after, an arrow on the failing line and, when
    the column is known, a caret under it.
    """
    if not line:
        return ""

    lines = source.split("\n")
    if line > len(lines):
        return ""

    start = max(1, line - 2)
    end = min(len(lines), line + 2)
    out = []
    for number in range(start, end + 1):
        prefix = "→ " if number == line else "  "
        out.append(f"{prefix}{number:3d}: {lines[number - 1]}")
        if number == line and column:
            out.append(" " * (len(prefix) + 5 + column - 1) + "^")
    return "\n".join(out) + "\n"
