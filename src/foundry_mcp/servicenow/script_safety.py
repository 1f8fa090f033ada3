"""
Static safety analysis for server-side scripts.

A best-effort textual filter that runs before anything is sent to the
instance. It is not a sandbox: obfuscated scripts can get past it, which
is why readonly execution also interposes at runtime (see ``readonly``).
"""
import re
from typing import List, Optional, Pattern, Tuple

from pydantic import BaseModel, Field

_I = re.IGNORECASE

# Always refused, in every mode
BLOCKED_PATTERNS: List[Tuple[Pattern[str], str]] = [
    # Mass data operations
    (re.compile(r"\.deleteMultiple\s*\(", _I), "Mass delete operations are blocked"),
    (re.compile(r"\.updateMultiple\s*\(", _I), "Mass update operations are blocked"),
    # Table structure
    (re.compile(r"GlideTableCreator", _I), "Table creation is blocked"),
    (re.compile(r"TableDrop|dropTable", _I), "Table deletion is blocked"),
    (re.compile(r"sys_db_object.*delete", _I), "System table modifications are blocked"),
    # Credentials
    (re.compile(r"discovery_credentials", _I), "Credential table access is blocked"),
    (re.compile(r"oauth_credential", _I), "OAuth credential access is blocked"),
    (re.compile(r"sys_certificate", _I), "Certificate access is blocked"),
    (re.compile(r"\.password\s*=", _I), "Password modification is blocked"),
    (re.compile(r"password_reset", _I), "Password reset operations are blocked"),
    # System properties
    (re.compile(r"gs\.setProperty", _I), "System property changes are blocked"),
    (re.compile(r"GlideProperties\.set", _I), "Property changes are blocked"),
    # Outbound calls
    (re.compile(r"RESTMessageV2", _I), "External REST calls are blocked"),
    (re.compile(r"SOAPMessageV2", _I), "External SOAP calls are blocked"),
    (re.compile(r"GlideHTTPRequest", _I), "External HTTP calls are blocked"),
    (re.compile(r"httpRequest", _I), "External HTTP calls are blocked"),
    # Engine bypasses
    (re.compile(r"setAbortAction\s*\(\s*false", _I), "Business rule bypass is blocked"),
    (re.compile(r"setWorkflow\s*\(\s*false", _I), "Workflow bypass is blocked"),
    # Dynamic code
    (re.compile(r"GlideEvaluator", _I), "Dynamic code evaluation is blocked"),
    (re.compile(r"GlideScopedEvaluator", _I), "Dynamic code evaluation is blocked"),
    (re.compile(r"eval\s*\(", _I), "Eval is blocked"),
    # Function constructor; case-sensitive so the `function` keyword is not caught
    (re.compile(r"(?<![\w.$])(?:new\s+)?Function\s*\("), "Dynamic code evaluation is blocked"),
    # Identity
    (re.compile(r"impersonateUser", _I), "User impersonation is blocked"),
    (re.compile(r"setSessionUser", _I), "Session manipulation is blocked"),
    # gr['deleteMultiple'](...) and friends
    (
        re.compile(
            r"\[\s*(['\"`])\s*(deleteMultiple|updateMultiple|setWorkflow|setAbortAction|"
            r"setProperty|impersonateUser|setSessionUser|eval)\s*\1\s*\]",
            _I,
        ),
        "Indirect access to a blocked method is blocked",
    ),
]

# Operations that write data; flagged, never refused
MUTATION_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\.insert\s*\(", _I), "insert"),
    (re.compile(r"\.update\s*\(", _I), "update"),
    (re.compile(r"\.deleteRecord\s*\(", _I), "delete"),
    (re.compile(r"\.delete\s*\(", _I), "delete"),
    (re.compile(r"\.setAbortAction", _I), "abort control"),
    (
        re.compile(r"\.setValue\s*\([^)]+\)\s*;?\s*(gr\.|rec\.|record\.)?update", _I),
        "setValue+update",
    ),
]

WARNING_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"while\s*\(\s*true\s*\)", _I), "Infinite loop detected - ensure exit condition exists"),
    (re.compile(r"for\s*\(\s*;\s*;\s*\)", _I), "Infinite loop detected"),
    (
        re.compile(r"\.query\s*\(\s*\)(?!.*getRowCount)(?!.*next)", _I),
        "Query without iteration - may be inefficient",
    ),
    (re.compile(r"getRowCount\s*\(\s*\)", _I), "getRowCount() can be slow on large tables"),
]

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}
# A '/' after one of these tokens (or at the start) begins a regex literal, not a division
_REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")
_REGEX_KEYWORDS = {
    "return", "typeof", "case", "in", "of", "instanceof", "new", "delete", "void", "throw", "else", "do",
}
_WORD = re.compile(r"[\w$]+")


class ScriptAnalysisResult(BaseModel):
    safe: bool
    blocked_reasons: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    has_mutation_risk: bool = False
    mutation_operations: List[str] = Field(default_factory=list)
    syntax_error: Optional[str] = None


def _append_unique(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


def check_syntax(script: str) -> Optional[str]:
    """
    Cheap structural check: brackets balance, strings and comments terminate.

    Returns a description of the first problem found, or None.
    """
    stack: List[Tuple[str, int]] = []
    line = 1
    i = 0
    n = len(script)
    last_token = ""

    while i < n:
        ch = script[i]
        nxt = script[i + 1] if i + 1 < n else ""

        if ch == "\n":
            line += 1
            i += 1
            continue

        if ch == "/" and nxt == "/":
            end = script.find("\n", i)
            i = n if end == -1 else end
            continue

        if ch == "/" and nxt == "*":
            end = script.find("*/", i + 2)
            if end == -1:
                return f"Unterminated block comment starting at line {line}"
            line += script.count("\n", i, end)
            i = end + 2
            continue

        if ch in ("'", '"', "`"):
            start_line = line
            i += 1
            while i < n and script[i] != ch:
                if script[i] == "\\":
                    i += 1
                elif script[i] == "\n":
                    if ch != "`":
                        return f"Unterminated string starting at line {start_line}"
                    line += 1
                i += 1
            if i >= n:
                return f"Unterminated string starting at line {start_line}"
            i += 1
            last_token = ch
            continue

        word = _WORD.match(script, i)
        if word:
            last_token = word.group()
            i = word.end()
            continue

        if ch in "+-" and nxt == ch:
            # i++ / 2 divides
            last_token = ch + nxt
            i += 2
            continue

        if ch == "/" and (
            last_token == "" or last_token in _REGEX_PRECEDERS or last_token in _REGEX_KEYWORDS
        ):
            start_line = line
            i += 1
            in_class = False
            while i < n and (script[i] != "/" or in_class):
                if script[i] == "\\":
                    i += 1
                elif script[i] == "[":
                    in_class = True
                elif script[i] == "]":
                    in_class = False
                elif script[i] == "\n":
                    return f"Unterminated regular expression at line {start_line}"
                i += 1
            if i >= n:
                return f"Unterminated regular expression at line {start_line}"
            i += 1
            last_token = "/"
            continue

        if ch in _OPENERS:
            stack.append((ch, line))
        elif ch in _CLOSERS:
            if not stack:
                return f"Unexpected '{ch}' at line {line}"
            opener, opened_at = stack.pop()
            if opener != _CLOSERS[ch]:
                return f"Mismatched '{ch}' at line {line} (opened '{opener}' at line {opened_at})"

        if not ch.isspace():
            last_token = ch
        i += 1

    if stack:
        opener, opened_at = stack[-1]
        return f"Unclosed '{opener}' opened at line {opened_at}"
    return None


def analyze(script: str) -> ScriptAnalysisResult:
    """Classify a script. Pure: depends only on the text."""
    blocked: List[str] = []
    warnings: List[str] = []
    operations: List[str] = []

    for pattern, reason in BLOCKED_PATTERNS:
        if pattern.search(script):
            _append_unique(blocked, reason)

    for pattern, operation in MUTATION_PATTERNS:
        if pattern.search(script):
            _append_unique(operations, operation)
            _append_unique(warnings, f"Script contains {operation} operation")

    for pattern, warning in WARNING_PATTERNS:
        if pattern.search(script):
            _append_unique(warnings, warning)

    return ScriptAnalysisResult(
        safe=not blocked,
        blocked_reasons=blocked,
        warnings=warnings,
        has_mutation_risk=bool(operations),
        mutation_operations=operations,
        syntax_error=check_syntax(script),
    )
