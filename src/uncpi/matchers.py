"""
Matcher grammar shared by the analyzer and the body rewrite passes.

Instruction bodies are free-form Rust text. Rather than rewriting that text
with blind string replacement, every matcher here knows which regions are
code and which are opaque (string/char literals and comments), balances
brackets, and splits argument lists at top-level commas only. Passes turn
matches into RewriteDirectives which are applied right to left so earlier
offsets stay valid.
"""

import bisect
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Match, Optional, Pattern, Tuple, Union

from .errors import UnresolvedPattern

# Dotted receiver chain such as `ctx . accounts . pool .`
CHAIN = r"(?:\b\w+\s*\.\s*)*"

# Start of a receiver: not after a word character or a member-access `.`;
# the `..` range operator does not count as member access
RECEIVER_START = r"(?<!\w)(?<!(?<!\.)\.)"

MARKER_FRAGMENT_LIMIT = 96
MARKER_RE = re.compile(r"/\* UNRESOLVED\((\w+)\): (.*?) \*/")

_CHAR_LITERAL_RE = re.compile(
    r"b?'(?:\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]{1,6}\}|.)|[^\\'\n])'"
)
_RAW_STRING_RE = re.compile(r'b?r(#*)"')
_WS_RE = re.compile(r"\s+")
_FIELD_RE = re.compile(r"^(\w+)\s*:(?!:)\s*(.*)$", re.DOTALL)
_STRUCT_HEAD_RE = re.compile(r"\s*([A-Za-z_]\w*(?:\s*::\s*\w+)*)\s*\{")

_OPENERS = "([{"
_CLOSERS = ")]}"


def _is_word(c: str) -> bool:
    return c.isalnum() or c == "_"


def _string_end(text: str, i: int) -> int:
    """End (exclusive) of the double-quoted string whose quote is at `i`."""
    j = i + 1
    while j < len(text):
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == '"':
            return j + 1
        j += 1
    return len(text)


def opaque_end(text: str, i: int) -> Optional[int]:
    """
    If an opaque region starts at `i`, return its end (exclusive).

    Opaque regions are line comments, block comments, string literals
    (plain, byte and raw) and char literals. Lifetimes such as `'info`
    are code.
    """
    c = text[i]
    prev_word = i > 0 and _is_word(text[i - 1])

    if c == "/" and text.startswith("//", i):
        j = text.find("\n", i)
        return len(text) if j < 0 else j
    if c == "/" and text.startswith("/*", i):
        j = text.find("*/", i + 2)
        return len(text) if j < 0 else j + 2
    if c == '"':
        return _string_end(text, i)
    if c in "br" and not prev_word:
        raw = _RAW_STRING_RE.match(text, i)
        if raw:
            terminator = '"' + raw.group(1)
            j = text.find(terminator, raw.end())
            return len(text) if j < 0 else j + len(terminator)
        if text.startswith('b"', i):
            return _string_end(text, i + 1)
    if c == "'" or (c == "b" and not prev_word and text.startswith("b'", i)):
        literal = _CHAR_LITERAL_RE.match(text, i)
        if literal:
            return literal.end()
    return None


def segments(text: str) -> List[Tuple[bool, str]]:
    """Split text into (is_code, chunk) runs."""
    result: List[Tuple[bool, str]] = []
    start = 0
    i = 0
    while i < len(text):
        end = opaque_end(text, i)
        if end is None:
            i += 1
            continue
        if i > start:
            result.append((True, text[start:i]))
        result.append((False, text[i:end]))
        start = i = end
    if start < len(text):
        result.append((True, text[start:]))
    return result


def sub_code(pattern: Pattern, repl: Union[str, Callable[[Match], str]], text: str) -> str:
    """`pattern.sub` applied to code regions only."""
    return "".join(
        pattern.sub(repl, chunk) if is_code else chunk
        for is_code, chunk in segments(text)
    )


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace in code regions to a single space."""
    return sub_code(_WS_RE, " ", text).strip()


class SourceText:
    """
    A body of text with its opaque regions indexed.

    Offsets reported by every method refer to the original text.
    """

    def __init__(self, text: str):
        self.text = text
        self._starts: List[int] = []
        self._ends: List[int] = []

        i = 0
        while i < len(text):
            end = opaque_end(text, i)
            if end is None:
                i += 1
                continue
            self._starts.append(i)
            self._ends.append(end)
            i = end

    def _opaque_at(self, index: int) -> Optional[int]:
        k = bisect.bisect_right(self._starts, index) - 1
        if k >= 0 and index < self._ends[k]:
            return self._ends[k]
        return None

    def in_code(self, index: int) -> bool:
        return self._opaque_at(index) is None

    def finditer(self, pattern: Pattern, pos: int = 0) -> Iterator[Match]:
        """Matches of `pattern` that start in code."""
        for m in pattern.finditer(self.text, pos):
            if self.in_code(m.start()):
                yield m

    def search(self, pattern: Pattern, pos: int = 0) -> Optional[Match]:
        for m in self.finditer(pattern, pos):
            return m
        return None

    def contains(self, pattern: Pattern) -> bool:
        return self.search(pattern) is not None

    def matching_close(self, open_index: int) -> Optional[int]:
        """Index of the bracket closing the one at `open_index`."""
        depth = 0
        i = open_index
        while i < len(self.text):
            skip = self._opaque_at(i)
            if skip is not None:
                i = skip
                continue
            c = self.text[i]
            if c in _OPENERS:
                depth += 1
            elif c in _CLOSERS:
                depth -= 1
                if depth == 0:
                    return i
                if depth < 0:
                    return None
            i += 1
        return None

    def statement_end(self, pos: int) -> Optional[int]:
        """Index of the first top-level `;` at or after `pos`."""
        depth = 0
        i = pos
        while i < len(self.text):
            skip = self._opaque_at(i)
            if skip is not None:
                i = skip
                continue
            c = self.text[i]
            if c in _OPENERS:
                depth += 1
            elif c in _CLOSERS:
                depth -= 1
                if depth < 0:
                    return None
            elif c == ";" and depth == 0:
                return i
            i += 1
        return None


def sub_matches(pattern: Pattern, repl: str, text: str) -> str:
    """
    Like `sub_code`, but a match only has to start in code.

    Needed for patterns that span a literal, e.g. `bumps.get("pool")`.
    """
    source = SourceText(text)
    pieces = []
    last = 0
    for m in source.finditer(pattern):
        if m.start() < last:
            continue
        pieces.append(text[last:m.start()])
        pieces.append(m.expand(repl))
        last = m.end()
    pieces.append(text[last:])
    return "".join(pieces)


def split_top_level(text: str, sep: str = ",") -> List[str]:
    """Split on `sep` outside brackets and opaque regions."""
    source = SourceText(text)
    pieces = []
    depth = 0
    start = 0
    i = 0
    while i < len(text):
        skip = source._opaque_at(i)
        if skip is not None:
            i = skip
            continue
        c = text[i]
        if c in _OPENERS:
            depth += 1
        elif c in _CLOSERS:
            depth -= 1
        elif c == sep and depth == 0:
            pieces.append(text[start:i].strip())
            start = i + 1
        i += 1

    tail = text[start:].strip()
    if tail:
        pieces.append(tail)
    return pieces


@dataclass(frozen=True)
class CallMatch:
    """A call or macro invocation with its balanced argument list."""
    start: int
    end: int
    head: str
    args_text: str
    has_try: bool = False
    has_semicolon: bool = False

    @property
    def args(self) -> List[str]:
        return split_top_level(self.args_text)

    @property
    def suffix(self) -> str:
        """The `?` and `;` that followed the call in the source."""
        return ("?" if self.has_try else "") + (";" if self.has_semicolon else "")


def _skip_ws(text: str, i: int) -> int:
    while i < len(text) and text[i].isspace():
        i += 1
    return i


def find_calls(text: str, head: Pattern, consume_suffix: bool = True) -> List[CallMatch]:
    """
    Find every call whose head matches `head`.

    `head` must match up to (not including) the opening bracket. Macro
    invocations with `(`, `[` or `{` delimiters are all accepted. When
    `consume_suffix` is set, a following `?` and `;` become part of the
    match.
    """
    source = SourceText(text)
    calls = []
    pos = 0
    while True:
        m = source.search(head, pos)
        if m is None:
            break

        open_index = _skip_ws(text, m.end())
        if open_index >= len(text) or text[open_index] not in _OPENERS:
            pos = m.end()
            continue
        close = source.matching_close(open_index)
        if close is None:
            pos = m.end()
            continue

        end = close + 1
        has_try = has_semicolon = False
        if consume_suffix:
            j = _skip_ws(text, end)
            if j < len(text) and text[j] == "?":
                has_try = True
                end = j + 1
                j = _skip_ws(text, end)
            if j < len(text) and text[j] == ";":
                has_semicolon = True
                end = j + 1

        calls.append(CallMatch(
            start=m.start(),
            end=end,
            head=m.group(0),
            args_text=text[open_index + 1:close],
            has_try=has_try,
            has_semicolon=has_semicolon,
        ))
        pos = end
    return calls


@dataclass(frozen=True)
class StructLiteral:
    """A struct literal such as `Transfer { from: a, to: b }`."""
    name: str
    fields: Dict[str, str] = field(default_factory=dict)

    @property
    def short_name(self) -> str:
        return self.name.split("::")[-1]


def parse_struct_literal(text: str) -> Optional[StructLiteral]:
    """Parse `Path::Name { field: expr, shorthand }`; None if not one."""
    head = _STRUCT_HEAD_RE.match(text)
    if not head:
        return None

    source = SourceText(text)
    open_index = head.end() - 1
    close = source.matching_close(open_index)
    if close is None or text[close + 1:].strip():
        return None

    fields = {}
    for piece in split_top_level(text[open_index + 1:close]):
        named = _FIELD_RE.match(piece)
        if named:
            fields[named.group(1)] = named.group(2).strip()
        elif re.fullmatch(r"\w+", piece):
            fields[piece] = piece
        else:
            return None

    name = re.sub(r"\s+", "", head.group(1))
    return StructLiteral(name=name, fields=fields)


@dataclass(frozen=True)
class LetBinding:
    """A `let name = value;` statement."""
    start: int
    end: int
    name: str
    value: str


def find_let_binding(text: str, name: str) -> Optional[LetBinding]:
    """Locate the first `let [mut] name[: T] = value;` in code."""
    pattern = re.compile(rf"\blet\s+(?:mut\s+)?{re.escape(name)}\s*(?::[^=;]+)?=(?!=)")
    source = SourceText(text)
    m = source.search(pattern)
    if m is None:
        return None
    semicolon = source.statement_end(m.end())
    if semicolon is None:
        return None
    return LetBinding(
        start=m.start(),
        end=semicolon + 1,
        name=name,
        value=text[m.end():semicolon].strip(),
    )


@dataclass(frozen=True)
class RewriteDirective:
    """Replace text[start:end] with `replacement`."""
    start: int
    end: int
    replacement: str


def apply_directives(text: str, directives: List[RewriteDirective]) -> str:
    """
    Apply non-overlapping directives.

    Directives are applied from the rightmost to the leftmost so earlier
    offsets are unaffected. Identical duplicates are applied once.
    """
    ordered = sorted(set(directives), key=lambda d: (d.start, d.end), reverse=True)
    last_start = len(text) + 1
    for directive in ordered:
        if directive.end > last_start:
            raise ValueError(
                f"Overlapping rewrite directives at {directive.start}..{directive.end}"
            )
        text = text[:directive.start] + directive.replacement + text[directive.end:]
        last_start = directive.start
    return text


def marker(pass_name: str, fragment: str) -> str:
    """Inert marker left in place of a fragment a pass could not rewrite."""
    text = " ".join(fragment.split())
    text = text.replace("*/", "* /").replace("/*", "/ *")
    if len(text) > MARKER_FRAGMENT_LIMIT:
        text = text[:MARKER_FRAGMENT_LIMIT - 3].rstrip() + "..."
    return f"/* UNRESOLVED({pass_name}): {text} */"


def collect_markers(body: str) -> List[UnresolvedPattern]:
    """Every UNRESOLVED marker in `body`, in order of appearance."""
    return [
        UnresolvedPattern(pass_name=m.group(1), fragment=m.group(2))
        for m in MARKER_RE.finditer(body)
    ]
