"""Selector index: map selectors of a LESS stylesheet to their source ranges."""

import bisect
import re
from dataclasses import dataclass

from loguru import logger

from figma_sync.models.document import Scope, TextRange

# "color: red" right before a "{" means a declaration lost its semicolon.
_DECLARATION_RE = re.compile(r"^[-\w]+\s*:\s")
# LESS variable interpolation, as in ".btn-@{size}" or "@{prop}: value"
_INTERPOLATION_RE = re.compile(r"@\{[-\w]+\}")

_OPENERS = {"(": ")", "[": "]"}
_CLOSERS = {")": "(", "]": "["}


@dataclass(frozen=True)
class SkippedRegion:
    """A part of the stylesheet that could not be resolved to a selector."""

    source_range: TextRange
    reason: str


@dataclass
class _Block:
    # (selector, start, end) for each comma-separated part; empty for at-rules
    parts: list[tuple[str, int, int]]
    open_offset: int


def mask_comments(text: str) -> str:
    """Replace comments with spaces, keeping offsets and newlines intact.

    Both ``/* */`` and LESS ``//`` line comments are masked. ``//`` inside
    parentheses is left alone so ``url(http://...)`` survives.
    """
    out = list(text)
    i = 0
    paren_depth = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c in "\"'":
            end = _string_end(text, i)
            i = end
            continue
        if c == "@" and (m := _INTERPOLATION_RE.match(text, i)):
            i = m.end()
            continue
        if c == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            for j in range(i, end):
                if out[j] != "\n":
                    out[j] = " "
            i = end
            continue
        if c == "/" and text.startswith("//", i) and paren_depth == 0:
            end = text.find("\n", i)
            end = n if end == -1 else end
            for j in range(i, end):
                out[j] = " "
            i = end
            continue
        if c == "(":
            paren_depth += 1
        elif c == ")":
            paren_depth = max(0, paren_depth - 1)
        elif c in ";{}":
            paren_depth = 0
        i += 1
    return "".join(out)


def _string_end(text: str, start: int) -> int:
    """Offset just past the string literal opening at ``start`` (or end of line)."""
    quote = text[start]
    i = start + 1
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
            continue
        if c == quote:
            return i + 1
        if c == "\n":
            return i
        i += 1
    return len(text)


def _is_balanced(header: str) -> bool:
    stack: list[str] = []
    for c in header:
        if c in _OPENERS:
            stack.append(c)
        elif c in _CLOSERS:
            if not stack or stack.pop() != _CLOSERS[c]:
                return False
    return not stack


def _split_selector_list(header: str, offset: int) -> list[tuple[str, int, int]]:
    """Split a selector list on top-level commas, returning trimmed parts with offsets."""
    parts: list[tuple[str, int, int]] = []
    depth = 0
    part_start = 0
    for i, c in enumerate(header + ","):
        if c in _OPENERS:
            depth += 1
        elif c in _CLOSERS:
            depth -= 1
        elif c == "," and depth == 0:
            raw = header[part_start:i]
            stripped = raw.strip()
            if stripped:
                lead = len(raw) - len(raw.lstrip())
                start = offset + part_start + lead
                parts.append((stripped, start, start + len(stripped)))
            part_start = i + 1
    return parts


class SelectorIndex:
    """Parse stylesheet text into scopes and answer position queries.

    Selectors are keyed by their literal text: ``.a .b`` and ``.a  .b`` are
    different keys. Regions that cannot be resolved are skipped and listed
    in ``skipped``.
    """

    def __init__(self) -> None:
        self.text = ""
        self.scopes: dict[str, Scope] = {}
        self.skipped: list[SkippedRegion] = []
        self._line_starts: list[int] = [0]

    def parse(self, text: str) -> dict[str, Scope]:
        """Re-index ``text``. Never raises on malformed input."""
        self.text = text
        self._line_starts = [0] + [m.end() for m in re.finditer("\n", text)]
        self.skipped = []

        found = self._scan(mask_comments(text))
        found.sort(key=lambda scope: scope.source_range)

        scopes: dict[str, Scope] = {}
        for scope in found:
            if scope.selector in scopes:
                self._skip(scope.source_range, f"duplicate selector {scope.selector!r}")
                continue
            scopes[scope.selector] = scope
        self.scopes = scopes
        logger.debug("Indexed {} selectors, skipped {} regions", len(scopes), len(self.skipped))
        return dict(scopes)

    def _skip(self, source_range: TextRange, reason: str) -> None:
        self.skipped.append(SkippedRegion(source_range=source_range, reason=reason))
        logger.debug("Skipped region {}: {}", source_range, reason)

    def _scan(self, masked: str) -> list[Scope]:
        found: list[Scope] = []
        stack: list[_Block] = []
        prelude_start = 0
        i = 0
        n = len(masked)
        while i < n:
            c = masked[i]
            if c in "\"'":
                i = _string_end(masked, i)
                continue
            if c == "@" and (m := _INTERPOLATION_RE.match(masked, i)):
                i = m.end()
                continue
            if c == "{":
                stack.append(_Block(parts=self._header_parts(masked, prelude_start, i), open_offset=i))
                prelude_start = i + 1
            elif c == "}":
                if not stack:
                    self._skip((i, i + 1), "unmatched closing brace")
                else:
                    block = stack.pop()
                    found.extend(
                        Scope(selector=sel, source_range=(start, end), body_range=(start, i + 1))
                        for sel, start, end in block.parts
                    )
                prelude_start = i + 1
            elif c == ";":
                prelude_start = i + 1
            i += 1

        for block in stack:
            start = block.parts[0][1] if block.parts else block.open_offset
            self._skip((start, n), "block is never closed")
        return found

    def _header_parts(self, masked: str, start: int, brace: int) -> list[tuple[str, int, int]]:
        header = masked[start:brace]
        stripped = header.strip()
        region = (start, brace)
        if not stripped:
            self._skip(region, "empty selector")
            return []
        if stripped.startswith("@") and not _INTERPOLATION_RE.match(stripped):
            # at-rule: no scope of its own, nested rules still count
            return []
        if not _is_balanced(stripped):
            self._skip(region, "unbalanced brackets in selector")
            return []
        if _DECLARATION_RE.match(stripped):
            self._skip(region, "declaration without semicolon before block")
            return []
        return _split_selector_list(header, start)

    def get_scope(self, selector: str) -> Scope | None:
        return self.scopes.get(selector)

    def line_of(self, offset: int) -> int:
        """0-based line number of a character offset."""
        return bisect.bisect_right(self._line_starts, offset) - 1

    def line_col(self, offset: int) -> tuple[int, int]:
        line = self.line_of(offset)
        return line, offset - self._line_starts[line]

    def token_at(self, line_number: int) -> str | None:
        """Return the innermost selector whose block contains the given line."""
        best: Scope | None = None
        for scope in self.scopes.values():
            start, end = scope.body_range
            if not self.line_of(start) <= line_number <= self.line_of(max(start, end - 1)):
                continue
            if best is None or end < best.body_range[1]:
                best = scope
        return best.selector if best else None
