"""Locate rules and property declarations in stylesheet text.

Stylesheets are treated as line-addressable text, not parsed into a
syntax tree. A small tokenizer blanks out comments and string literals
(keeping every line and column where it was) and tracks brace depth, so
that:

* a rule ends at its *matching* closing brace, not at the first ``}``;
* rules nested in ``@media``/``@supports`` know their enclosing preludes;
* a property name inside a comment, inside a string, or as the tail of a
  longer name (``color`` in ``background-color``) is never matched.

Matches resolve in document order; the first one wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from visualheal.core.errors import CorruptStateError, NotFoundError
from visualheal.core.models import PropertyLocation, StyleRule

_NON_NEWLINE = re.compile(r"[^\n]")


def _blank(text: str) -> str:
    return _NON_NEWLINE.sub(" ", text)


def mask_stylesheet(text: str) -> str:
    """Return *text* with comments and string contents replaced by spaces.

    The result has the same length and the same newlines as the input.
    """
    out: list[str] = []
    i, n = 0, len(text)
    while i < n:
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append(_blank(text[i:end]))
            i = end
        elif text[i] in "\"'":
            quote = text[i]
            j = i + 1
            while j < n and text[j] != quote and text[j] != "\n":
                j += 2 if text[j] == "\\" else 1
            j = min(j, n)
            closed = j < n and text[j] == quote
            out.append(quote + _blank(text[i + 1:j]) + (quote if closed else ""))
            i = j + 1 if closed else j
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


@dataclass
class _Block:
    prelude: str
    open_line: int
    open_pos: int
    depth: int
    parents: list[str] = field(default_factory=list)
    close_line: int = -1
    close_pos: int = -1


def _scan_blocks(masked: str) -> list[_Block]:
    """Every ``{...}`` block in document order, with its prelude and depth."""
    blocks: list[_Block] = []
    stack: list[_Block] = []
    line = 1
    prelude_start = 0

    for pos, ch in enumerate(masked):
        if ch == "\n":
            line += 1
        elif ch == "{":
            block = _Block(
                prelude=" ".join(masked[prelude_start:pos].split()),
                open_line=line,
                open_pos=pos,
                depth=len(stack),
                parents=[b.prelude for b in stack],
            )
            blocks.append(block)
            stack.append(block)
            prelude_start = pos + 1
        elif ch == "}":
            if stack:
                block = stack.pop()
                block.close_line = line
                block.close_pos = pos
            prelude_start = pos + 1
        elif ch == ";":
            prelude_start = pos + 1

    # Unterminated blocks run to the end of the text.
    for block in stack:
        block.close_line = line
        block.close_pos = len(masked)
    return blocks


def _split_selectors(prelude: str) -> list[str]:
    parts: list[str] = []
    buf: list[str] = []
    depth = 0
    for ch in prelude:
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        if ch == "," and depth == 0:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    parts.append("".join(buf))
    return [normalize_selector(p) for p in parts if p.strip()]


def normalize_selector(selector: str) -> str:
    return " ".join(selector.split())


def _body_mask(masked: str, block: _Block) -> list[str]:
    """Masked lines of *block* keeping only its own declarations."""
    line_start = masked.rfind("\n", 0, block.open_pos) + 1
    line_end = masked.find("\n", block.close_pos)
    if line_end == -1:
        line_end = len(masked)

    out: list[str] = []
    depth = 0
    for pos in range(line_start, line_end):
        ch = masked[pos]
        if ch == "\n":
            out.append(ch)
        elif pos <= block.open_pos or pos >= block.close_pos:
            out.append(" ")
        elif ch == "{":
            depth += 1
            out.append(" ")
        elif ch == "}":
            depth -= 1
            out.append(" ")
        else:
            out.append(ch if depth == 0 else " ")
    return "".join(out).split("\n")


def _compound_pattern(target: str) -> re.Pattern[str]:
    # A type selector must not be the tail of another name; ``.btn`` must
    # not be the head of ``.btn-primary``.
    head = r"(?<![\w-])" if re.match(r"[\w-]", target) else ""
    return re.compile(head + re.escape(target) + r"(?![\w-])")


def find_rule(text: str, selector: str, file: Path | None = None) -> StyleRule | None:
    """Locate the first rule whose selector list contains *selector*.

    An exact member of a selector list wins. Failing that, the first rule
    with a member that contains *selector* as a whole token is returned
    (``.btn-primary`` finds ``.container .btn-primary``). Returns ``None``
    when nothing matches. At-rule blocks themselves are never returned;
    rules inside them carry the at-rule preludes in ``StyleRule.context``.
    """
    target = normalize_selector(selector)
    if not target:
        return None

    masked = mask_stylesheet(text)
    lines = text.split("\n")
    rules = [
        (block, _split_selectors(block.prelude))
        for block in _scan_blocks(masked)
        if not block.prelude.startswith("@")
    ]

    match = next(((block, target) for block, members in rules if target in members), None)
    if match is None:
        pattern = _compound_pattern(target)
        match = next(
            ((block, member) for block, members in rules for member in members if pattern.search(member)),
            None,
        )
    if match is None:
        return None

    block, matched = match
    return StyleRule(
        selector=matched,
        file=file,
        start_line=block.open_line,
        end_line=block.close_line,
        body_lines=lines[block.open_line - 1:block.close_line],
        depth=block.depth,
        context=list(block.parents),
        masked_lines=_body_mask(masked, block),
    )


def _declaration_pattern(prop: str) -> re.Pattern[str]:
    # Anchored on the property name and the statement terminator.
    return re.compile(
        rf"(?<![\w-]){re.escape(prop)}\s*:\s*(?P<value>[^;{{}}]*?)\s*(?=;|}}|$)",
        re.IGNORECASE,
    )


def find_property(rule: StyleRule, prop: str) -> PropertyLocation | None:
    """Locate the first declaration of *prop* directly inside *rule*.

    The returned line number is 1-indexed and absolute within the file.
    """
    name = prop.strip()
    if not name:
        return None

    pattern = _declaration_pattern(name)
    for offset, masked_line in enumerate(rule.masked_lines):
        match = pattern.search(masked_line)
        if not match:
            continue
        raw = rule.body_lines[offset]
        start, end = match.span("value")
        return PropertyLocation(
            rule=rule,
            property=name,
            line=rule.start_line + offset,
            raw_line=raw,
            value=raw[start:end],
            value_start=start,
            value_end=end,
        )
    return None


def decode_stylesheet(file: Path, data: bytes) -> str:
    """Decode stylesheet bytes as UTF-8, raising ``CorruptStateError`` on failure."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CorruptStateError(
            f"Stylesheet is not valid UTF-8: {file} (byte {exc.start})",
            path=file,
        ) from exc


def locate_rule(file: Path, selector: str, text: str | None = None) -> StyleRule:
    """File-level :func:`find_rule` that raises ``NotFoundError``."""
    if text is None:
        if not file.exists():
            raise NotFoundError(f"Stylesheet not found: {file}", path=file)
        text = decode_stylesheet(file, file.read_bytes())
    rule = find_rule(text, selector, file=file)
    if rule is None:
        raise NotFoundError(f"Selector {selector!r} not found", selector=selector, path=file)
    return rule


def locate_property(file: Path, selector: str, prop: str, text: str | None = None) -> PropertyLocation:
    """File-level :func:`find_property` that raises ``NotFoundError``."""
    rule = locate_rule(file, selector, text=text)
    location = find_property(rule, prop)
    if location is None:
        raise NotFoundError(
            f"Property {prop!r} not found in rule {selector!r}",
            selector=selector,
            property=prop,
            path=file,
            line=rule.start_line,
        )
    return location
