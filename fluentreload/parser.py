"""Parsing and rendering of Fluentd configuration fragments."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_RE_COMMENT = re.compile(r"^\s*#.*$")
_RE_START_DIRECTIVE = re.compile(r"^<([^/\s]+)(\s+(.*))?>\s*")
_RE_END_DIRECTIVE = re.compile(r"^</(.*)>\s*")
_RE_PARAM = re.compile(r"^([^<\s]+)(\s+(.+))?")
_RE_TRAILING_COMMENT = re.compile(r"\s#")


class ParseError(ValueError):
    """Raised when a configuration fragment is malformed."""


def trim_trailing_comment(value: str) -> str:
    """Drop a ``# comment`` that follows whitespace at the end of a value."""
    match = _RE_TRAILING_COMMENT.search(value)
    if match is None:
        return value
    return value[: match.start()].strip()


@dataclass
class Param:
    """A name/value pair inside a directive."""

    name: str
    value: str = ""

    def clone(self) -> Param:
        return Param(self.name, self.value)

    def __str__(self) -> str:
        return f"{self.name} {self.value}\n"


def params_from_kv(*args: str) -> dict[str, Param]:
    """Build params from alternating names and values; a lone last name is ignored."""
    return {name: Param(name, value) for name, value in zip(args[::2], args[1::2])}


class Fragment(list):
    """A sequence of top-level directives."""

    def clone(self) -> Fragment:
        return Fragment(directive.clone() for directive in self)

    def __str__(self) -> str:
        return "".join(directive._string_indent(0) + "\n" for directive in self)


@dataclass
class Directive:
    """A ``<name tag>`` block with parameters and nested directives."""

    name: str
    tag: str = ""
    params: dict[str, Param] = field(default_factory=dict)
    nested: Fragment = field(default_factory=Fragment)

    @property
    def type(self) -> str:
        """The ``@type`` (or legacy ``type``) parameter, or an empty string."""
        param = self.params.get("@type")
        if param is None:
            param = self.params.get("type")
        return "" if param is None else param.value

    def param_verbatim(self, name: str) -> str:
        param = self.params.get(name)
        return "" if param is None else param.value

    def param(self, name: str) -> str:
        return trim_trailing_comment(self.param_verbatim(name))

    def set_param(self, name: str, value: str) -> None:
        """Set a parameter; an empty value removes it."""
        if not value:
            self.params.pop(name, None)
            return
        existing = self.params.get(name)
        if existing is None:
            self.params[name] = Param(name, value)
        else:
            existing.value = value

    def clone(self) -> Directive:
        return Directive(
            name=self.name,
            tag=self.tag,
            params={key: param.clone() for key, param in self.params.items()},
            nested=Fragment(self.nested).clone(),
        )

    def _string_indent(self, indent: int) -> str:
        pad = " " * indent
        tag = f" {self.tag}" if self.tag else ""
        parts = [f"{pad}<{self.name}{tag}>\n"]
        parts.extend(f"{pad}  {self.params[key]}" for key in sorted(self.params))
        if self.params and self.nested:
            parts.append("\n")
        parts.extend(child._string_indent(indent + 2) for child in self.nested)
        parts.append(f"{pad}</{self.name}>\n")
        return "".join(parts)

    def __str__(self) -> str:
        return self._string_indent(0)


def parse_string(text: str) -> Fragment:
    """Parse Fluentd configuration text into a fragment of directives."""
    result = Fragment()
    stack: list[Directive] = []

    for raw_line in text.split("\n"):
        if not raw_line or _RE_COMMENT.match(raw_line):
            continue
        line = raw_line.strip()

        start = _RE_START_DIRECTIVE.match(line)
        if start:
            directive = Directive(name=start.group(1).strip(), tag=(start.group(3) or "").strip())
            if stack:
                stack[-1].nested.append(directive)
            else:
                result.append(directive)
            stack.append(directive)
            continue

        end = _RE_END_DIRECTIVE.match(line)
        if end:
            if not stack:
                raise ParseError("syntax error")
            if stack[-1].name != end.group(1):
                raise ParseError("mismatched tags")
            stack.pop()
            continue

        param_match = _RE_PARAM.match(line)
        if param_match:
            param = Param(param_match.group(1), param_match.group(3) or "")
            if param.name in ("type", "@type"):
                param.value = trim_trailing_comment(param.value)
            if not stack:
                raise ParseError(f"syntax error: dangling parameter {param.name}")
            stack[-1].params[param.name] = param

    if stack:
        raise ParseError("syntax error: incomplete directive")
    return result