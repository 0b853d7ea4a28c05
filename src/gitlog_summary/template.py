from __future__ import annotations

import dataclasses
import re
from typing import Any, Callable, Union, cast


class TemplateError(Exception):
    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(f"{message} (line {line})" if line else message)
        self.message = message
        self.line = line


# --- values -----------------------------------------------------------------


def is_truthy(value: object) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, (str, list, tuple)):
        return len(value) > 0
    return True


def to_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_str(v) for v in value)
    return str(value)


def values_equal(a: object, b: object) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    return a == b


def lookup(value: object, key: str) -> object:
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get(key)
    if isinstance(value, (list, tuple, str)):
        if key == "length":
            return len(value)
        if isinstance(value, (list, tuple)) and key.isdigit():
            i = int(key)
            return value[i] if i < len(value) else None
        return None
    if key.startswith("_"):
        return None
    return getattr(value, key, None)


def record_field(record: object, name: str) -> object:
    """Field lookup for the prefix predicates, whose field names arrive lower-cased."""
    if isinstance(record, dict):
        if name in record:
            return record[name]
        folded = name.lower()
        for k, v in record.items():
            if str(k).lower() == folded:
                return v
        return None
    return lookup(record, name)


# --- predicates for {{#some}} --------------------------------------------------


@dataclasses.dataclass(frozen=True)
class Equals:
    field: str
    value: object

    def matches(self, record: object) -> bool:
        return values_equal(lookup(record, self.field), self.value)


@dataclasses.dataclass(frozen=True)
class StartsWith:
    field: str
    prefix: str

    def matches(self, record: object) -> bool:
        return to_str(record_field(record, self.field)).startswith(self.prefix)


@dataclasses.dataclass(frozen=True)
class NotStartsWithAnyOf:
    field: str
    prefixes: tuple[str, ...]

    def matches(self, record: object) -> bool:
        s = to_str(record_field(record, self.field))
        return not any(s.startswith(p) for p in self.prefixes)


Predicate = Union[Equals, StartsWith, NotStartsWithAnyOf]

_NOT_STARTS_WITH_ANY = "NotStartsWithAny"
_STARTS_WITH = "StartsWith"


def predicates_from_hash(hash_args: dict[str, object]) -> list[Predicate]:
    """
    Translate `some` named arguments into predicates:
      - messageStartsWith="fix"           -> StartsWith("message", "fix")
      - fileNotStartsWithAny="docs,test"  -> NotStartsWithAnyOf("file", ("docs", "test"))
      - repo="api"                        -> Equals("repo", "api")
    """
    preds: list[Predicate] = []
    for key, value in hash_args.items():
        if key.endswith(_NOT_STARTS_WITH_ANY) and len(key) > len(_NOT_STARTS_WITH_ANY):
            prefixes = tuple(p.strip() for p in to_str(value).split(",") if p.strip())
            preds.append(NotStartsWithAnyOf(key[: -len(_NOT_STARTS_WITH_ANY)].lower(), prefixes))
        elif key.endswith(_STARTS_WITH) and len(key) > len(_STARTS_WITH):
            preds.append(StartsWith(key[: -len(_STARTS_WITH)].lower(), to_str(value)))
        else:
            preds.append(Equals(key, value))
    return preds


def any_match(items: object, predicates: list[Predicate]) -> bool:
    if not isinstance(items, (list, tuple)):
        return False
    return any(all(p.matches(item) for p in predicates) for item in items)


# --- syntax tree ---------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class _Literal:
    value: object


@dataclasses.dataclass(frozen=True)
class _Path:
    original: str
    parts: tuple[str, ...]
    depth: int = 0
    data: bool = False
    explicit_this: bool = False

    @property
    def helper_name(self) -> str:
        if self.depth or self.data or self.explicit_this or len(self.parts) != 1:
            return ""
        return self.parts[0]


@dataclasses.dataclass(frozen=True)
class _Call:
    head: Union[_Path, _Literal, "_Call"]
    params: tuple[Any, ...] = ()
    hash: tuple[tuple[str, Any], ...] = ()


@dataclasses.dataclass
class _Text:
    text: str


@dataclasses.dataclass
class _Mustache:
    call: _Call
    line: int


@dataclasses.dataclass
class _Block:
    name: str
    call: _Call
    program: list
    inverse: list
    line: int


# --- tokenizer -----------------------------------------------------------------


@dataclasses.dataclass
class _Tag:
    kind: str  # mustache, raw, open, inverse_open, close, else, comment
    body: str
    line: int
    strip_before: bool = False
    strip_after: bool = False


_STANDALONE_KINDS = {"open", "inverse_open", "close", "else", "comment"}
_LONG_COMMENT_END = re.compile(r"--(~?)\}\}")
_SHORT_COMMENT_END = re.compile(r"(~?)\}\}")


def _find_tag_end(source: str, i: int, line: int) -> int:
    quote = ""
    j = i
    n = len(source)
    while j < n:
        ch = source[j]
        if quote:
            if ch == "\\":
                j += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in ("'", '"'):
            quote = ch
        elif source.startswith("}}", j):
            return j
        j += 1
    raise TemplateError("Unclosed tag: missing '}}'", line)


def _classify(content: str, line: int) -> tuple[str, str]:
    c = content.strip()
    if not c:
        raise TemplateError("Empty tag", line)
    sigil, rest = c[0], c[1:].strip()
    if sigil == "#":
        if rest[:1] in (">", "*"):
            raise TemplateError("Partial blocks and decorators are not supported", line)
        return "open", rest
    if sigil == "^":
        return ("else", "") if not rest else ("inverse_open", rest)
    if sigil == "/":
        return "close", rest
    if sigil == "&":
        return "raw", rest
    if sigil == ">":
        raise TemplateError("Partials are not supported", line)
    if c == "else":
        return "else", ""
    if c.startswith("else ") or c.startswith("else\t"):
        return "else", c[5:].strip()
    return "mustache", c


def _scan(source: str) -> tuple[list[str], list[_Tag]]:
    texts: list[str] = []
    tags: list[_Tag] = []
    pos = 0
    while True:
        start = source.find("{{", pos)
        if start < 0:
            texts.append(source[pos:])
            return texts, tags
        texts.append(source[pos:start])
        line = source.count("\n", 0, start) + 1
        triple = source.startswith("{{{", start)
        i = start + (3 if triple else 2)
        strip_before = source.startswith("~", i)
        if strip_before:
            i += 1

        if not triple and source.startswith("!--", i):
            m = _LONG_COMMENT_END.search(source, i + 3)
            if m is None:
                raise TemplateError("Unclosed comment", line)
            tags.append(_Tag("comment", "", line, strip_before, bool(m.group(1))))
            pos = m.end()
            continue
        if not triple and source.startswith("!", i):
            m = _SHORT_COMMENT_END.search(source, i + 1)
            if m is None:
                raise TemplateError("Unclosed comment", line)
            tags.append(_Tag("comment", "", line, strip_before, bool(m.group(1))))
            pos = m.end()
            continue

        j = _find_tag_end(source, i, line)
        content = source[i:j]
        strip_after = content.endswith("~")
        if strip_after:
            content = content[:-1]
        if triple:
            if not source.startswith("}}}", j):
                raise TemplateError("Unclosed triple-stash: missing '}}}'", line)
            if not content.strip():
                raise TemplateError("Empty tag", line)
            tags.append(_Tag("raw", content.strip(), line, strip_before, strip_after))
            pos = j + 3
            continue
        kind, body = _classify(content, line)
        tags.append(_Tag(kind, body, line, strip_before, strip_after))
        pos = j + 2


def _blank(s: str) -> bool:
    return s.strip(" \t\r") == ""


def _apply_whitespace_control(texts: list[str], tags: list[_Tag]) -> list[str]:
    # Decisions use the original text; cuts are applied afterwards.
    cut_start = [0] * len(texts)
    cut_end = [0] * len(texts)
    last = len(texts) - 1
    for k, tag in enumerate(tags):
        prev, nxt = texts[k], texts[k + 1]
        if tag.strip_before:
            cut_end[k] = len(prev) - len(prev.rstrip())
        if tag.strip_after:
            cut_start[k + 1] = len(nxt) - len(nxt.lstrip())
        if tag.kind not in _STANDALONE_KINDS:
            continue
        nl_prev = prev.rfind("\n")
        nl_next = nxt.find("\n")
        prev_ok = _blank(prev[nl_prev + 1 :]) and (nl_prev >= 0 or k == 0)
        next_ok = _blank(nxt if nl_next < 0 else nxt[:nl_next]) and (nl_next >= 0 or k + 1 == last)
        if prev_ok and next_ok:
            cut_end[k] = max(cut_end[k], len(prev) - (nl_prev + 1))
            cut_start[k + 1] = max(cut_start[k + 1], len(nxt) if nl_next < 0 else nl_next + 1)

    out: list[str] = []
    for t, a, b in zip(texts, cut_start, cut_end):
        out.append(t[a : len(t) - b] if a + b < len(t) else "")
    return out


# --- expression parser ----------------------------------------------------------

_EXPR_TOKEN_RE = re.compile(
    r"""\s*(?:(?P<open>\()|(?P<close>\))|(?P<str>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')|(?P<key>[^\s()="']+)=|(?P<word>[^\s()="']+))"""
)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_KEYWORDS: dict[str, object] = {"true": True, "false": False, "null": None, "undefined": None}


def _parse_path(text: str, line: int) -> _Path:
    original = text
    data = text.startswith("@")
    if data:
        text = text[1:]
    depth = 0
    while text.startswith("../"):
        depth += 1
        text = text[3:]
    if text == "..":
        return _Path(original, (), depth + 1, data)
    explicit_this = False
    if text in ("this", "."):
        return _Path(original, (), depth, data, True)
    if text.startswith("this.") or text.startswith("this/"):
        explicit_this = True
        text = text[5:]
    parts = tuple(re.split(r"[./]", text))
    if not text or any(not p for p in parts):
        raise TemplateError(f"Invalid path: {original!r}", line)
    return _Path(original, parts, depth, data, explicit_this)


class _ExprParser:
    def __init__(self, text: str, line: int) -> None:
        self.line = line
        self.tokens: list[tuple[str, str]] = []
        pos = 0
        while True:
            m = _EXPR_TOKEN_RE.match(text, pos)
            if m is None:
                if text[pos:].strip():
                    raise TemplateError(f"Cannot parse expression: {text!r}", line)
                break
            kind = m.lastgroup or ""
            self.tokens.append((kind, m.group(kind)))
            pos = m.end()
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def parse(self) -> _Call:
        if not self.tokens:
            raise TemplateError("Empty expression", self.line)
        call = self._call()
        if self._peek() is not None:
            raise TemplateError(f"Unexpected {self._peek()[1]!r} in expression", self.line)
        return call

    def _call(self) -> _Call:
        tok = self._peek()
        if tok is None or tok[0] in ("key", "close"):
            raise TemplateError("Expected an expression", self.line)
        head = self._expr()
        params: list[Any] = []
        hash_args: list[tuple[str, Any]] = []
        while True:
            tok = self._peek()
            if tok is None or tok[0] == "close":
                break
            if tok[0] == "key":
                self.pos += 1
                nxt = self._peek()
                if nxt is None or nxt[0] in ("key", "close"):
                    raise TemplateError(f"Missing value for {tok[1]}=", self.line)
                hash_args.append((tok[1], self._expr()))
                continue
            if hash_args:
                raise TemplateError("Positional argument after named arguments", self.line)
            params.append(self._expr())
        return _Call(head, tuple(params), tuple(hash_args))

    def _expr(self) -> Any:
        kind, text = self.tokens[self.pos]
        self.pos += 1
        if kind == "open":
            inner = self._call()
            if self._peek() != ("close", ")"):
                raise TemplateError("Unclosed '(' in expression", self.line)
            self.pos += 1
            return inner
        if kind == "str":
            return _Literal(re.sub(r"\\(.)", r"\1", text[1:-1]))
        if kind == "word":
            if text in _KEYWORDS:
                return _Literal(_KEYWORDS[text])
            if _NUMBER_RE.fullmatch(text):
                return _Literal(float(text) if "." in text else int(text))
            return _parse_path(text, self.line)
        raise TemplateError(f"Unexpected {text!r} in expression", self.line)


def _parse_call(text: str, line: int) -> _Call:
    return _ExprParser(text, line).parse()


# --- block parser ---------------------------------------------------------------


class _Parser:
    def __init__(self, tokens: list[Union[str, _Tag]]) -> None:
        self.tokens = tokens
        self.pos = 0

    def parse(self) -> list:
        nodes = self._statements()
        if self.pos < len(self.tokens):
            tag = cast(_Tag, self.tokens[self.pos])
            if tag.kind == "else":
                raise TemplateError("{{else}} outside of a block", tag.line)
            raise TemplateError(f"Unexpected {{{{/{tag.body}}}}} without a matching open block", tag.line)
        return nodes

    def _statements(self) -> list:
        nodes: list = []
        while self.pos < len(self.tokens):
            tok = self.tokens[self.pos]
            if isinstance(tok, str):
                nodes.append(_Text(tok))
                self.pos += 1
                continue
            if tok.kind in ("close", "else"):
                break
            self.pos += 1
            if tok.kind == "comment":
                continue
            call = _parse_call(tok.body, tok.line)
            if tok.kind in ("mustache", "raw"):
                nodes.append(_Mustache(call, tok.line))
                continue
            name = tok.body.split(None, 1)[0]
            block = self._block(call, tok, name, name)
            if tok.kind == "inverse_open":
                block.program, block.inverse = block.inverse, block.program
            nodes.append(block)
        return nodes

    def _next_tag(self, open_tag: _Tag, name: str) -> _Tag:
        if self.pos >= len(self.tokens):
            raise TemplateError(f"Unclosed block {{{{#{name}}}}}", open_tag.line)
        tag = cast(_Tag, self.tokens[self.pos])
        self.pos += 1
        return tag

    def _block(self, call: _Call, open_tag: _Tag, name: str, close_name: str) -> _Block:
        program = self._statements()
        end = self._next_tag(open_tag, close_name)
        inverse: list = []
        if end.kind == "else":
            if end.body:
                # {{else if x}} chains share the outer close tag.
                chained = _parse_call(end.body, end.line)
                inverse = [self._block(chained, end, end.body.split(None, 1)[0], close_name)]
                return _Block(name, call, program, inverse, open_tag.line)
            inverse = self._statements()
            end = self._next_tag(open_tag, close_name)
            if end.kind == "else":
                raise TemplateError(f"Duplicate {{{{else}}}} in {{{{#{close_name}}}}}", end.line)
        if end.body != close_name:
            raise TemplateError(f"{{{{/{end.body}}}}} does not match {{{{#{close_name}}}}}", end.line)
        return _Block(name, call, program, inverse, open_tag.line)


# --- rendering ------------------------------------------------------------------


class _Frame:
    __slots__ = ("value", "parent", "data")

    def __init__(self, value: object, parent: _Frame | None, data: dict[str, object]) -> None:
        self.value = value
        self.parent = parent
        self.data = data


class HelperOptions:
    def __init__(self, renderer: _Renderer, frame: _Frame, block: _Block | None, name: str, line: int) -> None:
        self._renderer = renderer
        self._frame = frame
        self._block = block
        self.name = name
        self.line = line

    @property
    def is_block(self) -> bool:
        return self._block is not None

    @property
    def this(self) -> object:
        return self._frame.value

    def _render(self, nodes: list, context: object, data: dict[str, object] | None) -> str:
        merged = {**self._frame.data, **data} if data else self._frame.data
        if context is self._frame.value:
            frame = _Frame(context, self._frame.parent, merged)
        else:
            frame = _Frame(context, self._frame, merged)
        return self._renderer.render_nodes(nodes, frame)

    def fn(self, context: object, data: dict[str, object] | None = None) -> str:
        if self._block is None:
            raise TemplateError(f"{self.name} requires a block", self.line)
        return self._render(self._block.program, context, data)

    def inverse(self, context: object, data: dict[str, object] | None = None) -> str:
        if self._block is None:
            return ""
        return self._render(self._block.inverse, context, data)


Helper = Callable[[list, dict, HelperOptions], object]


def _arity(opts: HelperOptions, args: list, n: int) -> None:
    if len(args) != n:
        raise TemplateError(f"{opts.name} expects {n} argument(s), got {len(args)}", opts.line)


def _each(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 1)
    if not opts.is_block:
        raise TemplateError("each requires a block", opts.line)
    value = args[0]
    if isinstance(value, dict):
        items = list(value.items())
    elif isinstance(value, (list, tuple)):
        items = list(enumerate(value))
    else:
        items = []
    if not items:
        return opts.inverse(opts.this)
    out: list[str] = []
    last = len(items) - 1
    for i, (key, item) in enumerate(items):
        out.append(opts.fn(item, {"index": i, "key": key, "first": i == 0, "last": i == last}))
    return "".join(out)


def _with(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 1)
    if not opts.is_block:
        raise TemplateError("with requires a block", opts.line)
    if is_truthy(args[0]):
        return opts.fn(args[0])
    return opts.inverse(opts.this)


def _if(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 1)
    return is_truthy(args[0])


def _unless(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 1)
    return not is_truthy(args[0])


def _eq(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 2)
    return values_equal(args[0], args[1])


def _ne(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 2)
    return not values_equal(args[0], args[1])


def _contains(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 2)
    return to_str(args[1]) in to_str(args[0])


def _starts_with(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 2)
    return to_str(args[0]).startswith(to_str(args[1]))


def _or(args: list, hash_args: dict, opts: HelperOptions) -> object:
    return any(is_truthy(a) for a in args)


def _array(args: list, hash_args: dict, opts: HelperOptions) -> object:
    return list(args)


def _some(args: list, hash_args: dict, opts: HelperOptions) -> object:
    _arity(opts, args, 1)
    return any_match(args[0], predicates_from_hash(hash_args))


HELPERS: dict[str, Helper] = {
    "if": _if,
    "unless": _unless,
    "each": _each,
    "with": _with,
    "eq": _eq,
    "ne": _ne,
    "contains": _contains,
    "startsWith": _starts_with,
    "or": _or,
    "array": _array,
    "some": _some,
}


class _Renderer:
    def __init__(self, helpers: dict[str, Helper]) -> None:
        self.helpers = helpers

    def render(self, nodes: list, context: object) -> str:
        return self.render_nodes(nodes, _Frame(context, None, {"root": context}))

    def render_nodes(self, nodes: list, frame: _Frame) -> str:
        out: list[str] = []
        for node in nodes:
            if isinstance(node, _Text):
                out.append(node.text)
            elif isinstance(node, _Mustache):
                out.append(to_str(self._mustache(node, frame)))
            else:
                out.append(self._block(node, frame))
        return "".join(out)

    def _resolve(self, path: _Path, frame: _Frame) -> object:
        if path.data:
            name, rest = path.parts[0], path.parts[1:]
            f: _Frame | None = frame
            for _ in range(path.depth):
                f = f.parent if f and f.parent else f
            value = f.data.get(name) if f is not None else None
        else:
            f = frame
            for _ in range(path.depth):
                f = f.parent or f
            value, rest = f.value, path.parts
        for part in rest:
            value = lookup(value, part)
        return value

    def _eval(self, expr: Any, frame: _Frame, line: int) -> object:
        if isinstance(expr, _Literal):
            return expr.value
        if isinstance(expr, _Path):
            return self._resolve(expr, frame)
        name = expr.head.helper_name if isinstance(expr.head, _Path) else ""
        if not name or name not in self.helpers:
            raise TemplateError(f"Missing helper: {self._head_text(expr)}", line)
        return self._invoke(name, expr, frame, None, line)

    @staticmethod
    def _head_text(call: _Call) -> str:
        head = call.head
        if isinstance(head, _Path):
            return head.original
        if isinstance(head, _Literal):
            return to_str(head.value)
        return "(...)"

    def _invoke(self, name: str, call: _Call, frame: _Frame, block: _Block | None, line: int) -> object:
        args = [self._eval(p, frame, line) for p in call.params]
        hash_args = {k: self._eval(v, frame, line) for k, v in call.hash}
        return self.helpers[name](args, hash_args, HelperOptions(self, frame, block, name, line))

    def _mustache(self, node: _Mustache, frame: _Frame) -> object:
        call = node.call
        head = call.head
        name = head.helper_name if isinstance(head, _Path) else ""
        if name and name in self.helpers:
            return self._invoke(name, call, frame, None, node.line)
        if call.params or call.hash:
            raise TemplateError(f"Missing helper: {self._head_text(call)}", node.line)
        return self._eval(head, frame, node.line)

    def _block(self, node: _Block, frame: _Frame) -> str:
        call = node.call
        head = call.head
        name = head.helper_name if isinstance(head, _Path) else ""
        opts = HelperOptions(self, frame, node, node.name, node.line)
        if name and name in self.helpers:
            result = self._invoke(name, call, frame, node, node.line)
        elif call.params or call.hash:
            raise TemplateError(f"Missing helper: {self._head_text(call)}", node.line)
        else:
            result = self._eval(head, frame, node.line)
            if isinstance(result, (list, tuple)):
                return _each([result], {}, opts)  # type: ignore[return-value]
            if is_truthy(result):
                return opts.fn(result)
            return opts.inverse(frame.value)

        if isinstance(result, str):
            return result
        if isinstance(result, (list, tuple)):
            return _each([result], {}, opts)  # type: ignore[return-value]
        if is_truthy(result):
            return opts.fn(frame.value)
        return opts.inverse(frame.value)


class Template:
    """A compiled template; `render` may be called any number of times."""

    def __init__(self, source: str, nodes: list, helpers: dict[str, Helper] | None = None) -> None:
        self.source = source
        self._nodes = nodes
        self._helpers = dict(HELPERS if helpers is None else helpers)

    def render(self, context: object) -> str:
        try:
            return _Renderer(self._helpers).render(self._nodes, context)
        except TemplateError:
            raise
        except RecursionError:
            raise TemplateError("Template nesting too deep") from None
        except Exception as e:
            raise TemplateError(f"Render failed: {e}") from e


def compile_template(source: str, helpers: dict[str, Helper] | None = None) -> Template:
    """
    Parse `source` into a block tree. Raises TemplateError on malformed
    syntax (unclosed or mismatched blocks, unterminated tags, bad expressions).
    """
    texts, tags = _scan(source)
    texts = _apply_whitespace_control(texts, tags)
    tokens: list[Union[str, _Tag]] = []
    for i, tag in enumerate(tags):
        if texts[i]:
            tokens.append(texts[i])
        tokens.append(tag)
    if texts[-1]:
        tokens.append(texts[-1])
    return Template(source, _Parser(tokens).parse(), helpers)


def render_template(source: str, context: object) -> str:
    return compile_template(source).render(context)
