"""Parser for the restricted right-hand-side subset of Python."""

from __future__ import annotations

import ast as pyast
import inspect
import textwrap
from dataclasses import dataclass, field

from .ast import (
    ArrayDecl,
    BinaryOp,
    Block,
    Call,
    Compare,
    Conditional,
    Expr,
    Function,
    Index,
    IndexedAssign,
    Literal,
    Loop,
    Name,
    Attribute,
    PlainAssign,
    Return,
    Signature,
    Span,
    Stmt,
    UnaryOp,
    walk,
)
from .errors import ParseError, UnsupportedConstructError

ARRAY_DECLARATION = "series_array"

_BINARY_OPS = {
    pyast.Add: "+",
    pyast.Sub: "-",
    pyast.Mult: "*",
    pyast.Div: "/",
    pyast.Pow: "**",
    pyast.FloorDiv: "//",
    pyast.Mod: "%",
}
_UNARY_OPS = {pyast.USub: "-", pyast.UAdd: "+", pyast.Not: "not"}
_COMPARE_OPS = {
    pyast.Lt: "<",
    pyast.LtE: "<=",
    pyast.Gt: ">",
    pyast.GtE: ">=",
    pyast.Eq: "==",
    pyast.NotEq: "!=",
}
# Operators that read as one n-ary node without explicit parentheses. Chains
# of `-`, `/` and `**` are accepted with Python's own grouping: left to right,
# and right to left for `**`.
_NARY_OPS = {"+", "*"}
_ARRAY_CONSTRUCTORS = {
    "array",
    "asarray",
    "zeros",
    "ones",
    "empty",
    "full",
    "zeros_like",
    "ones_like",
    "empty_like",
    "full_like",
    "stack",
    "concatenate",
    "hstack",
    "vstack",
    "list",
    "tuple",
}
_CONTAINER_LITERALS = (
    pyast.List,
    pyast.Tuple,
    pyast.Set,
    pyast.Dict,
    pyast.ListComp,
    pyast.SetComp,
    pyast.DictComp,
    pyast.GeneratorExp,
)
_STATEMENT_NAMES = {
    pyast.While: "while loop",
    pyast.With: "with statement",
    pyast.Try: "try statement",
    pyast.FunctionDef: "nested function definition",
    pyast.AsyncFunctionDef: "nested function definition",
    pyast.ClassDef: "class definition",
    pyast.Delete: "del statement",
    pyast.Global: "global declaration",
    pyast.Nonlocal: "nonlocal declaration",
    pyast.Import: "import statement",
    pyast.ImportFrom: "import statement",
    pyast.Raise: "raise statement",
    pyast.Assert: "assert statement",
    pyast.Break: "break statement",
    pyast.Continue: "continue statement",
    pyast.AnnAssign: "annotated assignment",
}


@dataclass
class _Converter:
    source: str
    filename: str | None
    line_offset: int
    _statement: pyast.AST | None = field(default=None, init=False)

    def span(self, node: pyast.AST) -> Span:
        line = node.lineno + self.line_offset
        end_line = (node.end_lineno or node.lineno) + self.line_offset
        end_col = node.end_col_offset if node.end_col_offset is not None else node.col_offset
        return Span(line, node.col_offset, end_line, end_col)

    def _statement_text(self) -> str | None:
        if self._statement is None:
            return None
        segment = pyast.get_source_segment(self.source, self._statement)
        if not segment:
            return None
        return segment.splitlines()[0].strip()

    def unsupported(self, node: pyast.AST, construct: str, hint: str | None = None) -> UnsupportedConstructError:
        message = f"unsupported construct: {construct}"
        if hint:
            message = f"{message} ({hint})"
        return UnsupportedConstructError(
            message,
            construct=construct,
            span=self.span(node),
            statement=self._statement_text(),
            filename=self.filename,
        )

    # Statements

    def block(self, nodes: list[pyast.stmt], *, top_level: bool = False) -> Block:
        statements: list[Stmt] = []
        for position, node in enumerate(nodes):
            self._statement = node
            if isinstance(node, pyast.Return):
                if not top_level or position != len(nodes) - 1:
                    raise self.unsupported(node, "early return", "only a final return is allowed")
                statements.append(self._return(node))
                continue
            stmt = self._convert_statement(node)
            if stmt is not None:
                statements.append(stmt)
        return Block(statements=tuple(statements))

    def _convert_statement(self, node: pyast.stmt) -> Stmt | None:
        if isinstance(node, pyast.Assign):
            return self._assign(node)
        if isinstance(node, pyast.AugAssign):
            op = _BINARY_OPS.get(type(node.op), "?")
            raise self.unsupported(node, "compound assignment", f"'{op}=' must be written as a new assignment")
        if isinstance(node, pyast.If):
            test = self.expr(node.test)
            body = self.block(node.body)
            orelse = self.block(node.orelse)
            return Conditional(test=test, body=body, orelse=orelse, span=self.span(node))
        if isinstance(node, pyast.For):
            return self._loop(node)
        if isinstance(node, pyast.Pass):
            return None
        if isinstance(node, pyast.Expr):
            if isinstance(node.value, pyast.Constant) and isinstance(node.value.value, str):
                return None
            raise self.unsupported(node, "expression statement", "its value would be discarded")
        construct = _STATEMENT_NAMES.get(type(node), f"{type(node).__name__} statement")
        raise self.unsupported(node, construct)

    def _return(self, node: pyast.Return) -> Return:
        value = node.value
        if value is None or (isinstance(value, pyast.Constant) and value.value is None):
            return Return(span=self.span(node))
        if isinstance(value, pyast.Name):
            return Return(value=Name(value.id, span=self.span(value)), span=self.span(node))
        raise self.unsupported(node, "return value", "return nothing or the output container")

    def _assign(self, node: pyast.Assign) -> Stmt:
        if len(node.targets) != 1:
            raise self.unsupported(node, "chained assignment")
        target = node.targets[0]
        span = self.span(node)
        if isinstance(target, pyast.Name):
            if _is_declaration(node.value):
                return PlainAssign(target=target.id, value=self._declaration(node.value), span=span)
            value = self.expr(node.value)
            if any(isinstance(sub, Name) and sub.id == target.id for sub in walk(value)):
                raise self.unsupported(node, "self-referential assignment", f"'{target.id}' reads its own prior value")
            return PlainAssign(target=target.id, value=value, span=span)
        if isinstance(target, pyast.Subscript):
            index = self._subscript(target)
            value = self.expr(node.value)
            if any(sub == index for sub in walk(value)):
                raise self.unsupported(node, "self-referential assignment", "the stored element reads its own prior value")
            return IndexedAssign(target=index, value=value, span=span)
        if isinstance(target, (pyast.Tuple, pyast.List)):
            raise self.unsupported(node, "tuple unpacking")
        if isinstance(target, pyast.Attribute):
            raise self.unsupported(node, "attribute assignment")
        raise self.unsupported(node, f"assignment to {type(target).__name__}")

    def _declaration(self, node: pyast.Call) -> ArrayDecl:
        if node.keywords or len(node.args) != 1:
            raise self.unsupported(node, "array declaration arguments", f"use {ARRAY_DECLARATION}(length)")
        return ArrayDecl(length=self.expr(node.args[0]), span=self.span(node))

    def _loop(self, node: pyast.For) -> Loop:
        if node.orelse:
            raise self.unsupported(node, "for-else")
        if not isinstance(node.target, pyast.Name):
            raise self.unsupported(node, "loop target unpacking")
        iterable = node.iter
        if not (isinstance(iterable, pyast.Call) and _dotted(iterable.func) == "range"):
            raise self.unsupported(node, "iteration over a non-range iterable", "loop over range(...)")
        if iterable.keywords or not 1 <= len(iterable.args) <= 3:
            raise self.unsupported(iterable, "range arguments")
        args = [self.expr(arg) for arg in iterable.args]
        if len(args) == 1:
            start, stop, step = Literal(0), args[0], Literal(1)
        elif len(args) == 2:
            (start, stop), step = args, Literal(1)
        else:
            start, stop, step = args
        body = self.block(node.body)
        self._statement = node
        return Loop(var=node.target.id, start=start, stop=stop, step=step, body=body, span=self.span(node))

    # Expressions

    def expr(self, node: pyast.expr) -> Expr:
        span = self.span(node)
        if isinstance(node, pyast.Constant):
            value = node.value
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise self.unsupported(node, f"{type(value).__name__} literal")
            return Literal(value, span=span)
        if isinstance(node, pyast.Name):
            return Name(node.id, span=span)
        if isinstance(node, pyast.Attribute):
            return Attribute(value=self.expr(node.value), attr=node.attr, span=span)
        if isinstance(node, pyast.Subscript):
            return self._subscript(node)
        if isinstance(node, pyast.BinOp):
            return self._binary(node)
        if isinstance(node, pyast.UnaryOp):
            op = _UNARY_OPS.get(type(node.op))
            if op is None:
                raise self.unsupported(node, "bitwise inversion")
            return UnaryOp(op=op, operand=self.expr(node.operand), span=span)
        if isinstance(node, pyast.BoolOp):
            raise self.unsupported(node, "short-circuit boolean operator", "nest if statements instead")
        if isinstance(node, pyast.Compare):
            if len(node.ops) != 1:
                raise self.unsupported(node, "chained comparison")
            op = _COMPARE_OPS.get(type(node.ops[0]))
            if op is None:
                raise self.unsupported(node, f"'{type(node.ops[0]).__name__}' comparison")
            return Compare(op=op, left=self.expr(node.left), right=self.expr(node.comparators[0]), span=span)
        if isinstance(node, pyast.Call):
            return self._call(node)
        if isinstance(node, pyast.IfExp):
            raise self.unsupported(node, "conditional expression", "use an if statement")
        if isinstance(node, _CONTAINER_LITERALS):
            raise self.unsupported(node, "array construction", f"declare arrays with {ARRAY_DECLARATION}(length)")
        if isinstance(node, pyast.Lambda):
            raise self.unsupported(node, "lambda expression")
        if isinstance(node, pyast.NamedExpr):
            raise self.unsupported(node, "assignment expression")
        raise self.unsupported(node, f"{type(node).__name__} expression")

    def _binary(self, node: pyast.BinOp) -> BinaryOp:
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            if isinstance(node.op, pyast.MatMult):
                raise self.unsupported(node, "broadcasting", "matrix products act on whole arrays")
            raise self.unsupported(node, f"'{type(node.op).__name__}' operator")
        if op in _NARY_OPS:
            for child in (node.left, node.right):
                if (
                    isinstance(child, pyast.BinOp)
                    and _BINARY_OPS.get(type(child.op)) == op
                    and not _parenthesized(child, node)
                ):
                    raise self.unsupported(
                        node,
                        "unparenthesized n-ary expression",
                        f"group the operands explicitly, e.g. (a {op} b) {op} c",
                    )
        return BinaryOp(op=op, left=self.expr(node.left), right=self.expr(node.right), span=self.span(node))

    def _call(self, node: pyast.Call) -> Call:
        func = _dotted(node.func)
        if func is None:
            raise self.unsupported(node, "call of a computed callable")
        if node.keywords:
            raise self.unsupported(node, "keyword arguments")
        if any(isinstance(arg, pyast.Starred) for arg in node.args):
            raise self.unsupported(node, "starred arguments")
        short = func.rpartition(".")[2]
        if short == ARRAY_DECLARATION:
            raise self.unsupported(node, "array declaration outside an assignment")
        if short in _ARRAY_CONSTRUCTORS:
            raise self.unsupported(node, "array construction", f"declare arrays with {ARRAY_DECLARATION}(length)")
        if short == "range":
            raise self.unsupported(node, "range outside a for loop")
        args = tuple(self.expr(arg) for arg in node.args)
        return Call(func=func, args=args, span=self.span(node))

    def _subscript(self, node: pyast.Subscript) -> Index:
        if not isinstance(node.value, pyast.Name):
            raise self.unsupported(node, "indexing of a computed value")
        index = node.slice
        if isinstance(index, pyast.Slice):
            raise self.unsupported(node, "broadcasting", "slices address several elements at once")
        if isinstance(index, pyast.Tuple):
            raise self.unsupported(node, "multi-dimensional indexing")
        container = Name(node.value.id, span=self.span(node.value))
        return Index(value=container, index=self.expr(index), span=self.span(node))


def _dotted(node: pyast.expr) -> str | None:
    if isinstance(node, pyast.Name):
        return node.id
    if isinstance(node, pyast.Attribute):
        head = _dotted(node.value)
        return None if head is None else f"{head}.{node.attr}"
    return None


def _is_declaration(node: pyast.expr) -> bool:
    if not isinstance(node, pyast.Call):
        return False
    func = _dotted(node.func)
    return func is not None and func.rpartition(".")[2] == ARRAY_DECLARATION


def _parenthesized(child: pyast.expr, parent: pyast.expr) -> bool:
    # Node positions exclude parentheses, so an unparenthesized operand shares
    # its start (left operand) or its end (right operand) with the parent.
    same_start = (child.lineno, child.col_offset) == (parent.lineno, parent.col_offset)
    same_end = (child.end_lineno, child.end_col_offset) == (parent.end_lineno, parent.end_col_offset)
    return not (same_start or same_end)


def _signature(converter: _Converter, node: pyast.FunctionDef) -> Signature:
    args = node.args
    positional = [*args.posonlyargs, *args.args]
    if (
        len(positional) != 4
        or args.vararg is not None
        or args.kwarg is not None
        or args.kwonlyargs
        or args.defaults
    ):
        raise ParseError(
            f"function '{node.name}' must take exactly four positional parameters (dx, x, p, t)",
            construct="signature",
            span=converter.span(node),
            filename=converter.filename,
        )
    output, state, params, time = (arg.arg for arg in positional)
    return Signature(output=output, state=state, params=params, time=time)


def parse(source: str, *, filename: str | None = None, first_line: int = 1) -> Function:
    """Parse the source of one right-hand-side function into an expression tree."""
    text = textwrap.dedent(source)
    line_offset = first_line - 1
    try:
        module = pyast.parse(text, filename=filename or "<rhs>")
    except SyntaxError as err:
        line = (err.lineno or 1) + line_offset
        col = max((err.offset or 1) - 1, 0)
        raise ParseError(
            f"invalid syntax: {err.msg}",
            construct="syntax",
            span=Span(line, col, line, col),
            statement=err.text.strip() if err.text else None,
            filename=filename,
        ) from err

    definitions = [node for node in module.body if isinstance(node, pyast.FunctionDef)]
    others = [
        node
        for node in module.body
        if not isinstance(node, (pyast.FunctionDef, pyast.Import, pyast.ImportFrom, pyast.Expr))
    ]
    if len(definitions) != 1 or others:
        raise ParseError(
            f"expected exactly one function definition, found {len(definitions)}",
            construct="module",
            filename=filename,
        )
    node = definitions[0]
    converter = _Converter(source=text, filename=filename, line_offset=line_offset)
    signature = _signature(converter, node)
    body = converter.block(node.body, top_level=True)
    return Function(
        name=node.name,
        signature=signature,
        body=body,
        source=text,
        filename=filename,
        first_line=first_line,
    )


def source_of(func) -> tuple[str, str | None, int]:
    """Return `(source, filename, first_line)` for a function object."""
    try:
        lines, first_line = inspect.getsourcelines(func)
        filename = inspect.getsourcefile(func)
    except (OSError, TypeError) as err:
        raise ParseError(f"cannot retrieve the source of {func!r}", construct="source") from err
    return "".join(lines), filename, first_line


def parse_function(func) -> Function:
    source, filename, first_line = source_of(func)
    return parse(source, filename=filename, first_line=first_line)
