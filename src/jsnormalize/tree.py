"""Parsing, printing and traversal of JavaScript syntax trees."""

import logging

import escodegen
import esprima
from esprima import nodes
from esprima.error_handler import Error as EsprimaError

from .errors import GenerationError, ParseError
from .strings import quote_js_string

logger = logging.getLogger(__name__)

ESPRIMA_OPTIONS = {
    "tolerant": False,
    "jsx": False,
    "classProperties": True,
    "comment": False,
}

ESCODEGEN_OPTIONS = {
    "format": {
        "indent": {
            "style": "  ",
            "base": 0,
            "adjustMultilineComment": False,
        },
        "newline": "\n",
        "space": " ",
        "json": False,
        "renumber": False,
        "hexadecimal": False,
        "quotes": "double",
        "escapeless": False,
        "compact": False,
        "parenthesis": True,
        "semicolons": True,
        "safeConcatenation": False,
    },
    "moz": {
        "starlessGenerator": False,
        "parenthesizedComprehensionBlock": False,
        "comprehensionExpressionStartsWithAssignment": False,
    },
    "parse": None,
    "comment": False,
    "sourceMap": None,
    "sourceMapRoot": None,
    "sourceMapWithCode": False,
    "file": None,
    "directive": False,
    "verbatim": None,
}

_SKIPPED_FIELDS = frozenset(
    ["type", "loc", "range", "parent", "comments", "leadingComments", "trailingComments", "innerComments"]
)


def parse_code(code, comments=False):
    """Parse ``code`` as a script, falling back to a module.

    With ``comments`` set, comments are attached to the nodes they precede
    or follow so :func:`print_code` can emit them again.
    Raises :class:`ParseError` if neither goal accepts the text.
    """
    options = dict(ESPRIMA_OPTIONS, attachComment=comments)
    try:
        return esprima.parseScript(code, options)
    except EsprimaError as script_error:
        try:
            return esprima.parseModule(code, options)
        except EsprimaError:
            pass
        line = getattr(script_error, "lineNumber", None)
        column = getattr(script_error, "column", None)
        logger.debug("Parse failure at line %s, column %s: %s", line, column, script_error)
        raise ParseError(f"Failed to parse JavaScript: {script_error}", line, column) from script_error


def print_code(tree, indent_size=2, comments=False):
    """Print ``tree`` back to source.

    Raises :class:`GenerationError` for nodes escodegen cannot print, such
    as the ``Import`` callee of a dynamic ``import()``.
    """
    options = dict(ESCODEGEN_OPTIONS, comment=comments)
    options["format"] = dict(ESCODEGEN_OPTIONS["format"])
    options["format"]["indent"] = dict(ESCODEGEN_OPTIONS["format"]["indent"], style=" " * indent_size)
    try:
        return escodegen.generate(tree, options)
    except ValueError as e:
        raise GenerationError(f"Failed to print JavaScript: {e}") from e


def is_node(value):
    return isinstance(value, nodes.Node)


def iter_fields(node):
    """Yield ``(name, value)`` for every child field, in source order."""
    for field, value in list(vars(node).items()):
        if field in _SKIPPED_FIELDS or field.startswith("_"):
            continue
        yield field, value


def walk(node):
    """Pre-order iteration over ``node`` and all of its descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, list):
            stack.extend(reversed(current))
            continue
        if not is_node(current):
            continue
        yield current
        children = [value for _, value in iter_fields(current) if is_node(value) or isinstance(value, list)]
        stack.extend(reversed(children))


# --- AST traversal base classes ---

class AstVisitor:
    def visit(self, node):
        if node is None:
            return
        if isinstance(node, list):
            for item in node:
                self.visit(item)
            return
        if not is_node(node):
            return
        visitor = getattr(self, "visit_" + node.type, self.generic_visit)
        visitor(node)

    def generic_visit(self, node):
        for _, value in iter_fields(node):
            if is_node(value) or isinstance(value, list):
                self.visit(value)


class AstTransformer(AstVisitor):
    """Rewrite a tree by returning replacement nodes from ``visit_<Type>``.

    Returning ``None`` for an item of a list removes it from the list.
    """

    def visit(self, node):
        if node is None:
            return None
        if isinstance(node, list):
            new_list = []
            for item in node:
                if not is_node(item):
                    new_list.append(item)
                    continue
                new_item = self.visit(item)
                if new_item is None:
                    continue
                if isinstance(new_item, list):
                    new_list.extend(new_item)
                else:
                    new_list.append(new_item)
            return new_list
        if not is_node(node):
            return node
        visitor = getattr(self, "visit_" + node.type, self.generic_visit)
        return visitor(node)

    def generic_visit(self, node):
        for field, old_value in iter_fields(node):
            if is_node(old_value) or isinstance(old_value, list):
                setattr(node, field, self.visit(old_value))
        return node


# --- Node builders ---

def identifier(name):
    return nodes.Identifier(name)


def string_literal(value):
    return nodes.Literal(value, quote_js_string(value))


def call(callee, arguments):
    return nodes.CallExpression(callee, arguments)


def const_declaration(name, init):
    return nodes.VariableDeclaration([nodes.VariableDeclarator(identifier(name), init)], "const")


def clone(node):
    """Deep copy of a subtree.

    esprima nodes answer ``None`` for every missing attribute, including
    the pickling hooks, so ``copy.deepcopy`` cannot be used on them.
    """
    if isinstance(node, list):
        return [clone(item) for item in node]
    if not is_node(node):
        return node
    duplicate = object.__new__(type(node))
    for field, value in vars(node).items():
        setattr(duplicate, field, value if field in _SKIPPED_FIELDS else clone(value))
    return duplicate


# --- Recognizers; each returns None on any other shape ---

def node_type(node):
    return node.type if is_node(node) else None


def is_identifier(node, name=None):
    if node_type(node) != "Identifier":
        return False
    return name is None or node.name == name


def is_string_literal(node):
    return node_type(node) == "Literal" and isinstance(node.value, str)


def numeric_value(node):
    """Return the number held by a numeric literal, or ``None``."""
    if node_type(node) != "Literal":
        return None
    value = node.value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def integer_value(node):
    value = numeric_value(node)
    if value is None:
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        return int(value)
    return value


def js_number_key(value):
    """The property-key string JavaScript derives from a number."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def member_key(member):
    """Return the literal property key of a member expression as JS would.

    ``a.b`` and ``a["b"]`` give ``"b"``, ``a[1]`` and ``a["1"]`` give ``"1"``,
    ``a[-7]`` gives ``"-7"``. Dynamic keys give ``None``.
    """
    if node_type(member) != "MemberExpression":
        return None
    prop = member.property
    if not member.computed:
        return prop.name if is_identifier(prop) else None
    if is_string_literal(prop):
        return prop.value
    number = numeric_value(prop)
    if number is not None:
        return js_number_key(number)
    if node_type(prop) == "UnaryExpression" and prop.operator == "-":
        number = numeric_value(prop.argument)
        if number is not None:
            return js_number_key(-number)
    return None


def callee_name(node):
    if node_type(node) != "CallExpression" or not is_identifier(node.callee):
        return None
    return node.callee.name
