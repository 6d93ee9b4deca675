"""Tree rewrite passes.

Each pass is an :class:`AstTransformer`; run it with ``Pass().visit(tree)``.
Recognizers return ``None`` for anything outside the shapes they know, so
a foreign node is never half-rewritten.
"""

import logging
import re

from esprima import nodes

from .config import DeobfuscatorConfig
from .decoding import ALPHABET_LENGTHS, DECODE_HELPER_NAME
from .errors import AmbiguousPatternError
from .tree import (
    AstTransformer,
    call,
    callee_name,
    clone,
    const_declaration,
    identifier,
    integer_value,
    is_identifier,
    is_node,
    is_string_literal,
    iter_fields,
    member_key,
    node_type,
    string_literal,
    walk,
)

logger = logging.getLogger(__name__)

_ARRAY_INDEX_RE = re.compile(r"0|[1-9][0-9]*")


def _function_name(node):
    return node.id.name if is_identifier(node.id) else "<anonymous>"


def _ambiguous(config, message):
    if config.strict_patterns:
        raise AmbiguousPatternError(message)
    logger.warning("%s; left unchanged", message)


class StringConcatFolder(AstTransformer):
    """Fold ``"a" + "b"`` into ``"ab"``; bottom-up, so chains collapse in one pass."""

    def __init__(self):
        self.folded = 0

    def visit_BinaryExpression(self, node):
        node = self.generic_visit(node)
        if node.operator == "+" and is_string_literal(node.left) and is_string_literal(node.right):
            self.folded += 1
            return string_literal(node.left.value + node.right.value)
        return node


# --- Rest parameter normalization ---

def _length_assertion(expression, rest_name):
    """Match ``<rest>.length = <right>`` and return the right-hand side."""
    if node_type(expression) != "AssignmentExpression" or expression.operator != "=":
        return None
    left = expression.left
    if node_type(left) != "MemberExpression" or not is_identifier(left.object, rest_name):
        return None
    if member_key(left) != "length":
        return None
    return expression.right


def _assertion_shape(statement, rest_name):
    """Locate the length assertion in the first statement of a body.

    Returns ``(shape, assertion)`` where shape is ``"statement"``,
    ``"sequence"`` or ``"call"``, or ``None`` when there is no assertion.
    """
    if node_type(statement) != "ExpressionStatement":
        return None
    expression = statement.expression
    if _length_assertion(expression, rest_name) is not None:
        return "statement", expression
    if node_type(expression) == "SequenceExpression" and expression.expressions \
            and _length_assertion(expression.expressions[0], rest_name) is not None:
        return "sequence", expression.expressions[0]
    if callee_name(expression) is not None and expression.arguments \
            and _length_assertion(expression.arguments[0], rest_name) is not None:
        return "call", expression.arguments[0]
    return None


def _property_name_ids(tree):
    """Ids of identifiers used as property names (``a.b``, ``{b: 1}``), not references."""
    names = set()
    for node in walk(tree):
        kind = node_type(node)
        if kind == "MemberExpression" and not node.computed:
            names.add(id(node.property))
        elif kind in ("Property", "MethodDefinition", "FieldDefinition") and not node.computed \
                and not getattr(node, "shorthand", False):
            names.add(id(node.key))
    return names


def _has_dynamic_use(body, rest_name):
    """True if the capture is used other than through a literal-keyed member."""
    allowed = _property_name_ids(body)
    for node in walk(body):
        if node_type(node) == "MemberExpression" and is_identifier(node.object, rest_name) \
                and member_key(node) is not None:
            allowed.add(id(node.object))
    return any(
        is_identifier(node, rest_name) and id(node) not in allowed
        for node in walk(body)
    )


def _strip_assertion(body, shape):
    statement = body[0]
    if shape == "statement":
        return body[1:]
    if shape == "sequence":
        remaining = statement.expression.expressions[1:]
        if not remaining:
            return body[1:]
        statement.expression = remaining[0] if len(remaining) == 1 else nodes.SequenceExpression(remaining)
        return body
    statement.expression.arguments = statement.expression.arguments[1:]
    return body


class _CaptureIndexRewriter(AstTransformer):
    """Replace ``<rest>[key]`` with ``param_<i>`` or a memoized ``local_<k>``."""

    def __init__(self, rest_name, param_count):
        self.rest_name = rest_name
        self.param_count = param_count
        self.locals = {}

    def visit_MemberExpression(self, node):
        node = self.generic_visit(node)
        if not is_identifier(node.object, self.rest_name):
            return node
        key = member_key(node)
        if key is None or key == "length":
            return node
        if _ARRAY_INDEX_RE.fullmatch(key) and int(key) < self.param_count:
            return identifier(f"param_{key}")
        if key not in self.locals:
            self.locals[key] = f"local_{len(self.locals)}"
        return identifier(self.locals[key])


class RestParameterNormalizer(AstTransformer):
    """Turn ``function f(...a) { a.length = N; ... a[i] ... }`` into named parameters."""

    def __init__(self, config=None):
        self.config = config or DeobfuscatorConfig()
        self.normalized = 0

    def _normalize(self, node):
        node = self.generic_visit(node)
        params = node.params
        if len(params) != 1 or node_type(params[0]) != "RestElement" or not is_identifier(params[0].argument):
            return node
        if node_type(node.body) != "BlockStatement" or not node.body.body:
            return node

        rest_name = params[0].argument.name
        body = node.body.body
        match = _assertion_shape(body[0], rest_name)
        if match is None:
            return node
        shape, assertion = match

        param_count = integer_value(assertion.right)
        if param_count is None or param_count < 0:
            _ambiguous(self.config, f"{_function_name(node)}: length assertion on {rest_name} is not a non-negative integer literal")
            return node

        if _has_dynamic_use(node.body, rest_name):
            _ambiguous(self.config, f"{_function_name(node)}: {rest_name} is used with a dynamic index")
            return node

        node.body.body = _strip_assertion(body, shape)
        rewriter = _CaptureIndexRewriter(rest_name, param_count)
        node.body = rewriter.visit(node.body)
        node.params = [identifier(f"param_{index}") for index in range(param_count)]
        self.normalized += 1
        logger.debug(
            "Normalized %s: %d parameter(s), %d local(s) (%s shape)",
            _function_name(node), param_count, len(rewriter.locals), shape,
        )
        return node

    visit_FunctionDeclaration = _normalize
    visit_FunctionExpression = _normalize
    visit_ArrowFunctionExpression = _normalize


# --- Decode loop canonicalization ---

def _is_alphabet(node):
    return is_string_literal(node) and len(node.value) in ALPHABET_LENGTHS


def _alphabet_head(statement):
    """Return the alphabet literal bound by ``var A = "..."`` or ``f(A = "...", ...)``."""
    kind = node_type(statement)
    if kind == "VariableDeclaration" and statement.declarations:
        declarator = statement.declarations[0]
        if is_identifier(declarator.id) and _is_alphabet(declarator.init):
            return declarator.init
    elif kind == "ExpressionStatement" and callee_name(statement.expression) is not None \
            and statement.expression.arguments:
        first = statement.expression.arguments[0]
        if node_type(first) == "AssignmentExpression" and first.operator == "=" \
                and is_identifier(first.left) and _is_alphabet(first.right):
            return first.right
    return None


def _is_width_selector(node):
    """Match ``(x & 8191) > 88 ? 13 : 14``."""
    if node_type(node) != "ConditionalExpression":
        return False
    test = node.test
    if node_type(test) != "BinaryExpression" or test.operator != ">" or integer_value(test.right) != 88:
        return False
    masked = test.left
    if node_type(masked) != "BinaryExpression" or masked.operator != "&" or integer_value(masked.right) != 8191:
        return False
    return integer_value(node.consequent) == 13 and integer_value(node.alternate) == 14


def _decode_output(statement):
    """Return the name ``L`` of a trailing ``return G(L)``."""
    if node_type(statement) != "ReturnStatement" or node_type(statement.argument) != "CallExpression":
        return None
    arguments = statement.argument.arguments
    if len(arguments) != 1 or not is_identifier(arguments[0]):
        return None
    return arguments[0].name


class DecodeCanonicalizer(AstTransformer):
    """Replace inline decode loops with ``const L = decodeHelper(alphabet, seed)``."""

    def __init__(self, config=None):
        self.config = config or DeobfuscatorConfig()
        self.canonicalized = 0

    def _canonicalize(self, node):
        node = self.generic_visit(node)
        if node_type(node.body) != "BlockStatement" or not node.body.body:
            return node
        body = node.body.body
        alphabet = _alphabet_head(body[0])
        if alphabet is None:
            return node

        seed = node.params[0] if node.params else None
        output = _decode_output(body[-1]) if len(body) > 1 else None
        if not is_identifier(seed) or output is None \
                or not any(_is_width_selector(child) for child in walk(node.body)):
            _ambiguous(self.config, f"{_function_name(node)}: alphabet literal without a recognizable decode loop")
            return node

        declaration = const_declaration(
            output, call(identifier(DECODE_HELPER_NAME), [string_literal(alphabet.value), identifier(seed.name)])
        )
        node.body.body = [declaration, body[-1]]
        self.canonicalized += 1
        logger.debug("Canonicalized decode loop in %s (alphabet of %d)", _function_name(node), len(alphabet.value))
        return node

    visit_FunctionDeclaration = _canonicalize
    visit_FunctionExpression = _canonicalize
    visit_ArrowFunctionExpression = _canonicalize


# --- Wrapper call inlining ---

class _Wrapper:
    __slots__ = ("declaration", "alphabet", "callee")

    def __init__(self, declaration, alphabet, callee):
        self.declaration = declaration
        self.alphabet = alphabet
        self.callee = callee


def _wrapper_shape(node):
    """Match ``function F(p) { const L = decodeHelper(A, p); return G(L); }``."""
    if node_type(node) != "FunctionDeclaration" or not is_identifier(node.id):
        return None
    if len(node.params) != 1 or not is_identifier(node.params[0]) or len(node.body.body) != 2:
        return None
    declaration, statement = node.body.body
    if node_type(declaration) != "VariableDeclaration" or len(declaration.declarations) != 1:
        return None
    declarator = declaration.declarations[0]
    init = declarator.init
    if not is_identifier(declarator.id) or callee_name(init) != DECODE_HELPER_NAME or len(init.arguments) != 2:
        return None
    alphabet, seed = init.arguments
    parameter = node.params[0].name
    if not is_string_literal(alphabet) or not is_identifier(seed, parameter):
        return None
    if _decode_output(statement) != declarator.id.name:
        return None
    callee = statement.argument.callee
    if any(is_identifier(child, parameter) or is_identifier(child, declarator.id.name) for child in walk(callee)):
        return None
    return _Wrapper(node, alphabet, callee)


_SCOPE_TYPES = ("Program", "FunctionDeclaration", "FunctionExpression", "ArrowFunctionExpression")


def _pattern_names(pattern):
    kind = node_type(pattern)
    if kind == "Identifier":
        return [pattern.name]
    if kind == "ObjectPattern":
        return [name for prop in pattern.properties
                for name in _pattern_names(prop.value if node_type(prop) == "Property" else prop)]
    if kind == "ArrayPattern":
        return [name for element in pattern.elements for name in _pattern_names(element)]
    if kind == "AssignmentPattern":
        return _pattern_names(pattern.left)
    if kind == "RestElement":
        return _pattern_names(pattern.argument)
    return []


def _bindings(tree):
    """Map every bound name to the scopes binding it, and every node to its enclosing scopes.

    Scopes are function-level: a ``let`` in a block is counted against the
    enclosing function. Both maps hold node ids.
    """
    bindings = {}
    chains = {}
    stack = [(tree, ())]
    while stack:
        node, chain = stack.pop()
        if isinstance(node, list):
            stack.extend((item, chain) for item in node)
            continue
        if not is_node(node):
            continue
        chains[id(node)] = chain
        kind = node_type(node)
        inner = chain + (id(node),) if kind in _SCOPE_TYPES else chain
        bound = []
        if kind in ("FunctionDeclaration", "ClassDeclaration", "ClassExpression") and is_identifier(node.id):
            bound.append((node.id.name, chain[-1]))
        if kind == "FunctionExpression" and is_identifier(node.id):
            bound.append((node.id.name, id(node)))
        if kind in ("FunctionDeclaration", "FunctionExpression", "ArrowFunctionExpression"):
            bound.extend((name, id(node)) for param in node.params for name in _pattern_names(param))
        if kind == "VariableDeclarator":
            bound.extend((name, chain[-1]) for name in _pattern_names(node.id))
        if kind == "CatchClause":
            bound.extend((name, chain[-1]) for name in _pattern_names(node.param))
        for name, scope in bound:
            bindings.setdefault(name, []).append(scope)
        stack.extend((value, inner) for _, value in iter_fields(node))
    return bindings, chains


def _free_names(expression):
    excluded = _property_name_ids(expression)
    return {node.name for node in walk(expression) if node_type(node) == "Identifier" and id(node) not in excluded}


def _collect_wrappers(tree):
    """Wrappers declared directly in a statement list under a unique name.

    The wrapper's callee is moved to every call site, so each name it uses
    must resolve to the same binding there: bound at most once, in a scope
    enclosing the wrapper.
    """
    listed = []
    for node in walk(tree):
        for _, value in vars(node).items():
            if isinstance(value, list):
                listed.extend(item for item in value if node_type(item) == "FunctionDeclaration")
    bindings, chains = _bindings(tree)
    wrappers = {}
    for declaration in listed:
        wrapper = _wrapper_shape(declaration)
        if wrapper is None:
            continue
        name = declaration.id.name
        # a parameter named after its own function shadows only the body
        own_bindings = 2 if declaration.params[0].name == name else 1
        if len(bindings.get(name, ())) != own_bindings:
            continue
        visible = set(chains[id(declaration)])
        if any(len(bindings.get(free, ())) > 1 or not visible.issuperset(bindings.get(free, ()))
               for free in _free_names(wrapper.callee)):
            logger.debug("Not inlining %s: its callee is rebound in another scope", name)
            continue
        wrappers[name] = wrapper
    return wrappers


def _reference_count(tree, name, declaration):
    excluded = _property_name_ids(tree)
    excluded.update(id(node) for node in walk(declaration))
    return sum(1 for node in walk(tree) if is_identifier(node, name) and id(node) not in excluded)


class _DeclarationRemover(AstTransformer):
    def __init__(self, doomed):
        self.doomed = doomed

    def visit_FunctionDeclaration(self, node):
        if id(node) in self.doomed:
            return None
        return self.generic_visit(node)


class WrapperCallInliner(AstTransformer):
    """Inline ``F(x)`` to ``G(decodeHelper(A, x))`` for trivial decode wrappers ``F``.

    Every single-argument call is inlined. A wrapper declaration is removed
    once no reference to its name is left anywhere in the tree; wrappers
    still used as values are kept.
    """

    def __init__(self):
        self.wrappers = {}
        self.inlined = 0
        self.removed = 0
        self._expanding = set()

    def visit_Program(self, node):
        self.wrappers = _collect_wrappers(node)
        if not self.wrappers:
            return node
        node = self.generic_visit(node)

        doomed = set()
        for name, wrapper in self.wrappers.items():
            if _reference_count(node, name, wrapper.declaration) == 0:
                doomed.add(id(wrapper.declaration))
                logger.debug("Removing unreferenced decode wrapper %s", name)
            else:
                logger.debug("Keeping decode wrapper %s, still referenced", name)
        if doomed:
            node = _DeclarationRemover(doomed).visit(node)
        self.removed += len(doomed)
        logger.info("Inlined %d decode wrapper call(s), removed %d wrapper(s)", self.inlined, self.removed)
        return node

    def visit_CallExpression(self, node):
        node = self.generic_visit(node)
        name = callee_name(node)
        wrapper = self.wrappers.get(name)
        if wrapper is None or name in self._expanding:
            return node
        if len(node.arguments) != 1 or node_type(node.arguments[0]) == "SpreadElement":
            return node

        self.inlined += 1
        decoded = call(identifier(DECODE_HELPER_NAME), [clone(wrapper.alphabet), node.arguments[0]])
        replacement = call(clone(wrapper.callee), [decoded])
        # the wrapper may itself feed another wrapper
        self._expanding.add(name)
        try:
            return self.visit(replacement)
        finally:
            self._expanding.discard(name)
