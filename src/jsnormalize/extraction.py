"""Locate the obfuscator's wrapper, its accessor alias object and its constant table."""

import logging
from collections import namedtuple

from .errors import ExtractionError
from .strings import quote_js_string, unescape_js_string
from .tree import integer_value, is_identifier, is_string_literal, node_type, parse_code, print_code

logger = logging.getLogger(__name__)

Extraction = namedtuple("Extraction", ["cleaned", "parameters", "environment"])

FUNCTION_PREFIX = 'Function("'
ARGUMENT_SEPARATOR = '","'
CALL_SEPARATOR = '")('
WRAPPER_NAME = "dummy"


def _find_inside_greedy(text, prefix, suffix):
    start = text.find(prefix)
    end = text.rfind(suffix)
    if start == -1 or end == -1 or end < start + len(prefix):
        return None
    return text[start + len(prefix):end]


def _find_inside(text, prefix, suffix):
    start = text.find(prefix)
    if start == -1:
        return None
    end = text.find(suffix, start + len(prefix))
    if end == -1:
        return None
    return text[start + len(prefix):end]


def extract_parameters(source):
    """Unwrap ``Function("<env>", "<body>")(<aliases>)`` into a named function.

    The body literal is unescaped (never evaluated) and placed inside
    ``function dummy(<env>) {...}``, followed by ``dummy(<aliases>);`` so
    the result parses as one program.
    """
    environment = _find_inside(source, FUNCTION_PREFIX, ARGUMENT_SEPARATOR)
    if not environment:
        raise ExtractionError("Could not locate the Function constructor environment parameter")

    data = _find_inside_greedy(source, ARGUMENT_SEPARATOR, CALL_SEPARATOR)
    if data is None:
        raise ExtractionError("Could not locate the Function constructor body")
    body = unescape_js_string(data)

    end = source.rfind(CALL_SEPARATOR)
    parameters = source[end + len(CALL_SEPARATOR):].rstrip().rstrip(";").rstrip()
    if not parameters.endswith(")"):
        raise ExtractionError("Function constructor call is not closed")
    parameters = parameters[:-1].strip()
    if not parameters:
        raise ExtractionError("Function constructor call has no alias object argument")

    logger.info("Unwrapped Function constructor: environment %r, body of %d characters", environment, len(body))
    cleaned = f"function {WRAPPER_NAME}({environment}) {{\n{body}\n}}\n{WRAPPER_NAME}({parameters});\n"
    return Extraction(cleaned, parameters, environment)


def _property_name(key):
    if is_string_literal(key):
        return key.value
    if is_identifier(key):
        return key.name
    index = integer_value(key)
    if index is not None and index >= 0:
        return index
    return None


def parse_parameters(parameters):
    """Build the alias map from the accessor object literal text.

    Only getters contribute; each maps its key to the printed source of the
    expression it returns.
    """
    program = parse_code("(" + parameters + ")")
    statement = program.body[0] if len(program.body) == 1 else None
    expression = statement.expression if node_type(statement) == "ExpressionStatement" else None
    if node_type(expression) != "ObjectExpression":
        raise ExtractionError("Alias parameters are not an object literal")

    aliases = {}
    for prop in expression.properties:
        if node_type(prop) != "Property" or prop.kind != "get":
            continue
        name = _property_name(prop.key)
        body = prop.value.body.body if node_type(prop.value) == "FunctionExpression" else None
        if name is None or not body or len(body) != 1 or node_type(body[0]) != "ReturnStatement" \
                or body[0].argument is None:
            raise ExtractionError("Getter is not of the form get key() { return <expression> }")
        aliases[name] = print_code(body[0].argument)
    logger.info("Parsed %d aliases from accessor object", len(aliases))
    return aliases


def _scope_body(program):
    """Statements of the wrapper function, or of the program without one."""
    body = program.body
    if body and node_type(body[0]) == "FunctionDeclaration":
        return body[0].body.body
    return body


def _const_arrays(program):
    for statement in _scope_body(program):
        if node_type(statement) != "VariableDeclaration" or statement.kind != "const":
            continue
        for declarator in statement.declarations:
            if is_identifier(declarator.id) and node_type(declarator.init) == "ArrayExpression":
                yield declarator.id.name, declarator.init


def extract_array_name(code):
    """Name of the first ``const`` array in the wrapper body, or ``None``."""
    for name, _ in _const_arrays(parse_code(code)):
        return name
    return None


def _element_source(element):
    if element is None:
        return "undefined"
    if is_string_literal(element):
        return quote_js_string(element.value)
    if node_type(element) == "Literal" and element.raw is not None:
        return element.raw
    return print_code(element)


def extract_array_values(code, variable_name):
    """Map each index of the ``const`` array ``variable_name`` to its source.

    Returns ``None`` when no ``const`` declaration of that name holds an
    array literal: mutable bindings do not qualify as a constant table.
    """
    for name, array in _const_arrays(parse_code(code)):
        if name == variable_name:
            values = {index: _element_source(element) for index, element in enumerate(array.elements)}
            logger.info("Extracted %d constants from %s", len(values), variable_name)
            return values
    logger.info("No constant table named %s", variable_name)
    return None
