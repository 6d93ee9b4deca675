"""Textual resolution of ``<binding>[<key>]`` indirection."""

import logging
import re

from .config import DeobfuscatorConfig
from .errors import MissingAliasError
from .tree import node_type, numeric_value, parse_code

logger = logging.getLogger(__name__)

# The binding must start a token: not part of a longer name or a property.
_TOKEN_START = r"(?<![\w$.])"
_TOKEN_END = r"(?![\w$])"


def _numeric_pattern(binding, key):
    return re.compile(
        rf"{_TOKEN_START}{re.escape(binding)}\[\s*(?:0x{key:x}|{key:d})\s*\]"
    )


def _name_pattern(binding, key):
    name = re.escape(key)
    return re.compile(
        rf"{_TOKEN_START}{re.escape(binding)}(?:\[\s*(?P<quote>[\"']){name}(?P=quote)\s*\]|\.{name}{_TOKEN_END})"
    )


def _key_pattern(binding, key):
    if isinstance(key, int) and not isinstance(key, bool):
        return _numeric_pattern(binding, key), f"0x{key:x}"
    return _name_pattern(binding, str(key)), f'"{key}"'


def replace_parameters(code, parameters, environment, config=None):
    """Replace every ``environment[key]`` in ``code`` with its alias source.

    ``parameters`` maps integer indices (matched in hexadecimal and decimal
    form) or property names (matched in bracket and dot form) to expression
    source text, which is inserted verbatim.
    """
    if parameters is None:
        raise MissingAliasError(f"No alias map supplied for {environment}")
    config = config or DeobfuscatorConfig()

    total = 0
    for key, value in parameters.items():
        pattern, label = _key_pattern(environment, key)
        replacement = f"/* {environment}[{label}] */ {value}" if config.debug_annotate else str(value)
        code, count = pattern.subn(lambda _match: replacement, code)
        if count:
            logger.debug("Replaced %d occurrence(s) of %s[%s]", count, environment, label)
        total += count
    logger.info("Resolved %d %s references using %d aliases", total, environment, len(parameters))
    return code


_PRIMARY_TYPES = frozenset(["Identifier", "ThisExpression", "ArrayExpression"])


def _is_primary(node):
    if node_type(node) == "Literal":
        return numeric_value(node) is None
    return node_type(node) in _PRIMARY_TYPES


def parenthesize_operands(parameters):
    """Wrap every alias value that is not a primary expression in parentheses.

    ``E["t"].x`` with ``typeof global`` must become ``(typeof global).x``,
    and ``T[0].toString()`` with ``100`` must become ``(100).toString()``.
    The final reprint drops the parentheses that turn out to be redundant.
    """
    wrapped = {}
    for key, value in parameters.items():
        expression = parse_code(f"({value})").body[0].expression
        wrapped[key] = value if _is_primary(expression) else f"({value})"
    return wrapped
