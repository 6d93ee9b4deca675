"""JavaScript string literal escaping and unescaping."""

import re

_ESCAPE_RE = re.compile(
    r"\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|[0-3][0-7]{0,2}|[4-7][0-7]?|\r\n|[\s\S])"
)

_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
    "v": "\v",
}

_LINE_CONTINUATIONS = {"\n", "\r", "\r\n", "\u2028", "\u2029"}


def _unescape_match(match):
    escape = match.group(1)
    if escape in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[escape]
    if escape in _LINE_CONTINUATIONS:
        return ""
    if escape.startswith("u{"):
        return chr(int(escape[2:-1], 16))
    if escape[0] in "ux" and len(escape) > 1:
        return chr(int(escape[1:], 16))
    if escape[0] in "01234567":
        # \0 alone is NUL, anything longer is a legacy octal escape
        return chr(int(escape, 8))
    return escape


def unescape_js_string(body):
    """Turn the body of a JS string literal into the string it denotes.

    Only escape sequences are interpreted; the text is never evaluated. A
    trailing lone backslash is kept as is. Surrogate pairs written as two
    ``\\uXXXX`` escapes are combined into one code point.
    """
    text = _ESCAPE_RE.sub(_unescape_match, body)
    return text.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "surrogatepass")


def escape_js_string(value):
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def quote_js_string(value):
    return '"' + escape_js_string(value) + '"'
