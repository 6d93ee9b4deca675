"""The canonical decode routine that replaces every inline decode loop.

Obfuscated functions each carry their own copy of a basE91-style decode
loop keyed on a shuffled alphabet. After canonicalization they all call
``decodeHelper(alphabet, seed)``, whose source is appended to the output
exactly once.
"""

import logging

from .tree import AstVisitor, parse_code, print_code

logger = logging.getLogger(__name__)

DECODE_HELPER_NAME = "decodeHelper"

# Alphabet lengths of the known decode loop variants.
ALPHABET_LENGTHS = frozenset([91, 98, 101])

DECODE_HELPER_SOURCE = """
function decodeHelper(alphabet, seed) {
  var input = "" + (seed || ""),
    length = input.length,
    bytes = [],
    acc = 0,
    bits = 0,
    carry = -1;
  for (var i = 0; i < length; i++) {
    var idx = alphabet.indexOf(input[i]);
    if (idx === -1) continue;
    if (carry < 0) {
      carry = idx;
    } else {
      carry += idx * 91;
      acc |= carry << bits;
      bits += (carry & 8191) > 88 ? 13 : 14;
      do {
        bytes.push(acc & 255);
        acc >>= 8;
        bits -= 8;
      } while (bits > 7);
      carry = -1;
    }
  }
  if (carry > -1) {
    bytes.push((acc | carry << bits) & 255);
  }
  return bytes;
}
"""


def decode_helper(alphabet, seed):
    """Python port of ``decodeHelper``; returns the decoded byte values.

    ``seed`` must be a string or ``None``. JavaScript would coerce any other
    value to its own string form, which Python does not reproduce.
    """
    if seed is not None and not isinstance(seed, str):
        raise TypeError(f"seed must be a string or None, not {type(seed).__name__}")
    text = seed or ""
    output = []
    acc = 0
    bits = 0
    carry = -1
    for char in text:
        idx = alphabet.find(char)
        if idx == -1:
            continue
        if carry < 0:
            carry = idx
            continue
        carry += idx * 91
        acc |= carry << bits
        bits += 13 if (carry & 8191) > 88 else 14
        while True:
            output.append(acc & 255)
            acc >>= 8
            bits -= 8
            if bits <= 7:
                break
        carry = -1
    if carry > -1:
        output.append((acc | carry << bits) & 255)
    return output


class _HelperUsage(AstVisitor):
    def __init__(self):
        self.referenced = False
        self.declared = False

    def visit_FunctionDeclaration(self, node):
        if node.id is not None and node.id.name == DECODE_HELPER_NAME:
            self.declared = True
            return
        self.generic_visit(node)

    def visit_Identifier(self, node):
        if node.name == DECODE_HELPER_NAME:
            self.referenced = True


def append_decode_helper(code, indent_size=2, comments=False):
    """Append the canonical routine if ``code`` calls it but lacks it.

    The result is reprinted, so appending to already printed code is stable
    under a second normalization.
    """
    tree = parse_code(code, comments=comments)
    usage = _HelperUsage()
    usage.visit(tree)
    if not usage.referenced or usage.declared:
        return code
    logger.debug("Appending canonical %s routine", DECODE_HELPER_NAME)
    tree.body.extend(parse_code(DECODE_HELPER_SOURCE).body)
    return print_code(tree, indent_size, comments=comments)
