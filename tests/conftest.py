import random

import pytest

from jsnormalize.config import DeobfuscatorConfig
from jsnormalize.strings import quote_js_string
from jsnormalize.tree import parse_code, print_code
from jsnormalize.web_app import create_app

BASE91_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    "!#$%&()*+,./:;<=>?@[]^_`{|}~\""
)

# Inline decode loop bound with a plain declarator.
DECLARATOR_DECODER = """function __Array(__Array) {
  var utf8ArrayToStr = ALPHABET,
    btO3Nyf, __globalObject, __Buffer, __TextDecoder, __Uint8Array, __String, Blob;
  var_65(btO3Nyf = "" + (__Array || ""), __globalObject = btO3Nyf.length, __Buffer = [], __TextDecoder = 0, __Uint8Array = 0, __String = -1);
  for (Blob = 0; Blob < __globalObject; Blob++) {
    var URL = utf8ArrayToStr.indexOf(btO3Nyf[Blob]);
    if (URL === -1) continue;
    if (__String < 0) {
      __String = URL
    } else {
      var_65(__String += URL * 91, __TextDecoder |= __String << __Uint8Array, __Uint8Array += (__String & 8191) > 88 ? 13 : 14);
      do {
        var_65(__Buffer.push(__TextDecoder & 255), __TextDecoder >>= 8, __Uint8Array -= 8)
      } while (__Uint8Array > 7);
      __String = -1
    }
  }
  if (__String > -1) {
    __Buffer.push((__TextDecoder | __String << __Uint8Array) & 255)
  }
  return dkJAw8(__Buffer)
}"""

# Inline decode loop bound through an assignment inside a batching call.
ASSIGNMENT_DECODER = """function __Buffer(param_0) {
  var_65(
    local_0 = ALPHABET,
    local_1 = "" + (param_0 || ""),
    local_2 = local_1.length,
    local_3 = [],
    local_4 = 0,
    local_5 = 0,
    local_6 = -1
  );
  for (local_7 = 0; local_7 < local_2; local_7++) {
    local_8 = local_0.indexOf(local_1[local_7]);
    if (local_8 === -1) continue;
    if (local_6 < 0) {
      local_6 = local_8
    } else {
      var_65(local_6 += local_8 * 91, local_4 |= local_6 << local_5, local_5 += (local_6 & 8191) > 88 ? 13 : 14);
      do {
        var_65(local_3.push(local_4 & 255), local_4 >>= 8, local_5 -= 8)
      } while (local_5 > 7);
      local_6 = -1
    }
  }
  if (local_6 > -1) {
    local_3.push((local_4 | local_6 << local_5) & 255)
  }
  return dkJAw8(local_3);
}"""


def shuffled_alphabet(seed, extra=""):
    """A deterministic permutation of the basE91 alphabet, optionally padded."""
    symbols = list(BASE91_ALPHABET)
    random.Random(seed).shuffle(symbols)
    return "".join(symbols) + extra


def decoder_source(template, alphabet):
    return template.replace("ALPHABET", quote_js_string(alphabet))


def _assert_same_code(actual, expected):
    assert print_code(parse_code(actual)) == print_code(parse_code(expected))


@pytest.fixture
def assert_same_code():
    """Compare two programs after passing both through the same printer."""
    return _assert_same_code


@pytest.fixture
def alphabet():
    return shuffled_alphabet(91)


@pytest.fixture
def strict_config():
    return DeobfuscatorConfig(strict_patterns=True)


@pytest.fixture(scope='function')
def app():
    app = create_app(DeobfuscatorConfig(beautify=True))
    app.config['TESTING'] = True
    yield app


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()
