import pytest

from jsnormalize.deobfuscator import (
    inline_decode_helper_calls,
    inline_string_concats,
    simplify_decoding,
    simplify_spread_parameters,
)
from jsnormalize.errors import AmbiguousPatternError
from jsnormalize.strings import quote_js_string
from jsnormalize.transforms import StringConcatFolder, WrapperCallInliner
from jsnormalize.tree import parse_code, print_code

from conftest import ASSIGNMENT_DECODER, DECLARATOR_DECODER, decoder_source, shuffled_alphabet


# --- String concatenation folding ---

def test_fold_simple_concat(assert_same_code):
    assert_same_code(inline_string_concats('let x = "1" + "2"'), 'let x = "12"')


def test_fold_concat_chain_in_one_pass(assert_same_code):
    folder = StringConcatFolder()
    tree = folder.visit(parse_code('let x = "1" + "2" + "3"'))

    assert_same_code(print_code(tree), 'let x = "123"')
    assert folder.folded == 2


def test_fold_leaves_non_string_operands(assert_same_code):
    code = 'f(a + "b", "c" + 1, "d" + ("e" + "f"), "g" - "h")'
    assert_same_code(inline_string_concats(code), 'f(a + "b", "c" + 1, "def", "g" - "h")')


def test_fold_escapes_special_characters(assert_same_code):
    assert_same_code(inline_string_concats(r'x = "a\"" + "\n"'), r'x = "a\"\n"')


# --- Rest parameter normalization ---

def test_rest_function_expression_zero_parameters(assert_same_code):
    code = """var test = function (...__Buffer) {
  __Buffer["length"] = 0;
  const utf8ArrayToStr = new RegExp("\\n");
  return utf8ArrayToStr["test"](__globalObject)
}"""
    assert_same_code(simplify_spread_parameters(code), """var test = function() {
  const utf8ArrayToStr = new RegExp("\\n");
  return utf8ArrayToStr["test"](__globalObject)
}""")


def test_rest_function_declaration_dot_length(assert_same_code):
    code = """function test(...__Buffer) {
  __Buffer.length = 0;
  return __globalObject
}"""
    assert_same_code(simplify_spread_parameters(code), "function test() { return __globalObject }")


def test_rest_nested_functions(assert_same_code):
    code = """var test = function (...__Buffer) {
  __Buffer["length"] = 0;
  return function(...__TextDecoder) {
    __TextDecoder["length"] = 0;
    const utf8ArrayToStr = new RegExp("\\n");
    return utf8ArrayToStr["test"](__globalObject)
  }
}"""
    assert_same_code(simplify_spread_parameters(code), """var test = function() {
  return function() {
    const utf8ArrayToStr = new RegExp("\\n");
    return utf8ArrayToStr["test"](__globalObject)
  };
}""")


def test_rest_assertion_inside_call(assert_same_code):
    code = """var test = function (...__Buffer) {
  var_65(__Buffer["length"] = 0);
  return 1
}"""
    assert_same_code(simplify_spread_parameters(code), "var test = function() { var_65(); return 1 }")


def test_rest_assertion_inside_sequence(assert_same_code):
    code = """var test = function (...__Buffer) {
  __Buffer["length"] = 0, __Buffer[-7] = "";
  return __Buffer[-7]
}"""
    assert_same_code(simplify_spread_parameters(code), """var test = function() {
  local_0 = "";
  return local_0
}""")


def test_rest_one_parameter_with_locals(assert_same_code):
    code = """function E3Kjdm(...__TextDecoder) {
    var_65(__TextDecoder["length"] = 1, __TextDecoder[-7] = "");
    for (__TextDecoder[-85] = 0; __TextDecoder[-85] < __TextDecoder[0].length * 32; __TextDecoder[-85] += 8)
    __TextDecoder[-7] += String.fromCharCode(__TextDecoder[0][__TextDecoder[-85] >> 5] >>> 24 - __TextDecoder[-85] % 32 & 255);
    return __TextDecoder[-7]
}"""
    assert_same_code(simplify_spread_parameters(code), """function E3Kjdm(param_0) {
    var_65(local_0 = "");
    for (local_1 = 0; local_1 < param_0.length * 32; local_1 += 8)
    local_0 += String.fromCharCode(param_0[local_1 >> 5] >>> 24 - local_1 % 32 & 255);
    return local_0;
}""")


TWO_PARAMETERS = """function var_63(...DVg62f) {
    var_65(DVg62f["length"] = 2, DVg62f[74] = 0xdeadbeef ^ DVg62f[1], DVg62f["b"] = 0x41c6ce57 ^ DVg62f[1]);
    for (var global = 0, __globalObject; global < DVg62f[0].length; global++) {
      var_65(__globalObject = DVg62f[0].charCodeAt(global), DVg62f[74] = ZVvKFvy(DVg62f[74] ^ __globalObject, 0x9e3779b1), DVg62f["b"] = ZVvKFvy(DVg62f["b"] ^ __globalObject, 0x5f356495))
    }
    return 0x100000000 * (2097151 & DVg62f["b"]) + (DVg62f[74] >>> 0)
}"""

TWO_PARAMETERS_NORMALIZED = """function var_63(param_0, param_1) {
    var_65(local_0 = 0xdeadbeef ^ param_1, local_1 = 0x41c6ce57 ^ param_1);
    for (var global = 0, __globalObject; global < param_0.length; global++) {
      var_65(__globalObject = param_0.charCodeAt(global), local_0 = ZVvKFvy(local_0 ^ __globalObject, 0x9e3779b1), local_1 = ZVvKFvy(local_1 ^ __globalObject, 0x5f356495))
    }
    return 0x100000000 * (2097151 & local_1) + (local_0 >>> 0);
}"""


def test_rest_two_parameters(assert_same_code):
    assert_same_code(simplify_spread_parameters(TWO_PARAMETERS), TWO_PARAMETERS_NORMALIZED)


def test_rest_class_method(assert_same_code):
    code = "class test { static %s }" % TWO_PARAMETERS.replace("function ", "", 1)
    expected = "class test { static %s }" % TWO_PARAMETERS_NORMALIZED.replace("function ", "", 1)
    assert_same_code(simplify_spread_parameters(code), expected)


def test_rest_normalization_is_idempotent():
    once = simplify_spread_parameters(TWO_PARAMETERS)
    assert simplify_spread_parameters(once) == once


def test_rest_string_and_numeric_keys_share_slots(assert_same_code):
    code = """function f(...a) {
  a["length"] = 1;
  return a["0"] + a[0] + a["7"] + a[7] + a[-7] + a.x + a["x"]
}"""
    assert_same_code(
        simplify_spread_parameters(code),
        "function f(param_0) { return param_0 + param_0 + local_0 + local_0 + local_1 + local_2 + local_2 }",
    )


def test_rest_without_assertion_is_unchanged(assert_same_code):
    code = "function f(...a) { return a[0] }"
    assert_same_code(simplify_spread_parameters(code), code)


def test_rest_keeps_length_reads(assert_same_code):
    code = "function f(...a) { a.length = 1; return a.length + a[0] }"
    assert_same_code(simplify_spread_parameters(code), "function f(param_0) { return a.length + param_0 }")


def test_rest_dynamic_index_is_left_unchanged(assert_same_code):
    code = "function f(...a) { a.length = 2; return a[i] + a[1] }"
    assert_same_code(simplify_spread_parameters(code), code)


def test_rest_dynamic_index_raises_in_strict_mode(strict_config):
    with pytest.raises(AmbiguousPatternError):
        simplify_spread_parameters("function f(...a) { a.length = 2; return g(a) }", strict_config)


def test_rest_non_literal_count_raises_in_strict_mode(strict_config):
    with pytest.raises(AmbiguousPatternError):
        simplify_spread_parameters("function f(...a) { a.length = n; return a[0] }", strict_config)


# --- Decode loop canonicalization ---

def test_canonicalize_declarator_shape(assert_same_code):
    alphabet = shuffled_alphabet(1)
    result = simplify_decoding(decoder_source(DECLARATOR_DECODER, alphabet))

    assert_same_code(result, """function __Array(__Array) {
  const __Buffer = decodeHelper(%s, __Array);
  return dkJAw8(__Buffer)
}""" % quote_js_string(alphabet))


def test_canonicalize_assignment_shape(assert_same_code):
    alphabet = shuffled_alphabet(2)
    result = simplify_decoding(decoder_source(ASSIGNMENT_DECODER, alphabet))

    assert_same_code(result, """function __Buffer(param_0) {
  const local_3 = decodeHelper(%s, param_0);
  return dkJAw8(local_3);
}""" % quote_js_string(alphabet))


@pytest.mark.parametrize("extra", ["", "buildCh", "buildCharM"])
def test_canonicalize_accepts_every_alphabet_length(extra, assert_same_code):
    alphabet = shuffled_alphabet(3, extra)
    result = simplify_decoding(decoder_source(ASSIGNMENT_DECODER, alphabet))

    assert "decodeHelper(%s, param_0)" % quote_js_string(alphabet) in result
    assert "8191" not in result


def test_canonicalize_ignores_other_alphabet_lengths(assert_same_code):
    source = decoder_source(ASSIGNMENT_DECODER, shuffled_alphabet(4, "x"))
    assert_same_code(simplify_decoding(source), source)


def test_canonicalize_empty_function(assert_same_code):
    assert_same_code(simplify_decoding("function __Buffer(param_0) {}"), "function __Buffer(param_0) {}")


def test_canonicalize_is_idempotent():
    once = simplify_decoding(decoder_source(ASSIGNMENT_DECODER, shuffled_alphabet(5)))
    assert simplify_decoding(once) == once


def test_canonicalize_partial_match(strict_config, assert_same_code):
    code = "function f(p) { var s = %s; return s.split('') }" % quote_js_string(shuffled_alphabet(6))

    assert_same_code(simplify_decoding(code), code)
    with pytest.raises(AmbiguousPatternError):
        simplify_decoding(code, strict_config)


# --- Wrapper call inlining ---

WRAPPER_PROGRAM = """let x = (async (__Array, utf8ArrayToStr) => {
  %(prelude)s

  function __TextDecoder(param_0) {
    const local_3 = decodeHelper("ALPHA", param_0);
    return gDfejD(local_3);
  }

  function __globalObject(param_0) {
    if (typeof bX[param_0] === "undefined") {
      return bX[param_0] = __TextDecoder(var_155[param_0]);
    }
    return bX[param_0];
  }
  %(extra)s
  if (utf8ArrayToStr === (await __Uint8Array())) return __globalObject(0x103);
  return ""
})"""

INLINED_GLOBAL_OBJECT = """
  function __globalObject(param_0) {
    if (typeof bX[param_0] === "undefined") {
      return bX[param_0] = gDfejD(decodeHelper("ALPHA", var_155[param_0]));
    }
    return bX[param_0];
  }"""


def test_inline_wrapper_referenced_once(assert_same_code):
    code = WRAPPER_PROGRAM % {"prelude": "var_163(X_9cU8(__globalObject));", "extra": ""}
    inliner = WrapperCallInliner()
    result = print_code(inliner.visit(parse_code(code)))

    assert_same_code(result, """let x = (async (__Array, utf8ArrayToStr) => {
  var_163(X_9cU8(__globalObject));
%s
  if (utf8ArrayToStr === (await __Uint8Array())) return __globalObject(0x103);
  return ""
})""" % INLINED_GLOBAL_OBJECT)
    assert (inliner.inlined, inliner.removed) == (1, 1)


def test_inline_wrapper_referenced_twice(assert_same_code):
    code = WRAPPER_PROGRAM % {"prelude": "", "extra": "if (__Array) return __TextDecoder(\"z\");"}
    result = inline_decode_helper_calls(code)

    assert_same_code(result, """let x = (async (__Array, utf8ArrayToStr) => {
%s
  if (__Array) return gDfejD(decodeHelper("ALPHA", "z"));
  if (utf8ArrayToStr === (await __Uint8Array())) return __globalObject(0x103);
  return ""
})""" % INLINED_GLOBAL_OBJECT)


def test_inline_keeps_wrapper_used_as_value():
    code = WRAPPER_PROGRAM % {"prelude": "var_163(X_9cU8(__TextDecoder));", "extra": ""}
    result = inline_decode_helper_calls(code)

    assert "function __TextDecoder(param_0)" in result
    assert "gDfejD(decodeHelper(\"ALPHA\", var_155[param_0]))" in result


def test_inline_skips_duplicate_names(assert_same_code):
    code = """function F(p) { const L = decodeHelper("A", p); return G(L); }
function h() { function F(q) { return q; } return F(1); }
F(2);"""
    assert_same_code(inline_decode_helper_calls(code), code)


def test_inline_is_stable_under_reapplication():
    code = WRAPPER_PROGRAM % {"prelude": "", "extra": "if (__Array) return __TextDecoder(\"z\");"}
    once = inline_decode_helper_calls(code)
    assert inline_decode_helper_calls(once) == once


SIMPLE_WRAPPER = 'function F(p) { const L = decodeHelper("A", p); return G(L); }\n'


def test_inline_top_level_wrapper(assert_same_code):
    inliner = WrapperCallInliner()
    result = print_code(inliner.visit(parse_code(SIMPLE_WRAPPER + "var y = F(x);")))

    assert_same_code(result, 'var y = G(decodeHelper("A", x));')
    assert (inliner.inlined, inliner.removed) == (1, 1)


def test_inline_copies_callee_per_call_site(assert_same_code):
    code = 'function F(p) { const L = decodeHelper("A", p); return lib.text(L); }\nvar y = [F(1), F(2)];'
    tree = WrapperCallInliner().visit(parse_code(code))

    assert_same_code(print_code(tree), 'var y = [lib.text(decodeHelper("A", 1)), lib.text(decodeHelper("A", 2))];')
    first, second = tree.body[0].declarations[0].init.elements
    assert first.callee is not second.callee


def test_inline_skips_wrapper_whose_callee_is_rebound_at_call_site(assert_same_code):
    code = SIMPLE_WRAPPER + "function h(G) { return F(G); }"
    assert_same_code(inline_decode_helper_calls(code), code)


def test_inline_skips_wrapper_whose_callee_is_declared_twice(assert_same_code):
    code = SIMPLE_WRAPPER + "function G(v) { return v; }\nfunction k() { var G = 1; return F(G); }"
    assert_same_code(inline_decode_helper_calls(code), code)


def test_inline_accepts_callee_declared_beside_wrapper(assert_same_code):
    code = "function G(v) { return v; }\n" + SIMPLE_WRAPPER + "var y = F(1);"
    assert_same_code(
        inline_decode_helper_calls(code),
        'function G(v) { return v; }\nvar y = G(decodeHelper("A", 1));',
    )
