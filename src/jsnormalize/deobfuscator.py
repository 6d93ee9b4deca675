import argparse
import logging
import sys
from collections import namedtuple

import jsbeautifier

from .config import DeobfuscatorConfig
from .decoding import append_decode_helper
from .errors import DeobfuscationError
from .extraction import extract_array_name, extract_array_values, extract_parameters, parse_parameters
from .logging_setup import configure_logging
from .substitution import parenthesize_operands, replace_parameters
from .transforms import DecodeCanonicalizer, RestParameterNormalizer, StringConcatFolder, WrapperCallInliner
from .tree import parse_code, print_code

logger = logging.getLogger(__name__)

DeobfuscationResult = namedtuple("DeobfuscationResult", ["cleaned", "parameters", "environment"])


def beautify_code(code, config=None):
    """Reflow minified code so later text passes see one statement per line."""
    config = config or DeobfuscatorConfig()
    if not config.beautify:
        return code
    options = jsbeautifier.default_options()
    options.indent_size = config.indent_size
    options.preserve_newlines = True
    options.max_preserve_newlines = 2
    options.space_in_empty_paren = False
    return jsbeautifier.beautify(code, options)


# --- Text level passes ---

def inline_string_concats(code):
    folder = StringConcatFolder()
    code = print_code(folder.visit(parse_code(code)))
    logger.info("Folded %d string concatenation(s)", folder.folded)
    return code


def simplify_spread_parameters(code, config=None):
    normalizer = RestParameterNormalizer(config)
    code = print_code(normalizer.visit(parse_code(code)))
    logger.info("Normalized rest parameters of %d function(s)", normalizer.normalized)
    return code


def simplify_decoding(code, config=None):
    canonicalizer = DecodeCanonicalizer(config)
    code = print_code(canonicalizer.visit(parse_code(code)))
    logger.info("Canonicalized %d decode loop(s)", canonicalizer.canonicalized)
    return code


def inline_decode_helper_calls(code):
    return print_code(WrapperCallInliner().visit(parse_code(code)))


def normalize(code, config=None):
    """Run the tree passes over already unwrapped code."""
    config = config or DeobfuscatorConfig()
    tree = parse_code(code, comments=config.debug_annotate)

    # 1. Fold "a" + "b" left behind by constant substitution
    folder = StringConcatFolder()
    tree = folder.visit(tree)

    # 2. Name the positional parameters hidden behind rest captures
    normalizer = RestParameterNormalizer(config)
    tree = normalizer.visit(tree)

    # 3. Collapse inline decode loops into decodeHelper calls
    canonicalizer = DecodeCanonicalizer(config)
    tree = canonicalizer.visit(tree)

    # 4. Inline the wrappers those calls leave behind
    tree = WrapperCallInliner().visit(tree)

    logger.info(
        "Folded %d concatenation(s), normalized %d function(s), canonicalized %d decode loop(s)",
        folder.folded, normalizer.normalized, canonicalizer.canonicalized,
    )
    code = print_code(tree, config.indent_size, comments=config.debug_annotate)
    if config.emit_decode_helper:
        code = append_decode_helper(code, config.indent_size, comments=config.debug_annotate)
    return code


def deobfuscate(source, config=None):
    """Unwrap, resolve and normalize one obfuscated script."""
    config = config or DeobfuscatorConfig()
    extraction = extract_parameters(source)
    code = beautify_code(extraction.cleaned, config)

    aliases = parenthesize_operands(parse_parameters(extraction.parameters))
    code = replace_parameters(code, aliases, extraction.environment, config)

    array_name = extract_array_name(code)
    constants = extract_array_values(code, array_name) if array_name else None
    if constants is None:
        logger.info("No constant table found, skipping constant substitution")
    else:
        code = replace_parameters(code, parenthesize_operands(constants), array_name, config)

    return DeobfuscationResult(normalize(code, config), extraction.parameters, extraction.environment)


# --- Output file names ---

def _derived_file_name(source_file, suffix):
    stem, dot, extension = source_file.rpartition(".")
    if dot and extension == "js":
        return f"{stem}.{suffix}.js"
    return f"{source_file}.{suffix}.js"


def cleaned_file_name(source_file):
    return _derived_file_name(source_file, "cleaned")


def parameters_file_name(source_file):
    return _derived_file_name(source_file, "parameters")


def environment_file_name(source_file):
    return _derived_file_name(source_file, "environment")


def _write(path, content):
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Normalize accessor-indirection obfuscated JavaScript.")
    parser.add_argument("input_file", type=str, help="The path to the obfuscated JavaScript file.")
    parser.add_argument("-o", "--output", dest="output_file", help="Where to write the cleaned code (default: <input>.cleaned.js).")
    parser.add_argument("--normalize-only", action="store_true", help="Input is already unwrapped; run only the tree passes.")
    parser.add_argument("--debug-annotate", action="store_true", default=None, help="Annotate every substitution with its original reference.")
    parser.add_argument("--strict", dest="strict_patterns", action="store_true", default=None, help="Fail on partially matching patterns instead of skipping them.")
    parser.add_argument("--no-beautify", dest="beautify", action="store_false", default=None, help="Skip the jsbeautifier reflow.")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO).")
    parser.add_argument("--log-file", help="Also write detailed logs to this file.")
    args = parser.parse_args(argv)

    config = DeobfuscatorConfig.from_env().with_overrides(
        debug_annotate=args.debug_annotate,
        strict_patterns=args.strict_patterns,
        beautify=args.beautify,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    configure_logging(config.log_level, args.log_file)

    try:
        with open(args.input_file, "r", encoding="utf-8") as f:
            source = f.read()
    except FileNotFoundError:
        logger.error("Input file not found at %s", args.input_file)
        return 1

    output_file = args.output_file or cleaned_file_name(args.input_file)
    try:
        if args.normalize_only:
            _write(output_file, normalize(beautify_code(source, config), config))
        else:
            result = deobfuscate(source, config)
            _write(output_file, result.cleaned)
            _write(parameters_file_name(args.input_file), result.parameters)
            _write(environment_file_name(args.input_file), result.environment)
    except DeobfuscationError as e:
        logger.error("Deobfuscation failed: %s", e)
        return 1

    logger.info("Deobfuscated code written to %s", output_file)
    return 0


if __name__ == "__main__":
    sys.exit(main())
