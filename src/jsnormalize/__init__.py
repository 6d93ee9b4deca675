"""Normalize accessor-indirection obfuscated JavaScript back into readable source."""

from .config import DeobfuscatorConfig
from .decoding import DECODE_HELPER_SOURCE, append_decode_helper, decode_helper
from .deobfuscator import DeobfuscationResult, deobfuscate, normalize
from .errors import (
    AmbiguousPatternError,
    DeobfuscationError,
    ExtractionError,
    GenerationError,
    MissingAliasError,
    ParseError,
)
from .extraction import extract_array_name, extract_array_values, extract_parameters, parse_parameters
from .substitution import replace_parameters

__version__ = "0.1.0"
