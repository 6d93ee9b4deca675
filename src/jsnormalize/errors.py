"""Exception hierarchy shared by every normalization pass."""


class DeobfuscationError(Exception):
    """Base class for all normalization errors."""


class ParseError(DeobfuscationError):
    """Raised when source text is not valid JavaScript."""

    def __init__(self, message, line=None, column=None):
        super().__init__(message)
        self.line = line
        self.column = column


class GenerationError(DeobfuscationError):
    """Raised when a tree cannot be printed back to JavaScript."""


class ExtractionError(DeobfuscationError):
    """Raised when an expected wrapper, alias object or delimiter is missing."""


class MissingAliasError(DeobfuscationError):
    """Raised when a substitution pass is called without its alias map."""


class AmbiguousPatternError(DeobfuscationError):
    """Raised in strict mode when a pattern only partially matches a known shape."""


__all__ = [
    "DeobfuscationError",
    "ParseError",
    "GenerationError",
    "ExtractionError",
    "MissingAliasError",
    "AmbiguousPatternError",
]
