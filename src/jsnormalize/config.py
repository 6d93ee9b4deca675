import os
from dataclasses import dataclass, replace

from dotenv import load_dotenv

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class DeobfuscatorConfig:
    """Per-run settings, passed explicitly into every pass that needs them."""

    # Prefix every substituted alias with a /* binding[key] */ comment.
    debug_annotate: bool = False
    # Raise AmbiguousPatternError instead of skipping partial pattern matches.
    strict_patterns: bool = False
    beautify: bool = True
    indent_size: int = 2
    emit_decode_helper: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        load_dotenv()
        return cls(
            debug_annotate=_env_flag("JSNORMALIZE_DEBUG_ANNOTATE", False),
            strict_patterns=_env_flag("JSNORMALIZE_STRICT", False),
            beautify=_env_flag("JSNORMALIZE_BEAUTIFY", True),
            indent_size=int(os.getenv("JSNORMALIZE_INDENT_SIZE", "2")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def with_overrides(self, **overrides):
        """Return a copy with every non-``None`` override applied."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})
