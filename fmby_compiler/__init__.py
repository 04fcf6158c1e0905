"""
FMBY Compiler
=============
A single-pass translator from the FMBY language to x86 assembly text.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌────────────┐
    │  Source  │───>│ Cleaner  │───>│  Lexer   │───>│  CodeGen   │
    │  (.fm)   │    │ (1 line) │    │ (tokens) │    │ (asm text) │
    └──────────┘    └──────────┘    └──────────┘    └────────────┘

    - lexer.py:   comment/whitespace cleaner and character-level tokenizer
    - codegen.py: forward-only token walk that emits assembly directly,
                  tracking frame slots, labels and open scopes as it goes

There is deliberately no syntax tree: operators act on the tokens
immediately next to them and every block is closed by its '}'.
"""

__version__ = "0.1.0"

from .lexer import Lexer, LexerError, SourceCleaner, Token, TokenType, clean_code, tokenize
from .codegen import (
    WORD_PROFILES,
    CodeGenError,
    CodeGenerator,
    UnboundIdentifierError,
    generate,
)

# Alternate backends that share the mode switch but are not built here
UNIMPLEMENTED_MODES = ("fmbyas",)


def _word_size(mode: str) -> int:
    if mode in UNIMPLEMENTED_MODES:
        raise NotImplementedError(f"Build target {mode!r} is not implemented")
    if mode not in WORD_PROFILES:
        raise ValueError(f"Unknown mode {mode!r} (expected one of {', '.join(WORD_PROFILES)})")
    return WORD_PROFILES[mode]["word_size"]


def translate(source: str, mode: str = "native", strict: bool = False) -> str:
    """Translate FMBY source to assembly text.

    Args:
        source: FMBY source code, comments included.
        mode: 'native' (8-byte words) or 'compat' (4-byte words).
        strict: Raise UnboundIdentifierError / CodeGenError instead of
            skipping unbound names and incomplete constructs.

    Raises:
        LexerError: unterminated literal or operator cut off by end of input.
        CodeGenError: only in strict mode.
    """
    word_size = _word_size(mode)
    tokens = Lexer(source).tokenize()
    return CodeGenerator(word_size=word_size, strict=strict).generate(tokens)


def compile_source(source: str, *, mode: str = "native", strict: bool = False,
                   output: str = "asm") -> str:
    """Run the pipeline up to the stage named by output.

    output is 'asm' (default), 'tokens' (one token per line) or
    'cleaned' (the source after comment and whitespace stripping).
    """
    if output == "cleaned":
        return clean_code(source)
    if output == "tokens":
        return "\n".join(repr(tok) for tok in Lexer(source).tokenize())
    if output == "asm":
        return translate(source, mode=mode, strict=strict)
    raise ValueError(f"Unknown output format {output!r}")
