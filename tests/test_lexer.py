"""
Lexer tests for the FMBY compiler.

Tests cover:
  - Source cleaning (comments, whitespace squeezing)
  - Structural tokens, identifiers, numbers, symbols
  - Multi-character operators and the '!->' else arrow
  - Bracketed import paths vs. the '<' comparison
  - String and character literals
  - Malformed input at end of text
"""

import pytest
from fmby_compiler.lexer import Lexer, LexerError, Token, TokenType, clean_code, tokenize


def _kinds(text: str) -> list:
    return [t.type for t in tokenize(text)]


def _ops(text: str) -> list:
    return [t.value for t in tokenize(text) if t.type == TokenType.OPERATION]


# ─── Cleaner ──────────────────────────────

class TestCleaner:
    def test_strips_line_comments(self):
        assert clean_code("mem x 5; // set x\nret x;") == "mem x 5;ret x;"

    def test_squeezes_block_layout(self):
        src = "f a b {\n    mem x 5;\n}\n"
        assert clean_code(src).strip() == "f a b {mem x 5;}"

    def test_keeps_single_slash(self):
        assert clean_code("x / 2;") == "x / 2;"

    def test_lexer_cleans_by_default(self):
        tokens = Lexer("ret 1; // done").tokenize()
        assert [t.value for t in tokens] == ["ret", "1", ";"]


# ─── Basic tokens ─────────────────────────

class TestBasicTokens:
    def test_function_header(self):
        assert _kinds("f a b {mem x 5;}") == [
            TokenType.IDENT, TokenType.IDENT, TokenType.IDENT, TokenType.LBRACE,
            TokenType.IDENT, TokenType.IDENT, TokenType.NUMBER, TokenType.SEMI,
            TokenType.RBRACE,
        ]

    def test_structural_count_matches_source(self):
        text = "({}); {(;)} ;"
        tokens = tokenize(text)
        structural = [t for t in tokens if t.type in (
            TokenType.LPAREN, TokenType.RPAREN, TokenType.LBRACE,
            TokenType.RBRACE, TokenType.SEMI)]
        assert len(structural) == sum(text.count(c) for c in "(){};")

    def test_square_brackets(self):
        assert _kinds("[]") == [TokenType.LBRACKET, TokenType.RBRACKET]

    def test_identifiers_are_letters_and_underscores(self):
        tokens = tokenize("my_var x1")
        assert tokens[0] == Token(TokenType.IDENT, "my_var", 0)
        assert [t.type for t in tokens[1:]] == [TokenType.IDENT, TokenType.NUMBER]
        assert tokens[1].value == "x"
        assert tokens[2].value == "1"

    def test_number_is_digit_run(self):
        tokens = tokenize("123abc")
        assert tokens[0].type == TokenType.NUMBER
        assert tokens[0].value == "123"
        assert tokens[1].value == "abc"

    def test_negative_number_is_operator_then_number(self):
        assert _kinds("-5 ") == [TokenType.OPERATION, TokenType.NUMBER]

    def test_unknown_characters_become_symbols(self):
        tokens = tokenize("a , b")
        assert tokens[1] == Token(TokenType.SYMBOL, ",", 2)

    def test_lone_colon_is_symbol(self):
        assert tokenize("a : b")[1].type == TokenType.SYMBOL

    def test_whitespace_skipped(self):
        assert tokenize("  \t ret\n") == [Token(TokenType.IDENT, "ret", 4)]

    def test_positions(self):
        assert tokenize("ab cd")[1].pos == 3


# ─── Operators ────────────────────────────

class TestOperators:
    @pytest.mark.parametrize("op", [
        "==", "!=", "<=", ">=", "&&", "||", "+=", "-=", "*=", "/=", "->", ":=",
    ])
    def test_two_char_operators(self, op):
        assert _ops(f"a {op} b") == [op]

    @pytest.mark.parametrize("op", ["+", "-", "*", "/", "=", ">", "&", "|", "!"])
    def test_single_char_operators(self, op):
        assert _ops(f"a {op} b") == [op]

    def test_else_arrow(self):
        assert _ops("} !-> {") == ["!->"]

    def test_else_arrow_checked_before_bang_eq(self):
        assert _ops("a!->b") == ["!->"]
        assert _ops("a!=b") == ["!="]

    def test_bang_minus_without_arrow(self):
        assert _ops("!-x") == ["!", "-"]

    def test_then_arrow_without_spaces(self):
        assert _ops("a==b->{") == ["==", "->"]


# ─── Import paths and '<' ─────────────────

class TestAngleBrackets:
    def test_include_path(self):
        tokens = tokenize("imp <std/io.fm>;")
        assert tokens[1] == Token(TokenType.IDENT, "<std/io.fm>", 4)
        assert tokens[2].type == TokenType.SEMI

    def test_less_than_without_closing_bracket(self):
        assert _ops("a < b;") == ["<"]

    def test_less_equal(self):
        assert _ops("a <= b;") == ["<="]

    def test_comparison_does_not_swallow_code(self):
        # The '>' is far away, but the text in between is not a path
        assert _ops("a < b; c > d;") == ["<", ">"]


# ─── Literals ─────────────────────────────

class TestLiterals:
    def test_string_literal(self):
        tokens = tokenize('"hi there";')
        assert tokens[0] == Token(TokenType.STRING_LITERAL, "hi there", 0)
        assert tokens[1].type == TokenType.SEMI

    def test_escaped_quote_kept_raw(self):
        tokens = tokenize('"a\\"b";')
        assert tokens[0].value == 'a\\"b'
        assert len(tokens) == 2

    def test_empty_string(self):
        assert tokenize('"";')[0] == Token(TokenType.STRING_LITERAL, "", 0)

    def test_char_literal_takes_one_char(self):
        tokens = tokenize("'a;")
        assert tokens[0] == Token(TokenType.CHAR_LITERAL, "a", 0)
        assert tokens[1].type == TokenType.SEMI


# ─── Malformed input ──────────────────────

class TestMalformedInput:
    def test_unterminated_string(self):
        with pytest.raises(LexerError) as exc:
            tokenize('"abc')
        assert exc.value.pos == 0

    def test_unterminated_string_after_escape(self):
        with pytest.raises(LexerError):
            tokenize('"abc\\"')

    def test_char_at_end(self):
        with pytest.raises(LexerError):
            tokenize("x '")

    @pytest.mark.parametrize("text", ["x -", "x =", "x <", "x !", "x :", "x !-"])
    def test_operator_prefix_at_end(self, text):
        with pytest.raises(LexerError):
            tokenize(text)

    def test_error_message_has_offset(self):
        with pytest.raises(LexerError, match="offset 2"):
            tokenize("x +")
