"""
x86-64 Code Generator for the FMBY compiler.

Walks the flat token stream once, left to right, and emits assembly text
directly. There is no AST: binary operators read the token just behind the
cursor as their left operand and the token just ahead as their right
operand, and nesting is resolved with a scope stack whose entries wait for
their closing brace to emit their exit labels.

Register usage convention:
  - rax: primary register, the single result channel for loads,
    arithmetic, comparisons, calls and `ret`
  - rbx: secondary register, holds the right operand
  - rbp: frame pointer, every variable is a slot at a negative offset
  - rdi, rsi, rdx, rcx, r8, r9: call arguments (spilled into the
    callee's parameter slots by its prologue)

In compat mode every register is the 32-bit form and slots are 4 bytes.

Label conventions (N is one counter shared by the whole translation):
  - .loop_start<N> / .loop_end<N>
  - .if_end<N>
  - .str<N>
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .lexer import Token, TokenType

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Word profiles
# ──────────────────────────────────────────────

WORD_PROFILES = {
    "native": {
        "word_size": 8,
        "primary": "rax",
        "secondary": "rbx",
        "frame": "rbp",
        "stack": "rsp",
        "sign_extend": "cqo",
        "args": ("rdi", "rsi", "rdx", "rcx", "r8", "r9"),
        "description": "x86-64, 8-byte words",
    },
    "compat": {
        "word_size": 4,
        "primary": "eax",
        "secondary": "ebx",
        "frame": "ebp",
        "stack": "esp",
        "sign_extend": "cdq",
        "args": ("edi", "esi", "edx", "ecx"),
        "description": "x86, 4-byte words",
    },
}

PROFILE_BY_WORD_SIZE = {p["word_size"]: p for p in WORD_PROFILES.values()}

KEYWORDS = frozenset({"ret", "mem", "ref", "loop", "brk", "jump", "imp", "asm"})

ARITHMETIC_OPS = {
    "+": "add",
    "-": "sub",
    "*": "imul",
    "/": "idiv",
    "&": "and",
    "|": "or",
    "+=": "add",
    "-=": "sub",
    "*=": "imul",
    "/=": "idiv",
}

COMPARISON_OPS = {
    "==": "sete",
    "!=": "setne",
    "<": "setl",
    ">": "setg",
    "<=": "setle",
    ">=": "setge",
}

LOGICAL_OPS = {"&&": "and", "||": "or"}

ASSIGNMENT_OPS = ("=", ":=")

# Operators that consume the token behind them as an operand
BINARY_OPS = frozenset(ARITHMETIC_OPS) | frozenset(COMPARISON_OPS) | frozenset(ASSIGNMENT_OPS)


# ──────────────────────────────────────────────
# Symbol / scope tracking
# ──────────────────────────────────────────────

@dataclass
class Symbol:
    name: str
    offset: int              # from the frame pointer, always negative
    is_param: bool = False


@dataclass
class Scope:
    """Name -> frame slot table for one function (or the top level)."""
    name: str = "<top>"
    symbols: Dict[str, Symbol] = field(default_factory=dict)
    stack_offset: int = 0    # most negative offset handed out so far

    def lookup(self, name: str) -> Optional[Symbol]:
        return self.symbols.get(name)

    def bind(self, name: str, word_size: int, is_param: bool = False) -> Symbol:
        """Return the slot for name, allocating the next one if it is new."""
        sym = self.symbols.get(name)
        if sym is None:
            self.stack_offset -= word_size
            sym = Symbol(name, self.stack_offset, is_param)
            self.symbols[name] = sym
        return sym

    @property
    def frame_size(self) -> int:
        return -self.stack_offset


# Entries of the scope stack. A closing brace pops and resolves the innermost.

@dataclass
class FunctionScope:
    name: str
    symbols: Scope
    outer: Scope
    reserve_index: int       # code line to back-patch with the frame reservation


@dataclass
class LoopScope:
    start: str
    end: str


@dataclass
class ConditionalScope:
    end: str                 # target of the "condition false" jump
    exit: Optional[str] = None   # end of the whole if / else-if chain


ScopeEntry = Union[FunctionScope, LoopScope, ConditionalScope]


class CodeGenError(Exception):
    def __init__(self, message: str, token: Optional[Token] = None):
        self.token = token
        where = f" at offset {token.pos}" if token is not None else ""
        super().__init__(f"Code generation error{where}: {message}")


class UnboundIdentifierError(CodeGenError):
    def __init__(self, name: str, token: Optional[Token] = None):
        self.name = name
        super().__init__(f"'{name}' is not bound to a frame slot", token)


class CodeGenerator:
    """Generates x86 assembly from a token list in one forward pass."""

    def __init__(self, word_size: int = 8, strict: bool = False):
        if word_size not in PROFILE_BY_WORD_SIZE:
            raise ValueError(f"word size must be 4 or 8, not {word_size!r}")
        self.word_size = word_size
        self.strict = strict
        self.profile = PROFILE_BY_WORD_SIZE[word_size]
        self.mode = "native" if word_size == 8 else "compat"

        self._reg = self.profile["primary"]
        self._reg2 = self.profile["secondary"]
        self._fp = self.profile["frame"]
        self._sp = self.profile["stack"]
        self._reset()

    def _reset(self):
        # Output sections
        self._code_lines: List[str] = []
        self._data_lines: List[str] = []

        # State
        self._tokens: List[Token] = []
        self._symbols = Scope()
        self._scopes: List[ScopeEntry] = []
        self._functions: Dict[str, int] = {}   # name -> parameter count
        self._label_counter = 0
        self._current: Optional[str] = None   # what the primary register holds
        self._pending_else: Optional[ConditionalScope] = None
        self._chain_exit: Optional[str] = None
        self._pending_logic: Optional[str] = None

    # ── Label generation ──────────────────────

    def _next_id(self) -> int:
        n = self._label_counter
        self._label_counter += 1
        return n

    # ── Output helpers ────────────────────────

    def _emit(self, line: str, comment: Optional[str] = None):
        """Emit an assembly instruction to the code section."""
        if comment:
            line = f"{line:<24}; {comment}"
        self._code_lines.append(f"        {line}")

    def _emit_label(self, label: str):
        self._code_lines.append(f"{label}:")

    def _emit_comment(self, text: str):
        self._code_lines.append(f"        ; {text}")

    def _slot(self, offset: int) -> str:
        return f"[{self._fp}{offset}]"

    # ── Token access ──────────────────────────

    def _at(self, i: int) -> Optional[Token]:
        """Bounds-checked token access."""
        if 0 <= i < len(self._tokens):
            return self._tokens[i]
        return None

    def _is(self, i: int, ttype: TokenType, value: Optional[str] = None) -> bool:
        tok = self._at(i)
        return tok is not None and tok.type == ttype and (value is None or tok.value == value)

    # ── Error policy ──────────────────────────

    def _malformed(self, message: str, token: Token):
        if self.strict:
            raise CodeGenError(message, token)
        logger.warning(f"Skipping token at offset {token.pos}: {message}")

    def _unbound(self, name: str, token: Token):
        if self.strict:
            raise UnboundIdentifierError(name, token)
        logger.warning(f"'{name}' is not bound, no value loaded (offset {token.pos})")

    # ── Main generation entry point ───────────

    def generate(self, tokens: List[Token]) -> str:
        """Generate complete assembly output from a token list."""
        self._reset()
        self._tokens = list(tokens)

        i = 0
        while i < len(self._tokens):
            i = self._step(i)

        if self._tokens:
            self._drop_logic(self._tokens[-1])
        self._close_open_scopes()

        logger.debug(f"Generated {len(self._code_lines)} code lines, "
                     f"{self._label_counter} labels")
        return self._assemble_output()

    def _close_open_scopes(self):
        """Resolve scopes still open at end of input, innermost first."""
        while self._scopes:
            entry = self._scopes.pop()
            if isinstance(entry, FunctionScope):
                # Functions may run to end of input, only their frame needs patching
                self._close_function(entry)
                continue

            if self.strict:
                raise CodeGenError("unclosed block at end of input")
            if isinstance(entry, LoopScope):
                logger.warning(f"Loop {entry.start} not closed, ending it at end of input")
                self._emit(f"jmp {entry.start}")
                self._emit_label(entry.end)
            else:
                logger.warning(f"Conditional {entry.end} not closed, ending it at end of input")
                self._emit_label(entry.end)
                if entry.exit:
                    self._emit_label(entry.exit)

    def _assemble_output(self) -> str:
        sections = [
            f"; FMBY compiler output",
            f"; Mode: {self.mode} ({self.profile['description']})",
            f"",
            f"section .text",
        ]
        sections.extend(self._code_lines)

        if self._data_lines:
            sections.append("")
            sections.append("section .data")
            sections.extend(self._data_lines)

        return "\n".join(sections) + "\n"

    def _step(self, i: int) -> int:
        """Handle the token at i and return the index of the next one."""
        tok = self._tokens[i]

        if tok.type == TokenType.IDENT:
            return self._gen_identifier(i)
        if tok.type == TokenType.OPERATION:
            return self._gen_operation(i)
        if tok.type == TokenType.SEMI:
            self._drop_logic(tok)
        elif tok.type == TokenType.RBRACE:
            self._drop_logic(tok)
            self._close_scope(i)
        elif tok.type in (TokenType.NUMBER, TokenType.CHAR_LITERAL):
            nxt = self._at(i + 1)
            if nxt is None or nxt.type != TokenType.OPERATION or nxt.value not in BINARY_OPS:
                self._load(self._reg, tok)
        elif tok.type == TokenType.STRING_LITERAL:
            self._gen_string(tok)
        return i + 1

    # ── Operand loading ───────────────────────

    def _load(self, reg: str, tok: Optional[Token]) -> bool:
        """Load a number, char or bound variable into reg. Returns True if emitted."""
        if tok is None:
            return False
        if tok.type == TokenType.NUMBER:
            self._emit(f"mov {reg}, {tok.value}")
        elif tok.type == TokenType.CHAR_LITERAL:
            self._emit(f"mov {reg}, {ord(tok.value)}", f"'{tok.value}'")
        elif tok.type == TokenType.IDENT:
            sym = self._symbols.lookup(tok.value)
            if sym is None:
                self._unbound(tok.value, tok)
                return False
            self._emit(f"mov {reg}, {self._slot(sym.offset)}", tok.value)
        else:
            return False
        if reg == self._reg:
            self._current = tok.value
        return True

    # ── Identifiers and keywords ──────────────

    def _gen_identifier(self, i: int) -> int:
        name = self._tokens[i].value
        if name in KEYWORDS:
            return getattr(self, f"_kw_{name}")(i)

        # name ident* { -> function definition
        j = i + 1
        while self._is(j, TokenType.IDENT):
            j += 1
        if self._is(j, TokenType.LBRACE):
            params = [t.value for t in self._tokens[i + 1:j]]
            self._open_function(name, params)
            return j + 1

        if name in self._functions and self._symbols.lookup(name) is None:
            return self._gen_call(i)

        return i + 1

    def _kw_ret(self, i: int) -> int:
        nxt = self._at(i + 1)
        consumed = 1
        if nxt is not None and nxt.type in (TokenType.NUMBER, TokenType.IDENT, TokenType.CHAR_LITERAL):
            self._load(self._reg, nxt)
            consumed = 2
        self._emit("leave")
        self._emit("ret")
        return i + consumed

    def _kw_mem(self, i: int) -> int:
        tok = self._tokens[i]
        var = self._at(i + 1)
        if var is None or var.type != TokenType.IDENT:
            self._malformed("'mem' needs a variable name", tok)
            return i + 1

        sym = self._symbols.bind(var.value, self.word_size)
        self._emit_comment(f"mem {var.value} at {self._slot(sym.offset)}")
        init = self._at(i + 2)
        if init is not None and init.type in (TokenType.NUMBER, TokenType.CHAR_LITERAL):
            self._load(self._reg, init)
            self._emit(f"mov {self._slot(sym.offset)}, {self._reg}")
            return i + 3
        return i + 2

    def _kw_ref(self, i: int) -> int:
        var = self._at(i + 1)
        if var is None or var.type != TokenType.IDENT:
            self._malformed("'ref' needs a variable name", self._tokens[i])
            return i + 1
        self._load(self._reg, var)
        return i + 2

    def _kw_loop(self, i: int) -> int:
        n = self._next_id()
        entry = LoopScope(f".loop_start{n}", f".loop_end{n}")
        self._scopes.append(entry)
        self._emit_label(entry.start)
        return i + 1

    def _kw_brk(self, i: int) -> int:
        loop = self._innermost_loop()
        if loop is None:
            logger.debug("'brk' outside of any loop ignored")
        else:
            self._emit(f"jmp {loop.end}")
        return i + 1

    def _kw_jump(self, i: int) -> int:
        label = self._at(i + 1)
        if label is None or label.type != TokenType.IDENT:
            self._malformed("'jump' needs a label name", self._tokens[i])
            return i + 1
        self._emit(f"jmp {label.value}")
        return i + 2

    def _kw_imp(self, i: int) -> int:
        path = self._at(i + 1)
        if path is None or path.type != TokenType.IDENT:
            self._malformed("'imp' needs an import path", self._tokens[i])
            return i + 1
        self._emit_comment(f"import {path.value}")
        return i + 2

    def _kw_asm(self, i: int) -> int:
        """Copy identifiers and numbers up to ';' verbatim into the output."""
        parts: List[str] = []
        j = i + 1
        while j < len(self._tokens) and self._tokens[j].type != TokenType.SEMI:
            if self._tokens[j].type in (TokenType.IDENT, TokenType.NUMBER):
                parts.append(self._tokens[j].value)
            j += 1
        self._emit(" ".join(parts))
        self._current = None
        return j + 1

    # ── Functions ─────────────────────────────

    def _open_function(self, name: str, params: List[str]):
        arg_regs = self.profile["args"]
        if len(params) > len(arg_regs):
            message = f"function '{name}' takes {len(params)} parameters, at most {len(arg_regs)} supported"
            if self.strict:
                raise CodeGenError(message)
            logger.warning(message)

        self._functions[name] = len(params)
        self._code_lines.append("")
        self._emit_label(name)
        self._emit(f"push {self._fp}")
        self._emit(f"mov {self._fp}, {self._sp}")
        reserve_index = len(self._code_lines)
        self._code_lines.append(None)  # frame reservation, patched on close

        scope = Scope(name=name)
        for k, param in enumerate(params):
            sym = scope.bind(param, self.word_size, is_param=True)
            if k < len(arg_regs):
                self._emit(f"mov {self._slot(sym.offset)}, {arg_regs[k]}", f"arg {param}")
            else:
                self._emit_comment(f"arg {param} at {self._slot(sym.offset)}")

        self._scopes.append(FunctionScope(name, scope, self._symbols, reserve_index))
        self._symbols = scope
        self._current = None

    def _close_function(self, entry: FunctionScope):
        size = entry.symbols.frame_size
        if size:
            size = (size + 15) & ~15
            self._code_lines[entry.reserve_index] = f"        sub {self._sp}, {size}"
        else:
            # no locals, drop the placeholder line
            del self._code_lines[entry.reserve_index]
        self._symbols = entry.outer

    def _gen_call(self, i: int) -> int:
        tok = self._tokens[i]
        arg_regs = self.profile["args"]
        j = i + 1
        k = 0
        while True:
            arg = self._at(j)
            if arg is None or arg.type not in (TokenType.NUMBER, TokenType.IDENT, TokenType.CHAR_LITERAL):
                break
            if arg.type == TokenType.IDENT and arg.value in KEYWORDS:
                break
            if k < len(arg_regs):
                self._load(arg_regs[k], arg)
            else:
                self._malformed(f"too many arguments to '{tok.value}'", arg)
            k += 1
            j += 1
        self._emit(f"call {tok.value}")
        self._current = f"{tok.value}()"
        return j

    # ── Operators ─────────────────────────────

    def _gen_operation(self, i: int) -> int:
        tok = self._tokens[i]
        op = tok.value

        if op == "->":
            self._open_conditional()
            return i + 1
        if op == "!->":
            return self._gen_else(i)
        if op in LOGICAL_OPS:
            self._emit(f"push {self._reg}", self._current and f"{self._current} {op}")
            self._pending_logic = op
            return i + 1
        if op not in BINARY_OPS:
            return i + 1

        lhs, rhs = self._at(i - 1), self._at(i + 1)
        if lhs is None or rhs is None:
            self._malformed(f"'{op}' needs an operand on both sides", tok)
            return i + 1

        if op in ARITHMETIC_OPS:
            self._gen_arithmetic(op, lhs, rhs)
        elif op in COMPARISON_OPS:
            self._gen_comparison(op, lhs, rhs)
        else:
            self._gen_assignment(op, lhs, rhs)
        return i + 2

    def _gen_arithmetic(self, op: str, lhs: Token, rhs: Token):
        target = self._symbols.lookup(lhs.value) if lhs.type == TokenType.IDENT else None
        self._load(self._reg, lhs)
        self._load(self._reg2, rhs)

        instr = ARITHMETIC_OPS[op]
        if instr == "idiv":
            self._emit(self.profile["sign_extend"])
            self._emit(f"idiv {self._reg2}")
        else:
            self._emit(f"{instr} {self._reg}, {self._reg2}")

        if target is not None:
            self._emit(f"mov {self._slot(target.offset)}, {self._reg}", f"{lhs.value} {op} {rhs.value}")
        self._current = f"{lhs.value} {op.rstrip('=')} {rhs.value}"
        self._combine_logic()

    def _gen_comparison(self, op: str, lhs: Token, rhs: Token):
        self._load(self._reg, lhs)
        self._load(self._reg2, rhs)
        self._emit(f"cmp {self._reg}, {self._reg2}")
        self._emit(f"{COMPARISON_OPS[op]} al")
        self._emit(f"movzx {self._reg}, al")
        self._current = f"{lhs.value} {op} {rhs.value}"
        self._combine_logic()

    def _combine_logic(self):
        if self._pending_logic is None:
            return
        op = self._pending_logic
        self._pending_logic = None
        self._emit(f"pop {self._reg2}")
        self._emit(f"{LOGICAL_OPS[op]} {self._reg}, {self._reg2}", f"... {op} {self._current}")

    def _drop_logic(self, tok: Token):
        """Balance the push of a '&&' / '||' that never got its right side."""
        if self._pending_logic is None:
            return
        op = self._pending_logic
        self._pending_logic = None
        self._malformed(f"'{op}' has no condition on its right", tok)
        self._emit(f"pop {self._reg2}", f"dangling {op}")

    def _gen_assignment(self, op: str, lhs: Token, rhs: Token):
        if lhs.type != TokenType.IDENT:
            self._malformed(f"'{op}' needs a variable on its left", lhs)
            return
        if op == ":=":
            target = self._symbols.bind(lhs.value, self.word_size)
        else:
            target = self._symbols.lookup(lhs.value)
            if target is None:
                self._unbound(lhs.value, lhs)
                return
        if self._load(self._reg, rhs):
            self._emit(f"mov {self._slot(target.offset)}, {self._reg}", f"{lhs.value} {op} {rhs.value}")

    # ── Control flow ──────────────────────────

    def _innermost_loop(self) -> Optional[LoopScope]:
        for entry in reversed(self._scopes):
            if isinstance(entry, LoopScope):
                return entry
            if isinstance(entry, FunctionScope):
                return None
        return None

    def _open_conditional(self):
        if self._pending_logic is not None:
            self._combine_logic()
        end = f".if_end{self._next_id()}"
        self._scopes.append(ConditionalScope(end, self._chain_exit))
        self._chain_exit = None
        self._emit(f"cmp {self._reg}, 0", self._current and f"test {self._current}")
        self._emit(f"je {end}")

    def _gen_else(self, i: int) -> int:
        pending = self._pending_else
        self._pending_else = None
        if pending is None:
            logger.debug("'!->' without a preceding conditional ignored")
            return i + 1

        exit_label = pending.exit or f".if_end{self._next_id()}"
        self._emit(f"jmp {exit_label}")
        self._emit_label(pending.end)
        self._current = None

        if self._is_else_if(i + 1):
            # The condition tokens are generated by the main loop, the
            # following '->' opens the next link of the chain
            self._chain_exit = exit_label
        else:
            self._scopes.append(ConditionalScope(exit_label))
        return i + 1

    def _is_else_if(self, j: int) -> bool:
        """True if tokens from j reach a '->' before any brace or ';'."""
        while j < len(self._tokens):
            tok = self._tokens[j]
            if tok.type == TokenType.OPERATION and tok.value == "->":
                return True
            if tok.type in (TokenType.LBRACE, TokenType.RBRACE, TokenType.SEMI):
                return False
            j += 1
        return False

    def _close_scope(self, i: int):
        """Resolve the innermost open scope for the '}' at i."""
        if not self._scopes:
            logger.debug("Unmatched '}' ignored")
            return
        entry = self._scopes.pop()

        if isinstance(entry, FunctionScope):
            self._close_function(entry)
        elif isinstance(entry, LoopScope):
            self._emit(f"jmp {entry.start}")
            self._emit_label(entry.end)
        else:
            # An else arrow right after the brace takes over the end label
            if self._is(i + 1, TokenType.OPERATION, "!->"):
                self._pending_else = entry
                return
            self._emit_label(entry.end)
            if entry.exit:
                self._emit_label(entry.exit)
        self._current = None

    # ── Data ──────────────────────────────────

    def _gen_string(self, tok: Token):
        label = f".str{self._next_id()}"
        text = tok.value
        if "'" not in text:
            data = f"'{text}'"
        elif '"' not in text:
            data = f'"{text}"'
        else:
            # Both quote kinds present, no quoted form can hold it
            data = ", ".join(str(b) for b in text.encode("utf-8"))
        self._data_lines.append(f"{label}: db {data}, 0")


def generate(tokens: List[Token], word_size: int = 8, strict: bool = False) -> str:
    """Generate assembly text for a token list."""
    return CodeGenerator(word_size=word_size, strict=strict).generate(tokens)
