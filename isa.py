"""ISA: LC-3 instruction encodings, cost table and helpers."""

import struct
from enum import IntEnum
from pathlib import Path
from types import MappingProxyType


class OpCode(IntEnum):
    """Keeps opcodes from all operations (bits 15..12 of a word)."""

    BR = 0b0000  # if (nzp & PSR) PC += off9
    ADD = 0b0001  # DR = SR1 + (SR2 | imm5)
    LD = 0b0010  # DR = M[PC + off9]
    ST = 0b0011  # M[PC + off9] = SR
    JSR = 0b0100  # R7 = PC; PC = PC + off11 | BaseR
    AND = 0b0101  # DR = SR1 & (SR2 | imm5)
    LDR = 0b0110  # DR = M[BaseR + off6]
    STR = 0b0111  # M[BaseR + off6] = SR
    RTI = 0b1000  # PC, PSR popped from R6 stack
    NOT = 0b1001  # DR = ~SR
    LDI = 0b1010  # DR = M[M[PC + off9]]
    STI = 0b1011  # M[M[PC + off9]] = SR
    JMP = 0b1100  # PC = BaseR
    RES = 0b1101  # reserved
    LEA = 0b1110  # DR = PC + off9
    TRAP = 0b1111


class TrapVector(IntEnum):
    """Trap vectors serviced by the machine."""

    GETC = 0x20
    OUT = 0x21
    PUTS = 0x22
    HALT = 0x25


WORD_MASK = 0xFFFF
MEM_WORDS = 1 << 16

# PSR layout
FLAG_P = 0b001
FLAG_Z = 0b010
FLAG_N = 0b100
CC_MASK = FLAG_N | FLAG_Z | FLAG_P
PSR_MODE_BIT = 15

# TRAP x25 is never executed, the run loop stops in front of it.
HALT_WORD = 0xF000 | TrapVector.HALT

# Base cycle cost per opcode. TRAP adds the cost of the serviced routine.
COST_TABLE = MappingProxyType(
    {
        OpCode.ADD: 1,
        OpCode.AND: 1,
        OpCode.NOT: 1,
        OpCode.LEA: 1,
        OpCode.BR: 2,
        OpCode.JMP: 2,
        OpCode.JSR: 2,
        OpCode.TRAP: 2,
        OpCode.LD: 4,
        OpCode.ST: 4,
        OpCode.LDR: 4,
        OpCode.STR: 4,
        OpCode.LDI: 8,
        OpCode.STI: 8,
        OpCode.RTI: 8,
    }
)


def sign_extend(value: int, bits: int) -> int:
    """Interpret the low `bits` of value as a two's complement number."""
    value &= (1 << bits) - 1
    if (value >> (bits - 1)) & 1:
        return value + (-1 << bits)
    return value


def to_signed(word: int) -> int:
    """Signed view of a 16-bit word."""
    return sign_extend(word, 16)


def decode_fields(word: int) -> tuple[OpCode, int, int, int]:
    """Split a word into (opcode, bits 11..9, bits 8..6, bits 2..0)."""
    return (
        OpCode((word >> 12) & 0xF),
        (word >> 9) & 0x7,
        (word >> 6) & 0x7,
        word & 0x7,
    )


# --- encoders (used by tests and golden tooling) ---
def _field(value: int, bits: int) -> int:
    """Two's complement field; only the signed range of `bits` is accepted."""
    lo = -(1 << (bits - 1))
    hi = (1 << (bits - 1)) - 1
    if not lo <= value <= hi:
        msg = f"value {value} does not fit into {bits} bits"
        raise ValueError(msg)
    return value & ((1 << bits) - 1)


def encode_reg(opcode: OpCode, dr: int, sr1: int, sr2: int) -> int:
    """ADD/AND with a register second operand."""
    return (opcode << 12) | (dr << 9) | (sr1 << 6) | sr2


def encode_imm(opcode: OpCode, dr: int, sr1: int, imm5: int) -> int:
    """ADD/AND with an immediate second operand."""
    return (opcode << 12) | (dr << 9) | (sr1 << 6) | 0x20 | _field(imm5, 5)


def encode_not(dr: int, sr: int) -> int:
    return (OpCode.NOT << 12) | (dr << 9) | (sr << 6) | 0x3F


def encode_pc_offset(opcode: OpCode, reg: int, offset9: int) -> int:
    """LD, LDI, ST, STI and LEA."""
    return (opcode << 12) | (reg << 9) | _field(offset9, 9)


def encode_base_offset(opcode: OpCode, reg: int, base: int, offset6: int) -> int:
    """LDR and STR."""
    return (opcode << 12) | (reg << 9) | (base << 6) | _field(offset6, 6)


def encode_br(nzp: int, offset9: int) -> int:
    return (OpCode.BR << 12) | ((nzp & 0x7) << 9) | _field(offset9, 9)


def encode_jmp(base: int) -> int:
    return (OpCode.JMP << 12) | (base << 6)


def encode_jsr(offset11: int) -> int:
    return (OpCode.JSR << 12) | 0x800 | _field(offset11, 11)


def encode_jsrr(base: int) -> int:
    return (OpCode.JSR << 12) | (base << 6)


def encode_trap(vector: int) -> int:
    return (OpCode.TRAP << 12) | (vector & 0xFF)


RTI_WORD = OpCode.RTI << 12


def _nzp_suffix(nzp: int) -> str:
    return ("n" if nzp & FLAG_N else "") + ("z" if nzp & FLAG_Z else "") + ("p" if nzp & FLAG_P else "")


def mnemonic(word: int) -> str:  # noqa: C901
    """Disassemble one word into assembler-like text."""
    word &= WORD_MASK
    if word == HALT_WORD:
        return "HALT"
    opcode, r1, r2, r3 = decode_fields(word)
    if opcode in (OpCode.ADD, OpCode.AND):
        if word & 0x20:
            return f"{opcode.name} R{r1}, R{r2}, #{sign_extend(word, 5)}"
        return f"{opcode.name} R{r1}, R{r2}, R{r3}"
    if opcode == OpCode.NOT:
        return f"NOT R{r1}, R{r2}"
    if opcode == OpCode.BR:
        if r1 == 0:
            return "NOP"
        return f"BR{_nzp_suffix(r1)} #{sign_extend(word, 9)}"
    if opcode == OpCode.JMP:
        return "RET" if r2 == 7 else f"JMP R{r2}"
    if opcode == OpCode.JSR:
        if word & 0x800:
            return f"JSR #{sign_extend(word, 11)}"
        return f"JSRR R{r2}"
    if opcode in (OpCode.LD, OpCode.LDI, OpCode.ST, OpCode.STI, OpCode.LEA):
        return f"{opcode.name} R{r1}, #{sign_extend(word, 9)}"
    if opcode in (OpCode.LDR, OpCode.STR):
        return f"{opcode.name} R{r1}, R{r2}, #{sign_extend(word, 6)}"
    if opcode == OpCode.TRAP:
        return f"TRAP x{word & 0xFF:02X}"
    if opcode == OpCode.RTI:
        return "RTI"
    return f".FILL x{word:04X}"


def parse_word_bytes(blob: bytes) -> list[int]:
    """Decode big-endian 16-bit words. Raises ValueError on odd length."""
    if len(blob) % 2:
        err = f"Word image has odd length {len(blob)}"
        raise ValueError(err)
    return list(struct.unpack(f">{len(blob) // 2}H", blob))


def parse_object_bytes(blob: bytes) -> tuple[int, list[int]]:
    """Decode an LC-3 object image.

    Format: big-endian 16-bit words, the first one is the load origin.
    Returns (origin, words). Raises ValueError for malformed images.
    """
    if len(blob) < 2:
        err = "Object image has no origin word"
        raise ValueError(err)
    words = parse_word_bytes(blob)
    return words[0], words[1:]


def read_object_file(path: str | Path) -> tuple[int, list[int]]:
    """Read an .obj file from disk, see parse_object_bytes."""
    return parse_object_bytes(Path(path).read_bytes())


def read_raw_file(path: str | Path) -> list[int]:
    """Read a headerless word stream; the caller supplies the origin."""
    return parse_word_bytes(Path(path).read_bytes())
