"""Processor (Datapath + ControlUnit) and CLI wrapper.

Provides the LC-3 machine state, the fetch-decode-execute engine with trap
service and cycle accounting, logging initialization and a small CLI that
runs .obj files.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from enum import Enum
from typing import Any

from config import ConfigError, load_config
from isa import (
    CC_MASK,
    COST_TABLE,
    FLAG_N,
    FLAG_P,
    FLAG_Z,
    HALT_WORD,
    MEM_WORDS,
    PSR_MODE_BIT,
    WORD_MASK,
    OpCode,
    TrapVector,
    decode_fields,
    mnemonic,
    read_object_file,
    read_raw_file,
    sign_extend,
    to_signed,
)

LOGFILE = "processor.log"

# Trap routine costs (cycles), on top of COST_TABLE[TRAP].
GETC_COST = 28
OUT_COST = 36
PUTS_BASE_COST = 40
PUTS_CHAR_COST = 27


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stdout.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if debug and console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


# --- faults ---
class MachineFault(Exception):
    """Fault raised by the engine; terminates the current run."""

    kind = "fault"


class PrivilegeFault(MachineFault):
    """RTI executed while the PSR mode bit forbids it."""

    kind = "privilege"

    def __init__(self, psr: int) -> None:
        self.psr = psr
        super().__init__(f"RTI not permitted, PSR=x{psr:04X}")


class UnsupportedTrap(MachineFault):
    kind = "unsupported_trap"

    def __init__(self, vector: int) -> None:
        self.vector = vector
        super().__init__(f"unsupported trap vector x{vector:02X}")


class InputExhausted(MachineFault):
    kind = "input_exhausted"

    def __init__(self, consumed: int) -> None:
        self.consumed = consumed
        super().__init__(f"console input exhausted after {consumed} chars")


class AddressOutOfRange(MachineFault):
    kind = "address_out_of_range"

    def __init__(self, addr: int) -> None:
        self.addr = addr
        super().__init__(f"address {addr} outside 0..{MEM_WORDS - 1}")


class IllegalOpcode(MachineFault):
    kind = "illegal_opcode"

    def __init__(self, word: int) -> None:
        self.word = word
        super().__init__(f"reserved opcode in word x{word:04X}")


class RunState(str, Enum):
    """Where the last run call ended."""

    IDLE = "idle"
    RUNNING = "running"
    HALTED = "halted"
    BREAKPOINT = "breakpoint"
    FAULTED = "faulted"


class Datapath:
    """Datapath (memory + registers + status + console buffers) for one machine."""

    memory: list[int]
    regs: list[int]
    PC: int
    PSR: int
    breakpoints: set[int]
    input_chars: list[str]
    input_index: int
    output: list[str]
    lenient_log: bool

    def __init__(self, lenient_log: bool = False) -> None:
        """Create a zeroed machine."""
        self.memory = [0] * MEM_WORDS
        self.regs = [0] * 8
        self.PC = 0x3000
        self.PSR = 0
        self.breakpoints = set()
        self.input_chars = []
        self.input_index = 0
        self.output = []
        self.lenient_log = bool(lenient_log)

    @staticmethod
    def check_addr(addr: int) -> int:
        """Return addr unchanged, raise AddressOutOfRange if it leaves memory."""
        if not 0 <= addr < MEM_WORDS:
            raise AddressOutOfRange(addr)
        return addr

    def read_word(self, addr: int) -> int:
        return self.memory[self.check_addr(addr)]

    def write_word(self, addr: int, value: int) -> None:
        self.memory[self.check_addr(addr)] = value & WORD_MASK

    def set_reg(self, idx: int, value: int) -> None:
        self.regs[idx] = value & WORD_MASK

    def reg_addr(self, idx: int) -> int:
        """Register contents used as an address (low 16 bits)."""
        return self.regs[idx] & WORD_MASK

    def update_cc(self, value: int) -> None:
        """Set exactly one of N/Z/P from the signed value, keep other PSR bits."""
        v = to_signed(value & WORD_MASK)
        if v > 0:
            flag = FLAG_P
        elif v == 0:
            flag = FLAG_Z
        else:
            flag = FLAG_N
        self.PSR = (self.PSR & ~CC_MASK) | flag

    def load(self, start: int, words: Iterable[int]) -> int:
        """Copy words into memory from start. Returns number of words copied.

        Nothing is written when the stream does not fit.
        """
        data = [int(w) & WORD_MASK for w in words]
        self.check_addr(start)
        if data:
            self.check_addr(start + len(data) - 1)
        self.memory[start : start + len(data)] = data
        return len(data)


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC loop for the Datapath."""

    dp: Datapath
    cost: int
    state: RunState
    fault: MachineFault | None

    def __init__(self, dp: Datapath) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp
        self.cost = 0
        self.state = RunState.IDLE
        self.fault = None

    # --- front-end interface ---
    def initialize(self, start_address: int, words: Iterable[int]) -> None:
        """Load a word stream (origin header already stripped) at start_address."""
        dp = self.dp
        n = dp.load(start_address, words)
        dp.PC = start_address
        dp.input_index = 0
        dp.output.clear()
        logging.debug("initialize: %d words at x%04X", n, start_address)

    def add_breakpoint(self, address: int) -> None:
        self.dp.breakpoints.add(address)

    def remove_breakpoint(self, address: int) -> None:
        self.dp.breakpoints.discard(address)

    def clear_breakpoints(self) -> None:
        self.dp.breakpoints.clear()

    def set_input(self, characters: Iterable[str]) -> None:
        """Replace console input and rewind it.

        Raises ValueError for characters that do not fit into a 16-bit word.
        """
        chars = list(characters)
        for i, ch in enumerate(chars):
            if ord(ch) > WORD_MASK:
                msg = f"input char {ch!r} at {i} does not fit into 16 bits"
                raise ValueError(msg)
        self.dp.input_chars = chars
        self.dp.input_index = 0

    def get_output(self) -> str:
        return "".join(self.dp.output)

    def _log_step(self, pc: int, word: int, cost: int) -> None:
        # skip verbose per-step logs in lenient mode to reduce log size
        if self.dp.lenient_log:
            return
        dp = self.dp
        regs = " ".join(f"R{i}: {r:04X}" for i, r in enumerate(dp.regs))
        logging.debug(
            "PC: %04X IR: %04X COST: %2d TOTAL: %8d PSR: %04X %s\tINSTR: %s",
            pc,
            word,
            cost,
            self.cost,
            dp.PSR,
            regs,
            mnemonic(word),
        )

    def run(self, start_address: int) -> int:
        """Execute from start_address until halt, breakpoint or fault.

        Returns the accumulated cycle cost. The terminal state and the fault,
        if any, are left in `state` and `fault`.
        """
        dp = self.dp
        self.cost = 0
        self.fault = None
        self.state = RunState.RUNNING
        dp.output.clear()
        dp.PC = start_address

        while self.state == RunState.RUNNING:
            if dp.PC in dp.breakpoints:
                logging.debug("breakpoint at x%04X", dp.PC)
                self.state = RunState.BREAKPOINT
                break

            pc, r7 = dp.PC, dp.regs[7]
            try:
                word = dp.read_word(pc)
                if word == HALT_WORD:
                    logging.debug("HALT encountered at x%04X", pc)
                    self.state = RunState.HALTED
                    break
                step_cost = self.exec(word)
            except MachineFault as e:
                # leave the machine as it was in front of the failing instruction
                dp.PC = pc
                dp.regs[7] = r7
                self.fault = e
                self.state = RunState.FAULTED
                logging.warning("fault at x%04X: %s", pc, e)
                break
            self.cost += step_cost
            self._log_step(pc, word, step_cost)

        return self.cost

    def exec(self, word: int) -> int:  # noqa: C901
        """Execute one instruction word, return its cycle cost.

        Raises MachineFault before touching memory, registers or output.
        """
        dp = self.dp
        if dp.PC + 1 >= MEM_WORDS:
            raise AddressOutOfRange(dp.PC + 1)
        dp.PC += 1

        opcode, r1, r2, r3 = decode_fields(word)

        if opcode in (OpCode.ADD, OpCode.AND):
            b = sign_extend(word, 5) if word & 0x20 else dp.regs[r3]
            if opcode == OpCode.ADD:
                dp.set_reg(r1, dp.regs[r2] + b)
            else:
                dp.set_reg(r1, dp.regs[r2] & b)
            dp.update_cc(dp.regs[r1])
        elif opcode == OpCode.NOT:
            dp.set_reg(r1, ~dp.regs[r2])
            dp.update_cc(dp.regs[r1])
        elif opcode == OpCode.BR:
            if r1 & dp.PSR & CC_MASK:
                dp.PC = dp.check_addr(dp.PC + sign_extend(word, 9))
        elif opcode == OpCode.JMP:
            dp.PC = dp.reg_addr(r2)
        elif opcode == OpCode.JSR:
            if word & 0x800:
                target = dp.check_addr(dp.PC + sign_extend(word, 11))
            else:
                target = dp.reg_addr(r2)
            dp.set_reg(7, dp.PC)
            dp.PC = target
        elif opcode == OpCode.RTI:
            # mode bit 0 permits the return, 1 faults
            if (dp.PSR >> PSR_MODE_BIT) & 1:
                raise PrivilegeFault(dp.PSR)
            sp = dp.reg_addr(6)
            dp.check_addr(sp + 1)
            dp.PC = dp.memory[sp]
            dp.PSR = dp.memory[sp + 1]
            dp.set_reg(6, sp + 2)
        elif opcode == OpCode.LD:
            dp.set_reg(r1, dp.read_word(dp.PC + sign_extend(word, 9)))
            dp.update_cc(dp.regs[r1])
        elif opcode == OpCode.LDI:
            ptr = dp.read_word(dp.PC + sign_extend(word, 9))
            dp.set_reg(r1, dp.read_word(ptr))
            dp.update_cc(dp.regs[r1])
        elif opcode == OpCode.ST:
            dp.write_word(dp.PC + sign_extend(word, 9), dp.regs[r1])
        elif opcode == OpCode.STI:
            ptr = dp.read_word(dp.PC + sign_extend(word, 9))
            dp.write_word(ptr, dp.regs[r1])
        elif opcode == OpCode.LDR:
            dp.set_reg(r1, dp.read_word(dp.reg_addr(r2) + sign_extend(word, 6)))
            dp.update_cc(dp.regs[r1])
        elif opcode == OpCode.STR:
            dp.write_word(dp.reg_addr(r2) + sign_extend(word, 6), dp.regs[r1])
        elif opcode == OpCode.LEA:
            dp.set_reg(r1, dp.check_addr(dp.PC + sign_extend(word, 9)))
            dp.update_cc(dp.regs[r1])
        elif opcode == OpCode.TRAP:
            vector = word & 0xFF
            dp.set_reg(7, dp.PC)
            return self.trap(vector) + COST_TABLE[OpCode.TRAP]
        else:
            raise IllegalOpcode(word)

        return COST_TABLE[opcode]

    def trap(self, vector: int) -> int:
        """Run one console trap routine as a single step, return its cost."""
        dp = self.dp

        if vector == TrapVector.GETC:
            if dp.input_index >= len(dp.input_chars):
                raise InputExhausted(dp.input_index)
            ch = dp.input_chars[dp.input_index]
            dp.input_index += 1
            dp.set_reg(0, ord(ch))
            logging.debug("GETC: got %r", ch)
            return GETC_COST

        if vector == TrapVector.OUT:
            ch = chr(dp.regs[0] & WORD_MASK)
            dp.output.append(ch)
            logging.debug("OUT: %r", ch)
            return OUT_COST

        if vector == TrapVector.PUTS:
            addr = dp.reg_addr(0)
            chars: list[str] = []
            c = dp.read_word(addr)
            while c != 0:
                chars.append(chr(c))
                addr += 1
                c = dp.read_word(addr)
            dp.output.extend(chars)
            logging.debug("PUTS: %r", "".join(chars))
            return PUTS_BASE_COST + PUTS_CHAR_COST * len(chars)

        raise UnsupportedTrap(vector)


# ---------- Public API ----------
def run_words(
    origin: int | None,
    words: Iterable[int],
    config: dict[str, Any] | None = None,
    input_text: str | None = None,
) -> tuple[str, int, str]:
    """Run a word stream loaded at origin and return (output, cost, state).

    origin=None loads and starts at the configured origin.
    """
    cfg = load_config(config)
    if origin is None:
        origin = cfg["origin"]
    dp = Datapath(lenient_log=cfg["lenient_log"])
    cu = ControlUnit(dp)
    for bp in cfg["breakpoints"]:
        cu.add_breakpoint(bp)
    cu.initialize(origin, words)
    cu.set_input(cfg["input"] if input_text is None else input_text)
    cost = cu.run(origin)
    return cu.get_output(), cost, cu.state.value


def _parse_addr(text: str) -> int:
    if text[:1] in ("x", "X"):
        return int(text[1:], 16)
    return int(text, 0)


# ---------- CLI ----------
if __name__ == "__main__":
    import argparse

    ap = argparse.ArgumentParser(
        description="LC-3 runner. Loads an .obj file (big-endian words, origin first) or a raw word stream."
    )
    ap.add_argument("program", help="program.obj")
    ap.add_argument(
        "--raw",
        action="store_true",
        help="program has no origin header; load it at the configured origin",
    )
    ap.add_argument("--input", default=None, help="console input text consumed by GETC")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument(
        "--break",
        dest="breakpoints",
        action="append",
        type=_parse_addr,
        default=[],
        help="breakpoint address (x3005, 0x3005 or decimal); may repeat",
    )

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to processor log"
    help_console = "also echo logs to console (only when --debug)"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=LOGFILE, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args()

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e)
        sys.exit(2)
    cfg["breakpoints"] = list(cfg["breakpoints"]) + args.breakpoints

    try:
        if args.raw:
            origin, words = cfg["origin"], read_raw_file(args.program)
        else:
            origin, words = read_object_file(args.program)
    except (OSError, ValueError) as e:
        print("Cannot read program:", e)
        sys.exit(2)
    logging.debug("CLI: loaded %d words at x%04X from %s", len(words), origin, args.program)

    try:
        out, cycles, state = run_words(origin, words, cfg, args.input)
    except AddressOutOfRange as e:
        print("Program does not fit into memory:", e)
        sys.exit(2)
    except ValueError as e:
        print("Bad input:", e)
        sys.exit(2)

    sys.stdout.write(out)
    sys.stdout.write("\n")
    sys.stdout.write("CYCLES: " + str(cycles))
    sys.stdout.write("\n")
    sys.stdout.write("STATE: " + state)
    sys.stdout.write("\n")
