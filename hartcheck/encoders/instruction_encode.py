#    Copyright 2026 Two Sigma Open Source, LLC
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.

"""Instruction encoders and decoders for the hart stimulus stream.

Instruction Formats
===================

Every hart primitive is delivered as a raw 32-bit instruction word: CSR
accesses, loads and stores, LR/SC, JALR into test code and the SYSTEM
instructions (ECALL, EBREAK, MRET, WFI). This module packs those words and
splits them back into fields for the reference hart model.

Only the formats the checker needs are implemented:
    I-type: CSR operations, loads, JALR, FENCE/FENCE.I, SYSTEM
    S-type: stores
    AMO-type: LR.W, SC.W

Usage Example:
    >>> # csrrs a0, mscratch, zero (read mscratch into a0)
    >>> hex(enc_csrrs(10, CSRAddress.MSCRATCH, 0))
    '0x34002573'
    >>> hex(enc_csrrw(0, 0xFFF, 0))  # write to a CSR that does not exist
    '0xfff01073'
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Final


class Opcode(IntEnum):
    """RISC-V opcodes."""

    LOAD = 0x03
    MISC_MEM = 0x0F  # FENCE, FENCE.I (Zifencei)
    ALU_IMM = 0x13
    STORE = 0x23
    AMO = 0x2F  # A extension (atomics)
    JALR = 0x67
    SYSTEM = 0x73  # CSR instructions (Zicsr), ECALL, EBREAK, MRET, WFI


class Funct3(IntEnum):
    """funct3 values of the instructions the checker issues."""

    # ALU operations
    ADD_SUB = 0x0

    # Load/Store widths
    WORD = 0x2

    # Memory ordering (Zifencei)
    FENCE = 0x0
    FENCE_I = 0x1

    # SYSTEM: funct3 0 selects ECALL/EBREAK/MRET/WFI by the immediate
    PRIV = 0x0

    # CSR instructions (Zicsr)
    CSRRW = 0x1  # Read/Write
    CSRRS = 0x2  # Read/Set bits
    CSRRC = 0x3  # Read/Clear bits
    CSRRWI = 0x5  # Read/Write Immediate
    CSRRSI = 0x6  # Read/Set bits Immediate
    CSRRCI = 0x7  # Read/Clear bits Immediate


class Funct5(IntEnum):
    """funct5 values of the reservation instructions."""

    LR = 0x02  # Load-Reserved
    SC = 0x03  # Store-Conditional


class SystemFunct12(IntEnum):
    """Immediate field of the funct3=0 SYSTEM instructions."""

    ECALL = 0x000
    EBREAK = 0x001
    MRET = 0x302
    WFI = 0x105


class CSRAddress(IntEnum):
    """CSR addresses for the machine-mode and counter CSRs the checker touches."""

    # Machine trap setup
    MSTATUS = 0x300  # Machine status (MIE, MPIE, MPP, TW)
    MISA = 0x301  # ISA description
    MIE = 0x304  # Machine interrupt enable
    MTVEC = 0x305  # Machine trap vector base
    MCOUNTEREN = 0x306  # Counter access from user mode
    MCOUNTINHIBIT = 0x320  # Counter inhibit
    MHPMEVENT3 = 0x323  # First HPM event selector

    # Machine trap handling
    MSCRATCH = 0x340
    MEPC = 0x341
    MCAUSE = 0x342
    MTVAL = 0x343
    MIP = 0x344

    # Physical memory protection
    PMPCFG0 = 0x3A0
    PMPADDR0 = 0x3B0

    # Machine counters
    MCYCLE = 0xB00
    MINSTRET = 0xB02
    MHPMCOUNTER3 = 0xB03
    MCYCLEH = 0xB80
    MINSTRETH = 0xB82
    MHPMCOUNTER3H = 0xB83

    # Zicntr counters (read-only shadows)
    CYCLE = 0xC00
    TIME = 0xC01
    INSTRET = 0xC02
    CYCLEH = 0xC80
    TIMEH = 0xC81
    INSTRETH = 0xC82
    HPMCOUNTER3 = 0xC03
    HPMCOUNTER3H = 0xC83

    # Machine information (read-only)
    MVENDORID = 0xF11
    MARCHID = 0xF12
    MIMPID = 0xF13
    MHARTID = 0xF14


def pmpcfg_csr(index: int) -> int:
    """CSR address of the pmpcfg register holding entry ``index``."""
    return CSRAddress.PMPCFG0 + index // 4


def pmpaddr_csr(index: int) -> int:
    return CSRAddress.PMPADDR0 + index


def mhpmcounter_csr(counter: int) -> int:
    """CSR address of mhpmcounterN (N = 3..31)."""
    return CSRAddress.MHPMCOUNTER3 + counter - 3


def mhpmevent_csr(counter: int) -> int:
    return CSRAddress.MHPMEVENT3 + counter - 3


def csr_is_read_only(csr_address: int) -> bool:
    """CSR addresses with bits [11:10] == 0b11 are read-only by encoding."""
    return (csr_address >> 10) & 0x3 == 0x3


def csr_min_privilege(csr_address: int) -> int:
    """Lowest privilege level allowed to access a CSR (bits [9:8])."""
    return (csr_address >> 8) & 0x3


class InstructionEncoder:
    """Shared bit packing of the format encoders."""

    @staticmethod
    def _pack_bits(*fields: tuple[int, int, int]) -> int:
        """Pack (value, position, mask) bit fields into an instruction word."""
        result = 0
        for value, position, mask in fields:
            result |= (value & mask) << position
        return result


class IType(InstructionEncoder):
    """I-type instruction format encoder.

    Format: imm[31:20] | rs1[19:15] | funct3[14:12] | rd[11:7] | opcode[6:0]
    Used for: CSR operations, loads, JALR, FENCE and SYSTEM instructions
    """

    @staticmethod
    def encode(
        immediate_12bit: int,
        source_register_1: int,
        funct3_code: int,
        destination_register: int,
        opcode: int,
    ) -> int:
        """Encode I-type instruction into 32-bit word."""
        return InstructionEncoder._pack_bits(
            (immediate_12bit, 20, 0xFFF),
            (source_register_1, 15, 0x1F),
            (funct3_code, 12, 0x7),
            (destination_register, 7, 0x1F),
            (opcode, 0, 0x7F),
        )


class SType(InstructionEncoder):
    """S-type instruction format encoder.

    Format: imm[11:5][31:25] | rs2[24:20] | rs1[19:15] | funct3[14:12] | imm[4:0][11:7] | opcode[6:0]
    Used for: store operations
    """

    @staticmethod
    def encode(
        immediate_12bit: int,
        source_register_2: int,
        source_register_1: int,
        funct3_code: int,
        opcode: int,
    ) -> int:
        """Encode S-type instruction into 32-bit word."""
        immediate_value = immediate_12bit & 0xFFF
        return InstructionEncoder._pack_bits(
            ((immediate_value >> 5) & 0x7F, 25, 0x7F),
            (source_register_2, 20, 0x1F),
            (source_register_1, 15, 0x1F),
            (funct3_code, 12, 0x7),
            (immediate_value & 0x1F, 7, 0x1F),
            (opcode, 0, 0x7F),
        )


class AMOType(InstructionEncoder):
    """Atomic (AMO) format, word width only.

    Format: funct5[31:27] | aq[26] | rl[25] | rs2[24:20] | rs1[19:15] | funct3[14:12] | rd[11:7] | opcode[6:0]
    Used for: LR.W and SC.W
    """

    @staticmethod
    def encode(
        funct5_code: int,
        source_register_2: int,
        source_register_1: int,
        destination_register: int,
        aq: int = 0,
        rl: int = 0,
    ) -> int:
        """Encode AMO-type instruction into 32-bit word."""
        return InstructionEncoder._pack_bits(
            (funct5_code, 27, 0x1F),
            (aq, 26, 0x1),
            (rl, 25, 0x1),
            (source_register_2, 20, 0x1F),
            (source_register_1, 15, 0x1F),
            (Funct3.WORD, 12, 0x7),
            (destination_register, 7, 0x1F),
            (Opcode.AMO, 0, 0x7F),
        )


# ============================================================================
# Fixed instruction words
# ============================================================================

NOP: Final[int] = 0x0000_0013
"""addi x0, x0, 0"""

RET: Final[int] = 0x0000_8067
"""jalr x0, 0(ra)"""

C_NOP: Final[int] = 0x0001
"""Compressed c.nop (16 bits)."""

C_ILLEGAL: Final[int] = 0x0000
"""The all-zero 16-bit parcel is defined to be illegal."""

ILLEGAL_CSR_WRITE: Final[int] = 0xFFF0_1073
"""csrrw zero, 0xfff, zero: write to a CSR that does not exist."""


def enc_lw(rd: int, rs1: int, immediate: int = 0) -> int:
    """Encode LW (load word) instruction."""
    return IType.encode(immediate & 0xFFF, rs1, Funct3.WORD, rd, Opcode.LOAD)


def enc_sw(rs2: int, rs1: int, immediate: int = 0) -> int:
    """Encode SW (store word) instruction."""
    return SType.encode(immediate, rs2, rs1, Funct3.WORD, Opcode.STORE)


def enc_jalr(rd: int, rs1: int, immediate: int = 0) -> int:
    """Encode JALR (jump-and-link register) instruction."""
    return IType.encode(immediate & 0xFFF, rs1, 0x0, rd, Opcode.JALR)


def enc_fence_i() -> int:
    """Encode FENCE.I instruction (0x0000100f).

    FENCE.I synchronizes instruction and data streams, so code written by
    stores becomes visible to instruction fetch.
    """
    return IType.encode(0, 0, Funct3.FENCE_I, 0, Opcode.MISC_MEM)


def enc_csr(csr_address: int, rs1: int, funct3: int, rd: int) -> int:
    """Encode a Zicsr instruction; the CSR address takes the I-type immediate.

    Args:
        csr_address: 12-bit CSR address
        rs1: Operand register, or the 5-bit zimm of the immediate forms
        funct3: One of the Funct3.CSRR* codes
        rd: Receives the old CSR value
    """
    return IType.encode(csr_address & 0xFFF, rs1, funct3, rd, Opcode.SYSTEM)


def enc_csrrw(rd: int, csr: int, rs1: int) -> int:
    """csrrw: swap; rd=x0 makes it a pure write."""
    return enc_csr(csr, rs1, Funct3.CSRRW, rd)


def enc_csrrs(rd: int, csr: int, rs1: int) -> int:
    """csrrs: set bits; rs1=x0 makes it a pure read."""
    return enc_csr(csr, rs1, Funct3.CSRRS, rd)


def enc_csrrc(rd: int, csr: int, rs1: int) -> int:
    """csrrc: clear bits, returning the old value."""
    return enc_csr(csr, rs1, Funct3.CSRRC, rd)


def enc_lr_w(rd: int, rs1: int, aq: int = 0, rl: int = 0) -> int:
    """LR.W rd, (rs1): load and reserve; the atomic scenarios start here."""
    return AMOType.encode(Funct5.LR, 0, rs1, rd, aq, rl)


def enc_sc_w(rd: int, rs2: int, rs1: int, aq: int = 0, rl: int = 0) -> int:
    """SC.W rd, rs2, (rs1): rd is 0 only if the reservation still held."""
    return AMOType.encode(Funct5.SC, rs2, rs1, rd, aq, rl)


def enc_ecall() -> int:
    """Encode ECALL (Environment Call) instruction (0x00000073)."""
    return IType.encode(SystemFunct12.ECALL, 0, Funct3.PRIV, 0, Opcode.SYSTEM)


def enc_ebreak() -> int:
    """Encode EBREAK (Environment Breakpoint) instruction (0x00100073)."""
    return IType.encode(SystemFunct12.EBREAK, 0, Funct3.PRIV, 0, Opcode.SYSTEM)


def enc_mret() -> int:
    """Encode MRET (Machine Return) instruction (0x30200073).

    Returns from a machine-mode trap handler: privilege from mstatus.MPP,
    mstatus.MIE from mstatus.MPIE.
    """
    return IType.encode(SystemFunct12.MRET, 0, Funct3.PRIV, 0, Opcode.SYSTEM)


def enc_wfi() -> int:
    """Encode WFI (Wait For Interrupt) instruction (0x10500073)."""
    return IType.encode(SystemFunct12.WFI, 0, Funct3.PRIV, 0, Opcode.SYSTEM)


# ============================================================================
# Decoding
# ============================================================================


@dataclass(frozen=True)
class DecodedInstruction:
    """Fields of a 32-bit instruction word, as used by the reference model.

    The immediate is sign-extended for I-type and S-type words; the CSR
    address (unsigned imm[11:0]) is kept separately.
    """

    word: int
    opcode: int
    rd: int
    funct3: int
    rs1: int
    rs2: int
    funct5: int
    funct12: int
    i_immediate: int
    s_immediate: int

    @property
    def csr(self) -> int:
        return self.funct12


def _sign_extend_12(value: int) -> int:
    return value - 0x1000 if value & 0x800 else value


def decode(word: int) -> DecodedInstruction:
    """Split a 32-bit instruction word into its fields."""
    funct12 = (word >> 20) & 0xFFF
    s_imm = (((word >> 25) & 0x7F) << 5) | ((word >> 7) & 0x1F)
    return DecodedInstruction(
        word=word,
        opcode=word & 0x7F,
        rd=(word >> 7) & 0x1F,
        funct3=(word >> 12) & 0x7,
        rs1=(word >> 15) & 0x1F,
        rs2=(word >> 20) & 0x1F,
        funct5=(word >> 27) & 0x1F,
        funct12=funct12,
        i_immediate=_sign_extend_12(funct12),
        s_immediate=_sign_extend_12(s_imm),
    )


def is_compressed(parcel: int) -> bool:
    """A 16-bit parcel is compressed unless its low two bits are 0b11."""
    return parcel & 0x3 != 0x3

