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

"""Opaque register and privilege access interface to the hart under test.

Hart Interface
==============

The checker never touches a hart directly. Every interaction is expressed as a
raw instruction word executed on the hart, plus register-file access to place
operands and collect results:

    csr_read(MSCRATCH)  ->  a0 = 0; execute(csrrs a0, mscratch, zero); read a0

Backends implement only the three primitives (execute, read_register,
write_register) plus capability and privilege queries. Everything else (CSR
access, loads/stores, LR/SC, calls into memory, mode switching, idling) is
built on top of them here, so every backend delivers exactly the same
instruction stream.

Trap delivery:
    When an instruction traps, the backend sets up the architectural trap
    state (mepc, mcause, mtval, mstatus) and calls ``_enter_handler``, which
    runs the single registered trap entry point synchronously and then
    returns control so the backend can execute MRET. A result register of a
    trapping instruction is never written, so values read under a fault are
    the preset zero.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from hartcheck.config import MASK32, MSTATUS_MPP_MASK
from hartcheck.encoders.instruction_encode import (
    NOP,
    CSRAddress,
    enc_csrrc,
    enc_csrrs,
    enc_csrrw,
    enc_ebreak,
    enc_ecall,
    enc_fence_i,
    enc_jalr,
    enc_lr_w,
    enc_lw,
    enc_mret,
    enc_sc_w,
    enc_sw,
    enc_wfi,
)
from hartcheck.exceptions import UnrecoverableError
from hartcheck.verification_types import Capabilities, Privilege

# Registers used to carry operands and results of the injected instructions
RA = 1
T0 = 5
A0 = 10
A1 = 11
A2 = 12

SCRATCH_REGISTERS = (RA, T0, A0, A1, A2)
"""Registers saved around the trap entry so handlers may use the primitives."""

SC_NOT_EXECUTED = MASK32
"""SC result preset: a trapping SC must not look like a successful one."""

TrapEntry = Callable[[], None]


class Hart(ABC):
    """A RISC-V hart driven by injected instructions.

    Subclasses provide instruction execution and register-file access; the
    privileged-architecture primitives used by the checker are implemented
    here in terms of those.
    """

    def __init__(self) -> None:
        self._trap_entry: TrapEntry | None = None
        self._in_handler = False
        self.trapped_from = Privilege.MACHINE

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Return the features implemented by this hart."""

    @property
    @abstractmethod
    def privilege(self) -> Privilege:
        """Privilege level the hart is currently executing at."""

    @abstractmethod
    def execute(self, instruction: int) -> None:
        """Execute one instruction word, delivering any trap it causes."""

    @abstractmethod
    def read_register(self, reg: int) -> int:
        """Read an integer register (x0 reads zero)."""

    @abstractmethod
    def write_register(self, reg: int, value: int) -> None:
        """Write an integer register (writes to x0 are ignored)."""

    # ------------------------------------------------------------------
    # Trap delivery
    # ------------------------------------------------------------------

    def set_trap_entry(self, entry: TrapEntry) -> None:
        """Register the single trap entry point, called for every trap."""
        self._trap_entry = entry

    @property
    def in_handler(self) -> bool:
        return self._in_handler

    def _enter_handler(self, from_privilege: Privilege) -> None:
        """Run the trap entry point for a trap the backend has just taken.

        The scratch registers are saved and restored around the entry so
        the interrupted primitive sees its operands unchanged.

        Raises:
            UnrecoverableError: The trap was taken inside the handler itself,
                or no entry point is registered.
        """
        if self._in_handler:
            raise UnrecoverableError("trap taken inside a trap handler")
        if self._trap_entry is None:
            raise UnrecoverableError("trap taken with no trap entry registered")

        saved = {reg: self.read_register(reg) for reg in SCRATCH_REGISTERS}
        self.trapped_from = from_privilege
        self._in_handler = True
        try:
            self._trap_entry()
        finally:
            self._in_handler = False
        for reg, value in saved.items():
            self.write_register(reg, value)

    # ------------------------------------------------------------------
    # CSR access
    # ------------------------------------------------------------------

    def csr_read(self, csr: int) -> int:
        """Read a CSR with csrrs rd, csr, zero (no write side effect)."""
        self.write_register(A0, 0)
        self.execute(enc_csrrs(A0, csr, 0))
        return self.read_register(A0)

    def csr_write(self, csr: int, value: int) -> None:
        self.write_register(A1, value & MASK32)
        self.execute(enc_csrrw(0, csr, A1))

    def csr_set(self, csr: int, mask: int) -> int:
        """Set bits in a CSR and return its previous value."""
        self.write_register(A0, 0)
        self.write_register(A1, mask & MASK32)
        self.execute(enc_csrrs(A0, csr, A1))
        return self.read_register(A0)

    def csr_clear(self, csr: int, mask: int) -> int:
        """Clear bits in a CSR and return its previous value."""
        self.write_register(A0, 0)
        self.write_register(A1, mask & MASK32)
        self.execute(enc_csrrc(A0, csr, A1))
        return self.read_register(A0)

    # ------------------------------------------------------------------
    # Memory access
    # ------------------------------------------------------------------

    def load_word(self, address: int) -> int:
        self.write_register(A0, 0)
        self.write_register(A1, address & MASK32)
        self.execute(enc_lw(A0, A1))
        return self.read_register(A0)

    def store_word(self, address: int, value: int) -> None:
        self.write_register(A1, address & MASK32)
        self.write_register(A2, value & MASK32)
        self.execute(enc_sw(A2, A1))

    def load_reserved(self, address: int) -> int:
        """LR.W: load a word and place a reservation on it."""
        self.write_register(A0, 0)
        self.write_register(A1, address & MASK32)
        self.execute(enc_lr_w(A0, A1))
        return self.read_register(A0)

    def store_conditional(self, address: int, value: int) -> int:
        """SC.W: store if the reservation holds.

        Returns:
            0 on success, non-zero on failure
        """
        self.write_register(A0, SC_NOT_EXECUTED)
        self.write_register(A1, address & MASK32)
        self.write_register(A2, value & MASK32)
        self.execute(enc_sc_w(A0, A2, A1))
        return self.read_register(A0)

    # ------------------------------------------------------------------
    # Control flow and privilege
    # ------------------------------------------------------------------

    def call(self, address: int) -> None:
        """Jump-and-link to code at ``address``; it returns with ``ret``."""
        self.write_register(T0, address & MASK32)
        self.execute(enc_jalr(RA, T0))

    def enter_user_mode(self) -> None:
        """Drop to user mode: clear mstatus.MPP and return with MRET."""
        self.csr_clear(CSRAddress.MSTATUS, MSTATUS_MPP_MASK)
        self.execute(enc_mret())

    def ecall(self) -> None:
        self.execute(enc_ecall())

    def ebreak(self) -> None:
        self.execute(enc_ebreak())

    def fence_i(self) -> None:
        self.execute(enc_fence_i())

    def wait_for_interrupt(self) -> None:
        """Execute WFI; backends end a sleep nothing wakes after a bounded wait."""
        self.execute(enc_wfi())

    def idle(self, cycles: int) -> None:
        """Issue ``cycles`` NOPs."""
        for _ in range(cycles):
            self.execute(NOP)
