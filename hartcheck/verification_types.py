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

"""Value types shared by the checker components.

Types
=====

This module defines the small immutable values that flow between the hart
interface, the trap observatory, the checks and the runner:

- Privilege: hart privilege levels
- TrapCause: closed set of trap causes and their mcause encodings
- TrapRecord: the observatory's snapshot of the most recent trap
- Capabilities: what the hart under test implements
- Permission / ProtectedRegion: PMP region descriptions
"""

import enum
from dataclasses import dataclass

from hartcheck.config import INTERRUPT_FLAG, IRQ_FIRQ_BASE_BIT, MASK32


class Privilege(enum.IntEnum):
    """Hart privilege levels, encoded as in mstatus.MPP."""

    USER = 0
    MACHINE = 3


class TrapCause(enum.Enum):
    """Every trap the checker can provoke, valued by its mcause encoding.

    The declaration order (excluding NONE) is the fixed vector table order used
    by the trap observatory, so a vector may be addressed either by member or
    by its integer index in that order.
    """

    INSTRUCTION_MISALIGNED = 0
    INSTRUCTION_ACCESS_FAULT = 1
    ILLEGAL_INSTRUCTION = 2
    BREAKPOINT = 3
    LOAD_MISALIGNED = 4
    LOAD_ACCESS_FAULT = 5
    STORE_MISALIGNED = 6
    STORE_ACCESS_FAULT = 7
    ECALL_U = 8
    ECALL_M = 11
    MACHINE_SOFTWARE_INTERRUPT = INTERRUPT_FLAG | 3
    MACHINE_TIMER_INTERRUPT = INTERRUPT_FLAG | 7
    MACHINE_EXTERNAL_INTERRUPT = INTERRUPT_FLAG | 11
    NMI = INTERRUPT_FLAG | 0
    FIRQ_0 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 0)
    FIRQ_1 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 1)
    FIRQ_2 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 2)
    FIRQ_3 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 3)
    FIRQ_4 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 4)
    FIRQ_5 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 5)
    FIRQ_6 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 6)
    FIRQ_7 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 7)
    FIRQ_8 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 8)
    FIRQ_9 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 9)
    FIRQ_10 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 10)
    FIRQ_11 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 11)
    FIRQ_12 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 12)
    FIRQ_13 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 13)
    FIRQ_14 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 14)
    FIRQ_15 = INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + 15)
    NONE = None

    @property
    def mcause(self) -> int:
        """mcause register value for this cause (0 for NONE)."""
        return 0 if self.value is None else self.value

    @property
    def is_interrupt(self) -> bool:
        return self.value is not None and bool(self.value & INTERRUPT_FLAG)

    @classmethod
    def from_mcause(cls, mcause: int) -> "TrapCause":
        """Decode an mcause value, raising ValueError for unknown codes."""
        return cls(mcause & MASK32)

    @classmethod
    def firq(cls, channel: int) -> "TrapCause":
        """Cause of fast interrupt channel 0-15."""
        return cls(INTERRUPT_FLAG | (IRQ_FIRQ_BASE_BIT + channel))

    @classmethod
    def vectors(cls) -> list["TrapCause"]:
        """Fixed vector table order: every cause except NONE."""
        return [cause for cause in cls if cause is not cls.NONE]


@dataclass(frozen=True)
class TrapRecord:
    """Snapshot of the most recent trap, as seen by the trap observatory.

    Attributes:
        cause: Decoded trap cause (NONE after arming)
        aux_value: mtval at trap entry
        occurred: True once any trap was delivered since the last arm
        epc: mepc at trap entry
        from_privilege: Privilege level the hart was running at when trapping
        return_privilege: mstatus.MPP at entry, before the handler repaired it
    """

    cause: TrapCause = TrapCause.NONE
    aux_value: int = 0
    occurred: bool = False
    epc: int = 0
    from_privilege: Privilege = Privilege.MACHINE
    return_privilege: Privilege = Privilege.MACHINE


@dataclass(frozen=True)
class Capabilities:
    """Features implemented by the hart under test.

    Queried once at the start of a run. Cases whose requirements are not met
    are skipped, never inferred from hart behaviour.
    """

    compressed: bool = True
    user_mode: bool = True
    atomics: bool = True
    num_hpm_counters: int = 4
    pmp_regions: int = 4
    pmp_granularity: int = 4
    wdt: bool = True
    uart0: bool = True
    uart1: bool = True
    spi: bool = True
    twi: bool = True
    xirq: bool = True
    slink: bool = True
    ext_mem: bool = True
    gpio: bool = True

    @property
    def has_pmp(self) -> bool:
        return self.pmp_regions > 0


class Permission(enum.Flag):
    """PMP access permissions, valued by their pmpcfg bits."""

    NONE = 0
    R = 1 << 0
    W = 1 << 1
    X = 1 << 2
    RWX = R | W | X


@dataclass(frozen=True)
class ProtectedRegion:
    """A configured PMP region.

    Attributes:
        index: PMP entry number
        base: First byte of the region
        size: Region size in bytes (power of two, at least the granularity)
        permissions: Access rights granted below machine mode
        locked: Entry is locked and enforced in machine mode as well
    """

    index: int
    base: int
    size: int
    permissions: Permission = Permission.NONE
    locked: bool = False
