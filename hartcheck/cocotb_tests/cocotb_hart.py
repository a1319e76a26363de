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

"""Hart backend driving an RTL hart inside a cocotb simulation.

Cocotb Hart
===========

How it Works:
    The compliance engine is synchronous. The cocotb test runs it in a worker
    thread through ``cocotb.bridge``; every primitive here re-enters the
    simulator with ``cocotb.resume`` and blocks until the instruction has
    been injected and drained. The simulator therefore still sees a single
    instruction stream.

Trap delivery:
    The trap unit's ``trap_taken`` strobe marks a trap. The backend then
    reads mcause, runs the registered trap entry, reads mstatus.MPP and
    injects MRET, tracking the privilege level in software (the testbench
    does not expose it).

Testbench devices:
    The instruction-injection testbench has data memory but no machine timer
    and no simulation trigger. Both are emulated here with the reference
    peripheral models: accesses to their addresses are served in Python, the
    timer advances with the clock, and the pending interrupt bits are driven
    onto the testbench interrupt lines. Interrupts are acknowledged when
    their trap is delivered.

Limitations:
    Calling code in memory is not possible with instruction injection, so
    ``call`` raises SkipCase and the cases that need it are reported as
    skipped.
"""

import logging
from collections.abc import Callable
from typing import Final

import cocotb
from cocotb.triggers import RisingEdge

from hartcheck.cocotb_tests.dut_interface import DUTInterface
from hartcheck.config import (
    DEFAULT_WFI_TIMEOUT_CYCLES,
    INTERRUPT_FLAG,
    IRQ_MEI_BIT,
    IRQ_MSI_BIT,
    IRQ_MTI_BIT,
    IRQ_NMI_BIT,
    MASK32,
    MSTATUS_MPP_LOW_BIT,
    MSTATUS_MPP_MASK,
    MTIME_BASE_ADDRESS,
    PIPELINE_DEPTH,
    SIM_TRIGGER_ADDRESS,
)
from hartcheck.encoders.instruction_encode import CSRAddress, enc_mret, enc_wfi
from hartcheck.exceptions import SkipCase, UnrecoverableError
from hartcheck.hart_interface import Hart
from hartcheck.models.memory_model import MemoryMap
from hartcheck.models.peripheral_model import InterruptLines, MachineTimer, SimTrigger
from hartcheck.verification_types import Capabilities, Privilege

logger = logging.getLogger(__name__)

# mip bit -> testbench interrupt line
INTERRUPT_LINE_MAP: Final[dict[int, int]] = {
    IRQ_MSI_BIT: 0,
    IRQ_MTI_BIT: 1,
    IRQ_MEI_BIT: 2,
    IRQ_NMI_BIT: 3,
}

RTL_TESTBENCH_CAPABILITIES: Final[Capabilities] = Capabilities(
    num_hpm_counters=0,
    pmp_regions=0,
    wdt=False,
    uart0=False,
    uart1=False,
    spi=False,
    twi=False,
    xirq=False,
    slink=False,
    ext_mem=False,
    gpio=False,
)
"""Features of the instruction-injection testbench."""

_MRET: Final[int] = enc_mret()
_WFI: Final[int] = enc_wfi()


class TestbenchDevices:
    """Machine timer and simulation trigger emulated next to the RTL."""

    __test__ = False

    def __init__(self, irq_latency: int = 1):
        self.lines = InterruptLines(latency=irq_latency)
        self.timer = MachineTimer(self.lines)
        self.memory = MemoryMap()
        self.memory.add_device(SIM_TRIGGER_ADDRESS, 4, SimTrigger(self.lines), "sim_trigger")
        self.memory.add_device(MTIME_BASE_ADDRESS, 0x10, self.timer, "mtime")

    def handles(self, address: int) -> bool:
        return self.memory.find(address) is not None

    def line_levels(self) -> int:
        pending = self.lines.pending
        levels = 0
        for bit, line in INTERRUPT_LINE_MAP.items():
            if pending >> bit & 1:
                levels |= 1 << line
        return levels

    async def run(self, dut_if: DUTInterface) -> None:
        """Advance the timer with the clock and drive the interrupt lines."""
        while True:
            await RisingEdge(dut_if.clock)
            self.timer.tick(1)
            self.lines.advance(1)
            dut_if.interrupt_lines = self.line_levels()


class CocotbHart(Hart):
    """Hart interface over an RTL simulation.

    Must be used from a thread started with ``cocotb.bridge``.
    """

    def __init__(
        self,
        dut_if: DUTInterface,
        capabilities: Capabilities = RTL_TESTBENCH_CAPABILITIES,
        drain_cycles: int = PIPELINE_DEPTH,
        wfi_timeout_cycles: int = DEFAULT_WFI_TIMEOUT_CYCLES,
    ):
        super().__init__()
        self.dut_if = dut_if
        self.caps = capabilities
        self.drain_cycles = drain_cycles
        self.wfi_timeout_cycles = wfi_timeout_cycles
        self.devices = TestbenchDevices()
        self._privilege = Privilege.MACHINE
        self._delivering = False

    def capabilities(self) -> Capabilities:
        return self.caps

    @property
    def privilege(self) -> Privilege:
        return self._privilege

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def read_register(self, reg: int) -> int:
        return cocotb.resume(self._read_register)(reg)

    async def _read_register(self, reg: int) -> int:
        return self.dut_if.read_register(reg)

    def write_register(self, reg: int, value: int) -> None:
        cocotb.resume(self._write_register)(reg, value)

    async def _write_register(self, reg: int, value: int) -> None:
        self.dut_if.write_register(reg, value)

    def _inject(
        self,
        word: int,
        max_wait: int | None = None,
        wake: Callable[[], None] | None = None,
    ) -> bool:
        return cocotb.resume(self.dut_if.inject)(word, self.drain_cycles, max_wait, wake)

    def _wake_with_nmi(self) -> None:
        """Pulse NMI to end a WFI that nothing else woke."""
        self.devices.lines.pulse(1 << IRQ_NMI_BIT)

    def execute(self, instruction: int) -> None:
        word = instruction & MASK32
        if word == _MRET and self._privilege == Privilege.MACHINE:
            target = self._mpp()
            if not self._inject(word):
                self._privilege = target
                return
        elif word == _WFI:
            if not self._inject(word, self.wfi_timeout_cycles, self._wake_with_nmi):
                return
        elif not self._inject(word):
            return
        self._deliver_trap()

    def _mpp(self) -> Privilege:
        status = self.csr_read(CSRAddress.MSTATUS)
        return Privilege((status & MSTATUS_MPP_MASK) >> MSTATUS_MPP_LOW_BIT)

    def _deliver_trap(self) -> None:
        if self._delivering:
            raise UnrecoverableError("trap taken while delivering a trap")
        from_privilege = self._privilege
        self._privilege = Privilege.MACHINE
        self._delivering = True
        try:
            mcause = self.csr_read(CSRAddress.MCAUSE)
            if mcause & INTERRUPT_FLAG:
                self.devices.lines.acknowledge(1 << (mcause & ~INTERRUPT_FLAG))
            self._enter_handler(from_privilege)
            target = self._mpp()
            self._inject(_MRET)
            self._privilege = target
        finally:
            self._delivering = False

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def load_word(self, address: int) -> int:
        if self.devices.handles(address):
            return self.devices.memory.read_word(address)
        return super().load_word(address)

    def store_word(self, address: int, value: int) -> None:
        if self.devices.handles(address):
            self.devices.memory.write_word(address, value & MASK32)
            return
        super().store_word(address, value)

    def call(self, address: int) -> None:
        raise SkipCase("code execution from memory needs a fetching testbench")
