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

"""Clean interface to the RTL testbench signals used by the cocotb hart.

DUT Interface
=============

Hides the signal hierarchy of the instruction-injection testbench behind a
small API. Signal paths come from DUTSignalPaths so a different testbench only
needs different paths, not different code.

Provided:
    - clock/reset/instruction/interrupt line access
    - register file backdoor (both read-port RAM copies written together)
    - reset_dut and bounded wait_ready
    - inject: drive one instruction, drain the pipeline with NOPs and report
      whether the trap unit fired meanwhile
"""

import logging
from collections.abc import Callable
from typing import Any

from cocotb.triggers import FallingEdge, ReadOnly, RisingEdge

from hartcheck.config import MASK32, NUM_REGISTERS, PIPELINE_DEPTH, DUTSignalPaths
from hartcheck.encoders.instruction_encode import NOP
from hartcheck.exceptions import UnrecoverableError

logger = logging.getLogger(__name__)


class DUTInterface:
    """Stable access to the testbench; all paths are configurable."""

    def __init__(self, dut: Any, signal_paths: DUTSignalPaths | None = None):
        """Initialize DUT interface.

        Args:
            dut: The device under test (cocotb SimHandle)
            signal_paths: Optional custom signal paths configuration.
                         If None, uses default paths from config.
        """
        self.dut = dut
        self.paths = signal_paths or DUTSignalPaths()

    def _navigate_signal_path(self, path: str) -> Any:
        """Navigate to a signal using dot-separated path string."""
        obj = self.dut
        for attr in path.split("."):
            obj = getattr(obj, attr)
        return obj

    @property
    def clock(self) -> Any:
        return self._navigate_signal_path(self.paths.clock_path)

    @property
    def reset(self) -> Any:
        return self._navigate_signal_path(self.paths.reset_path)

    @reset.setter
    def reset(self, value: int) -> None:
        self.reset.value = value

    @property
    def instruction(self) -> Any:
        return self._navigate_signal_path(self.paths.instruction_path)

    @instruction.setter
    def instruction(self, value: int) -> None:
        self.instruction.value = value & MASK32

    @property
    def interrupt_lines(self) -> Any:
        return self._navigate_signal_path(self.paths.interrupt_lines_path)

    @interrupt_lines.setter
    def interrupt_lines(self, value: int) -> None:
        self.interrupt_lines.value = value

    def is_stalled(self) -> bool:
        return bool(self._navigate_signal_path(self.paths.stall_path).value)

    def is_in_reset(self) -> bool:
        return bool(self.reset.value)

    def is_ready(self) -> bool:
        """Check if the hart accepts the next injected instruction."""
        return not (self.is_stalled() or self.is_in_reset())

    def trap_taken(self) -> bool:
        return bool(self._navigate_signal_path(self.paths.trap_taken_path).value)

    # ------------------------------------------------------------------
    # Register file backdoor
    # ------------------------------------------------------------------

    def _get_regfile_ram(self, ram_index: int = 0) -> Any:
        if ram_index == 0:
            path = self.paths.regfile_ram_rs1_path
        else:
            path = self.paths.regfile_ram_rs2_path
        return self._navigate_signal_path(path)

    def read_register(self, reg: int) -> int:
        if not 0 <= reg < NUM_REGISTERS:
            raise ValueError(f"register x{reg} out of range")
        if reg == 0:
            return 0
        return int(self._get_regfile_ram(0)[reg].value)

    def write_register(self, reg: int, value: int) -> None:
        """Write both RAM instances; writes to x0 are ignored."""
        if not 0 <= reg < NUM_REGISTERS:
            raise ValueError(f"register x{reg} out of range")
        if reg > 0:
            self._get_regfile_ram(0)[reg].value = value & MASK32
            self._get_regfile_ram(1)[reg].value = value & MASK32

    # ------------------------------------------------------------------
    # Clocked operations
    # ------------------------------------------------------------------

    async def wait_ready(self, max_cycles: int | None = None) -> int:
        """Wait until the hart is ready.

        Gives up after ``max_cycles`` when set; check ``is_ready()`` afterwards.

        Returns:
            Number of clock cycles spent waiting
        """
        wait_cycles = 0
        while not self.is_ready():
            if max_cycles is not None and wait_cycles >= max_cycles:
                break
            await FallingEdge(self.clock)
            wait_cycles += 1
        return wait_cycles

    async def reset_dut(self, cycles: int = 3) -> int:
        """Reset the DUT and return the number of clock cycles elapsed."""
        self.reset = 1
        cycle_count = 0
        for _ in range(cycles):
            await FallingEdge(self.clock)
            cycle_count += 1
        self.reset = 0
        while not bool(self._navigate_signal_path(self.paths.reset_done_path).value):
            await FallingEdge(self.clock)
            cycle_count += 1
        return cycle_count

    async def _issue(
        self,
        word: int,
        max_wait: int | None,
        wake: Callable[[], None] | None = None,
    ) -> bool:
        await FallingEdge(self.clock)
        waited = await self.wait_ready(max_wait)
        if not self.is_ready() and wake is not None:
            logger.warning("hart stalled for %d cycles, forcing a wakeup", waited)
            wake()
            waited += await self.wait_ready(max_wait)
        if not self.is_ready():
            raise UnrecoverableError(f"hart stalled for {waited} cycles")
        self.instruction = word
        await RisingEdge(self.clock)
        await ReadOnly()
        return self.trap_taken()

    async def inject(
        self,
        word: int,
        drain_cycles: int = PIPELINE_DEPTH,
        max_wait: int | None = None,
        wake: Callable[[], None] | None = None,
    ) -> bool:
        """Execute ``word`` and let it retire.

        Args:
            word: Instruction to inject
            drain_cycles: NOPs issued behind it so its effects are visible
            max_wait: Bound on stall cycles (WFI sleeps show up as a stall)
            wake: Called once when a drain NOP exceeds ``max_wait``

        Returns:
            True if the trap unit fired while the instruction drained
        """
        trapped = await self._issue(word, None)
        for _ in range(drain_cycles):
            trapped |= await self._issue(NOP, max_wait, wake)
        return trapped
