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

"""Pure-Python reference model of a compliant hart and its peripherals.

Hart Model
==========

This module implements a behavioural model of an RV32 hart with machine and
user mode, the Zicsr/Zicntr/Zihpm counters, PMP, LR/SC, and a set of
memory-mapped peripherals. It executes the same injected instruction stream a
real hart receives through the checker's hart interface, so the compliance
engine can be run and tested without an HDL simulator.

Purpose:
    The model is the EXPECTED behaviour of a compliant hart. ModelQuirks
    switches individual hardware defects on, which lets the test suite prove
    that each check actually catches the defect it targets.

Execution:
    - Injected instructions execute at a "port" address that advances by 4
      per instruction and is never fetched from memory.
    - JALR from the port runs code fetched from the memory map until it
      returns to the port, or until ``max_call_steps`` instructions ran.
    - Every instruction first advances the clock by ``cycles_per_instruction``
      (counters, machine timer, interrupt latency), then takes effect.
    - Interrupts are taken on instruction boundaries.

Trap return:
    The model plays the part of the runtime environment: after the trap entry
    returns it executes MRET, resuming after the faulting instruction, or at
    the caller's return address for instruction access faults.

Supported instruction subset:
    ADDI, LW, SW, LR.W, SC.W, JALR, FENCE, FENCE.I, ECALL, EBREAK, MRET, WFI,
    all six CSR instructions, and the compressed C.NOP. Everything else
    raises an illegal-instruction exception.
"""

import logging
from dataclasses import dataclass, field

from hartcheck.config import (
    DEFAULT_WFI_TIMEOUT_CYCLES,
    DMEM_SIZE,
    DSPACE_BASE_ADDRESS,
    EXT_MEM_BASE_ADDRESS,
    EXT_MEM_SIZE,
    FIRQ_UART0_RX,
    FIRQ_UART0_TX,
    FIRQ_UART1_RX,
    FIRQ_UART1_TX,
    FIRST_HPM_COUNTER,
    GPIO_BASE_ADDRESS,
    HPM_EVENT_COMPRESSED,
    HPM_EVENT_ILLEGAL,
    HPM_EVENT_JUMP,
    HPM_EVENT_LOAD,
    HPM_EVENT_STORE,
    HPM_EVENT_TRAP,
    IMEM_BASE_ADDRESS,
    IMEM_SIZE,
    INTERRUPT_FLAG,
    IRQ_FIRQ_BASE_BIT,
    IRQ_MEI_BIT,
    IRQ_MSI_BIT,
    IRQ_MTI_BIT,
    IRQ_NMI_BIT,
    MASK32,
    MASK64,
    MAX_HPM_COUNTERS,
    MCOUNTINHIBIT_CY_BIT,
    MCOUNTINHIBIT_IR_BIT,
    MISA_A_BIT,
    MISA_C_BIT,
    MISA_I_BIT,
    MISA_M_BIT,
    MISA_MXL_32,
    MISA_U_BIT,
    MSTATUS_MIE_BIT,
    MSTATUS_MPIE_BIT,
    MSTATUS_MPP_LOW_BIT,
    MSTATUS_MPP_MASK,
    MSTATUS_TW_BIT,
    MTIME_BASE_ADDRESS,
    NUM_FIRQ_CHANNELS,
    NUM_REGISTERS,
    SIM_TRIGGER_ADDRESS,
    SLINK_BASE_ADDRESS,
    SPI_BASE_ADDRESS,
    TWI_BASE_ADDRESS,
    UART0_BASE_ADDRESS,
    UART1_BASE_ADDRESS,
    WDT_BASE_ADDRESS,
    XIRQ_BASE_ADDRESS,
)
from hartcheck.encoders.instruction_encode import (
    C_NOP,
    CSRAddress,
    DecodedInstruction,
    Funct3,
    Funct5,
    Opcode,
    SystemFunct12,
    csr_is_read_only,
    csr_min_privilege,
    decode,
    is_compressed,
)
from hartcheck.exceptions import UnrecoverableError
from hartcheck.hart_interface import Hart
from hartcheck.models.memory_model import BusError, MemoryMap
from hartcheck.models.peripheral_model import (
    ExternalInterruptController,
    Gpio,
    InterruptLines,
    MachineTimer,
    SimTrigger,
    SpiController,
    StreamLink,
    TwiController,
    Uart,
    Watchdog,
)
from hartcheck.models.pmp_model import PMPUnit
from hartcheck.verification_types import (
    Capabilities,
    Permission,
    Privilege,
    TrapCause,
)

logger = logging.getLogger(__name__)

_STANDARD_IRQ_MASK = (1 << IRQ_MSI_BIT) | (1 << IRQ_MTI_BIT) | (1 << IRQ_MEI_BIT)
_FIRQ_MASK = ((1 << NUM_FIRQ_CHANNELS) - 1) << IRQ_FIRQ_BASE_BIT
_IRQ_MASK = _STANDARD_IRQ_MASK | _FIRQ_MASK

# Standard interrupts in priority order, fast interrupts follow (lowest first)
_IRQ_PRIORITY = (IRQ_MEI_BIT, IRQ_MSI_BIT, IRQ_MTI_BIT) + tuple(
    IRQ_FIRQ_BASE_BIT + channel for channel in range(NUM_FIRQ_CHANNELS)
)

_MAX_BACK_TO_BACK_INTERRUPTS = 32

_CSR_INSTRUCTIONS = (
    Funct3.CSRRW,
    Funct3.CSRRS,
    Funct3.CSRRC,
    Funct3.CSRRWI,
    Funct3.CSRRSI,
    Funct3.CSRRCI,
)

_IO_WINDOW_SIZE = 0x10

_NAMED_CSRS = frozenset(CSRAddress)


@dataclass
class ModelQuirks:
    """Hardware defects the reference model can emulate.

    All switches default to off, which gives a compliant hart.

    Attributes:
        leak_denied_reads: Faulting loads and CSR reads still write rd
        ignore_pmp_lock: Locked PMP entries stay writable and do not bind M-mode
        store_keeps_reservation: A plain store does not cancel the reservation
        trap_keeps_reservation: Taking a trap does not cancel the reservation
        xirq_highest_first: External IRQ controller serves the highest channel first
        ignore_counter_inhibit: mcountinhibit has no effect
        mret_ignores_mpp: MRET always returns to machine mode
        illegal_mtval_zero: mtval is not written for illegal instructions
        unmapped_side_channel: The simulation trigger address is not decoded
        wdt_ignores_lock: A locked watchdog still accepts configuration writes
        trap_records_machine_mpp: Trap entry writes M into mstatus.MPP whatever the origin
    """

    leak_denied_reads: bool = False
    ignore_pmp_lock: bool = False
    store_keeps_reservation: bool = False
    trap_keeps_reservation: bool = False
    xirq_highest_first: bool = False
    ignore_counter_inhibit: bool = False
    mret_ignores_mpp: bool = False
    illegal_mtval_zero: bool = False
    unmapped_side_channel: bool = False
    wdt_ignores_lock: bool = False
    trap_records_machine_mpp: bool = False


@dataclass
class HartModelConfig:
    """Configuration of the reference hart model.

    Attributes:
        capabilities: Features the model implements and reports
        cycles_per_instruction: Clock cycles charged to every instruction
        irq_latency: Cycles between an interrupt request and its pending bit
        max_call_steps: Instruction limit for code executed via call()
        wfi_timeout_cycles: Cycles WFI may sleep before it completes without a wakeup
        quirks: Hardware defects to emulate
    """

    capabilities: Capabilities = field(default_factory=Capabilities)
    cycles_per_instruction: int = 2
    irq_latency: int = 1
    max_call_steps: int = 256
    wfi_timeout_cycles: int = DEFAULT_WFI_TIMEOUT_CYCLES
    quirks: ModelQuirks = field(default_factory=ModelQuirks)


class _Trap(Exception):
    """Internal: an instruction raised a synchronous exception."""

    def __init__(self, cause: TrapCause, tval: int = 0):
        super().__init__(cause.name)
        self.cause = cause
        self.tval = tval & MASK32


class HartModel(Hart):
    """Reference hart executing the injected instruction stream in software."""

    def __init__(self, config: HartModelConfig | None = None):
        super().__init__()
        self.config = config or HartModelConfig()
        self.caps = self.config.capabilities
        self.quirks = self.config.quirks

        self.regs = [0] * NUM_REGISTERS
        self.pc = IMEM_BASE_ADDRESS + 0x100
        self._privilege = Privilege.MACHINE
        self.reservation: int | None = None

        # CSR state
        self.mstatus = 0
        self.mie = 0
        self.mtvec = 0
        self.mscratch = 0
        self.mepc = 0
        self.mcause = 0
        self.mtval = 0
        self.mcounteren = 0
        self.mcountinhibit = 0
        self.mcycle = 0
        self.minstret = 0
        self.num_hpm = min(self.caps.num_hpm_counters, MAX_HPM_COUNTERS)
        self.hpm_counters = [0] * self.num_hpm
        self.hpm_events = [0] * self.num_hpm
        self.cycles_elapsed = 0

        self.pmp = PMPUnit(
            self.caps.pmp_regions,
            self.caps.pmp_granularity,
            honor_lock=not self.quirks.ignore_pmp_lock,
        )
        self.lines = InterruptLines(latency=self.config.irq_latency)
        self.memory = MemoryMap()
        self._build_memory_map()

    def _build_memory_map(self) -> None:
        caps = self.caps
        lines = self.lines
        self.memory.add_region(IMEM_BASE_ADDRESS, IMEM_SIZE, "imem")
        self.memory.add_region(DSPACE_BASE_ADDRESS, DMEM_SIZE, "dmem")
        if caps.ext_mem:
            self.memory.add_region(EXT_MEM_BASE_ADDRESS, EXT_MEM_SIZE, "ext_mem")
        if not self.quirks.unmapped_side_channel:
            self.memory.add_device(SIM_TRIGGER_ADDRESS, 4, SimTrigger(lines), "sim_trigger")

        self.timer = MachineTimer(lines)
        self.memory.add_device(MTIME_BASE_ADDRESS, _IO_WINDOW_SIZE, self.timer, "mtime")

        self.wdt = Watchdog(lines, honor_lock=not self.quirks.wdt_ignores_lock)
        if caps.wdt:
            self.memory.add_device(WDT_BASE_ADDRESS, 4, self.wdt, "wdt")
        if caps.uart0:
            self.uart0 = Uart(lines, FIRQ_UART0_RX, FIRQ_UART0_TX)
            self.memory.add_device(UART0_BASE_ADDRESS, 8, self.uart0, "uart0")
        if caps.uart1:
            self.uart1 = Uart(lines, FIRQ_UART1_RX, FIRQ_UART1_TX)
            self.memory.add_device(UART1_BASE_ADDRESS, 8, self.uart1, "uart1")
        if caps.spi:
            self.memory.add_device(SPI_BASE_ADDRESS, 8, SpiController(lines), "spi")
        if caps.twi:
            self.memory.add_device(TWI_BASE_ADDRESS, 8, TwiController(lines), "twi")
        self.xirq = ExternalInterruptController(
            lines, highest_first=self.quirks.xirq_highest_first
        )
        if caps.xirq:
            self.memory.add_device(XIRQ_BASE_ADDRESS, _IO_WINDOW_SIZE, self.xirq, "xirq")
        if caps.gpio:
            gpio = Gpio(self.xirq.drive_inputs if caps.xirq else None)
            self.memory.add_device(GPIO_BASE_ADDRESS, 8, gpio, "gpio")
        if caps.slink:
            self.memory.add_device(SLINK_BASE_ADDRESS, _IO_WINDOW_SIZE, StreamLink(lines), "slink")

    # ------------------------------------------------------------------
    # Hart interface
    # ------------------------------------------------------------------

    def capabilities(self) -> Capabilities:
        return self.caps

    @property
    def privilege(self) -> Privilege:
        return self._privilege

    def read_register(self, reg: int) -> int:
        return 0 if reg == 0 else self.regs[reg]

    def write_register(self, reg: int, value: int) -> None:
        if reg:
            self.regs[reg] = value & MASK32

    def execute(self, instruction: int) -> None:
        """Execute one injected instruction at the port address."""
        pc = self.pc
        self.pc = (pc + 4) & MASK32
        self._advance(self.config.cycles_per_instruction)
        try:
            target = self._step(decode(instruction & MASK32), pc, 4)
            if target is not None:
                self._run_fetched(target, return_address=self.pc)
        except _Trap as trap:
            self._take_trap(trap.cause, trap.tval, pc)
        self._service_interrupts(self.pc)

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def _counter_inhibited(self, bit: int) -> bool:
        if self.quirks.ignore_counter_inhibit:
            return False
        return bool(self.mcountinhibit >> bit & 1)

    def _advance(self, cycles: int, retire: bool = True) -> None:
        """Advance the clock; counters move before the instruction's effect."""
        if not self._counter_inhibited(MCOUNTINHIBIT_CY_BIT):
            self.mcycle = (self.mcycle + cycles) & MASK64
        if retire and not self._counter_inhibited(MCOUNTINHIBIT_IR_BIT):
            self.minstret = (self.minstret + 1) & MASK64
        self.cycles_elapsed += cycles
        self.timer.tick(cycles)
        self.lines.advance(cycles)

    def _count_event(self, event_bit: int) -> None:
        for index in range(self.num_hpm):
            counter = FIRST_HPM_COUNTER + index
            if self.hpm_events[index] >> event_bit & 1 and not self._counter_inhibited(counter):
                self.hpm_counters[index] = (self.hpm_counters[index] + 1) & MASK64

    # ------------------------------------------------------------------
    # Code execution from memory
    # ------------------------------------------------------------------

    def _fetch(self, pc: int) -> tuple[int, int]:
        """Fetch the instruction at ``pc``; returns (word, size in bytes)."""
        if not self.pmp.allows(pc, Permission.X, self._privilege):
            raise _Trap(TrapCause.INSTRUCTION_ACCESS_FAULT, pc)
        try:
            parcel = self.memory.read_parcel(pc)
            if is_compressed(parcel):
                return parcel, 2
            upper = self.memory.read_parcel(pc + 2)
        except BusError:
            raise _Trap(TrapCause.INSTRUCTION_ACCESS_FAULT, pc) from None
        return parcel | (upper << 16), 4

    def _run_fetched(self, target: int, return_address: int) -> None:
        pc = target
        for _ in range(self.config.max_call_steps):
            if pc == return_address:
                return
            self._advance(self.config.cycles_per_instruction)
            size = 4
            try:
                word, size = self._fetch(pc)
                if size == 2:
                    next_pc = self._step_compressed(word, pc)
                else:
                    next_pc = self._step(decode(word), pc, 4)
                pc = next_pc if next_pc is not None else (pc + size) & MASK32
            except _Trap as trap:
                self._take_trap(trap.cause, trap.tval, pc)
                if trap.cause == TrapCause.INSTRUCTION_ACCESS_FAULT:
                    pc = return_address
                else:
                    pc = (pc + size) & MASK32
            self._service_interrupts(pc)
        raise UnrecoverableError(
            f"code at 0x{target:08x} did not return within "
            f"{self.config.max_call_steps} instructions"
        )

    def _step_compressed(self, parcel: int, pc: int) -> int | None:
        if not self.caps.compressed:
            raise self._illegal(parcel)
        self._count_event(HPM_EVENT_COMPRESSED)
        if parcel == C_NOP:
            return None
        raise self._illegal(parcel)

    # ------------------------------------------------------------------
    # Instruction semantics
    # ------------------------------------------------------------------

    def _illegal(self, word: int) -> _Trap:
        self._count_event(HPM_EVENT_ILLEGAL)
        tval = 0 if self.quirks.illegal_mtval_zero else word
        return _Trap(TrapCause.ILLEGAL_INSTRUCTION, tval)

    def _step(self, inst: DecodedInstruction, pc: int, size: int) -> int | None:
        """Execute one 32-bit instruction; returns the jump target, if any."""
        opcode = inst.opcode
        if opcode == Opcode.ALU_IMM and inst.funct3 == Funct3.ADD_SUB:
            self.write_register(inst.rd, self.read_register(inst.rs1) + inst.i_immediate)
            return None
        if opcode == Opcode.LOAD and inst.funct3 == Funct3.WORD:
            address = (self.read_register(inst.rs1) + inst.i_immediate) & MASK32
            self.write_register(inst.rd, self._load(address, inst.rd))
            return None
        if opcode == Opcode.STORE and inst.funct3 == Funct3.WORD:
            address = (self.read_register(inst.rs1) + inst.s_immediate) & MASK32
            self._store(address, self.read_register(inst.rs2))
            return None
        if opcode == Opcode.AMO and inst.funct3 == Funct3.WORD and self.caps.atomics:
            return self._atomic(inst)
        if opcode == Opcode.JALR and inst.funct3 == 0:
            target = (self.read_register(inst.rs1) + inst.i_immediate) & MASK32 & ~1
            if target & 0x2 and not self.caps.compressed:
                raise _Trap(TrapCause.INSTRUCTION_MISALIGNED, target)
            self.write_register(inst.rd, pc + size)
            self._count_event(HPM_EVENT_JUMP)
            return target
        if opcode == Opcode.MISC_MEM and inst.funct3 in (Funct3.FENCE, Funct3.FENCE_I):
            return None
        if opcode == Opcode.SYSTEM:
            if inst.funct3 == Funct3.PRIV and inst.rd == 0 and inst.rs1 == 0:
                self._system(inst, pc)
                return None
            if inst.funct3 in _CSR_INSTRUCTIONS:
                self._csr_instruction(inst)
                return None
        raise self._illegal(inst.word)

    def _system(self, inst: DecodedInstruction, pc: int) -> None:
        if inst.funct12 == SystemFunct12.ECALL:
            if self._privilege == Privilege.USER:
                raise _Trap(TrapCause.ECALL_U)
            raise _Trap(TrapCause.ECALL_M)
        if inst.funct12 == SystemFunct12.EBREAK:
            raise _Trap(TrapCause.BREAKPOINT, pc)
        if inst.funct12 == SystemFunct12.MRET and self._privilege == Privilege.MACHINE:
            self._mret()
            return
        if inst.funct12 == SystemFunct12.WFI:
            if self._privilege == Privilege.USER and self.mstatus >> MSTATUS_TW_BIT & 1:
                raise self._illegal(inst.word)
            self._sleep()
            return
        raise self._illegal(inst.word)

    def _sleep(self) -> None:
        waited = 0
        while not self.lines.pending & (self.mie | (1 << IRQ_NMI_BIT)):
            if waited >= self.config.wfi_timeout_cycles:
                logger.warning(
                    "WFI did not wake up within %d cycles, resuming",
                    self.config.wfi_timeout_cycles,
                )
                return
            self._advance(1, retire=False)
            waited += 1
        logger.debug("woke up from WFI after %d cycles", waited)

    # ------------------------------------------------------------------
    # Memory access
    # ------------------------------------------------------------------

    def _load(self, address: int, rd: int) -> int:
        self._count_event(HPM_EVENT_LOAD)
        if address & 0x3:
            raise _Trap(TrapCause.LOAD_MISALIGNED, address)
        try:
            value = self.memory.read_word(address)
        except BusError:
            raise _Trap(TrapCause.LOAD_ACCESS_FAULT, address) from None
        if not self.pmp.allows(address, Permission.R, self._privilege):
            if self.quirks.leak_denied_reads:
                self.write_register(rd, value)
            raise _Trap(TrapCause.LOAD_ACCESS_FAULT, address)
        return value

    def _check_store(self, address: int) -> None:
        if address & 0x3:
            raise _Trap(TrapCause.STORE_MISALIGNED, address)
        if not self.pmp.allows(address, Permission.W, self._privilege):
            raise _Trap(TrapCause.STORE_ACCESS_FAULT, address)

    def _store(self, address: int, value: int) -> None:
        self._count_event(HPM_EVENT_STORE)
        self._check_store(address)
        try:
            self.memory.write_word(address, value)
        except BusError:
            raise _Trap(TrapCause.STORE_ACCESS_FAULT, address) from None
        if self.reservation == address and not self.quirks.store_keeps_reservation:
            self.reservation = None

    def _atomic(self, inst: DecodedInstruction) -> None:
        address = self.read_register(inst.rs1)
        if inst.funct5 == Funct5.LR:
            value = self._load(address, inst.rd)
            self.reservation = address
            self.write_register(inst.rd, value)
            return None
        if inst.funct5 == Funct5.SC:
            self._count_event(HPM_EVENT_STORE)
            self._check_store(address)
            success = self.reservation == address
            self.reservation = None
            if success:
                try:
                    self.memory.write_word(address, self.read_register(inst.rs2))
                except BusError:
                    raise _Trap(TrapCause.STORE_ACCESS_FAULT, address) from None
            self.write_register(inst.rd, 0 if success else 1)
            return None
        raise self._illegal(inst.word)

    # ------------------------------------------------------------------
    # CSRs
    # ------------------------------------------------------------------

    def _csr_instruction(self, inst: DecodedInstruction) -> None:
        csr = inst.csr
        funct3 = inst.funct3
        immediate_form = funct3 >= Funct3.CSRRWI
        operand = inst.rs1 if immediate_form else self.read_register(inst.rs1)
        writes = funct3 in (Funct3.CSRRW, Funct3.CSRRWI) or inst.rs1 != 0

        if not self._csr_exists(csr) or not self._csr_accessible(csr):
            raise self._denied_csr(inst)
        if writes and csr_is_read_only(csr):
            raise self._denied_csr(inst)

        old = self._csr_read(csr)
        if writes:
            base = funct3 & 0x3
            if base == Funct3.CSRRW:
                new = operand
            elif base == Funct3.CSRRS:
                new = old | operand
            else:
                new = old & ~operand
            self._csr_write(csr, new & MASK32)
        self.write_register(inst.rd, old)

    def _denied_csr(self, inst: DecodedInstruction) -> _Trap:
        if self.quirks.leak_denied_reads and self._csr_exists(inst.csr):
            self.write_register(inst.rd, self._csr_read(inst.csr))
        return self._illegal(inst.word)

    @staticmethod
    def _hpm_index(csr: int, base: int) -> int | None:
        """Counter number 3..31 if ``csr`` is in the 29-entry bank at ``base``."""
        counter = csr - base + FIRST_HPM_COUNTER
        if FIRST_HPM_COUNTER <= counter < FIRST_HPM_COUNTER + MAX_HPM_COUNTERS:
            return counter
        return None

    def _csr_exists(self, csr: int) -> bool:
        if csr in _NAMED_CSRS:
            return True
        banks = (
            CSRAddress.MHPMEVENT3,
            CSRAddress.MHPMCOUNTER3,
            CSRAddress.MHPMCOUNTER3H,
            CSRAddress.HPMCOUNTER3,
            CSRAddress.HPMCOUNTER3H,
        )
        if any(self._hpm_index(csr, base) is not None for base in banks):
            return True
        if CSRAddress.PMPCFG0 <= csr < CSRAddress.PMPCFG0 + 4:
            return True
        return CSRAddress.PMPADDR0 <= csr < CSRAddress.PMPADDR0 + 16

    def _csr_accessible(self, csr: int) -> bool:
        # user-level counter shadows are gated by mcounteren
        if self._privilege == Privilege.USER and (
            CSRAddress.CYCLE <= csr < CSRAddress.CYCLE + 32
            or CSRAddress.CYCLEH <= csr < CSRAddress.CYCLEH + 32
        ):
            return bool(self.mcounteren >> (csr & 0x1F) & 1)
        return self._privilege >= csr_min_privilege(csr)

    @property
    def misa(self) -> int:
        value = MISA_MXL_32 | (1 << MISA_I_BIT) | (1 << MISA_M_BIT)
        if self.caps.atomics:
            value |= 1 << MISA_A_BIT
        if self.caps.compressed:
            value |= 1 << MISA_C_BIT
        if self.caps.user_mode:
            value |= 1 << MISA_U_BIT
        return value

    def _hpm_counter_mask(self) -> int:
        return ((1 << self.num_hpm) - 1) << FIRST_HPM_COUNTER

    def _csr_read(self, csr: int) -> int:
        simple = {
            CSRAddress.MSTATUS: self.mstatus,
            CSRAddress.MISA: self.misa,
            CSRAddress.MIE: self.mie,
            CSRAddress.MTVEC: self.mtvec,
            CSRAddress.MCOUNTEREN: self.mcounteren,
            CSRAddress.MCOUNTINHIBIT: self.mcountinhibit,
            CSRAddress.MSCRATCH: self.mscratch,
            CSRAddress.MEPC: self.mepc,
            CSRAddress.MCAUSE: self.mcause,
            CSRAddress.MTVAL: self.mtval,
            CSRAddress.MIP: self.lines.pending & _IRQ_MASK,
            CSRAddress.MCYCLE: self.mcycle & MASK32,
            CSRAddress.MCYCLEH: self.mcycle >> 32,
            CSRAddress.MINSTRET: self.minstret & MASK32,
            CSRAddress.MINSTRETH: self.minstret >> 32,
            CSRAddress.CYCLE: self.mcycle & MASK32,
            CSRAddress.CYCLEH: self.mcycle >> 32,
            CSRAddress.TIME: self.timer.time & MASK32,
            CSRAddress.TIMEH: self.timer.time >> 32,
            CSRAddress.INSTRET: self.minstret & MASK32,
            CSRAddress.INSTRETH: self.minstret >> 32,
        }
        if csr in simple:
            return simple[csr] & MASK32
        if CSRAddress.PMPCFG0 <= csr < CSRAddress.PMPCFG0 + 4:
            return self.pmp.read_cfg(csr - CSRAddress.PMPCFG0)
        if CSRAddress.PMPADDR0 <= csr < CSRAddress.PMPADDR0 + 16:
            return self.pmp.read_addr(csr - CSRAddress.PMPADDR0)
        for base, high in (
            (CSRAddress.MHPMCOUNTER3, False),
            (CSRAddress.MHPMCOUNTER3H, True),
            (CSRAddress.HPMCOUNTER3, False),
            (CSRAddress.HPMCOUNTER3H, True),
        ):
            counter = self._hpm_index(csr, base)
            if counter is not None:
                index = counter - FIRST_HPM_COUNTER
                if index >= self.num_hpm:
                    return 0
                value = self.hpm_counters[index]
                return (value >> 32) if high else value & MASK32
        counter = self._hpm_index(csr, CSRAddress.MHPMEVENT3)
        if counter is not None and counter - FIRST_HPM_COUNTER < self.num_hpm:
            return self.hpm_events[counter - FIRST_HPM_COUNTER]
        # machine information registers and unimplemented counters
        return 0

    def _csr_write(self, csr: int, value: int) -> None:
        if csr == CSRAddress.MSTATUS:
            self._write_mstatus(value)
        elif csr == CSRAddress.MIE:
            self.mie = value & _IRQ_MASK
        elif csr == CSRAddress.MTVEC:
            self.mtvec = value & ~0x2
        elif csr == CSRAddress.MCOUNTEREN:
            self.mcounteren = value & (0b111 | self._hpm_counter_mask())
        elif csr == CSRAddress.MCOUNTINHIBIT:
            self.mcountinhibit = value & (0b101 | self._hpm_counter_mask())
        elif csr == CSRAddress.MSCRATCH:
            self.mscratch = value
        elif csr == CSRAddress.MEPC:
            self.mepc = value & ~(0x1 if self.caps.compressed else 0x3)
        elif csr == CSRAddress.MCAUSE:
            self.mcause = value
        elif csr == CSRAddress.MTVAL:
            self.mtval = value
        elif csr == CSRAddress.MIP:
            # pending requests are cleared by writing 0
            self.lines.acknowledge(_IRQ_MASK & ~value)
        elif csr == CSRAddress.MCYCLE:
            self.mcycle = (self.mcycle & ~MASK32 & MASK64) | value
        elif csr == CSRAddress.MCYCLEH:
            self.mcycle = (self.mcycle & MASK32) | (value << 32)
        elif csr == CSRAddress.MINSTRET:
            self.minstret = (self.minstret & ~MASK32 & MASK64) | value
        elif csr == CSRAddress.MINSTRETH:
            self.minstret = (self.minstret & MASK32) | (value << 32)
        elif CSRAddress.PMPCFG0 <= csr < CSRAddress.PMPCFG0 + 4:
            self.pmp.write_cfg(csr - CSRAddress.PMPCFG0, value)
        elif CSRAddress.PMPADDR0 <= csr < CSRAddress.PMPADDR0 + 16:
            self.pmp.write_addr(csr - CSRAddress.PMPADDR0, value)
        else:
            self._write_hpm(csr, value)

    def _write_hpm(self, csr: int, value: int) -> None:
        counter = self._hpm_index(csr, CSRAddress.MHPMEVENT3)
        if counter is not None and counter - FIRST_HPM_COUNTER < self.num_hpm:
            self.hpm_events[counter - FIRST_HPM_COUNTER] = value
            return
        for base, high in ((CSRAddress.MHPMCOUNTER3, False), (CSRAddress.MHPMCOUNTER3H, True)):
            counter = self._hpm_index(csr, base)
            if counter is None or counter - FIRST_HPM_COUNTER >= self.num_hpm:
                continue
            index = counter - FIRST_HPM_COUNTER
            old = self.hpm_counters[index]
            if high:
                self.hpm_counters[index] = (old & MASK32) | (value << 32)
            else:
                self.hpm_counters[index] = (old & ~MASK32 & MASK64) | value

    def _write_mstatus(self, value: int) -> None:
        writable = (1 << MSTATUS_MIE_BIT) | (1 << MSTATUS_MPIE_BIT)
        if self.caps.user_mode:
            writable |= 1 << MSTATUS_TW_BIT
        mpp = (value & MSTATUS_MPP_MASK) >> MSTATUS_MPP_LOW_BIT
        if mpp != Privilege.USER or not self.caps.user_mode:
            mpp = Privilege.MACHINE
        self.mstatus = (value & writable) | (mpp << MSTATUS_MPP_LOW_BIT)

    def _mstatus_bit(self, bit: int) -> bool:
        return bool(self.mstatus >> bit & 1)

    # ------------------------------------------------------------------
    # Traps
    # ------------------------------------------------------------------

    def _take_trap(self, cause: TrapCause, tval: int, epc: int) -> None:
        """Enter the trap, run the registered entry point, then MRET."""
        if self.in_handler:
            raise UnrecoverableError(
                f"{cause.name} (mtval 0x{tval:08x}) raised inside the trap handler"
            )
        logger.debug("trap %s epc=0x%08x tval=0x%08x", cause.name, epc, tval)
        from_privilege = self._privilege
        if not self.quirks.trap_keeps_reservation:
            self.reservation = None
        self.mepc = epc
        self.mcause = cause.mcause
        self.mtval = tval
        status = self.mstatus & ~(
            (1 << MSTATUS_MIE_BIT) | (1 << MSTATUS_MPIE_BIT) | MSTATUS_MPP_MASK
        )
        if self._mstatus_bit(MSTATUS_MIE_BIT):
            status |= 1 << MSTATUS_MPIE_BIT
        recorded = Privilege.MACHINE if self.quirks.trap_records_machine_mpp else from_privilege
        self.mstatus = status | (recorded << MSTATUS_MPP_LOW_BIT)
        self._privilege = Privilege.MACHINE
        self._count_event(HPM_EVENT_TRAP)

        self._enter_handler(from_privilege)
        self._mret()

    def _mret(self) -> None:
        mpp = Privilege((self.mstatus & MSTATUS_MPP_MASK) >> MSTATUS_MPP_LOW_BIT)
        self._privilege = Privilege.MACHINE if self.quirks.mret_ignores_mpp else mpp
        status = self.mstatus & ~((1 << MSTATUS_MIE_BIT) | MSTATUS_MPP_MASK)
        if self._mstatus_bit(MSTATUS_MPIE_BIT):
            status |= 1 << MSTATUS_MIE_BIT
        status |= 1 << MSTATUS_MPIE_BIT
        lowest = Privilege.USER if self.caps.user_mode else Privilege.MACHINE
        self.mstatus = status | (lowest << MSTATUS_MPP_LOW_BIT)

    def _pending_interrupt(self) -> TrapCause | None:
        pending = self.lines.pending
        if pending >> IRQ_NMI_BIT & 1:
            return TrapCause.NMI
        enabled = pending & self.mie & _IRQ_MASK
        if not enabled:
            return None
        if self._privilege == Privilege.MACHINE and not self._mstatus_bit(MSTATUS_MIE_BIT):
            return None
        for bit in _IRQ_PRIORITY:
            if enabled >> bit & 1:
                return TrapCause(INTERRUPT_FLAG | bit)
        return None

    def _service_interrupts(self, pc: int) -> None:
        """Take every deliverable interrupt at this instruction boundary."""
        if self.in_handler:
            return
        for _ in range(_MAX_BACK_TO_BACK_INTERRUPTS):
            cause = self._pending_interrupt()
            if cause is None:
                return
            self.lines.acknowledge(1 << (cause.mcause & ~INTERRUPT_FLAG))
            self._take_trap(cause, 0, pc)
        raise UnrecoverableError("interrupt request is never cleared by its handler")
