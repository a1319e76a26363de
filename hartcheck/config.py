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

"""Central configuration for the compliance checker.

Configuration
=============

This module contains all configuration constants used throughout the checker.
Centralizing these values keeps the CSR bit layout, the memory map and the
test addresses in one place, which makes it easy to retarget the checker to a
different hart implementation.

Organization:
    Constants are organized into logical sections:
    - RISC-V Data Type Masks
    - CSR Bit Positions (mstatus, misa, mie/mip, counters, PMP)
    - Memory Map (instruction/data space, external memory, IO devices)
    - Peripheral Register Layout
    - Test Configuration Defaults

Usage:
    Import specific constants as needed:
    >>> from hartcheck.config import MSTATUS_MPP_MASK, MASK32
    >>> mstatus = (mstatus | MSTATUS_MPP_MASK) & MASK32

    Or the dataclasses for run-time knobs:
    >>> from hartcheck.config import CheckConfig
    >>> config = CheckConfig(propagation_cycles=4)

Customization:
    To adapt for a different hart implementation:
    1. Adjust the memory map (IO_BASE_ADDRESS, device base addresses)
    2. Adjust DUTSignalPaths for a different RTL testbench hierarchy
    3. Change the CheckConfig defaults (propagation cycles, test addresses)
"""

from dataclasses import dataclass
from typing import Final

# ============================================================================
# RISC-V Data Type Masks
# ============================================================================

MASK32: Final[int] = (1 << 32) - 1
"""32-bit mask (0xFFFF_FFFF)."""

MASK64: Final[int] = (1 << 64) - 1
"""64-bit mask."""

NUM_REGISTERS: Final[int] = 32
"""Number of general-purpose registers in RISC-V (x0-x31)."""

INTERRUPT_FLAG: Final[int] = 1 << 31
"""mcause bit 31, set for interrupts and clear for exceptions."""

# ============================================================================
# CSR Bit Positions
# ============================================================================

MSTATUS_MIE_BIT: Final[int] = 3
"""mstatus.MIE: global machine interrupt enable."""

MSTATUS_MPIE_BIT: Final[int] = 7
"""mstatus.MPIE: interrupt enable before the last trap."""

MSTATUS_MPP_LOW_BIT: Final[int] = 11
MSTATUS_MPP_HIGH_BIT: Final[int] = 12

MSTATUS_MPP_MASK: Final[int] = (1 << MSTATUS_MPP_HIGH_BIT) | (1 << MSTATUS_MPP_LOW_BIT)
"""mstatus.MPP: privilege mode restored by MRET."""

MSTATUS_TW_BIT: Final[int] = 21
"""mstatus.TW: trap WFI executed below machine mode."""

MISA_A_BIT: Final[int] = 0
MISA_C_BIT: Final[int] = 2
MISA_I_BIT: Final[int] = 8
MISA_M_BIT: Final[int] = 12
MISA_U_BIT: Final[int] = 20
MISA_MXL_32: Final[int] = 1 << 30

# mie/mip layout; the side channel uses the same bit positions
IRQ_NMI_BIT: Final[int] = 0
"""Side-channel bit for the non-maskable interrupt (not an mie bit)."""

IRQ_MSI_BIT: Final[int] = 3
IRQ_MTI_BIT: Final[int] = 7
IRQ_MEI_BIT: Final[int] = 11
IRQ_FIRQ_BASE_BIT: Final[int] = 16
"""mie/mip bit of fast interrupt channel 0; channel n uses bit 16 + n."""

NUM_FIRQ_CHANNELS: Final[int] = 16

MCOUNTINHIBIT_CY_BIT: Final[int] = 0
MCOUNTINHIBIT_IR_BIT: Final[int] = 2
MCOUNTEREN_CY_BIT: Final[int] = 0
MCOUNTEREN_TM_BIT: Final[int] = 1
MCOUNTEREN_IR_BIT: Final[int] = 2

FIRST_HPM_COUNTER: Final[int] = 3
"""mhpmcounter3 is the first hardware performance monitor."""

MAX_HPM_COUNTERS: Final[int] = 29
"""mhpmcounter3..mhpmcounter31."""

# HPM event selector bits (mhpmeventN)
HPM_EVENT_COMPRESSED: Final[int] = 3
HPM_EVENT_WAIT_IF: Final[int] = 4
HPM_EVENT_WAIT_II: Final[int] = 5
HPM_EVENT_WAIT_MC: Final[int] = 6
HPM_EVENT_LOAD: Final[int] = 7
HPM_EVENT_STORE: Final[int] = 8
HPM_EVENT_WAIT_LS: Final[int] = 9
HPM_EVENT_JUMP: Final[int] = 10
HPM_EVENT_BRANCH: Final[int] = 11
HPM_EVENT_TAKEN_BRANCH: Final[int] = 12
HPM_EVENT_TRAP: Final[int] = 13
HPM_EVENT_ILLEGAL: Final[int] = 14

# PMP configuration byte
PMP_R_BIT: Final[int] = 0
PMP_W_BIT: Final[int] = 1
PMP_X_BIT: Final[int] = 2
PMP_A_SHIFT: Final[int] = 3
PMP_A_MASK: Final[int] = 0b11 << PMP_A_SHIFT
PMP_L_BIT: Final[int] = 7

PMP_MODE_OFF: Final[int] = 0
PMP_MODE_TOR: Final[int] = 1
PMP_MODE_NA4: Final[int] = 2
PMP_MODE_NAPOT: Final[int] = 3

PMP_MAX_REGIONS: Final[int] = 16
"""pmpcfg0..3 hold 16 entries of 8 bits each."""

# ============================================================================
# Memory Map
# ============================================================================

IMEM_BASE_ADDRESS: Final[int] = 0x0000_0000
IMEM_SIZE: Final[int] = 0x4000
"""Instruction space (16KB)."""

DSPACE_BASE_ADDRESS: Final[int] = 0x8000_0000
DMEM_SIZE: Final[int] = 0x2000
"""Data space (8KB)."""

EXT_MEM_BASE_ADDRESS: Final[int] = 0xF000_0000
EXT_MEM_SIZE: Final[int] = 0x1000
"""External memory window (4KB) behind the external bus interface."""

SIM_TRIGGER_ADDRESS: Final[int] = 0xFF00_0000
"""Testbench side channel: a word store asserts interrupt lines by mask."""

IO_BASE_ADDRESS: Final[int] = 0xFFFF_FE00
"""First address of the processor-internal IO region."""

XIRQ_BASE_ADDRESS: Final[int] = 0xFFFF_FF80
MTIME_BASE_ADDRESS: Final[int] = 0xFFFF_FF90
UART0_BASE_ADDRESS: Final[int] = 0xFFFF_FFA0
SPI_BASE_ADDRESS: Final[int] = 0xFFFF_FFA8
TWI_BASE_ADDRESS: Final[int] = 0xFFFF_FFB0
WDT_BASE_ADDRESS: Final[int] = 0xFFFF_FFBC
GPIO_BASE_ADDRESS: Final[int] = 0xFFFF_FFC0
UART1_BASE_ADDRESS: Final[int] = 0xFFFF_FFD0
SLINK_BASE_ADDRESS: Final[int] = 0xFFFF_FEC0

# ============================================================================
# Peripheral Register Layout
# ============================================================================

# Machine timer: 64-bit time and compare, split into low/high words
MTIME_TIME_LO: Final[int] = 0x0
MTIME_TIME_HI: Final[int] = 0x4
MTIME_CMP_LO: Final[int] = 0x8
MTIME_CMP_HI: Final[int] = 0xC

# UART: control + data
UART_CT: Final[int] = 0x0
UART_DATA: Final[int] = 0x4
UART_CT_EN_BIT: Final[int] = 0
UART_CT_SIM_MODE_BIT: Final[int] = 1

# SPI: control + data
SPI_CT: Final[int] = 0x0
SPI_DATA: Final[int] = 0x4
SPI_CT_EN_BIT: Final[int] = 0

# TWI: control + data
TWI_CT: Final[int] = 0x0
TWI_DATA: Final[int] = 0x4
TWI_CT_EN_BIT: Final[int] = 0
TWI_CT_START_BIT: Final[int] = 1
TWI_CT_STOP_BIT: Final[int] = 2

# Watchdog: single control register
WDT_CT: Final[int] = 0x0
WDT_CT_EN_BIT: Final[int] = 0
WDT_CT_MODE_BIT: Final[int] = 1
"""1 = raise an interrupt on timeout, 0 = reset the processor."""
WDT_CT_LOCK_BIT: Final[int] = 2
WDT_CT_FORCE_BIT: Final[int] = 3
WDT_CT_PRSC_SHIFT: Final[int] = 4

# GPIO: input + output ports; output is looped back to the XIRQ inputs
GPIO_INPUT: Final[int] = 0x0
GPIO_OUTPUT: Final[int] = 0x4

# External interrupt controller
XIRQ_IER: Final[int] = 0x0
"""Channel enable register."""
XIRQ_IPR: Final[int] = 0x4
"""Channel pending register (write 0 to a bit to clear it)."""
XIRQ_SCR: Final[int] = 0x8
"""Source register: reads the serviced channel, any write acknowledges it."""
XIRQ_NUM_CHANNELS: Final[int] = 32

# Stream link: control, status, data channel 0
SLINK_CT: Final[int] = 0x0
SLINK_STATUS: Final[int] = 0x4
SLINK_DATA0: Final[int] = 0x8
SLINK_CT_EN_BIT: Final[int] = 0
SLINK_STATUS_RX0_AVAIL_BIT: Final[int] = 0
SLINK_STATUS_TX0_FREE_BIT: Final[int] = 8

# Fast interrupt channel assignment
FIRQ_WDT: Final[int] = 0
FIRQ_CFS: Final[int] = 1
FIRQ_UART0_RX: Final[int] = 2
FIRQ_UART0_TX: Final[int] = 3
FIRQ_UART1_RX: Final[int] = 4
FIRQ_UART1_TX: Final[int] = 5
FIRQ_SPI: Final[int] = 6
FIRQ_TWI: Final[int] = 7
FIRQ_XIRQ: Final[int] = 8
FIRQ_NEOLED: Final[int] = 9
FIRQ_SLINK_RX: Final[int] = 10
FIRQ_SLINK_TX: Final[int] = 11

# ============================================================================
# Test Configuration Defaults
# ============================================================================

DEFAULT_PROPAGATION_CYCLES: Final[int] = 2
"""NOPs issued after a stimulus before the trap state is read back."""

DEFAULT_TIMER_PROPAGATION_CYCLES: Final[int] = 4
"""NOPs issued after arming the machine timer to fire."""

DEFAULT_XIRQ_PROPAGATION_CYCLES: Final[int] = 3
"""NOPs issued after driving both external interrupt channels."""

DEFAULT_WFI_WAKEUP_DELAY: Final[int] = 1000
"""Timer ticks between programming the compare value and the wake-up."""

DEFAULT_WFI_TIMEOUT_CYCLES: Final[int] = 1 << 16
"""Upper bound on the cycles a hart may sleep in WFI before the WFI completes anyway."""

DEFAULT_CLOCK_PERIOD_NS: Final[int] = 10
"""Default clock period in nanoseconds (RTL simulation)."""

DEFAULT_RESET_CYCLES: Final[int] = 3
"""Default number of clock cycles to hold reset (RTL simulation)."""

PIPELINE_DEPTH: Final[int] = 6
"""Pipeline stages drained after each injected instruction (RTL simulation)."""

UNREACHABLE_ADDRESS: Final[int] = IO_BASE_ADDRESS - 4
"""Word-aligned address with no device behind it."""

UNALIGNED_ADDRESS: Final[int] = 0x0000_0002
"""Reachable address that is not word aligned."""

ILLEGAL_CSR_ADDRESS: Final[int] = 0xFFF
"""CSR address that no hart implements."""

ATOMIC_LOCATION_OFFSET: Final[int] = 0x400
"""Offset of the LR/SC test word from the data space base."""

CODE_SCRATCH_OFFSET: Final[int] = 0x800
"""Offset of the scratch area that receives small test programs."""


@dataclass
class CheckConfig:
    """Run-time parameters of a compliance run.

    This is a dataclass so configuration is passed explicitly to the
    components that need it rather than read from module globals.

    Attributes:
        propagation_cycles: NOPs between an interrupt stimulus and read-back
        timer_propagation_cycles: NOPs while waiting for the machine timer
        xirq_propagation_cycles: NOPs while waiting for both XIRQ channels
        wfi_wakeup_delay: Timer ticks until the WFI wake-up interrupt
        wfi_timeout_cycles: Upper bound on cycles spent asleep in WFI
        sim_trigger_address: Side-channel address of the stimulus injector
        unaligned_address: Address used for the misalignment exceptions
        unreachable_address: Address used for the access-fault exceptions
        ext_mem_address: Base address of the external memory window
        protected_address: Base of the PMP-protected region
        atomic_address: Word used by the LR/SC scenarios
        code_address: Scratch area for programs written at run time
        report_hpm: Print the HPM counter report after the summary
    """

    propagation_cycles: int = DEFAULT_PROPAGATION_CYCLES
    timer_propagation_cycles: int = DEFAULT_TIMER_PROPAGATION_CYCLES
    xirq_propagation_cycles: int = DEFAULT_XIRQ_PROPAGATION_CYCLES
    wfi_wakeup_delay: int = DEFAULT_WFI_WAKEUP_DELAY
    wfi_timeout_cycles: int = DEFAULT_WFI_TIMEOUT_CYCLES
    sim_trigger_address: int = SIM_TRIGGER_ADDRESS
    unaligned_address: int = UNALIGNED_ADDRESS
    unreachable_address: int = UNREACHABLE_ADDRESS
    ext_mem_address: int = EXT_MEM_BASE_ADDRESS
    protected_address: int = DSPACE_BASE_ADDRESS
    atomic_address: int = DSPACE_BASE_ADDRESS + ATOMIC_LOCATION_OFFSET
    code_address: int = DSPACE_BASE_ADDRESS + CODE_SCRATCH_OFFSET
    report_hpm: bool = True


# ============================================================================
# DUT Signal Path Configuration
# ============================================================================


@dataclass
class DUTSignalPaths:
    """Configurable paths to the RTL testbench signals used by CocotbHart.

    Paths are dot-separated strings representing hierarchy traversal, e.g.
    "device_under_test.regfile_inst.ram" means dut.device_under_test.regfile_inst.ram.
    The defaults match an instruction-injection testbench with a register-file
    backdoor; override them when the DUT uses a different hierarchy:

        >>> custom_paths = DUTSignalPaths(
        ...     trap_taken_path="core.trap_unit.o_trap_taken",
        ... )
        >>> dut_if = DUTInterface(dut, signal_paths=custom_paths)
        >>> hart = CocotbHart(dut_if)
    """

    clock_path: str = "i_clk"
    reset_path: str = "i_rst"
    reset_done_path: str = "o_rst_done"
    instruction_path: str = "instruction_from_testbench"
    stall_path: str = "pipeline_stall_comb"

    regfile_ram_rs1_path: str = (
        "device_under_test.regfile_inst.source_register_1_ram.ram"
    )
    """Path to integer register file RAM for rs1 read port."""

    regfile_ram_rs2_path: str = (
        "device_under_test.regfile_inst.source_register_2_ram.ram"
    )
    """Path to integer register file RAM for rs2 read port."""

    trap_taken_path: str = "device_under_test.trap_unit_inst.o_trap_taken"
    """Single-cycle strobe raised when the hart enters a trap."""

    interrupt_lines_path: str = "i_interrupts_reg"
    """Testbench-driven interrupt request lines (side channel)."""
