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

"""The processor check: every compliance case, in execution order.

Catalog
=======

Cases are declared as TestCase values and executed in this order by the
runner. Several cases leave state behind that later cases rely on (the HPM
event setup feeds the final HPM report, the PMP region created by one case is
attacked by the next three), so the order is part of the check.

Groups:
    - Counters: [m]cycle[h] / [m]instret[h] carry, mcountinhibit, mcounteren,
      HPM event configuration
    - Execution: external memory, FENCE.I
    - CSR access: non-existent CSR, read-only CSR write and no-write access
    - Exceptions: every synchronous cause, including ECALL from user mode
    - Interrupts: pending MTI, MTI, MSI/MEI/NMI through the side channel, the
      fast interrupt channels of each peripheral, external interrupt
      ordering, WFI wake-up
    - Privilege: misa from user mode, the debug trap handler
    - PMP: region creation, user-mode execute/read/write, entry lock
    - Atomics: the three LR/SC scenarios

run_processor_check() brings up the trap environment, runs the catalog and
prints the summary and the HPM counter report.
"""

import logging
import sys
from typing import Any, Final, TextIO

from hartcheck.checks.expectations import (
    expect_equal,
    expect_no_trap,
    expect_trap,
    expect_zero,
)
from hartcheck.checks.sandbox import SandboxResult
from hartcheck.config import (
    FIRQ_SLINK_RX,
    FIRQ_SLINK_TX,
    FIRQ_SPI,
    FIRQ_TWI,
    FIRQ_UART0_RX,
    FIRQ_UART0_TX,
    FIRQ_UART1_RX,
    FIRQ_UART1_TX,
    FIRQ_WDT,
    FIRQ_XIRQ,
    GPIO_BASE_ADDRESS,
    GPIO_OUTPUT,
    HPM_EVENT_BRANCH,
    HPM_EVENT_COMPRESSED,
    HPM_EVENT_ILLEGAL,
    HPM_EVENT_JUMP,
    HPM_EVENT_LOAD,
    HPM_EVENT_STORE,
    HPM_EVENT_TAKEN_BRANCH,
    HPM_EVENT_TRAP,
    HPM_EVENT_WAIT_IF,
    HPM_EVENT_WAIT_II,
    HPM_EVENT_WAIT_LS,
    HPM_EVENT_WAIT_MC,
    ILLEGAL_CSR_ADDRESS,
    IRQ_FIRQ_BASE_BIT,
    IRQ_MEI_BIT,
    IRQ_MSI_BIT,
    IRQ_MTI_BIT,
    IRQ_NMI_BIT,
    MASK32,
    MASK64,
    MCOUNTEREN_CY_BIT,
    MCOUNTEREN_IR_BIT,
    MCOUNTEREN_TM_BIT,
    MCOUNTINHIBIT_CY_BIT,
    MCOUNTINHIBIT_IR_BIT,
    MSTATUS_MIE_BIT,
    MSTATUS_MPIE_BIT,
    MSTATUS_TW_BIT,
    MTIME_BASE_ADDRESS,
    MTIME_CMP_HI,
    MTIME_CMP_LO,
    MTIME_TIME_HI,
    MTIME_TIME_LO,
    SLINK_BASE_ADDRESS,
    SLINK_CT,
    SLINK_CT_EN_BIT,
    SLINK_DATA0,
    SLINK_STATUS,
    SLINK_STATUS_RX0_AVAIL_BIT,
    SLINK_STATUS_TX0_FREE_BIT,
    SPI_BASE_ADDRESS,
    SPI_CT,
    SPI_CT_EN_BIT,
    SPI_DATA,
    TWI_BASE_ADDRESS,
    TWI_CT,
    TWI_CT_EN_BIT,
    TWI_CT_START_BIT,
    TWI_CT_STOP_BIT,
    TWI_DATA,
    UART0_BASE_ADDRESS,
    UART1_BASE_ADDRESS,
    UART_CT,
    UART_CT_EN_BIT,
    UART_CT_SIM_MODE_BIT,
    UART_DATA,
    WDT_BASE_ADDRESS,
    WDT_CT,
    WDT_CT_EN_BIT,
    WDT_CT_FORCE_BIT,
    WDT_CT_LOCK_BIT,
    WDT_CT_MODE_BIT,
    WDT_CT_PRSC_SHIFT,
    CheckConfig,
)
from hartcheck.encoders.instruction_encode import (
    C_ILLEGAL,
    C_NOP,
    ILLEGAL_CSR_WRITE,
    RET,
    CSRAddress,
    enc_csrrs,
    mhpmcounter_csr,
    mhpmevent_csr,
)
from hartcheck.exceptions import CheckFailure, InstallError, SkipCase, UnrecoverableError
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import default_handler
from hartcheck.runner import CheckEnvironment, Ledger, Runner, TestCase
from hartcheck.verification_types import Capabilities, Permission, Privilege, TrapCause

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

HPM_EVENTS: Final[tuple[tuple[int, int, str], ...]] = (
    (3, HPM_EVENT_COMPRESSED, "Compr."),
    (4, HPM_EVENT_WAIT_IF, "IF wait"),
    (5, HPM_EVENT_WAIT_II, "II wait"),
    (6, HPM_EVENT_WAIT_MC, "ALU wait"),
    (7, HPM_EVENT_LOAD, "Loads"),
    (8, HPM_EVENT_STORE, "Stores"),
    (9, HPM_EVENT_WAIT_LS, "MEM wait"),
    (10, HPM_EVENT_JUMP, "Jumps"),
    (11, HPM_EVENT_BRANCH, "Branches"),
    (12, HPM_EVENT_TAKEN_BRANCH, "Taken"),
    (13, HPM_EVENT_TRAP, "Traps"),
    (14, HPM_EVENT_ILLEGAL, "Illegals"),
)
"""(counter, event bit, report label) for the HPM counters the check programs."""

EXT_MEM_PROGRAM: Final[tuple[int, ...]] = (
    0x3407D073,  # csrwi mscratch, 15
    RET,
)
EXT_MEM_MARKER: Final[int] = 15

ILLEGAL_COMPRESSED_PROGRAM: Final[tuple[int, ...]] = (
    C_NOP | (C_ILLEGAL << 16),
    RET,
)

WDT_CLOCK_PRESCALER: Final[int] = 7
SLINK_TEST_WORD: Final[int] = 0xA1B2C3D4
XIRQ_TRIGGER: Final[int] = 0b11
"""GPIO output driving external interrupt channels 0 and 1."""

STANDARD_COUNTER_ACCESS: Final[int] = (
    (1 << MCOUNTEREN_CY_BIT) | (1 << MCOUNTEREN_TM_BIT) | (1 << MCOUNTEREN_IR_BIT)
)
MACHINE_INTERRUPTS: Final[int] = (1 << IRQ_MSI_BIT) | (1 << IRQ_MTI_BIT) | (1 << IRQ_MEI_BIT)


def firq_mask(channel: int) -> int:
    return 1 << (IRQ_FIRQ_BASE_BIT + channel)


# ============================================================================
# Hart helpers
# ============================================================================


def set_counter(hart: Hart, low_csr: int, high_csr: int, value: int) -> None:
    """Write a 64-bit counter without a carry into the high word in between."""
    hart.csr_write(low_csr, 0)
    hart.csr_write(high_csr, value >> 32)
    hart.csr_write(low_csr, value & MASK32)


def set_time(hart: Hart, value: int) -> None:
    hart.store_word(MTIME_BASE_ADDRESS + MTIME_TIME_LO, 0)
    hart.store_word(MTIME_BASE_ADDRESS + MTIME_TIME_HI, value >> 32)
    hart.store_word(MTIME_BASE_ADDRESS + MTIME_TIME_LO, value & MASK32)


def set_timecmp(hart: Hart, value: int) -> None:
    """Write timecmp without passing through a smaller intermediate value."""
    hart.store_word(MTIME_BASE_ADDRESS + MTIME_CMP_LO, MASK32)
    hart.store_word(MTIME_BASE_ADDRESS + MTIME_CMP_HI, value >> 32 & MASK32)
    hart.store_word(MTIME_BASE_ADDRESS + MTIME_CMP_LO, value & MASK32)


def get_time(hart: Hart) -> int:
    while True:
        high = hart.load_word(MTIME_BASE_ADDRESS + MTIME_TIME_HI)
        low = hart.load_word(MTIME_BASE_ADDRESS + MTIME_TIME_LO)
        if hart.load_word(MTIME_BASE_ADDRESS + MTIME_TIME_HI) == high:
            return (high << 32) | low


def write_program(hart: Hart, address: int, words: tuple[int, ...]) -> None:
    for offset, word in enumerate(words):
        hart.store_word(address + 4 * offset, word)
    hart.fence_i()


# ============================================================================
# Counters
# ============================================================================


def _mcycle_carry(env: CheckEnvironment) -> int:
    env.hart.csr_clear(CSRAddress.MCOUNTINHIBIT, 1 << MCOUNTINHIBIT_CY_BIT)
    set_counter(env.hart, CSRAddress.MCYCLE, CSRAddress.MCYCLEH, 0x0000_0000_FFFF_FFFF)
    return env.hart.csr_read(CSRAddress.MCYCLEH)


def _minstret_carry(env: CheckEnvironment) -> int:
    env.hart.csr_clear(CSRAddress.MCOUNTINHIBIT, 1 << MCOUNTINHIBIT_IR_BIT)
    set_counter(env.hart, CSRAddress.MINSTRET, CSRAddress.MINSTRETH, 0x0000_0000_FFFF_FFFF)
    return env.hart.csr_read(CSRAddress.INSTRETH)


def _check_carry(env: CheckEnvironment, high_word: int) -> None:
    expect_no_trap(env.observatory.read())
    expect_equal("counter high word after carry", 1, high_word)


def _inhibited_cycle(env: CheckEnvironment) -> tuple[int, int]:
    hart = env.hart
    hart.csr_set(CSRAddress.MCOUNTINHIBIT, 1 << MCOUNTINHIBIT_CY_BIT)
    before = hart.csr_read(CSRAddress.CYCLE)
    hart.idle(2)
    return before, hart.csr_read(CSRAddress.CYCLE)


def _check_inhibited_cycle(env: CheckEnvironment, samples: tuple[int, int]) -> None:
    before, after = samples
    expect_no_trap(env.observatory.read())
    if before == 0:
        raise CheckFailure("cycle counter never ran")
    expect_equal("inhibited cycle counter", before, after)


def _release_cycle(env: CheckEnvironment) -> None:
    env.hart.csr_clear(CSRAddress.MCOUNTINHIBIT, 1 << MCOUNTINHIBIT_CY_BIT)


def _user_cycle_read(env: CheckEnvironment) -> SandboxResult[int]:
    env.hart.csr_clear(CSRAddress.MCOUNTEREN, 1 << MCOUNTEREN_CY_BIT)
    return env.sandbox.run_reduced(lambda hart: hart.csr_read(CSRAddress.CYCLE))


def _check_denied_user_read(env: CheckEnvironment, result: SandboxResult[int]) -> None:
    expect_trap(result.trap, TrapCause.ILLEGAL_INSTRUCTION, from_privilege=Privilege.USER)
    expect_zero("user-mode CSR read", result.value)


def _allow_user_cycle(env: CheckEnvironment) -> None:
    env.hart.csr_set(CSRAddress.MCOUNTEREN, 1 << MCOUNTEREN_CY_BIT)


def _configure_hpm(env: CheckEnvironment) -> list[tuple[int, int]]:
    hart = env.hart
    programmed = HPM_EVENTS[: env.capabilities.num_hpm_counters]
    for counter, event, _ in programmed:
        hart.csr_write(mhpmcounter_csr(counter), 0)
        hart.csr_write(mhpmevent_csr(counter), 1 << event)
    hart.csr_write(CSRAddress.MCOUNTINHIBIT, 0)
    return [(counter, hart.csr_read(mhpmevent_csr(counter))) for counter, _, _ in programmed]


def _check_hpm(env: CheckEnvironment, events: list[tuple[int, int]]) -> None:
    expect_no_trap(env.observatory.read())
    for (counter, event, _), (_, readback) in zip(HPM_EVENTS, events):
        expect_equal(f"mhpmevent{counter}", 1 << event, readback)


# ============================================================================
# Execution and CSR access
# ============================================================================


def _run_ext_mem(env: CheckEnvironment) -> int:
    hart = env.hart
    write_program(hart, env.config.ext_mem_address, EXT_MEM_PROGRAM)
    hart.csr_write(CSRAddress.MSCRATCH, 0)
    hart.call(env.config.ext_mem_address)
    return hart.csr_read(CSRAddress.MSCRATCH)


def _check_ext_mem(env: CheckEnvironment, mscratch: int) -> None:
    expect_no_trap(env.observatory.read())
    expect_equal("mscratch written by external memory program", EXT_MEM_MARKER, mscratch)


def _check_no_trap(env: CheckEnvironment, outcome: Any) -> None:
    expect_no_trap(env.observatory.read())


def _expect(cause: TrapCause, aux: str | None = None):
    """Build a check requiring ``cause``; ``aux`` names a CheckConfig address for mtval."""

    def check(env: CheckEnvironment, outcome: Any) -> None:
        aux_value = getattr(env.config, aux) if aux is not None else None
        expect_trap(env.observatory.read(), cause, aux_value=aux_value)

    return check


def _check_nonexistent_csr(env: CheckEnvironment, value: int) -> None:
    expect_trap(env.observatory.read(), TrapCause.ILLEGAL_INSTRUCTION)
    expect_zero("read of non-existent CSR", value)


def _check_illegal_word(env: CheckEnvironment, outcome: Any) -> None:
    expect_trap(
        env.observatory.read(), TrapCause.ILLEGAL_INSTRUCTION, aux_value=ILLEGAL_CSR_WRITE
    )


def _run_illegal_compressed(env: CheckEnvironment) -> None:
    write_program(env.hart, env.config.code_address, ILLEGAL_COMPRESSED_PROGRAM)
    env.observatory.arm()
    env.hart.call(env.config.code_address)


# ============================================================================
# Interrupts
# ============================================================================


def _pending_timer_irq(env: CheckEnvironment) -> None:
    hart = env.hart
    hart.csr_clear(CSRAddress.MSTATUS, 1 << MSTATUS_MIE_BIT)
    set_time(hart, 0x0000_0000_FFFF_FFF8)
    set_timecmp(hart, 0x0000_0001_0000_0000)
    env.stimulus.settle()
    set_timecmp(hart, MASK64)
    hart.csr_set(CSRAddress.MSTATUS, 1 << MSTATUS_MIE_BIT)


def _timer_irq(env: CheckEnvironment) -> None:
    hart = env.hart
    set_timecmp(hart, MASK64)
    set_time(hart, 0)
    hart.csr_write(CSRAddress.MIP, 0)
    set_timecmp(hart, 0x0000_0001_0000_0000)
    set_time(hart, 0x0000_0000_FFFF_FFFE)
    env.stimulus.settle(env.config.timer_propagation_cycles)


def _disarm_timer(env: CheckEnvironment) -> None:
    set_timecmp(env.hart, MASK64)


def _side_channel(bit: int):
    def stimulus(env: CheckEnvironment) -> None:
        env.stimulus.trigger(1 << bit)
        env.stimulus.settle()

    return stimulus


def _enable_firq(*channels: int):
    def setup(env: CheckEnvironment) -> None:
        # drop requests left pending by earlier cases
        env.hart.csr_write(CSRAddress.MIP, 0)
        for channel in channels:
            env.hart.csr_set(CSRAddress.MIE, firq_mask(channel))

    return setup


def _disable_firq(env: CheckEnvironment, *channels: int) -> None:
    for channel in channels:
        env.hart.csr_clear(CSRAddress.MIE, firq_mask(channel))


def _watchdog_irq(env: CheckEnvironment) -> int:
    hart = env.hart
    control = WDT_BASE_ADDRESS + WDT_CT
    hart.store_word(
        control,
        (1 << WDT_CT_EN_BIT)
        | (1 << WDT_CT_MODE_BIT)
        | (1 << WDT_CT_LOCK_BIT)
        | (WDT_CLOCK_PRESCALER << WDT_CT_PRSC_SHIFT),
    )
    # locked: this must not disable the watchdog
    hart.store_word(control, 0)
    after_disable = hart.load_word(control)
    hart.store_word(control, after_disable | (1 << WDT_CT_FORCE_BIT))
    env.stimulus.settle()
    return after_disable


def _check_watchdog(env: CheckEnvironment, after_disable: int) -> None:
    expect_trap(env.observatory.read(), TrapCause.firq(FIRQ_WDT))
    if not after_disable >> WDT_CT_EN_BIT & 1:
        raise CheckFailure("locked watchdog accepted the disable write")


def _stop_watchdog(env: CheckEnvironment) -> None:
    env.hart.store_word(WDT_BASE_ADDRESS + WDT_CT, 0)
    _disable_firq(env, FIRQ_WDT)


def _uart_case(
    name: str, label: str, base: int, channel: int, available: str
) -> TestCase:
    def stimulus(env: CheckEnvironment) -> None:
        hart = env.hart
        saved = hart.load_word(base + UART_CT)
        control = (saved | (1 << UART_CT_EN_BIT)) & ~(1 << UART_CT_SIM_MODE_BIT)
        hart.store_word(base + UART_CT, control)
        hart.store_word(base + UART_DATA, 0)
        env.stimulus.settle()
        hart.store_word(base + UART_CT, saved)

    return TestCase(
        name=name,
        description=f"FIRQ{channel} test (via {label})",
        stimulus=stimulus,
        check=_expect(TrapCause.firq(channel)),
        applies=lambda caps: getattr(caps, available),
        setup=_enable_firq(channel),
        cleanup=lambda env: _disable_firq(env, channel),
    )


def _spi_irq(env: CheckEnvironment) -> None:
    hart = env.hart
    hart.store_word(SPI_BASE_ADDRESS + SPI_CT, 1 << SPI_CT_EN_BIT)
    hart.store_word(SPI_BASE_ADDRESS + SPI_DATA, 0)
    env.stimulus.settle()


def _stop_spi(env: CheckEnvironment) -> None:
    env.hart.store_word(SPI_BASE_ADDRESS + SPI_CT, 0)
    _disable_firq(env, FIRQ_SPI)


def _twi_irq(env: CheckEnvironment) -> None:
    hart = env.hart
    control = TWI_BASE_ADDRESS + TWI_CT
    enable = 1 << TWI_CT_EN_BIT
    hart.store_word(control, enable)
    hart.store_word(control, enable | (1 << TWI_CT_START_BIT))
    hart.store_word(TWI_BASE_ADDRESS + TWI_DATA, 0)
    hart.store_word(control, enable | (1 << TWI_CT_STOP_BIT))
    env.stimulus.settle()


def _stop_twi(env: CheckEnvironment) -> None:
    env.hart.store_word(TWI_BASE_ADDRESS + TWI_CT, 0)
    _disable_firq(env, FIRQ_TWI)


def _setup_xirq(env: CheckEnvironment) -> None:
    env.accumulator.reset()
    observatory = env.observatory
    observatory.setup_channels()
    observatory.install_channel(0, env.accumulator.add_two)
    observatory.install_channel(1, env.accumulator.double)
    env.hart.csr_set(CSRAddress.MIE, firq_mask(FIRQ_XIRQ))


def _xirq_irq(env: CheckEnvironment) -> int:
    env.hart.store_word(GPIO_BASE_ADDRESS + GPIO_OUTPUT, XIRQ_TRIGGER)
    env.stimulus.settle(env.config.xirq_propagation_cycles)
    return env.accumulator.value


def _check_xirq(env: CheckEnvironment, accumulated: int) -> None:
    expect_trap(env.observatory.read(), TrapCause.firq(FIRQ_XIRQ))
    expect_equal("channel handler ordering", env.accumulator.EXPECTED, accumulated)


def _stop_xirq(env: CheckEnvironment) -> None:
    _disable_firq(env, FIRQ_XIRQ)
    env.observatory.teardown_channels()
    env.hart.store_word(GPIO_BASE_ADDRESS + GPIO_OUTPUT, 0)


def _slink_irq(env: CheckEnvironment) -> tuple[int, int]:
    hart = env.hart
    errors = 0
    hart.store_word(SLINK_BASE_ADDRESS + SLINK_CT, 1 << SLINK_CT_EN_BIT)
    if hart.load_word(SLINK_BASE_ADDRESS + SLINK_STATUS) >> SLINK_STATUS_TX0_FREE_BIT & 1:
        hart.store_word(SLINK_BASE_ADDRESS + SLINK_DATA0, SLINK_TEST_WORD)
    else:
        errors += 1
    received = 0
    if hart.load_word(SLINK_BASE_ADDRESS + SLINK_STATUS) >> SLINK_STATUS_RX0_AVAIL_BIT & 1:
        received = hart.load_word(SLINK_BASE_ADDRESS + SLINK_DATA0)
    else:
        errors += 1
    env.stimulus.settle()
    return errors, received


def _check_slink(env: CheckEnvironment, outcome: tuple[int, int]) -> None:
    errors, received = outcome
    record = env.observatory.read()
    accepted = (TrapCause.firq(FIRQ_SLINK_RX), TrapCause.firq(FIRQ_SLINK_TX))
    if record.cause not in accepted:
        raise CheckFailure(
            f"trap cause {record.cause.name}, expected FIRQ_{FIRQ_SLINK_RX} or FIRQ_{FIRQ_SLINK_TX}",
            actual=record.cause.mcause,
        )
    expect_equal("stream link transfer errors", 0, errors)
    expect_equal("stream link read-back", SLINK_TEST_WORD, received)


def _stop_slink(env: CheckEnvironment) -> None:
    env.hart.store_word(SLINK_BASE_ADDRESS + SLINK_CT, 0)
    _disable_firq(env, FIRQ_SLINK_RX, FIRQ_SLINK_TX)


def _wfi_wakeup(env: CheckEnvironment) -> SandboxResult[None]:
    hart = env.hart
    set_timecmp(hart, get_time(hart) + env.config.wfi_wakeup_delay)
    hart.csr_clear(CSRAddress.MSTATUS, 1 << MSTATUS_TW_BIT)
    return env.sandbox.run_reduced(lambda h: h.wait_for_interrupt())


def _check_wfi(env: CheckEnvironment, result: SandboxResult[None]) -> None:
    expect_trap(result.trap, TrapCause.MACHINE_TIMER_INTERRUPT)


# ============================================================================
# Privilege and trap handling
# ============================================================================


def _debug_handler_trap(env: CheckEnvironment) -> None:
    env.observatory.uninstall(TrapCause.ILLEGAL_INSTRUCTION)
    env.hart.csr_read(ILLEGAL_CSR_ADDRESS)


def _check_debug_handler(env: CheckEnvironment, outcome: Any) -> None:
    expect_trap(env.observatory.read(), TrapCause.ILLEGAL_INSTRUCTION)
    expect_equal("privilege after debug handler", Privilege.MACHINE, env.hart.privilege)


def _restore_illegal_handler(env: CheckEnvironment) -> None:
    env.observatory.install(TrapCause.ILLEGAL_INSTRUCTION, default_handler)


# ============================================================================
# PMP
# ============================================================================


def _create_region(env: CheckEnvironment) -> None:
    granularity = env.pmp.detect_granularity()
    env.scratch["pmp_region"] = env.pmp.configure(
        0, env.config.protected_address, granularity, Permission.NONE
    )


def _region(env: CheckEnvironment):
    region = env.scratch.get("pmp_region")
    if region is None:
        raise SkipCase("no protected region")
    return region


def _uses_pmp(caps: Capabilities) -> bool:
    return caps.has_pmp and caps.user_mode


# ============================================================================
# Catalog
# ============================================================================


def processor_check_cases(config: CheckConfig | None = None) -> list[TestCase]:
    """Return the ordered case list."""
    config = config or CheckConfig()
    return [
        TestCase(
            "mcycle_carry",
            "[m]cycle[h] counter",
            _mcycle_carry,
            _check_carry,
        ),
        TestCase(
            "minstret_carry",
            "[m]instret[h] counter",
            _minstret_carry,
            _check_carry,
        ),
        TestCase(
            "mcountinhibit_cy",
            "mcountinhibit.cy CSR",
            _inhibited_cycle,
            _check_inhibited_cycle,
            cleanup=_release_cycle,
        ),
        TestCase(
            "mcounteren_cy",
            "mcounteren.cy CSR",
            _user_cycle_read,
            _check_denied_user_read,
            applies=lambda caps: caps.user_mode,
            cleanup=_allow_user_cycle,
        ),
        TestCase(
            "hpm_events",
            "Configuring HPM events",
            _configure_hpm,
            _check_hpm,
            applies=lambda caps: caps.num_hpm_counters > 0,
        ),
        TestCase(
            "ext_mem",
            f"External memory access (@ 0x{config.ext_mem_address:08x})",
            _run_ext_mem,
            _check_ext_mem,
            applies=lambda caps: caps.ext_mem,
        ),
        TestCase(
            "fence_i",
            "FENCE.I",
            lambda env: env.hart.fence_i(),
            _check_no_trap,
        ),
        TestCase(
            "nonexistent_csr",
            "Non-existent CSR access",
            lambda env: env.hart.csr_read(ILLEGAL_CSR_ADDRESS),
            _check_nonexistent_csr,
        ),
        TestCase(
            "read_only_csr_write",
            "Read-only CSR write access",
            lambda env: env.hart.csr_write(CSRAddress.TIME, 0),
            _expect(TrapCause.ILLEGAL_INSTRUCTION),
        ),
        TestCase(
            "read_only_csr_no_write",
            "Read-only CSR 'no-write' (rs1=0) access",
            lambda env: env.hart.execute(enc_csrrs(0, CSRAddress.TIME, 0)),
            _check_no_trap,
        ),
        TestCase(
            "pending_irq",
            "Pending IRQ test (MTIME)",
            _pending_timer_irq,
            _expect(TrapCause.MACHINE_TIMER_INTERRUPT),
        ),
        TestCase(
            "i_align",
            "I_ALIGN (instr. alignment) EXC",
            lambda env: env.hart.call(env.config.unaligned_address),
            _expect(TrapCause.INSTRUCTION_MISALIGNED, "unaligned_address"),
            applies=lambda caps: not caps.compressed,
            skip_note="n.a. with C-ext",
        ),
        TestCase(
            "i_access",
            "I_ACC (instr. bus access) EXC",
            lambda env: env.hart.call(env.config.unreachable_address),
            _expect(TrapCause.INSTRUCTION_ACCESS_FAULT, "unreachable_address"),
        ),
        TestCase(
            "i_illegal",
            "I_ILLEG (illegal instr.) EXC",
            lambda env: env.hart.execute(ILLEGAL_CSR_WRITE),
            _check_illegal_word,
        ),
        TestCase(
            "ci_illegal",
            "CI_ILLEG (illegal compr. instr.) EXC",
            _run_illegal_compressed,
            _expect(TrapCause.ILLEGAL_INSTRUCTION),
            applies=lambda caps: caps.compressed,
            skip_note="n.a. without C-ext",
        ),
        TestCase(
            "breakpoint",
            "BREAK (break instr.) EXC",
            lambda env: env.hart.ebreak(),
            _expect(TrapCause.BREAKPOINT),
        ),
        TestCase(
            "l_align",
            "L_ALIGN (load addr alignment) EXC",
            lambda env: env.hart.load_word(env.config.unaligned_address),
            _expect(TrapCause.LOAD_MISALIGNED, "unaligned_address"),
        ),
        TestCase(
            "l_access",
            "L_ACC (load bus access) EXC",
            lambda env: env.hart.load_word(env.config.unreachable_address),
            _expect(TrapCause.LOAD_ACCESS_FAULT, "unreachable_address"),
        ),
        TestCase(
            "s_align",
            "S_ALIGN (store addr alignment) EXC",
            lambda env: env.hart.store_word(env.config.unaligned_address, 0),
            _expect(TrapCause.STORE_MISALIGNED, "unaligned_address"),
        ),
        TestCase(
            "s_access",
            "S_ACC (store bus access) EXC",
            lambda env: env.hart.store_word(env.config.unreachable_address, 0),
            _expect(TrapCause.STORE_ACCESS_FAULT, "unreachable_address"),
        ),
        TestCase(
            "ecall_m",
            "ENVCALL (ecall instr.) from M-mode EXC",
            lambda env: env.hart.ecall(),
            _expect(TrapCause.ECALL_M),
        ),
        TestCase(
            "ecall_u",
            "ENVCALL (ecall instr.) from U-mode EXC",
            lambda env: env.sandbox.run_reduced(lambda hart: hart.ecall()),
            lambda env, result: expect_trap(
                result.trap,
                TrapCause.ECALL_U,
                from_privilege=Privilege.USER,
                return_privilege=Privilege.USER,
            ),
            applies=lambda caps: caps.user_mode,
            skip_note="n.a. without U-ext",
        ),
        TestCase(
            "mti",
            "MTI (via MTIME)",
            _timer_irq,
            _expect(TrapCause.MACHINE_TIMER_INTERRUPT),
            cleanup=_disarm_timer,
        ),
        TestCase(
            "msi",
            "MSI (via testbench)",
            _side_channel(IRQ_MSI_BIT),
            _expect(TrapCause.MACHINE_SOFTWARE_INTERRUPT),
        ),
        TestCase(
            "mei",
            "MEI (via testbench)",
            _side_channel(IRQ_MEI_BIT),
            _expect(TrapCause.MACHINE_EXTERNAL_INTERRUPT),
        ),
        TestCase(
            "nmi",
            "NMI (via testbench)",
            _side_channel(IRQ_NMI_BIT),
            _expect(TrapCause.NMI),
        ),
        TestCase(
            "firq0_wdt",
            "FIRQ0 test (via WDT)",
            _watchdog_irq,
            _check_watchdog,
            applies=lambda caps: caps.wdt,
            setup=_enable_firq(FIRQ_WDT),
            cleanup=_stop_watchdog,
        ),
        TestCase(
            "firq1_cfs",
            "FIRQ1 test (via CFS)",
            lambda env: None,
            applies=lambda caps: False,
        ),
        _uart_case("firq2_uart0_rx", "UART0.RX", UART0_BASE_ADDRESS, FIRQ_UART0_RX, "uart0"),
        _uart_case("firq3_uart0_tx", "UART0.TX", UART0_BASE_ADDRESS, FIRQ_UART0_TX, "uart0"),
        _uart_case("firq4_uart1_rx", "UART1.RX", UART1_BASE_ADDRESS, FIRQ_UART1_RX, "uart1"),
        _uart_case("firq5_uart1_tx", "UART1.TX", UART1_BASE_ADDRESS, FIRQ_UART1_TX, "uart1"),
        TestCase(
            "firq6_spi",
            "FIRQ6 test (via SPI)",
            _spi_irq,
            _expect(TrapCause.firq(FIRQ_SPI)),
            applies=lambda caps: caps.spi,
            setup=_enable_firq(FIRQ_SPI),
            cleanup=_stop_spi,
        ),
        TestCase(
            "firq7_twi",
            "FIRQ7 test (via TWI)",
            _twi_irq,
            _expect(TrapCause.firq(FIRQ_TWI)),
            applies=lambda caps: caps.twi,
            setup=_enable_firq(FIRQ_TWI),
            cleanup=_stop_twi,
        ),
        TestCase(
            "firq8_xirq",
            "FIRQ8 test (via XIRQ)",
            _xirq_irq,
            _check_xirq,
            applies=lambda caps: caps.xirq and caps.gpio,
            setup=_setup_xirq,
            cleanup=_stop_xirq,
        ),
        TestCase(
            "firq9_neoled",
            "FIRQ9 (NEOLED)",
            lambda env: None,
            applies=lambda caps: False,
        ),
        TestCase(
            "firq10_11_slink",
            "FIRQ10 & 11 (SLINK)",
            _slink_irq,
            _check_slink,
            applies=lambda caps: caps.slink,
            setup=_enable_firq(FIRQ_SLINK_RX, FIRQ_SLINK_TX),
            cleanup=_stop_slink,
        ),
        TestCase(
            "wfi",
            "WFI (sleep instruction) test (wake-up via MTIME)",
            _wfi_wakeup,
            _check_wfi,
            applies=lambda caps: caps.user_mode,
            cleanup=_disarm_timer,
            skip_note="n.a. without U-ext",
        ),
        TestCase(
            "misa_user",
            "Invalid CSR access (misa) from user mode",
            lambda env: env.sandbox.run_reduced(lambda hart: hart.csr_read(CSRAddress.MISA)),
            _check_denied_user_read,
            applies=lambda caps: caps.user_mode,
            skip_note="n.a. without U-ext",
        ),
        TestCase(
            "debug_handler",
            "RTE debug trap handler",
            _debug_handler_trap,
            _check_debug_handler,
            cleanup=_restore_illegal_handler,
        ),
        TestCase(
            "pmp_create",
            (
                "PMP - Physical memory protection: Creating protected page "
                f"(NAPOT, [!X,!W,!R]) @ 0x{config.protected_address:08x}"
            ),
            _create_region,
            _check_no_trap,
            applies=lambda caps: caps.has_pmp,
        ),
        TestCase(
            "pmp_execute",
            "PMP: U-mode execute",
            lambda env: env.pmp.check_execute(_region(env)),
            applies=_uses_pmp,
        ),
        TestCase(
            "pmp_read",
            "PMP: U-mode read",
            lambda env: env.pmp.check_read(_region(env)),
            applies=_uses_pmp,
        ),
        TestCase(
            "pmp_write",
            "PMP: U-mode write",
            lambda env: env.pmp.check_write(_region(env)),
            applies=_uses_pmp,
        ),
        TestCase(
            "pmp_lock",
            "PMP: Entry [mode=off] lock",
            lambda env: env.pmp.check_lock(0),
            applies=lambda caps: caps.has_pmp,
        ),
        TestCase(
            "atomic_success",
            "Atomic access (LR+SC succeeding access)",
            lambda env: env.atomics.check_success(),
            applies=lambda caps: caps.atomics,
        ),
        TestCase(
            "atomic_store",
            "Atomic access (LR+SC failing access 1)",
            lambda env: env.atomics.check_store_breaks_reservation(),
            applies=lambda caps: caps.atomics,
        ),
        TestCase(
            "atomic_trap",
            "Atomic access (LR+SC failing access 2)",
            lambda env: env.atomics.check_trap_breaks_reservation(),
            applies=lambda caps: caps.atomics,
        ),
    ]


# ============================================================================
# Run
# ============================================================================


def bring_up(env: CheckEnvironment) -> None:
    """Install the trap environment and put counters, timer and IRQs in a known state.

    Raises:
        UnrecoverableError: The trap environment could not be installed
    """
    hart = env.hart
    try:
        env.observatory.setup()
    except InstallError as exc:
        raise UnrecoverableError(f"trap environment setup failed: {exc}") from exc

    set_counter(hart, CSRAddress.MCYCLE, CSRAddress.MCYCLEH, 0)
    set_counter(hart, CSRAddress.MINSTRET, CSRAddress.MINSTRETH, 0)
    hart.csr_write(CSRAddress.MCOUNTINHIBIT, 0)
    hart.csr_write(CSRAddress.MCOUNTEREN, STANDARD_COUNTER_ACCESS)

    set_time(hart, 0)
    set_timecmp(hart, MASK64)

    hart.csr_set(CSRAddress.MIE, MACHINE_INTERRUPTS)
    # MPIE keeps interrupts enabled across the MRET into user mode
    hart.csr_set(CSRAddress.MSTATUS, (1 << MSTATUS_MIE_BIT) | (1 << MSTATUS_MPIE_BIT))


def hpm_report(env: CheckEnvironment) -> list[str]:
    """Stop all counters and list the ones programmed by the HPM event case."""
    hart = env.hart
    num_hpm = min(env.capabilities.num_hpm_counters, len(HPM_EVENTS))
    hart.csr_write(CSRAddress.MCOUNTINHIBIT, MASK32)
    lines = [
        f"-- HPM reports LOW ({env.capabilities.num_hpm_counters} HPMs available) --",
        f"#IR - {'Instr.:':<10}{hart.csr_read(CSRAddress.INSTRET)}",
        f"#CY - {'CLKs:':<10}{hart.csr_read(CSRAddress.CYCLE)}",
    ]
    for counter, _, label in HPM_EVENTS[:num_hpm]:
        value = hart.csr_read(mhpmcounter_csr(counter))
        lines.append(f"#{counter:02d} - {label + ':':<10}{value}")
    return lines


def _print_results(ledger: Ledger, out: TextIO) -> None:
    print("\nTest results:", file=out)
    print(ledger.summary(), file=out)


def run_processor_check(
    hart: Hart,
    config: CheckConfig | None = None,
    out: TextIO | None = None,
) -> Ledger:
    """Run the full catalog on ``hart`` and print the report to ``out``.

    Returns:
        The ledger; its ``failed`` count is the process exit status

    Raises:
        UnrecoverableError: The run was aborted (the partial results are
            printed before the exception propagates)
    """
    out = out or sys.stdout
    env = CheckEnvironment.create(hart, config)
    print("<< PROCESSOR CHECK >>", file=out)
    bring_up(env)
    print("Starting tests...\n", file=out)

    runner = Runner(env, processor_check_cases(env.config), out)
    try:
        ledger = runner.run()
    except UnrecoverableError as exc:
        logger.error("run aborted: %s", exc)
        exc.ledger = runner.ledger
        _print_results(runner.ledger, out)
        print(f"[CPU TEST ABORTED: {exc}]", file=out)
        raise

    _print_results(ledger, out)
    if env.config.report_hpm and env.capabilities.num_hpm_counters > 0:
        print("", file=out)
        for line in hpm_report(env):
            print(line, file=out)
    print("", file=out)
    if ledger.failed == 0:
        print("[CPU TEST COMPLETED SUCCESSFULLY!]", file=out)
    else:
        print("[CPU TEST FAILED!]", file=out)
    return ledger
