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

"""Tests for the reference hart model and its PMP unit."""

from typing import Any

import pytest

from hartcheck.config import (
    IRQ_MSI_BIT,
    MISA_C_BIT,
    MISA_U_BIT,
    MCOUNTINHIBIT_CY_BIT,
    MSTATUS_MPP_LOW_BIT,
    MSTATUS_MPP_MASK,
    PMP_A_SHIFT,
    PMP_L_BIT,
    PMP_MODE_NA4,
    PMP_MODE_NAPOT,
)
from hartcheck.encoders.instruction_encode import CSRAddress
from hartcheck.exceptions import UnrecoverableError
from hartcheck.models.hart_model import HartModel, HartModelConfig
from hartcheck.models.pmp_model import PMPUnit
from hartcheck.verification_types import Capabilities, Permission, Privilege, TrapCause


class TestRegistersAndCsrs:
    """Primitive access through injected instructions."""

    def test_x0_is_hardwired(self, model: HartModel) -> None:
        model.write_register(0, 0x1234)
        assert model.read_register(0) == 0

    def test_mscratch_round_trip(self, model: HartModel) -> None:
        model.csr_write(CSRAddress.MSCRATCH, 0xCAFEF00D)
        assert model.csr_read(CSRAddress.MSCRATCH) == 0xCAFEF00D

    def test_set_and_clear_return_old_value(self, model: HartModel) -> None:
        model.csr_write(CSRAddress.MSCRATCH, 0x0F)
        assert model.csr_set(CSRAddress.MSCRATCH, 0xF0) == 0x0F
        assert model.csr_clear(CSRAddress.MSCRATCH, 0x0F) == 0xFF
        assert model.csr_read(CSRAddress.MSCRATCH) == 0xF0

    def test_counters_advance_per_instruction(self, model: HartModel) -> None:
        first_cycle = model.csr_read(CSRAddress.MCYCLE)
        second_cycle = model.csr_read(CSRAddress.MCYCLE)
        assert second_cycle - first_cycle == model.config.cycles_per_instruction
        first_instret = model.csr_read(CSRAddress.MINSTRET)
        second_instret = model.csr_read(CSRAddress.MINSTRET)
        assert second_instret - first_instret == 1

    def test_counter_inhibit_freezes_cycle(self, model: HartModel) -> None:
        model.csr_write(CSRAddress.MCOUNTINHIBIT, 1 << MCOUNTINHIBIT_CY_BIT)
        before = model.csr_read(CSRAddress.MCYCLE)
        model.idle(5)
        assert model.csr_read(CSRAddress.MCYCLE) == before

    def test_counter_inhibit_quirk(self, make_model: Any) -> None:
        model = make_model(ignore_counter_inhibit=True)
        model.csr_write(CSRAddress.MCOUNTINHIBIT, 1 << MCOUNTINHIBIT_CY_BIT)
        before = model.csr_read(CSRAddress.MCYCLE)
        model.idle(5)
        assert model.csr_read(CSRAddress.MCYCLE) > before

    def test_misa_reflects_capabilities(self, make_model: Any) -> None:
        full = make_model()
        reduced = make_model(Capabilities(compressed=False, user_mode=False))
        assert full.csr_read(CSRAddress.MISA) >> MISA_C_BIT & 1
        assert full.csr_read(CSRAddress.MISA) >> MISA_U_BIT & 1
        assert not reduced.csr_read(CSRAddress.MISA) >> MISA_C_BIT & 1
        assert not reduced.csr_read(CSRAddress.MISA) >> MISA_U_BIT & 1

    def test_mpp_is_warl_without_user_mode(self, make_model: Any) -> None:
        model = make_model(Capabilities(user_mode=False))
        model.csr_clear(CSRAddress.MSTATUS, MSTATUS_MPP_MASK)
        mstatus = model.csr_read(CSRAddress.MSTATUS)
        assert (mstatus & MSTATUS_MPP_MASK) >> MSTATUS_MPP_LOW_BIT == Privilege.MACHINE


class TestTrapDelivery:
    def test_trap_without_entry_is_unrecoverable(self, model: HartModel) -> None:
        with pytest.raises(UnrecoverableError, match="no trap entry"):
            model.ecall()

    def test_trap_inside_handler_is_unrecoverable(self, model: HartModel) -> None:
        model.set_trap_entry(model.ebreak)
        with pytest.raises(UnrecoverableError, match="inside the trap handler"):
            model.ecall()
        assert not model.in_handler

    def test_entry_sees_architectural_state(self, model: HartModel) -> None:
        seen = []

        def entry() -> None:
            seen.append(
                (
                    model.csr_read(CSRAddress.MCAUSE),
                    model.csr_read(CSRAddress.MTVAL),
                    model.csr_read(CSRAddress.MEPC),
                    model.privilege,
                )
            )

        model.set_trap_entry(entry)
        model.ebreak()
        cause, tval, epc, privilege = seen[0]
        assert cause == TrapCause.BREAKPOINT.mcause
        assert tval == epc
        assert privilege == Privilege.MACHINE

    def test_scratch_registers_survive_handler(self, model: HartModel) -> None:
        model.set_trap_entry(lambda: model.csr_write(CSRAddress.MSCRATCH, 0x55))
        model.write_register(11, 0xABCD)
        model.ecall()
        assert model.read_register(11) == 0xABCD
        assert model.csr_read(CSRAddress.MSCRATCH) == 0x55

    def test_software_interrupt_taken_after_latency(self, model: HartModel) -> None:
        causes = []
        model.set_trap_entry(lambda: causes.append(model.csr_read(CSRAddress.MCAUSE)))
        model.csr_set(CSRAddress.MIE, 1 << IRQ_MSI_BIT)
        model.csr_set(CSRAddress.MSTATUS, 1 << 3)
        model.lines.pulse(1 << IRQ_MSI_BIT)
        assert causes == []
        model.idle(1)
        assert causes == [TrapCause.MACHINE_SOFTWARE_INTERRUPT.mcause]

    def test_masked_interrupt_stays_pending(self, model: HartModel) -> None:
        model.set_trap_entry(lambda: None)
        model.csr_set(CSRAddress.MIE, 1 << IRQ_MSI_BIT)
        model.lines.pulse(1 << IRQ_MSI_BIT)
        model.idle(2)
        assert model.csr_read(CSRAddress.MIP) >> IRQ_MSI_BIT & 1
        model.csr_write(CSRAddress.MIP, 0)
        assert not model.csr_read(CSRAddress.MIP) >> IRQ_MSI_BIT & 1

    def test_wfi_without_wakeup_completes(self) -> None:
        model = HartModel(HartModelConfig(wfi_timeout_cycles=10))
        entries = []
        model.set_trap_entry(lambda: entries.append(model.csr_read(CSRAddress.MCAUSE)))
        before = model.cycles_elapsed
        model.wait_for_interrupt()
        assert model.cycles_elapsed - before == 2 + 10
        assert entries == []
        assert model.privilege == Privilege.MACHINE

    def test_runaway_code_is_unrecoverable(self) -> None:
        model = HartModel(HartModelConfig(max_call_steps=8))
        # NOP sled: execution never comes back to the caller
        for offset in range(0, 64, 4):
            model.store_word(0x8000_0800 + offset, 0x0000_0013)
        with pytest.raises(UnrecoverableError, match="did not return"):
            model.call(0x8000_0800)


class TestPMPUnit:
    """Matching and locking rules of the PMP model."""

    @staticmethod
    def _na4(unit: PMPUnit, index: int, base: int, permissions: Permission, locked=False):
        cfg = (PMP_MODE_NA4 << PMP_A_SHIFT) | permissions.value
        if locked:
            cfg |= 1 << PMP_L_BIT
        unit.write_addr(index, base >> 2)
        unit.write_cfg(0, cfg << (8 * index))

    def test_no_entries_allows_everything(self) -> None:
        unit = PMPUnit(0, 4)
        assert unit.allows(0x8000_0000, Permission.W, Privilege.USER)

    def test_no_match_denies_user_allows_machine(self) -> None:
        unit = PMPUnit(4, 4)
        assert unit.allows(0x8000_0000, Permission.R, Privilege.MACHINE)
        assert not unit.allows(0x8000_0000, Permission.R, Privilege.USER)

    def test_unlocked_entry_binds_user_only(self) -> None:
        unit = PMPUnit(4, 4)
        self._na4(unit, 0, 0x8000_0000, Permission.R)
        assert unit.allows(0x8000_0000, Permission.R, Privilege.USER)
        assert not unit.allows(0x8000_0000, Permission.W, Privilege.USER)
        assert unit.allows(0x8000_0000, Permission.W, Privilege.MACHINE)
        assert not unit.allows(0x8000_0004, Permission.R, Privilege.USER)

    def test_locked_entry_binds_machine_and_ignores_writes(self) -> None:
        unit = PMPUnit(4, 4)
        self._na4(unit, 0, 0x8000_0000, Permission.R, locked=True)
        assert not unit.allows(0x8000_0000, Permission.W, Privilege.MACHINE)
        unit.write_cfg(0, 0)
        unit.write_addr(0, 0)
        assert unit.read_cfg(0) & 0xFF == (1 << PMP_L_BIT) | (PMP_MODE_NA4 << PMP_A_SHIFT) | 1
        assert unit.read_addr(0) == 0x8000_0000 >> 2

    def test_napot_range(self) -> None:
        unit = PMPUnit(4, 4)
        unit.write_addr(1, (0x8000_0000 >> 2) | 0b11)  # 32 bytes
        unit.write_cfg(0, ((PMP_MODE_NAPOT << PMP_A_SHIFT) | Permission.NONE.value) << 8)
        assert not unit.allows(0x8000_001C, Permission.R, Privilege.USER)
        assert not unit.allows(0x8000_0020, Permission.R, Privilege.USER)
        assert unit.allows(0x8000_0020, Permission.R, Privilege.MACHINE)

    @pytest.mark.parametrize(("granularity", "readback"), [(4, 0xFFFF_FFFF), (16, 0xFFFF_FFFC)])
    def test_off_entry_masks_grain_bits(self, granularity: int, readback: int) -> None:
        unit = PMPUnit(4, granularity)
        unit.write_addr(3, 0xFFFF_FFFF)
        assert unit.read_addr(3) == readback

    def test_rejects_bad_geometry(self) -> None:
        with pytest.raises(ValueError):
            PMPUnit(17, 4)
        with pytest.raises(ValueError):
            PMPUnit(4, 6)
