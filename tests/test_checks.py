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

"""Tests for the check components: expectations, stimulus, sandbox, PMP and LR/SC."""

from typing import Any

import pytest

from hartcheck.checks.expectations import expect_equal, expect_no_trap, expect_trap, expect_zero
from hartcheck.checks.pmp_verifier import encode_region
from hartcheck.config import (
    IRQ_MSI_BIT,
    IRQ_NMI_BIT,
    MSTATUS_MIE_BIT,
    PMP_A_SHIFT,
    PMP_MODE_NA4,
    PMP_MODE_NAPOT,
)
from hartcheck.encoders.instruction_encode import CSRAddress
from hartcheck.exceptions import CheckFailure, ConfigError, SkipCase, UnrecoverableError
from hartcheck.runner import CheckEnvironment
from hartcheck.verification_types import (
    Capabilities,
    Permission,
    Privilege,
    ProtectedRegion,
    TrapCause,
    TrapRecord,
)

PROTECTED_BASE = 0x8000_0000


# =============================================================================
# Expectations
# =============================================================================


class TestExpectations:
    ECALL = TrapRecord(cause=TrapCause.ECALL_M, aux_value=0, occurred=True, epc=0x100)

    def test_expect_trap_passes(self) -> None:
        expect_trap(self.ECALL, TrapCause.ECALL_M, aux_value=0, from_privilege=Privilege.MACHINE)

    def test_no_trap_taken(self) -> None:
        with pytest.raises(CheckFailure, match="no trap taken"):
            expect_trap(TrapRecord(), TrapCause.ECALL_M)

    def test_wrong_cause_reports_both_values(self) -> None:
        with pytest.raises(CheckFailure) as info:
            expect_trap(self.ECALL, TrapCause.BREAKPOINT)
        assert info.value.expected == TrapCause.BREAKPOINT.mcause
        assert info.value.actual == TrapCause.ECALL_M.mcause
        assert "expected 0x00000003, got 0x0000000b" in str(info.value)

    def test_wrong_aux_value(self) -> None:
        with pytest.raises(CheckFailure, match="wrong mtval"):
            expect_trap(self.ECALL, TrapCause.ECALL_M, aux_value=4)

    def test_wrong_origin(self) -> None:
        with pytest.raises(CheckFailure, match="taken from MACHINE"):
            expect_trap(self.ECALL, TrapCause.ECALL_M, from_privilege=Privilege.USER)

    def test_wrong_return_privilege(self) -> None:
        record = TrapRecord(
            cause=TrapCause.ECALL_U,
            occurred=True,
            from_privilege=Privilege.USER,
            return_privilege=Privilege.MACHINE,
        )
        expect_trap(record, TrapCause.ECALL_U, from_privilege=Privilege.USER)
        with pytest.raises(CheckFailure, match="recorded MPP MACHINE, expected USER"):
            expect_trap(record, TrapCause.ECALL_U, return_privilege=Privilege.USER)

    def test_expect_no_trap(self) -> None:
        expect_no_trap(TrapRecord())
        with pytest.raises(CheckFailure, match="unexpected trap ECALL_M"):
            expect_no_trap(self.ECALL)

    def test_expect_equal_and_zero(self) -> None:
        expect_equal("value", 5, 5)
        expect_zero("value", 0)
        with pytest.raises(CheckFailure, match="value mismatch"):
            expect_equal("value", 5, 6)
        with pytest.raises(CheckFailure, match="leaked"):
            expect_zero("value", 1)

    def test_non_integer_values_are_not_hex_formatted(self) -> None:
        failure = CheckFailure("state", expected="USER", actual=True)
        assert str(failure) == "state (expected USER, got True)"


# =============================================================================
# Stimulus injector
# =============================================================================


class TestStimulus:
    def test_trigger_raises_software_interrupt(self, env: CheckEnvironment) -> None:
        env.observatory.arm()
        env.stimulus.trigger(1 << IRQ_MSI_BIT)
        env.stimulus.settle()
        assert env.observatory.read().cause is TrapCause.MACHINE_SOFTWARE_INTERRUPT

    def test_nmi_ignores_global_enable(self, env: CheckEnvironment) -> None:
        env.hart.csr_clear(CSRAddress.MSTATUS, 1 << MSTATUS_MIE_BIT)
        env.observatory.arm()
        env.stimulus.trigger(1 << IRQ_NMI_BIT)
        env.stimulus.settle()
        assert env.observatory.read().cause is TrapCause.NMI

    def test_unmapped_trigger_aborts(self, make_env: Any) -> None:
        env = make_env(unmapped_side_channel=True)
        env.observatory.arm()
        with pytest.raises(UnrecoverableError, match="not mapped"):
            env.stimulus.trigger(1 << IRQ_MSI_BIT)


# =============================================================================
# Privilege sandbox
# =============================================================================


class TestSandbox:
    def test_trapping_block(self, env: CheckEnvironment) -> None:
        env.observatory.arm()
        result = env.sandbox.run_reduced(lambda hart: hart.ecall())
        assert result.trap.cause is TrapCause.ECALL_U
        assert not result.escaped
        assert env.hart.privilege == Privilege.MACHINE

    def test_non_trapping_block_escapes(self, env: CheckEnvironment) -> None:
        env.observatory.arm()
        result = env.sandbox.run_reduced(lambda hart: hart.privilege)
        assert result.value == Privilege.USER
        assert not result.trap.occurred
        assert result.escaped
        assert env.hart.privilege == Privilege.MACHINE

    def test_requires_user_mode(self, make_env: Any) -> None:
        env = make_env(Capabilities(user_mode=False))
        with pytest.raises(SkipCase):
            env.sandbox.run_reduced(lambda hart: None)

    def test_mret_that_stays_in_machine_mode(self, make_env: Any) -> None:
        env = make_env(mret_ignores_mpp=True)
        with pytest.raises(CheckFailure, match="did not enter user mode"):
            env.sandbox.run_reduced(lambda hart: None)


# =============================================================================
# PMP verifier
# =============================================================================


class TestPMPVerifier:
    def test_encode_region(self) -> None:
        assert encode_region(PROTECTED_BASE, 4) == (PROTECTED_BASE >> 2, PMP_MODE_NA4)
        assert encode_region(PROTECTED_BASE, 64) == ((PROTECTED_BASE >> 2) | 7, PMP_MODE_NAPOT)

    @pytest.mark.parametrize(
        ("index", "base", "size"),
        [
            (4, PROTECTED_BASE, 4),
            (0, PROTECTED_BASE, 12),
            (0, PROTECTED_BASE, 0),
            (0, PROTECTED_BASE + 4, 8),
        ],
    )
    def test_configure_rejects_bad_requests(
        self, env: CheckEnvironment, index: int, base: int, size: int
    ) -> None:
        with pytest.raises(ConfigError):
            env.pmp.configure(index, base, size, Permission.NONE)

    def test_configure_rejects_sub_grain_region(self, make_env: Any) -> None:
        env = make_env(Capabilities(pmp_granularity=16))
        with pytest.raises(ConfigError, match="granularity"):
            env.pmp.configure(0, PROTECTED_BASE, 8, Permission.NONE)

    @pytest.mark.parametrize("granularity", [4, 16, 64])
    def test_detect_granularity(self, make_env: Any, granularity: int) -> None:
        env = make_env(Capabilities(pmp_granularity=granularity))
        assert env.pmp.detect_granularity() == granularity

    def test_configure_reads_back(self, env: CheckEnvironment) -> None:
        region = env.pmp.configure(1, PROTECTED_BASE, 64, Permission.R)
        assert region == ProtectedRegion(1, PROTECTED_BASE, 64, Permission.R)
        assert env.pmp.read_cfg(1) == (PMP_MODE_NAPOT << PMP_A_SHIFT) | Permission.R.value

    def test_enforcement_on_compliant_hart(self, env: CheckEnvironment) -> None:
        region = env.pmp.configure(0, PROTECTED_BASE, 4, Permission.NONE)
        env.pmp.check_execute(region)
        env.pmp.check_read(region)
        env.pmp.check_write(region)

    def test_leaking_load_is_caught(self, make_env: Any) -> None:
        env = make_env(leak_denied_reads=True)
        region = env.pmp.configure(0, PROTECTED_BASE, 4, Permission.NONE)
        with pytest.raises(CheckFailure, match="leaked"):
            env.pmp.check_read(region)

    def test_lock(self, env: CheckEnvironment) -> None:
        env.pmp.check_lock(0)
        with pytest.raises(ConfigError, match="reads back"):
            env.pmp.configure(0, PROTECTED_BASE, 4, Permission.NONE)

    def test_ignored_lock_is_caught(self, make_env: Any) -> None:
        env = make_env(ignore_pmp_lock=True)
        with pytest.raises(CheckFailure, match="locked pmpcfg"):
            env.pmp.check_lock(0)


# =============================================================================
# Atomic verifier
# =============================================================================


class TestAtomicVerifier:
    def test_compliant_hart(self, env: CheckEnvironment) -> None:
        env.atomics.run_all()

    def test_store_keeps_reservation(self, make_env: Any) -> None:
        env = make_env(store_keeps_reservation=True)
        env.atomics.check_success()
        with pytest.raises(CheckFailure, match="intervening store"):
            env.atomics.check_store_breaks_reservation()

    def test_trap_keeps_reservation(self, make_env: Any) -> None:
        env = make_env(trap_keeps_reservation=True)
        with pytest.raises(CheckFailure, match="across a trap"):
            env.atomics.check_trap_breaks_reservation()

    def test_requires_a_extension(self, make_env: Any) -> None:
        env = make_env(Capabilities(atomics=False))
        with pytest.raises(SkipCase):
            env.atomics.check_success()
