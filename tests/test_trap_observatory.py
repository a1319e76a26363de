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

"""Tests for the trap observatory: vector table, trap records and XIRQ channels."""

from typing import Any

import pytest

from hartcheck.config import FIRQ_XIRQ, GPIO_BASE_ADDRESS, GPIO_OUTPUT
from hartcheck.encoders.instruction_encode import CSRAddress
from hartcheck.exceptions import InstallError
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import (
    DEFAULT_TRAP_VECTOR,
    OrderingAccumulator,
    TrapObservatory,
    debug_handler,
    default_handler,
)
from hartcheck.runner import CheckEnvironment
from hartcheck.verification_types import Privilege, TrapCause, TrapRecord


class TestVectorResolution:
    """Vector ids are TrapCause members or indices into the fixed table."""

    def test_cause_resolves_to_itself(self) -> None:
        assert TrapObservatory.resolve(TrapCause.ECALL_M) is TrapCause.ECALL_M

    def test_index_follows_table_order(self) -> None:
        vectors = TrapCause.vectors()
        assert TrapObservatory.resolve(0) is TrapCause.INSTRUCTION_MISALIGNED
        assert TrapObservatory.resolve(len(vectors) - 1) is TrapCause.FIRQ_15

    @pytest.mark.parametrize("vector_id", [-1, 30, True, TrapCause.NONE, "ecall"])
    def test_rejects_unknown_vectors(self, vector_id: Any) -> None:
        with pytest.raises(InstallError) as info:
            TrapObservatory.resolve(vector_id)
        assert info.value.vector_id == vector_id

    def test_table_has_no_none_entry(self) -> None:
        assert TrapCause.NONE not in TrapCause.vectors()
        assert len(TrapCause.vectors()) == 30


class TestInstallation:
    def test_setup_programs_mtvec(self, env: CheckEnvironment) -> None:
        assert env.hart.csr_read(CSRAddress.MTVEC) == DEFAULT_TRAP_VECTOR

    def test_setup_installs_default_handlers(self, env: CheckEnvironment) -> None:
        for cause in TrapCause.vectors():
            assert env.observatory.handler_for(cause) is default_handler

    def test_uninstall_falls_back_to_debug_handler(self, env: CheckEnvironment) -> None:
        env.observatory.uninstall(TrapCause.BREAKPOINT)
        assert env.observatory.handler_for(TrapCause.BREAKPOINT) is debug_handler

    def test_install_rejects_missing_vector(self, env: CheckEnvironment) -> None:
        with pytest.raises(InstallError):
            env.observatory.install(99, default_handler)

    def test_custom_handler_receives_record(self, env: CheckEnvironment) -> None:
        seen: list[TrapRecord] = []

        def handler(hart: Hart, record: TrapRecord) -> None:
            seen.append(record)
            default_handler(hart, record)

        env.observatory.install(TrapCause.BREAKPOINT, handler)
        env.observatory.arm()
        env.hart.ebreak()
        assert len(seen) == 1
        assert seen[0] == env.observatory.read()
        assert seen[0].cause is TrapCause.BREAKPOINT
        assert seen[0].aux_value == seen[0].epc


class TestRecord:
    def test_arm_clears_mcause_and_record(self, env: CheckEnvironment) -> None:
        env.hart.ecall()
        assert env.observatory.read().occurred
        env.observatory.arm()
        assert env.observatory.read() == TrapRecord()
        assert env.hart.csr_read(CSRAddress.MCAUSE) == 0

    def test_snapshot_taken_before_handler(self, env: CheckEnvironment) -> None:
        env.observatory.arm()
        result = env.sandbox.run_reduced(lambda hart: hart.ecall())
        record = result.trap
        assert record.cause is TrapCause.ECALL_U
        assert record.from_privilege == Privilege.USER
        # the default handler repaired MPP only after the snapshot
        assert record.return_privilege == Privilege.USER
        assert env.hart.privilege == Privilege.MACHINE

    def test_counts_traps(self, env: CheckEnvironment) -> None:
        before = env.observatory.traps_taken
        env.hart.ecall()
        env.hart.ebreak()
        assert env.observatory.traps_taken == before + 2

    def test_unknown_mcause_is_rejected_by_decoder(self) -> None:
        with pytest.raises(ValueError):
            TrapCause.from_mcause(0x1F)


class TestExternalChannels:
    """Two XIRQ channels served through the FIRQ8 dispatcher."""

    @staticmethod
    def _arm_channels(env: CheckEnvironment) -> OrderingAccumulator:
        accumulator = OrderingAccumulator()
        env.observatory.setup_channels()
        env.observatory.install_channel(0, accumulator.add_two)
        env.observatory.install_channel(1, accumulator.double)
        env.hart.csr_set(CSRAddress.MIE, 1 << (16 + FIRQ_XIRQ))
        return accumulator

    def test_channels_served_lowest_first(self, env: CheckEnvironment) -> None:
        accumulator = self._arm_channels(env)
        env.observatory.arm()
        env.hart.store_word(GPIO_BASE_ADDRESS + GPIO_OUTPUT, 0b11)
        env.hart.idle(3)
        assert env.observatory.read().cause is TrapCause.firq(FIRQ_XIRQ)
        assert accumulator.value == OrderingAccumulator.EXPECTED

    def test_reversed_order_is_detected(self, make_env: Any) -> None:
        env = make_env(xirq_highest_first=True)
        accumulator = self._arm_channels(env)
        env.hart.store_word(GPIO_BASE_ADDRESS + GPIO_OUTPUT, 0b11)
        env.hart.idle(3)
        assert accumulator.value != OrderingAccumulator.EXPECTED

    def test_teardown_restores_default_vector(self, env: CheckEnvironment) -> None:
        self._arm_channels(env)
        env.observatory.teardown_channels()
        assert env.observatory.handler_for(TrapCause.firq(FIRQ_XIRQ)) is default_handler

    def test_channel_out_of_range(self, env: CheckEnvironment) -> None:
        env.observatory.setup_channels()
        with pytest.raises(InstallError):
            env.observatory.install_channel(32, lambda hart, channel: None)
