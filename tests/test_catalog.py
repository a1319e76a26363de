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

"""End-to-end tests of the processor check catalog on the reference model.

Every model quirk emulates one hardware defect; the catalog must report the
case that targets it as failed, while a compliant model passes everything.
"""

import io
from typing import Any

import pytest

from hartcheck.catalog import (
    EXT_MEM_MARKER,
    EXT_MEM_PROGRAM,
    bring_up,
    get_time,
    hpm_report,
    processor_check_cases,
    run_processor_check,
    set_time,
    set_timecmp,
    write_program,
)
from hartcheck.config import CheckConfig, EXT_MEM_BASE_ADDRESS, MASK64
from hartcheck.encoders.instruction_encode import CSRAddress
from hartcheck.exceptions import UnrecoverableError
from hartcheck.models.hart_model import HartModel, HartModelConfig
from hartcheck.monitors.trap_observatory import TrapObservatory
from hartcheck.runner import CaseState, CheckEnvironment, Ledger
from hartcheck.verification_types import Capabilities

ALWAYS_SKIPPED = {"firq1_cfs", "firq9_neoled"}


def _run(model: HartModel, config: CheckConfig | None = None) -> tuple[Ledger, list[str]]:
    out = io.StringIO()
    ledger = run_processor_check(model, config, out)
    return ledger, out.getvalue().splitlines()


def _states(ledger: Ledger, state: CaseState) -> set[str]:
    return {result.case.name for result in ledger.results if result.state is state}


class TestCatalogShape:
    def test_names_are_unique(self) -> None:
        names = [case.name for case in processor_check_cases()]
        assert len(names) == len(set(names)) == 48

    def test_declaration_order(self) -> None:
        names = [case.name for case in processor_check_cases()]
        assert names[0] == "mcycle_carry"
        assert names[-3:] == ["atomic_success", "atomic_store", "atomic_trap"]
        pmp = names.index("pmp_create")
        assert names[pmp : pmp + 5] == [
            "pmp_create",
            "pmp_execute",
            "pmp_read",
            "pmp_write",
            "pmp_lock",
        ]

    def test_ext_mem_description_uses_configured_address(self) -> None:
        cases = processor_check_cases(CheckConfig(ext_mem_address=0xF000_0100))
        ext_mem = next(case for case in cases if case.name == "ext_mem")
        assert ext_mem.description == "External memory access (@ 0xf0000100)"


class TestCompliantRun:
    """A hart without defects passes every case that applies to it."""

    def test_everything_passes(self, model: HartModel) -> None:
        ledger, lines = _run(model)
        assert ledger.failed == 0, "\n".join(lines)
        assert _states(ledger, CaseState.SKIPPED) == ALWAYS_SKIPPED | {"i_align"}
        assert ledger.total == 45
        assert lines[0] == "<< PROCESSOR CHECK >>"
        assert "PASS: 45/45" in lines
        assert "FAIL: 0/45" in lines
        assert lines[-1] == "[CPU TEST COMPLETED SUCCESSFULLY!]"

    def test_report_lines_follow_declaration_index(self, model: HartModel) -> None:
        _, lines = _run(model)
        assert "[1] [m]cycle[h] counter: ok" in lines
        assert "[12] I_ALIGN (instr. alignment) EXC: skipped (n.a. with C-ext)" in lines
        assert "[48] Atomic access (LR+SC failing access 2): ok" in lines

    def test_runs_are_idempotent(self, make_model: Any) -> None:
        _, first = _run(make_model())
        _, second = _run(make_model())
        assert first == second

    def test_without_compressed_extension(self, make_model: Any) -> None:
        ledger, lines = _run(make_model(Capabilities(compressed=False)))
        assert ledger.failed == 0, "\n".join(lines)
        assert ledger.result("i_align").state is CaseState.PASSED
        assert ledger.result("ci_illegal").state is CaseState.SKIPPED
        assert "[15] CI_ILLEG (illegal compr. instr.) EXC: skipped (n.a. without C-ext)" in lines

    def test_without_user_mode(self, make_model: Any) -> None:
        ledger, lines = _run(make_model(Capabilities(user_mode=False)))
        assert ledger.failed == 0, "\n".join(lines)
        assert {
            "mcounteren_cy",
            "ecall_u",
            "wfi",
            "misa_user",
            "pmp_execute",
            "pmp_read",
            "pmp_write",
        } <= _states(ledger, CaseState.SKIPPED)
        assert ledger.result("pmp_lock").state is CaseState.PASSED

    def test_without_pmp(self, make_model: Any) -> None:
        ledger, _ = _run(make_model(Capabilities(pmp_regions=0)))
        assert ledger.failed == 0
        pmp_cases = {"pmp_create", "pmp_execute", "pmp_read", "pmp_write", "pmp_lock"}
        assert pmp_cases <= _states(ledger, CaseState.SKIPPED)

    def test_without_peripherals(self, make_model: Any) -> None:
        capabilities = Capabilities(
            wdt=False,
            uart0=False,
            uart1=False,
            spi=False,
            twi=False,
            xirq=False,
            slink=False,
            ext_mem=False,
        )
        ledger, _ = _run(make_model(capabilities))
        assert ledger.failed == 0
        assert _states(ledger, CaseState.SKIPPED) == ALWAYS_SKIPPED | {
            "i_align",
            "ext_mem",
            "firq0_wdt",
            "firq2_uart0_rx",
            "firq3_uart0_tx",
            "firq4_uart1_rx",
            "firq5_uart1_tx",
            "firq6_spi",
            "firq7_twi",
            "firq8_xirq",
            "firq10_11_slink",
        }


class TestDefectDetection:
    @pytest.mark.parametrize(
        ("quirk", "case_name"),
        [
            ("leak_denied_reads", "mcounteren_cy"),
            ("leak_denied_reads", "misa_user"),
            ("leak_denied_reads", "pmp_read"),
            ("ignore_pmp_lock", "pmp_lock"),
            ("store_keeps_reservation", "atomic_store"),
            ("trap_keeps_reservation", "atomic_trap"),
            ("xirq_highest_first", "firq8_xirq"),
            ("ignore_counter_inhibit", "mcountinhibit_cy"),
            ("illegal_mtval_zero", "i_illegal"),
            ("wdt_ignores_lock", "firq0_wdt"),
            ("mret_ignores_mpp", "ecall_u"),
            ("trap_records_machine_mpp", "ecall_u"),
        ],
    )
    def test_quirk_fails_its_case(self, make_model: Any, quirk: str, case_name: str) -> None:
        ledger, lines = _run(make_model(**{quirk: True}))
        assert ledger.result(case_name).state is CaseState.FAILED
        assert lines[-1] == "[CPU TEST FAILED!]"

    def test_ecall_u_checks_recorded_mpp(self, make_model: Any) -> None:
        ledger, _ = _run(make_model(trap_records_machine_mpp=True))
        assert "recorded MPP MACHINE, expected USER" in ledger.result("ecall_u").reason

    def test_wfi_timeout_fails_only_its_case(self) -> None:
        ledger, lines = _run(HartModel(HartModelConfig(wfi_timeout_cycles=10)))
        assert _states(ledger, CaseState.FAILED) == {"wfi"}
        assert "no trap taken" in ledger.result("wfi").reason
        assert ledger.result("atomic_trap").state is CaseState.PASSED
        assert lines[-1] == "[CPU TEST FAILED!]"

    def test_dead_timer_does_not_abort_run(self, model: HartModel) -> None:
        model.timer._evaluate = lambda: None
        ledger, lines = _run(model)
        failed = _states(ledger, CaseState.FAILED)
        assert {"mti", "wfi"} <= failed
        assert ledger.result("atomic_trap").state is CaseState.PASSED
        assert lines[-1] == "[CPU TEST FAILED!]"

    def test_unmapped_side_channel_aborts_run(self, make_model: Any) -> None:
        out = io.StringIO()
        with pytest.raises(UnrecoverableError) as info:
            run_processor_check(make_model(unmapped_side_channel=True), None, out)
        names = [result.case.name for result in info.value.ledger.results]
        assert "mti" in names
        assert "msi" not in names
        assert out.getvalue().splitlines()[-1].startswith("[CPU TEST ABORTED:")

    def test_bring_up_wraps_install_error(self, model: HartModel) -> None:
        env = CheckEnvironment.create(model)
        # direct mode: mtvec bit 1 is not writable
        env.observatory = TrapObservatory(model, trap_vector=0x82)
        with pytest.raises(UnrecoverableError, match="trap environment"):
            bring_up(env)


class TestHpmReport:
    def test_format(self, env: CheckEnvironment) -> None:
        lines = hpm_report(env)
        assert lines[0] == "-- HPM reports LOW (4 HPMs available) --"
        assert lines[1].startswith("#IR - Instr.:   ")
        assert lines[2].startswith("#CY - CLKs:     ")
        assert len(lines) == 3 + 4
        assert lines[3].startswith("#03 - Compr.:   ")
        assert lines[6].startswith("#06 - ALU wait: ")

    def test_report_freezes_counters(self, env: CheckEnvironment) -> None:
        hpm_report(env)
        assert env.hart.csr_read(CSRAddress.MCOUNTINHIBIT) != 0

    def test_report_can_be_disabled(self, model: HartModel) -> None:
        _, lines = _run(model, CheckConfig(report_hpm=False))
        assert not any(line.startswith("-- HPM reports") for line in lines)

    def test_no_report_without_hpm(self, make_model: Any) -> None:
        ledger, lines = _run(make_model(Capabilities(num_hpm_counters=0)))
        assert ledger.result("hpm_events").state is CaseState.SKIPPED
        assert not any(line.startswith("-- HPM reports") for line in lines)


class TestHartHelpers:
    def test_time_round_trip(self, env: CheckEnvironment) -> None:
        set_time(env.hart, 0x0000_0001_0000_0000)
        assert get_time(env.hart) >= 0x0000_0001_0000_0000

    def test_timecmp_write_does_not_fire_early(self, env: CheckEnvironment) -> None:
        set_time(env.hart, 0x0000_0000_8000_0000)
        env.observatory.arm()
        set_timecmp(env.hart, 0x0000_0001_0000_0000)
        env.hart.idle(4)
        assert not env.observatory.read().occurred
        set_timecmp(env.hart, MASK64)

    def test_program_runs_from_external_memory(self, env: CheckEnvironment) -> None:
        write_program(env.hart, EXT_MEM_BASE_ADDRESS, EXT_MEM_PROGRAM)
        env.hart.call(EXT_MEM_BASE_ADDRESS)
        assert env.hart.csr_read(CSRAddress.MSCRATCH) == EXT_MEM_MARKER
