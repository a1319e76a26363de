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

"""Tests for the case state machine, the runner loop and the ledger."""

import io

import pytest

from hartcheck.checks.expectations import expect_equal, expect_no_trap
from hartcheck.exceptions import CheckFailure, ConfigError, SkipCase, UnrecoverableError
from hartcheck.runner import CaseResult, CaseState, CheckEnvironment, Ledger, Runner, TestCase


def _raise(exc: Exception):
    def stimulus(env: CheckEnvironment) -> None:
        raise exc

    return stimulus


def _run(env: CheckEnvironment, cases: list[TestCase]) -> tuple[Ledger, list[str]]:
    out = io.StringIO()
    ledger = Runner(env, cases, out).run()
    return ledger, out.getvalue().splitlines()


class TestCaseStates:
    CASE = TestCase("noop", "No-op", lambda env: None)

    def test_pending_to_passed_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            CaseResult(1, self.CASE).advance(CaseState.PASSED)

    def test_finished_state_is_final(self) -> None:
        result = CaseResult(1, self.CASE)
        result.advance(CaseState.RUNNING)
        result.advance(CaseState.FAILED, "boom")
        with pytest.raises(ValueError):
            result.advance(CaseState.PASSED)

    def test_report_lines(self) -> None:
        passed = CaseResult(3, self.CASE)
        passed.advance(CaseState.RUNNING)
        passed.advance(CaseState.PASSED)
        skipped = CaseResult(4, self.CASE)
        skipped.advance(CaseState.SKIPPED, "n.a.")
        assert passed.report_line() == "[3] No-op: ok"
        assert skipped.report_line() == "[4] No-op: skipped (n.a.)"

    def test_ledger_rejects_unfinished_case(self) -> None:
        with pytest.raises(ValueError):
            Ledger().record(CaseResult(1, self.CASE))


class TestRunner:
    """Outcome classification and bookkeeping of Runner.run()."""

    def test_mixed_outcomes(self, env: CheckEnvironment) -> None:
        cases = [
            TestCase("pass", "Alpha", lambda env: 1, lambda env, v: expect_equal("v", 1, v)),
            TestCase("fail", "Beta", _raise(CheckFailure("boom"))),
            TestCase(
                "skip",
                "Gamma",
                lambda env: None,
                applies=lambda caps: False,
                skip_note="n.a. with C-ext",
            ),
            TestCase("config", "Delta", _raise(ConfigError("bad region"))),
        ]
        ledger, lines = _run(env, cases)

        assert lines == [
            "[1] Alpha: ok",
            "[2] Beta: FAIL (boom)",
            "[3] Gamma: skipped (n.a. with C-ext)",
            "[4] Delta: FAIL (bad region)",
        ]
        assert (ledger.total, ledger.passed, ledger.failed, ledger.skipped) == (3, 1, 2, 1)
        assert ledger.passed + ledger.failed == ledger.total
        assert ledger.total + ledger.skipped == len(ledger.results)
        assert ledger.exit_status == 2
        assert ledger.summary() == "PASS: 1/3\nFAIL: 2/3"
        assert ledger.result("skip").state is CaseState.SKIPPED

    def test_unknown_result_name(self, env: CheckEnvironment) -> None:
        ledger, _ = _run(env, [])
        with pytest.raises(KeyError):
            ledger.result("missing")
        assert ledger.summary() == "PASS: 0/0\nFAIL: 0/0"

    def test_runtime_skip(self, env: CheckEnvironment) -> None:
        ledger, lines = _run(env, [TestCase("late", "Late", _raise(SkipCase("no grain")))])
        assert lines == ["[1] Late: skipped (no grain)"]
        assert ledger.skipped == 1
        assert ledger.total == 0

    def test_check_receives_stimulus_outcome(self, env: CheckEnvironment) -> None:
        seen = []
        case = TestCase("o", "Outcome", lambda env: 42, lambda env, v: seen.append(v))
        _run(env, [case])
        assert seen == [42]

    def test_setup_and_cleanup_order(self, env: CheckEnvironment) -> None:
        calls: list[str] = []
        case = TestCase(
            "order",
            "Order",
            lambda env: calls.append("stimulus"),
            lambda env, _: calls.append("check"),
            setup=lambda env: calls.append("setup"),
            cleanup=lambda env: calls.append("cleanup"),
        )
        _run(env, [case])
        assert calls == ["setup", "stimulus", "check", "cleanup"]

    def test_cleanup_runs_after_failure(self, env: CheckEnvironment) -> None:
        calls: list[str] = []
        case = TestCase(
            "f", "Failing", _raise(CheckFailure("boom")), cleanup=lambda env: calls.append("x")
        )
        ledger, _ = _run(env, [case])
        assert calls == ["x"]
        assert ledger.failed == 1

    def test_cleanup_failure_fails_case(self, env: CheckEnvironment) -> None:
        case = TestCase(
            "c", "Cleanup", lambda env: None, cleanup=_raise(CheckFailure("left dirty"))
        )
        _, lines = _run(env, [case])
        assert lines == ["[1] Cleanup: FAIL (cleanup: left dirty)"]

    def test_cases_start_from_armed_observatory(self, env: CheckEnvironment) -> None:
        cases = [
            TestCase("t", "Trap", lambda env: env.hart.ecall()),
            TestCase(
                "n",
                "No trap",
                lambda env: None,
                lambda env, _: expect_no_trap(env.observatory.read()),
            ),
        ]
        ledger, _ = _run(env, cases)
        assert ledger.failed == 0

    def test_unrecoverable_error_aborts(self, env: CheckEnvironment) -> None:
        out = io.StringIO()
        runner = Runner(
            env,
            [
                TestCase("a", "First", lambda env: None),
                TestCase("b", "Fatal", _raise(UnrecoverableError("hart lost"))),
                TestCase("c", "Never", lambda env: None),
            ],
            out,
        )
        with pytest.raises(UnrecoverableError):
            runner.run()
        assert [r.case.name for r in runner.ledger.results] == ["a"]
        assert out.getvalue().splitlines() == ["[1] First: ok"]
