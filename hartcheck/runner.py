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

"""Declarative test cases, the runner loop and the result ledger.

Test Runner
===========

A compliance run is a fixed, ordered list of TestCase values executed by one
loop. Every case moves through a small state machine:

    PENDING -> SKIPPED                       (requirements not met)
    PENDING -> RUNNING -> PASSED | FAILED
    PENDING -> RUNNING -> SKIPPED            (case raised SkipCase)

Per case the runner:
    1. checks applies(capabilities), otherwise records a skip
    2. arms the trap observatory (mcause = 0, fresh TrapRecord)
    3. runs setup, stimulus and check
    4. runs cleanup, even when the case failed
    5. prints one report line and records the result in the ledger

CheckFailure, ConfigError and InstallError fail the case and the run goes on.
UnrecoverableError means the hart can no longer be trusted: it propagates out
of run() and aborts the remaining cases.

Report format:
    [3] mcountinhibit.cy CSR: ok
    [7] External memory access (@ 0xf0000000): skipped (n.a.)
    ...
    PASS: 41/42
    FAIL: 1/42
"""

import enum
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TextIO

from hartcheck.checks.atomic_verifier import AtomicVerifier
from hartcheck.checks.pmp_verifier import PMPVerifier
from hartcheck.checks.sandbox import PrivilegeSandbox
from hartcheck.checks.stimulus import StimulusInjector
from hartcheck.config import CheckConfig
from hartcheck.exceptions import CheckFailure, ConfigError, InstallError, SkipCase
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import OrderingAccumulator, TrapObservatory
from hartcheck.verification_types import Capabilities

logger = logging.getLogger(__name__)

RECORDED_FAILURES = (CheckFailure, ConfigError, InstallError)
"""Exceptions that fail a single case without stopping the run."""


@dataclass
class CheckEnvironment:
    """Everything a case can use, built once per run.

    Attributes:
        hart: The hart under test
        config: Run-time parameters
        capabilities: Result of the one capability query of the run
        observatory: Trap entry and trap record
        stimulus: Interrupt side channel
        sandbox: User-mode runner
        pmp: PMP verifier
        atomics: LR/SC verifier
        accumulator: Shared value of the external interrupt ordering check
        scratch: Values handed from one case to a later one
    """

    hart: Hart
    config: CheckConfig
    capabilities: Capabilities
    observatory: TrapObservatory
    stimulus: StimulusInjector
    sandbox: PrivilegeSandbox
    pmp: PMPVerifier
    atomics: AtomicVerifier
    accumulator: OrderingAccumulator = field(default_factory=OrderingAccumulator)
    scratch: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, hart: Hart, config: CheckConfig | None = None) -> "CheckEnvironment":
        config = config or CheckConfig()
        observatory = TrapObservatory(hart)
        sandbox = PrivilegeSandbox(hart, observatory)
        return cls(
            hart=hart,
            config=config,
            capabilities=hart.capabilities(),
            observatory=observatory,
            stimulus=StimulusInjector(hart, observatory, config),
            sandbox=sandbox,
            pmp=PMPVerifier(hart, observatory, sandbox),
            atomics=AtomicVerifier(hart, observatory, config.atomic_address),
        )


def _always(capabilities: Capabilities) -> bool:
    return True


@dataclass(frozen=True)
class TestCase:
    """One compliance case.

    ``stimulus`` returns an outcome that is handed to ``check``; either may
    raise CheckFailure. ``applies`` decides from the capabilities alone
    whether the case runs; ``skip_note`` is reported otherwise.
    """

    __test__ = False

    name: str
    description: str
    stimulus: Callable[[CheckEnvironment], Any]
    check: Callable[[CheckEnvironment, Any], None] | None = None
    applies: Callable[[Capabilities], bool] = _always
    setup: Callable[[CheckEnvironment], None] | None = None
    cleanup: Callable[[CheckEnvironment], None] | None = None
    skip_note: str = "n.a."


class CaseState(enum.Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    PASSED = "ok"
    FAILED = "FAIL"


_TRANSITIONS = {
    CaseState.PENDING: {CaseState.SKIPPED, CaseState.RUNNING},
    CaseState.RUNNING: {CaseState.PASSED, CaseState.FAILED, CaseState.SKIPPED},
    CaseState.SKIPPED: set(),
    CaseState.PASSED: set(),
    CaseState.FAILED: set(),
}


@dataclass
class CaseResult:
    """State of one case within a run."""

    index: int
    case: TestCase
    state: CaseState = CaseState.PENDING
    reason: str = ""

    def advance(self, state: CaseState, reason: str = "") -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"case {self.case.name}: {self.state.name} -> {state.name}")
        self.state = state
        self.reason = reason

    def report_line(self) -> str:
        line = f"[{self.index}] {self.case.description}: {self.state.value}"
        if self.reason and self.state in (CaseState.SKIPPED, CaseState.FAILED):
            line += f" ({self.reason})"
        return line


@dataclass
class Ledger:
    """Run totals. ``total`` counts executed (non-skipped) cases only.

    Invariants: passed + failed == total, total + skipped == len(results).
    """

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[CaseResult] = field(default_factory=list)

    def record(self, result: CaseResult) -> None:
        if result.state == CaseState.PASSED:
            self.total += 1
            self.passed += 1
        elif result.state == CaseState.FAILED:
            self.total += 1
            self.failed += 1
        elif result.state == CaseState.SKIPPED:
            self.skipped += 1
        else:
            raise ValueError(f"case {result.case.name} not finished: {result.state.name}")
        self.results.append(result)

    @property
    def exit_status(self) -> int:
        return self.failed

    def result(self, name: str) -> CaseResult:
        for result in self.results:
            if result.case.name == name:
                return result
        raise KeyError(name)

    def summary(self) -> str:
        return f"PASS: {self.passed}/{self.total}\nFAIL: {self.failed}/{self.total}"


class Runner:
    """Runs cases in declaration order and keeps the ledger."""

    def __init__(
        self,
        env: CheckEnvironment,
        cases: list[TestCase],
        out: TextIO | None = None,
    ):
        self.env = env
        self.cases = cases
        self.out = out or sys.stdout
        self.ledger = Ledger()

    def run(self) -> Ledger:
        for index, case in enumerate(self.cases, start=1):
            self.run_case(index, case)
        return self.ledger

    def run_case(self, index: int, case: TestCase) -> CaseResult:
        result = CaseResult(index, case)
        if not case.applies(self.env.capabilities):
            result.advance(CaseState.SKIPPED, case.skip_note)
        else:
            result.advance(CaseState.RUNNING)
            self._execute(case, result)
        print(result.report_line(), file=self.out)
        self.ledger.record(result)
        return result

    def _execute(self, case: TestCase, result: CaseResult) -> None:
        env = self.env
        logger.debug("running %s", case.name)
        failure: str | None = None
        skip: str | None = None
        try:
            env.observatory.arm()
            if case.setup is not None:
                case.setup(env)
            outcome = case.stimulus(env)
            if case.check is not None:
                case.check(env, outcome)
        except SkipCase as exc:
            skip = str(exc)
        except RECORDED_FAILURES as exc:
            failure = str(exc)

        if case.cleanup is not None:
            try:
                case.cleanup(env)
            except RECORDED_FAILURES as exc:
                if failure is None:
                    failure = f"cleanup: {exc}"

        if failure is not None:
            logger.info("%s failed: %s", case.name, failure)
            result.advance(CaseState.FAILED, failure)
        elif skip is not None:
            result.advance(CaseState.SKIPPED, skip)
        else:
            result.advance(CaseState.PASSED)
