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

"""Run a block of hart operations at user privilege.

Privilege Sandbox
=================

run_reduced() drops the hart to user mode, runs the block, snapshots the trap
record together with the block's return value and then guarantees the hart
is back in machine mode. A trapping instruction normally returns the hart to
machine mode through the default handler; if the block finished without
trapping, an escape ECALL is issued. The snapshot is taken before the escape,
so the escape trap never shows up in the result.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from hartcheck.exceptions import CheckFailure, SkipCase, UnrecoverableError
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import TrapObservatory
from hartcheck.verification_types import Privilege, TrapRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SandboxResult(Generic[T]):
    """Outcome of a block run at user privilege.

    Attributes:
        value: Return value of the block
        trap: Trap record snapshot taken right after the block
        escaped: The escape ECALL was needed to regain machine mode
    """

    value: T
    trap: TrapRecord
    escaped: bool


class PrivilegeSandbox:
    def __init__(self, hart: Hart, observatory: TrapObservatory):
        self.hart = hart
        self.observatory = observatory

    def run_reduced(self, block: Callable[[Hart], T]) -> SandboxResult[T]:
        """Run ``block(hart)`` in user mode and return to machine mode.

        Raises:
            SkipCase: The hart does not implement user mode
            CheckFailure: MRET did not drop the hart to user mode
            UnrecoverableError: Machine mode could not be regained
        """
        hart = self.hart
        if not hart.capabilities().user_mode:
            raise SkipCase("user mode not implemented")

        hart.enter_user_mode()
        if hart.privilege != Privilege.USER:
            raise CheckFailure(
                "hart did not enter user mode",
                expected=Privilege.USER.name,
                actual=hart.privilege.name,
            )

        try:
            value = block(hart)
            trap = self.observatory.read()
        finally:
            escaped = self._regain_machine_mode()
        return SandboxResult(value=value, trap=trap, escaped=escaped)

    def _regain_machine_mode(self) -> bool:
        if self.hart.privilege == Privilege.MACHINE:
            return False
        logger.debug("escaping user mode with ECALL")
        self.hart.ecall()
        if self.hart.privilege != Privilege.MACHINE:
            raise UnrecoverableError("hart is stuck below machine mode")
        return True
