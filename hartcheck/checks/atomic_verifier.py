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

"""Load-reserved / store-conditional semantics.

Atomic Verifier
===============

Three scenarios run against one word location, each starting from a freshly
written value:

    A  LR, SC                    SC succeeds (status 0), memory updated
    B  LR, plain store, SC       SC fails, memory holds the plain store
    C  LR, trap (ECALL), SC      SC fails, memory unchanged

The reservation itself is never inspected; only the architectural results
(SC status, memory, traps) are checked.
"""

import logging

from hartcheck.checks.expectations import expect_equal, expect_no_trap, expect_trap
from hartcheck.exceptions import CheckFailure, SkipCase
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import TrapObservatory
from hartcheck.verification_types import TrapCause

logger = logging.getLogger(__name__)

SUCCESS_INITIAL = 0x11223344
SUCCESS_STORE = 0x22446688

STORE_INITIAL = 0xAABBCCDD
INTERVENING_STORE = 0xDEADDEAD
STORE_ATTEMPT = 0x22446688

TRAP_INITIAL = 0x12341234
TRAP_ATTEMPT = 0xDEADBEEF


class AtomicVerifier:
    def __init__(self, hart: Hart, observatory: TrapObservatory, address: int):
        self.hart = hart
        self.observatory = observatory
        self.address = address

    def _require_atomics(self) -> None:
        if not self.hart.capabilities().atomics:
            raise SkipCase("A extension not implemented")

    def _reserve(self, initial: int) -> None:
        """Reset the location to ``initial`` and place a reservation on it."""
        self.hart.store_word(self.address, initial)
        self.observatory.arm()
        value = self.hart.load_reserved(self.address)
        expect_equal("LR.W value", initial, value)

    def check_success(self) -> None:
        """Scenario A: an undisturbed reservation lets SC succeed."""
        self._require_atomics()
        self._reserve(SUCCESS_INITIAL)
        status = self.hart.store_conditional(self.address, SUCCESS_STORE)
        expect_no_trap(self.observatory.read())
        expect_equal("SC.W status", 0, status)
        expect_equal("memory after SC.W", SUCCESS_STORE, self.hart.load_word(self.address))

    def check_store_breaks_reservation(self) -> None:
        """Scenario B: a plain store to the location cancels the reservation."""
        self._require_atomics()
        self._reserve(STORE_INITIAL)
        self.hart.store_word(self.address, INTERVENING_STORE)
        status = self.hart.store_conditional(self.address, STORE_ATTEMPT)
        expect_no_trap(self.observatory.read())
        if status == 0:
            raise CheckFailure("SC.W succeeded after an intervening store")
        expect_equal(
            "memory after failed SC.W", INTERVENING_STORE, self.hart.load_word(self.address)
        )

    def check_trap_breaks_reservation(self) -> None:
        """Scenario C: taking a trap cancels the reservation."""
        self._require_atomics()
        self._reserve(TRAP_INITIAL)
        self.hart.ecall()
        expect_trap(self.observatory.read(), TrapCause.ECALL_M)
        self.observatory.arm()
        status = self.hart.store_conditional(self.address, TRAP_ATTEMPT)
        expect_no_trap(self.observatory.read())
        if status == 0:
            raise CheckFailure("SC.W succeeded across a trap")
        expect_equal(
            "memory after failed SC.W", TRAP_INITIAL, self.hart.load_word(self.address)
        )

    def run_all(self) -> None:
        """Run scenarios A, B and C in order."""
        self.check_success()
        self.check_store_breaks_reservation()
        self.check_trap_breaks_reservation()
