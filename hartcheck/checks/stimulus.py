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

"""Simulation side channel that raises interrupt requests on demand.

Stimulus Injector
=================

The testbench decodes one word address as an interrupt trigger: every bit set
in a stored word requests the interrupt with the same bit position in mie/mip.

    bit 0        non-maskable interrupt
    bit 3        machine software interrupt
    bit 7        machine timer interrupt
    bit 11       machine external interrupt
    bit 16 + n   fast interrupt channel n

Requests take a few cycles to propagate to the hart, so a trigger is normally
followed by settle().
"""

import logging

from hartcheck.config import CheckConfig
from hartcheck.exceptions import UnrecoverableError
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import TrapObservatory
from hartcheck.verification_types import TrapCause

logger = logging.getLogger(__name__)


class StimulusInjector:
    """Asserts interrupt lines through the simulation trigger address."""

    def __init__(self, hart: Hart, observatory: TrapObservatory, config: CheckConfig):
        self.hart = hart
        self.observatory = observatory
        self.config = config

    def trigger(self, mask: int) -> None:
        """Request every interrupt in ``mask`` with a single word store.

        Raises:
            UnrecoverableError: The trigger address is not decoded, so none
                of the remaining interrupt checks can work.
        """
        address = self.config.sim_trigger_address
        logger.debug("trigger interrupts 0x%08x", mask)
        self.hart.store_word(address, mask)
        record = self.observatory.read()
        if record.cause is TrapCause.STORE_ACCESS_FAULT and record.aux_value == address:
            raise UnrecoverableError(
                f"simulation trigger at 0x{address:08x} is not mapped"
            )

    def settle(self, cycles: int | None = None) -> None:
        """Idle long enough for triggered requests to reach the hart."""
        self.hart.idle(self.config.propagation_cycles if cycles is None else cycles)
