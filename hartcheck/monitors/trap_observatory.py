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

"""Trap observatory: the single trap entry point and its dispatch table.

Trap Observatory
================

Every trap the hart takes enters through ``TrapObservatory._entry``. The entry
captures mcause, mtval, mepc and mstatus.MPP into a TrapRecord *before* any
handler code runs, then dispatches to the handler installed for the cause.
Assertions read the record afterwards, so nothing a handler or a later
instruction does can disturb what was observed.

How It Works:
    1. setup() registers the entry with the hart, writes mtvec and installs
       the default handler on every vector
    2. arm() clears mcause and resets the record before a stimulus
    3. the hart traps, the entry snapshots the state and runs the handler
    4. read() returns the snapshot for the assertions

Handlers Provided:
    - default_handler: forces mstatus.MPP to machine mode, so the hart always
      comes back from a trap in machine mode
    - debug_handler: logs the trap in full, then repairs MPP like the default
    - the external interrupt dispatcher (FIRQ8), which reads the controller's
      source register, runs the channel handler and acknowledges the channel

Handlers run synchronously inside trap delivery and must not trap; a trap
inside a handler is reported by the hart as UnrecoverableError.
"""

import logging
from collections.abc import Callable

from hartcheck.config import (
    FIRQ_XIRQ,
    IMEM_BASE_ADDRESS,
    MASK32,
    MSTATUS_MPP_LOW_BIT,
    MSTATUS_MPP_MASK,
    XIRQ_BASE_ADDRESS,
    XIRQ_IER,
    XIRQ_IPR,
    XIRQ_SCR,
)
from hartcheck.encoders.instruction_encode import CSRAddress
from hartcheck.exceptions import InstallError
from hartcheck.hart_interface import Hart
from hartcheck.verification_types import Privilege, TrapCause, TrapRecord

logger = logging.getLogger(__name__)

TrapHandler = Callable[[Hart, TrapRecord], None]
ChannelHandler = Callable[[Hart, int], None]

DEFAULT_TRAP_VECTOR = IMEM_BASE_ADDRESS + 0x80
"""mtvec value written by setup() (direct mode)."""


def default_handler(hart: Hart, record: TrapRecord) -> None:
    """Return to machine mode regardless of where the trap came from."""
    hart.csr_set(CSRAddress.MSTATUS, MSTATUS_MPP_MASK)


def debug_handler(hart: Hart, record: TrapRecord) -> None:
    """Report the trap in full detail, then return to machine mode."""
    kind = "interrupt" if record.cause.is_interrupt else "exception"
    logger.info(
        "<TRAP> %s %s (mcause 0x%08x) epc=0x%08x tval=0x%08x from %s",
        kind,
        record.cause.name,
        record.cause.mcause,
        record.epc,
        record.aux_value,
        record.from_privilege.name,
    )
    default_handler(hart, record)


def _privilege_from_mpp(mstatus: int) -> Privilege:
    mpp = (mstatus & MSTATUS_MPP_MASK) >> MSTATUS_MPP_LOW_BIT
    return Privilege.USER if mpp == Privilege.USER else Privilege.MACHINE


class TrapObservatory:
    """Owns the hart's trap entry, the vector table and the TrapRecord."""

    def __init__(
        self,
        hart: Hart,
        trap_vector: int = DEFAULT_TRAP_VECTOR,
        xirq_base: int = XIRQ_BASE_ADDRESS,
    ):
        self.hart = hart
        self.trap_vector = trap_vector
        self.xirq_base = xirq_base
        self._vectors: dict[TrapCause, TrapHandler] = {
            cause: debug_handler for cause in TrapCause.vectors()
        }
        self._channels: dict[int, ChannelHandler] = {}
        self._record = TrapRecord()
        self.traps_taken = 0

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def setup(self) -> None:
        """Register the entry point, program mtvec and install default handlers.

        Raises:
            InstallError: mtvec did not read back, or writing it trapped
        """
        self.hart.set_trap_entry(self._entry)
        for cause in self._vectors:
            self._vectors[cause] = default_handler
        self._record = TrapRecord()

        self.hart.csr_write(CSRAddress.MTVEC, self.trap_vector)
        readback = self.hart.csr_read(CSRAddress.MTVEC)
        if self._record.occurred:
            raise InstallError(
                f"trap {self._record.cause.name} while programming mtvec"
            )
        if readback != self.trap_vector & MASK32:
            raise InstallError(
                f"mtvec read back 0x{readback:08x}, wrote 0x{self.trap_vector:08x}"
            )
        logger.debug("trap entry installed at 0x%08x", self.trap_vector)

    @staticmethod
    def resolve(vector_id: TrapCause | int) -> TrapCause:
        """Map a vector id (cause or vector table index) to its TrapCause."""
        vectors = TrapCause.vectors()
        if isinstance(vector_id, TrapCause) and vector_id is not TrapCause.NONE:
            return vector_id
        if (
            isinstance(vector_id, int)
            and not isinstance(vector_id, bool)
            and 0 <= vector_id < len(vectors)
        ):
            return vectors[vector_id]
        raise InstallError(f"no trap vector {vector_id!r}", vector_id=vector_id)

    def install(self, vector_id: TrapCause | int, handler: TrapHandler) -> None:
        self._vectors[self.resolve(vector_id)] = handler

    def uninstall(self, vector_id: TrapCause | int) -> None:
        """Fall back to the debug handler for this vector."""
        self._vectors[self.resolve(vector_id)] = debug_handler

    def handler_for(self, vector_id: TrapCause | int) -> TrapHandler:
        return self._vectors[self.resolve(vector_id)]

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def arm(self) -> None:
        """Clear mcause and forget the previous trap."""
        self.hart.csr_write(CSRAddress.MCAUSE, 0)
        self._record = TrapRecord()

    def read(self) -> TrapRecord:
        return self._record

    def _entry(self) -> None:
        hart = self.hart
        mcause = hart.csr_read(CSRAddress.MCAUSE)
        mtval = hart.csr_read(CSRAddress.MTVAL)
        mepc = hart.csr_read(CSRAddress.MEPC)
        mstatus = hart.csr_read(CSRAddress.MSTATUS)
        self.traps_taken += 1

        try:
            cause = TrapCause.from_mcause(mcause)
        except ValueError:
            logger.warning("unknown trap cause 0x%08x at epc 0x%08x", mcause, mepc)
            cause = TrapCause.NONE

        self._record = TrapRecord(
            cause=cause,
            aux_value=mtval,
            occurred=True,
            epc=mepc,
            from_privilege=hart.trapped_from,
            return_privilege=_privilege_from_mpp(mstatus),
        )
        handler = debug_handler if cause is TrapCause.NONE else self._vectors[cause]
        handler(hart, self._record)

    # ------------------------------------------------------------------
    # External interrupt controller channels
    # ------------------------------------------------------------------

    def setup_channels(self) -> None:
        """Reset the controller and route its interrupt to the channel dispatcher."""
        self._channels.clear()
        self.hart.store_word(self.xirq_base + XIRQ_IER, 0)
        self.hart.store_word(self.xirq_base + XIRQ_IPR, 0)
        self.install(TrapCause.firq(FIRQ_XIRQ), self._dispatch_channel)

    def install_channel(self, channel: int, handler: ChannelHandler) -> None:
        """Bind ``handler`` to a controller channel and enable the channel."""
        if not 0 <= channel < 32:
            raise InstallError(f"no external interrupt channel {channel}", vector_id=channel)
        self._channels[channel] = handler
        enabled = self.hart.load_word(self.xirq_base + XIRQ_IER)
        self.hart.store_word(self.xirq_base + XIRQ_IER, enabled | (1 << channel))

    def teardown_channels(self) -> None:
        """Disable every channel, drop pending requests, restore the default vector."""
        self.hart.store_word(self.xirq_base + XIRQ_IER, 0)
        self.hart.store_word(self.xirq_base + XIRQ_IPR, 0)
        self._channels.clear()
        self.install(TrapCause.firq(FIRQ_XIRQ), default_handler)

    def _dispatch_channel(self, hart: Hart, record: TrapRecord) -> None:
        channel = hart.load_word(self.xirq_base + XIRQ_SCR) & 0x1F
        handler = self._channels.get(channel)
        if handler is None:
            logger.warning("external interrupt on unhandled channel %d", channel)
        else:
            handler(hart, channel)
        hart.store_word(self.xirq_base + XIRQ_IPR, ~(1 << channel) & MASK32)
        hart.store_word(self.xirq_base + XIRQ_SCR, 0)
        default_handler(hart, record)


class OrderingAccumulator:
    """Shared value used to prove in which order two channel handlers ran.

    Channel 0 adds 2 and channel 1 doubles. Starting from 0, running channel 0
    first gives (0 + 2) * 2 = 4; any other order or count gives something else.
    """

    EXPECTED = 4

    def __init__(self) -> None:
        self.value = 0

    def reset(self) -> None:
        self.value = 0

    def add_two(self, hart: Hart, channel: int) -> None:
        self.value += 2

    def double(self, hart: Hart, channel: int) -> None:
        self.value *= 2
