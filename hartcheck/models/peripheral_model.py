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

"""Interrupt lines and memory-mapped peripherals of the reference hart model.

Peripheral Models
=================

Each peripheral is a word-addressed device (see memory_model.Device) that
raises its interrupt on an ``InterruptLines`` object shared with the hart.
Interrupt bit positions follow the mie/mip layout; bit 0 carries the
non-maskable interrupt.

Two kinds of request exist:
    - pulses (side channel, timer compare edge, peripheral events) are latched
      as pending after the injection latency and cleared when the hart takes
      the trap or software writes 0 to the mip bit
    - levels (the external interrupt controller output) stay pending for as
      long as the source holds them
"""

import logging
from collections import deque
from collections.abc import Callable

from hartcheck.config import (
    FIRQ_SLINK_RX,
    FIRQ_SLINK_TX,
    FIRQ_SPI,
    FIRQ_TWI,
    FIRQ_WDT,
    FIRQ_XIRQ,
    GPIO_INPUT,
    GPIO_OUTPUT,
    IRQ_FIRQ_BASE_BIT,
    IRQ_MTI_BIT,
    MASK32,
    MASK64,
    MTIME_CMP_HI,
    MTIME_CMP_LO,
    MTIME_TIME_HI,
    MTIME_TIME_LO,
    SLINK_CT,
    SLINK_CT_EN_BIT,
    SLINK_DATA0,
    SLINK_STATUS,
    SLINK_STATUS_RX0_AVAIL_BIT,
    SLINK_STATUS_TX0_FREE_BIT,
    SPI_CT,
    SPI_CT_EN_BIT,
    SPI_DATA,
    TWI_CT,
    TWI_CT_EN_BIT,
    TWI_CT_START_BIT,
    TWI_CT_STOP_BIT,
    TWI_DATA,
    UART_CT,
    UART_CT_EN_BIT,
    UART_CT_SIM_MODE_BIT,
    UART_DATA,
    WDT_CT,
    WDT_CT_EN_BIT,
    WDT_CT_FORCE_BIT,
    WDT_CT_LOCK_BIT,
    WDT_CT_MODE_BIT,
    XIRQ_IER,
    XIRQ_IPR,
    XIRQ_NUM_CHANNELS,
    XIRQ_SCR,
)

logger = logging.getLogger(__name__)


def firq_bit(channel: int) -> int:
    """mip/mie bit mask of fast interrupt channel ``channel``."""
    return 1 << (IRQ_FIRQ_BASE_BIT + channel)


class InterruptLines:
    """Pending interrupt state between the peripherals and the hart.

    Attributes:
        latency: Cycles between a pulse and the pending bit becoming visible
        now: Current cycle, advanced by the hart
    """

    def __init__(self, latency: int = 1):
        self.latency = latency
        self.now = 0
        self._latched = 0
        self._levels = 0
        self._in_flight: deque[tuple[int, int]] = deque()

    def pulse(self, mask: int) -> None:
        """Request the interrupts in ``mask``; they latch after the latency."""
        self._in_flight.append((self.now + self.latency, mask & MASK32))
        self._deliver()

    def set_level(self, mask: int, asserted: bool) -> None:
        if asserted:
            self._levels |= mask
        else:
            self._levels &= ~mask

    def advance(self, cycles: int) -> None:
        self.now += cycles
        self._deliver()

    def _deliver(self) -> None:
        while self._in_flight and self._in_flight[0][0] <= self.now:
            _, mask = self._in_flight.popleft()
            self._latched |= mask

    @property
    def pending(self) -> int:
        return self._latched | self._levels

    def acknowledge(self, mask: int) -> None:
        """Drop latched requests in ``mask`` (levels are unaffected)."""
        self._latched &= ~mask


class SimTrigger:
    """Testbench side channel: a word write pulses the interrupts in its mask."""

    def __init__(self, lines: InterruptLines):
        self.lines = lines

    def read_word(self, offset: int) -> int:
        return 0

    def write_word(self, offset: int, value: int) -> None:
        logger.debug("side channel trigger 0x%08x", value)
        self.lines.pulse(value)


class MachineTimer:
    """64-bit machine timer with a compare register.

    The timer interrupt is requested on the rising edge of time >= timecmp,
    evaluated whenever time advances or either register is written.
    """

    def __init__(self, lines: InterruptLines):
        self.lines = lines
        self.time = 0
        self.timecmp = MASK64
        self._matched = False

    def _evaluate(self) -> None:
        matched = self.time >= self.timecmp
        if matched and not self._matched:
            self.lines.pulse(1 << IRQ_MTI_BIT)
        self._matched = matched

    def tick(self, cycles: int) -> None:
        self.time = (self.time + cycles) & MASK64
        self._evaluate()

    def read_word(self, offset: int) -> int:
        if offset == MTIME_TIME_LO:
            return self.time & MASK32
        if offset == MTIME_TIME_HI:
            return self.time >> 32
        if offset == MTIME_CMP_LO:
            return self.timecmp & MASK32
        if offset == MTIME_CMP_HI:
            return self.timecmp >> 32
        return 0

    def write_word(self, offset: int, value: int) -> None:
        if offset == MTIME_TIME_LO:
            self.time = (self.time & ~MASK32 & MASK64) | value
        elif offset == MTIME_TIME_HI:
            self.time = (self.time & MASK32) | (value << 32)
        elif offset == MTIME_CMP_LO:
            self.timecmp = (self.timecmp & ~MASK32 & MASK64) | value
        elif offset == MTIME_CMP_HI:
            self.timecmp = (self.timecmp & MASK32) | (value << 32)
        self._evaluate()


class Watchdog:
    """Watchdog timer; once locked only the FORCE command is accepted."""

    def __init__(self, lines: InterruptLines, honor_lock: bool = True):
        self.lines = lines
        self.honor_lock = honor_lock
        self.control = 0

    def _bit(self, bit: int) -> bool:
        return bool(self.control >> bit & 1)

    def read_word(self, offset: int) -> int:
        return self.control if offset == WDT_CT else 0

    def write_word(self, offset: int, value: int) -> None:
        if offset != WDT_CT:
            return
        if not (self.honor_lock and self._bit(WDT_CT_LOCK_BIT)):
            self.control = value & ~(1 << WDT_CT_FORCE_BIT)
        if value >> WDT_CT_FORCE_BIT & 1 and self._bit(WDT_CT_EN_BIT):
            self._timeout()

    def _timeout(self) -> None:
        if self._bit(WDT_CT_MODE_BIT):
            self.lines.pulse(firq_bit(FIRQ_WDT))
        else:
            logger.warning("watchdog timeout in reset mode ignored by the model")


class Uart:
    """UART with transmit-done and (loopback) receive interrupts.

    Transmission completes instantly. Unless simulation mode is set, the
    transmitted byte is looped back into the receiver.
    """

    def __init__(self, lines: InterruptLines, rx_channel: int, tx_channel: int):
        self.lines = lines
        self.rx_channel = rx_channel
        self.tx_channel = tx_channel
        self.control = 0
        self.rx_data = 0

    def read_word(self, offset: int) -> int:
        if offset == UART_CT:
            return self.control
        if offset == UART_DATA:
            return self.rx_data
        return 0

    def write_word(self, offset: int, value: int) -> None:
        if offset == UART_CT:
            self.control = value
        elif offset == UART_DATA and self.control >> UART_CT_EN_BIT & 1:
            mask = firq_bit(self.tx_channel)
            if not self.control >> UART_CT_SIM_MODE_BIT & 1:
                self.rx_data = value & 0xFF
                mask |= firq_bit(self.rx_channel)
            self.lines.pulse(mask)


class SpiController:
    """SPI controller; every completed transfer raises its interrupt."""

    def __init__(self, lines: InterruptLines):
        self.lines = lines
        self.control = 0
        self.data = 0

    def read_word(self, offset: int) -> int:
        if offset == SPI_CT:
            return self.control
        if offset == SPI_DATA:
            return self.data
        return 0

    def write_word(self, offset: int, value: int) -> None:
        if offset == SPI_CT:
            self.control = value
        elif offset == SPI_DATA and self.control >> SPI_CT_EN_BIT & 1:
            self.data = value & 0xFF
            self.lines.pulse(firq_bit(FIRQ_SPI))


class TwiController:
    """Two-wire controller; START/STOP are commands, data writes transfer."""

    def __init__(self, lines: InterruptLines):
        self.lines = lines
        self.control = 0
        self.busy = False

    def read_word(self, offset: int) -> int:
        return self.control if offset == TWI_CT else 0

    def write_word(self, offset: int, value: int) -> None:
        commands = (1 << TWI_CT_START_BIT) | (1 << TWI_CT_STOP_BIT)
        if offset == TWI_CT:
            self.control = value & ~commands
            if value >> TWI_CT_START_BIT & 1:
                self.busy = True
            if value >> TWI_CT_STOP_BIT & 1:
                self.busy = False
        elif offset == TWI_DATA and self.control >> TWI_CT_EN_BIT & 1:
            self.lines.pulse(firq_bit(FIRQ_TWI))


class ExternalInterruptController:
    """Collects external interrupt channels onto one fast interrupt line.

    Channels latch on rising input edges. The FIRQ line is a level that stays
    asserted while any enabled channel is pending. Reading the source register
    returns the channel to service: the lowest pending enabled channel, or the
    highest one when ``highest_first`` is set.
    """

    def __init__(self, lines: InterruptLines, highest_first: bool = False):
        self.lines = lines
        self.highest_first = highest_first
        self.enable = 0
        self.pending = 0
        self._inputs = 0

    def drive_inputs(self, value: int) -> None:
        rising = value & ~self._inputs
        self._inputs = value
        self.pending |= rising
        self._update()

    def _update(self) -> None:
        self.lines.set_level(firq_bit(FIRQ_XIRQ), bool(self.enable & self.pending))

    def _source(self) -> int:
        active = self.enable & self.pending
        if not active:
            return 0
        if self.highest_first:
            return active.bit_length() - 1
        return (active & -active).bit_length() - 1

    def read_word(self, offset: int) -> int:
        if offset == XIRQ_IER:
            return self.enable
        if offset == XIRQ_IPR:
            return self.pending
        if offset == XIRQ_SCR:
            return self._source()
        return 0

    def write_word(self, offset: int, value: int) -> None:
        channel_mask = (1 << XIRQ_NUM_CHANNELS) - 1
        if offset == XIRQ_IER:
            self.enable = value & channel_mask
        elif offset == XIRQ_IPR:
            # write 0 to clear
            self.pending &= value
        elif offset != XIRQ_SCR:
            return
        self._update()


class Gpio:
    """GPIO port; the output is looped back to a listener (the XIRQ inputs)."""

    def __init__(self, on_output: Callable[[int], None] | None = None):
        self.on_output = on_output
        self.output = 0
        self.input = 0

    def read_word(self, offset: int) -> int:
        if offset == GPIO_INPUT:
            return self.input
        if offset == GPIO_OUTPUT:
            return self.output
        return 0

    def write_word(self, offset: int, value: int) -> None:
        if offset != GPIO_OUTPUT:
            return
        self.output = value
        self.input = value
        if self.on_output is not None:
            self.on_output(value)


class StreamLink:
    """Stream link with transmit channel 0 looped back into receive channel 0."""

    def __init__(self, lines: InterruptLines, depth: int = 4):
        self.lines = lines
        self.depth = depth
        self.control = 0
        self._fifo: deque[int] = deque()

    @property
    def enabled(self) -> bool:
        return bool(self.control >> SLINK_CT_EN_BIT & 1)

    def read_word(self, offset: int) -> int:
        if offset == SLINK_CT:
            return self.control
        if offset == SLINK_STATUS:
            status = 0
            if self._fifo:
                status |= 1 << SLINK_STATUS_RX0_AVAIL_BIT
            if self.enabled and len(self._fifo) < self.depth:
                status |= 1 << SLINK_STATUS_TX0_FREE_BIT
            return status
        if offset == SLINK_DATA0:
            return self._fifo.popleft() if self._fifo else 0
        return 0

    def write_word(self, offset: int, value: int) -> None:
        if offset == SLINK_CT:
            self.control = value
            if not self.enabled:
                self._fifo.clear()
        elif offset == SLINK_DATA0 and self.enabled and len(self._fifo) < self.depth:
            self._fifo.append(value)
            self.lines.pulse(firq_bit(FIRQ_SLINK_TX) | firq_bit(FIRQ_SLINK_RX))
