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

"""Physical memory protection unit of the reference hart model.

PMP Model
=========

Implements the RV32 PMP CSR interface (pmpcfg0-3, pmpaddr0-15) for a
configurable number of entries and grain size, and the access check applied
to every fetch, load and store.

Granularity:
    With a grain of G = 2^(g+2) bytes, pmpaddr bits [g-1:0] read as zero when
    the entry is OFF or TOR, and bits [g-2:0] read as one when it is NAPOT.
    Writing all ones to an OFF entry and counting the trailing zeros of the
    read-back therefore yields g.

Matching:
    The lowest-numbered matching entry decides. An entry that is not locked
    only constrains user mode. If no entry matches, machine mode is allowed
    and user mode is denied.
"""

from hartcheck.config import (
    MASK32,
    PMP_A_MASK,
    PMP_A_SHIFT,
    PMP_L_BIT,
    PMP_MAX_REGIONS,
    PMP_MODE_NA4,
    PMP_MODE_NAPOT,
    PMP_MODE_OFF,
    PMP_MODE_TOR,
)
from hartcheck.verification_types import Permission, Privilege

_CFG_WRITABLE = 0b1001_1111
"""pmpcfg bits that exist: L, A, X, W, R (bits 5-6 are reserved zero)."""


class PMPUnit:
    """PMP entries with their CSR view and access check."""

    def __init__(self, num_regions: int, granularity: int, honor_lock: bool = True):
        if not 0 <= num_regions <= PMP_MAX_REGIONS:
            raise ValueError(f"PMP supports at most {PMP_MAX_REGIONS} regions")
        if granularity < 4 or granularity & (granularity - 1):
            raise ValueError(f"PMP granularity must be a power of two >= 4: {granularity}")
        self.num_regions = num_regions
        self.grain_bits = granularity.bit_length() - 3
        self.honor_lock = honor_lock
        self.cfg = [0] * num_regions
        self.addr = [0] * num_regions

    def _locked(self, index: int) -> bool:
        return self.honor_lock and bool(self.cfg[index] >> PMP_L_BIT & 1)

    @staticmethod
    def _mode(cfg: int) -> int:
        return (cfg & PMP_A_MASK) >> PMP_A_SHIFT

    # ------------------------------------------------------------------
    # CSR interface
    # ------------------------------------------------------------------

    def read_cfg(self, register: int) -> int:
        """Read pmpcfg<register>: four entries packed little-endian."""
        value = 0
        for lane in range(4):
            index = register * 4 + lane
            if index < self.num_regions:
                value |= self.cfg[index] << (8 * lane)
        return value

    def write_cfg(self, register: int, value: int) -> None:
        for lane in range(4):
            index = register * 4 + lane
            if index >= self.num_regions or self._locked(index):
                continue
            self.cfg[index] = (value >> (8 * lane)) & _CFG_WRITABLE

    def read_addr(self, index: int) -> int:
        if index >= self.num_regions:
            return 0
        value = self.addr[index]
        g = self.grain_bits
        if self._mode(self.cfg[index]) == PMP_MODE_NAPOT:
            if g >= 2:
                value |= (1 << (g - 1)) - 1
        elif g >= 1:
            value &= ~((1 << g) - 1)
        return value & MASK32

    def write_addr(self, index: int, value: int) -> None:
        if index >= self.num_regions or self._locked(index):
            return
        following = index + 1
        if (
            following < self.num_regions
            and self._locked(following)
            and self._mode(self.cfg[following]) == PMP_MODE_TOR
        ):
            return
        self.addr[index] = value & MASK32

    # ------------------------------------------------------------------
    # Access check
    # ------------------------------------------------------------------

    def _range(self, index: int) -> tuple[int, int] | None:
        """Byte range [low, high) covered by an entry, None when OFF."""
        mode = self._mode(self.cfg[index])
        if mode == PMP_MODE_OFF:
            return None
        if mode == PMP_MODE_TOR:
            low = self.read_addr(index - 1) << 2 if index else 0
            return low, self.read_addr(index) << 2
        if mode == PMP_MODE_NA4:
            base = self.addr[index] << 2
            return base, base + 4
        napot = self.read_addr(index)
        trailing_ones = (~napot & (napot + 1)).bit_length() - 1
        size = 1 << (trailing_ones + 3)
        base = (napot << 2) & ~(size - 1)
        return base, base + size

    def allows(self, address: int, access: Permission, privilege: Privilege) -> bool:
        """Check one word access against the PMP entries."""
        if self.num_regions == 0:
            return True
        for index in range(self.num_regions):
            bounds = self._range(index)
            if bounds is None or not bounds[0] <= address < bounds[1]:
                continue
            if privilege == Privilege.MACHINE and not self._locked(index):
                return True
            return bool(self.cfg[index] & access.value)
        return privilege == Privilege.MACHINE
