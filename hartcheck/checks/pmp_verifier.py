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

"""Physical memory protection configuration and enforcement checks.

Memory-Protection Verifier
==========================

configure() programs one PMP entry as an NA4 (4-byte) or NAPOT region and
verifies the entry reads back as written. The check_* methods then access the
region from user mode through the privilege sandbox and require the matching
access fault; a denied load must also leave its destination register zero.

check_lock() verifies that a locked entry ignores configuration and address
writes, and detect_granularity() discovers the PMP grain with the standard
write-all-ones read-back on an unused entry.

Address encoding (pmpaddr holds address bits [33:2]):
    NA4:    pmpaddr = base >> 2
    NAPOT:  pmpaddr = (base >> 2) | (size / 8 - 1)
"""

import logging

from hartcheck.config import (
    MASK32,
    PMP_A_SHIFT,
    PMP_L_BIT,
    PMP_MODE_NA4,
    PMP_MODE_NAPOT,
    PMP_MODE_OFF,
    PMP_R_BIT,
)
from hartcheck.checks.expectations import expect_equal, expect_no_trap, expect_trap, expect_zero
from hartcheck.checks.sandbox import PrivilegeSandbox
from hartcheck.encoders.instruction_encode import RET, pmpaddr_csr, pmpcfg_csr
from hartcheck.exceptions import CheckFailure, ConfigError
from hartcheck.hart_interface import Hart
from hartcheck.monitors.trap_observatory import TrapObservatory
from hartcheck.verification_types import (
    Permission,
    Privilege,
    ProtectedRegion,
    TrapCause,
)

logger = logging.getLogger(__name__)

LOCK_TEST_CFG = (1 << PMP_L_BIT) | (1 << PMP_R_BIT) | (PMP_MODE_OFF << PMP_A_SHIFT)
"""Locked, readable, inactive: the entry never matches but cannot be changed."""

LOCK_REWRITE_CFG = (PMP_MODE_NAPOT << PMP_A_SHIFT) | Permission.RWX.value
LOCK_REWRITE_ADDR = 0xABABCDCD

STORE_PATTERN = 0xDEADBEEF
READ_MARKER = 0x5A5A0FF0


def encode_region(base: int, size: int) -> tuple[int, int]:
    """Return (pmpaddr, address-matching mode) for a naturally aligned region."""
    if size == 4:
        return base >> 2, PMP_MODE_NA4
    return (base >> 2) | ((size >> 3) - 1), PMP_MODE_NAPOT


class PMPVerifier:
    """Configures PMP regions and checks that user mode cannot bypass them."""

    def __init__(
        self,
        hart: Hart,
        observatory: TrapObservatory,
        sandbox: PrivilegeSandbox,
    ):
        self.hart = hart
        self.observatory = observatory
        self.sandbox = sandbox
        caps = hart.capabilities()
        self.num_regions = caps.pmp_regions
        self.granularity = caps.pmp_granularity

    # ------------------------------------------------------------------
    # Configuration byte access
    # ------------------------------------------------------------------

    def read_cfg(self, index: int) -> int:
        register = self.hart.csr_read(pmpcfg_csr(index))
        return register >> (8 * (index % 4)) & 0xFF

    def write_cfg(self, index: int, cfg: int) -> None:
        """Replace one entry's byte in its pmpcfg register."""
        csr = pmpcfg_csr(index)
        shift = 8 * (index % 4)
        register = self.hart.csr_read(csr)
        register = (register & ~(0xFF << shift)) | ((cfg & 0xFF) << shift)
        self.hart.csr_write(csr, register & MASK32)

    # ------------------------------------------------------------------
    # Region setup
    # ------------------------------------------------------------------

    def configure(
        self,
        region_index: int,
        base: int,
        size: int,
        permissions: Permission,
        locked: bool = False,
    ) -> ProtectedRegion:
        """Program PMP entry ``region_index`` to cover [base, base + size).

        Raises:
            ConfigError: Index out of range, size or base not usable, or the
                entry did not read back as written (e.g. it is locked)
        """
        if not 0 <= region_index < self.num_regions:
            raise ConfigError(
                f"PMP entry {region_index} not implemented ({self.num_regions} entries)"
            )
        if size <= 0 or size & (size - 1):
            raise ConfigError(f"PMP region size {size} is not a power of two")
        if size < self.granularity:
            raise ConfigError(
                f"PMP region size {size} below granularity {self.granularity}"
            )
        if base % size:
            raise ConfigError(f"PMP region base 0x{base:08x} not aligned to {size}")

        address, mode = encode_region(base, size)
        cfg = (mode << PMP_A_SHIFT) | permissions.value
        if locked:
            cfg |= 1 << PMP_L_BIT

        csr = pmpaddr_csr(region_index)
        self.hart.csr_write(csr, address)
        self.write_cfg(region_index, cfg)

        actual_address = self.hart.csr_read(csr)
        actual_cfg = self.read_cfg(region_index)
        if actual_address != address or actual_cfg != cfg:
            raise ConfigError(
                f"PMP entry {region_index} reads back cfg 0x{actual_cfg:02x} "
                f"addr 0x{actual_address:08x}, wrote cfg 0x{cfg:02x} addr 0x{address:08x}"
            )
        logger.debug(
            "PMP entry %d: 0x%08x..0x%08x %s%s",
            region_index,
            base,
            base + size - 1,
            permissions,
            " locked" if locked else "",
        )
        return ProtectedRegion(region_index, base, size, permissions, locked)

    def detect_granularity(self, region_index: int | None = None) -> int:
        """Discover the PMP grain in bytes using an inactive, unlocked entry.

        With the entry OFF, writing all ones to pmpaddr reads back with the
        low G bits cleared; the grain is 2^(G+2) bytes.
        """
        index = self.num_regions - 1 if region_index is None else region_index
        if not 0 <= index < self.num_regions:
            raise ConfigError("no PMP entry available to detect the granularity")
        cfg = self.read_cfg(index)
        if cfg >> PMP_L_BIT & 1 or (cfg >> PMP_A_SHIFT) & 0b11 != PMP_MODE_OFF:
            raise ConfigError(f"PMP entry {index} is in use, cannot detect granularity")

        csr = pmpaddr_csr(index)
        saved = self.hart.csr_read(csr)
        self.hart.csr_write(csr, MASK32)
        readback = self.hart.csr_read(csr)
        self.hart.csr_write(csr, saved)
        if readback == 0:
            raise ConfigError(f"PMP entry {index} address register is not writable")
        grain_bits = (readback & -readback).bit_length() - 1
        return 1 << (grain_bits + 2)

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def check_execute(self, region: ProtectedRegion) -> None:
        """A user-mode call into the region must raise an instruction access fault."""
        self.hart.store_word(region.base, RET)
        self.hart.fence_i()
        self.observatory.arm()
        result = self.sandbox.run_reduced(lambda hart: hart.call(region.base))
        expect_trap(
            result.trap,
            TrapCause.INSTRUCTION_ACCESS_FAULT,
            aux_value=region.base,
            from_privilege=Privilege.USER,
        )

    def check_read(self, region: ProtectedRegion) -> None:
        """A user-mode load from the region must fault and return zero."""
        if not region.locked:
            self.hart.store_word(region.base, READ_MARKER)
        self.observatory.arm()
        result = self.sandbox.run_reduced(lambda hart: hart.load_word(region.base))
        expect_trap(
            result.trap,
            TrapCause.LOAD_ACCESS_FAULT,
            aux_value=region.base,
            from_privilege=Privilege.USER,
        )
        expect_zero("user-mode load from protected region", result.value)

    def check_write(self, region: ProtectedRegion) -> None:
        """A user-mode store into the region must fault and leave memory intact."""
        if not region.locked:
            self.hart.store_word(region.base, 0)
        self.observatory.arm()
        result = self.sandbox.run_reduced(
            lambda hart: hart.store_word(region.base, STORE_PATTERN)
        )
        expect_trap(
            result.trap,
            TrapCause.STORE_ACCESS_FAULT,
            aux_value=region.base,
            from_privilege=Privilege.USER,
        )
        if not region.locked and self.hart.load_word(region.base) == STORE_PATTERN:
            raise CheckFailure("denied user-mode store modified memory")

    def check_lock(self, region_index: int) -> None:
        """A locked entry must ignore both cfg and address rewrites."""
        if not 0 <= region_index < self.num_regions:
            raise ConfigError(f"PMP entry {region_index} not implemented")
        addr_csr = pmpaddr_csr(region_index)
        self.observatory.arm()

        self.write_cfg(region_index, LOCK_TEST_CFG)
        locked_cfg = self.read_cfg(region_index)
        expect_equal(f"pmpcfg entry {region_index} after locking", LOCK_TEST_CFG, locked_cfg)
        locked_addr = self.hart.csr_read(addr_csr)

        self.write_cfg(region_index, LOCK_REWRITE_CFG)
        self.hart.csr_write(addr_csr, LOCK_REWRITE_ADDR)

        expect_no_trap(self.observatory.read())
        expect_equal(
            f"locked pmpcfg entry {region_index}", locked_cfg, self.read_cfg(region_index)
        )
        expect_equal(
            f"locked pmpaddr{region_index}", locked_addr, self.hart.csr_read(addr_csr)
        )
