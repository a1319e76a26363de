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

"""Memory map of the reference hart model.

Memory Model
============

The address space is a list of non-overlapping windows. A window is either
plain RAM (a bytearray) or a memory-mapped device that implements
``read_word``/``write_word`` on word offsets. Addresses with no window behind
them raise BusError, which the hart turns into an access-fault exception.
"""

from typing import Protocol

from hartcheck.config import MASK32


class BusError(Exception):
    """No device responded to a bus access."""

    def __init__(self, address: int):
        super().__init__(f"bus error at 0x{address:08x}")
        self.address = address


class Device(Protocol):
    """A memory-mapped device: word reads and writes at byte offsets."""

    def read_word(self, offset: int) -> int: ...

    def write_word(self, offset: int, value: int) -> None: ...


class MemoryRegion:
    """A contiguous RAM window."""

    def __init__(self, start: int, size: int, name: str = "mem"):
        if size <= 0:
            raise ValueError(f"Invalid memory region {name}: size {size}")
        self.start = start
        self.end = start + size
        self.name = name
        self.data = bytearray(size)

    def read_word(self, offset: int) -> int:
        return int.from_bytes(self.data[offset : offset + 4], "little")

    def write_word(self, offset: int, value: int) -> None:
        self.data[offset : offset + 4] = (value & MASK32).to_bytes(4, "little")


class DeviceWindow:
    """Binds a device to the address range it decodes."""

    def __init__(self, start: int, size: int, device: Device, name: str):
        self.start = start
        self.end = start + size
        self.device = device
        self.name = name

    def read_word(self, offset: int) -> int:
        return self.device.read_word(offset) & MASK32

    def write_word(self, offset: int, value: int) -> None:
        self.device.write_word(offset, value & MASK32)


class MemoryMap:
    """Word-granular address decoder over RAM regions and device windows."""

    def __init__(self) -> None:
        self.windows: list[MemoryRegion | DeviceWindow] = []

    def _add(self, window: MemoryRegion | DeviceWindow) -> None:
        for existing in self.windows:
            if not (window.end <= existing.start or window.start >= existing.end):
                raise ValueError(
                    f"Overlapping memory windows: {existing.name} "
                    f"0x{existing.start:08x}-0x{existing.end:08x} and "
                    f"{window.name} 0x{window.start:08x}-0x{window.end:08x}"
                )
        self.windows.append(window)

    def add_region(self, start: int, size: int, name: str = "mem") -> MemoryRegion:
        region = MemoryRegion(start, size, name)
        self._add(region)
        return region

    def add_device(self, start: int, size: int, device: Device, name: str) -> None:
        self._add(DeviceWindow(start, size, device, name))

    def find(self, address: int) -> MemoryRegion | DeviceWindow | None:
        for window in self.windows:
            if window.start <= address < window.end:
                return window
        return None

    def read_word(self, address: int) -> int:
        """Read the aligned word containing ``address``."""
        window = self.find(address)
        if window is None:
            raise BusError(address)
        return window.read_word((address & ~0x3) - window.start)

    def write_word(self, address: int, value: int) -> None:
        window = self.find(address)
        if window is None:
            raise BusError(address)
        window.write_word((address & ~0x3) - window.start, value)

    def read_parcel(self, address: int) -> int:
        """Read the 16-bit instruction parcel at a halfword-aligned address."""
        word = self.read_word(address)
        return (word >> 16) & 0xFFFF if address & 0x2 else word & 0xFFFF
