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

"""HARTCHECK - privileged-architecture compliance checker package.

This package contains an architectural-compliance test engine for RISC-V
harts. It provokes every class of trap (exceptions, standard interrupts,
non-maskable and fast interrupts), checks privilege-mode gating of CSRs,
physical memory protection (PMP) enforcement and LR/SC reservation
semantics, and reports a pass/fail ledger whose failed count is the
process exit status.

The engine drives a hart through an opaque interface (hart_interface.Hart).
Two implementations ship with the package: a pure-Python reference model
(models.hart_model.HartModel) and a cocotb bridge for RTL simulation
(cocotb_tests.cocotb_hart.CocotbHart).
"""

from ._version import __version__

__all__ = [
    "__version__",
]
