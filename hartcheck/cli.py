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

"""Command-line front end: run the processor check on the reference model.

Examples:
    hartcheck                          # compliant model, full report
    hartcheck --no-compressed          # hart without the C extension
    hartcheck --quirk leak_denied_reads --quirk ignore_pmp_lock
    hartcheck --list-cases             # show the case catalog and exit

The process exit status is the number of failed cases (one more when the run
was aborted).
"""

import argparse
import logging
import sys
from dataclasses import fields

from hartcheck._version import __version__
from hartcheck.catalog import processor_check_cases, run_processor_check
from hartcheck.config import DEFAULT_WFI_TIMEOUT_CYCLES, CheckConfig
from hartcheck.exceptions import UnrecoverableError
from hartcheck.models.hart_model import HartModel, HartModelConfig, ModelQuirks
from hartcheck.verification_types import Capabilities

logger = logging.getLogger(__name__)

# Capability switches exposed as --no-<name>
FEATURE_FLAGS = tuple(f.name for f in fields(Capabilities) if f.type is bool)
QUIRK_NAMES = tuple(f.name for f in fields(ModelQuirks))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hartcheck",
        description="Architectural compliance check of a RISC-V hart (reference model)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Model defects:\n" + "\n".join(f"  {name}" for name in QUIRK_NAMES),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--list-cases",
        action="store_true",
        help="List the cases in execution order and exit",
    )
    for name in FEATURE_FLAGS:
        parser.add_argument(
            f"--no-{name.replace('_', '-')}",
            dest=name,
            action="store_false",
            help=f"Build the model without {name}",
        )
    parser.add_argument(
        "--hpm-counters",
        type=int,
        default=Capabilities.num_hpm_counters,
        metavar="N",
        help="Number of HPM counters (default: %(default)s)",
    )
    parser.add_argument(
        "--pmp-regions",
        type=int,
        default=Capabilities.pmp_regions,
        metavar="N",
        help="Number of PMP regions (default: %(default)s)",
    )
    parser.add_argument(
        "--pmp-granularity",
        type=int,
        default=Capabilities.pmp_granularity,
        metavar="BYTES",
        help="PMP granularity in bytes (default: %(default)s)",
    )
    parser.add_argument(
        "--quirk",
        action="append",
        default=[],
        choices=QUIRK_NAMES,
        metavar="NAME",
        help="Emulate a hardware defect (repeatable, see list below)",
    )
    parser.add_argument(
        "--wfi-timeout",
        type=int,
        default=DEFAULT_WFI_TIMEOUT_CYCLES,
        metavar="CYCLES",
        help="Cycles WFI may sleep before it completes without a wakeup (default: %(default)s)",
    )
    parser.add_argument(
        "--no-hpm-report",
        dest="report_hpm",
        action="store_false",
        help="Skip the HPM counter report",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress (-vv for every trap)",
    )
    return parser


def model_config_from_args(args: argparse.Namespace) -> HartModelConfig:
    capabilities = Capabilities(
        num_hpm_counters=args.hpm_counters,
        pmp_regions=args.pmp_regions,
        pmp_granularity=args.pmp_granularity,
        **{name: getattr(args, name) for name in FEATURE_FLAGS},
    )
    quirks = ModelQuirks(**{name: True for name in args.quirk})
    return HartModelConfig(
        capabilities=capabilities,
        wfi_timeout_cycles=args.wfi_timeout,
        quirks=quirks,
    )


def main(argv: list[str] | None = None) -> int:
    """Run the processor check from the command line.

    Returns:
        Number of failed cases, plus one if the run was aborted
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    config = CheckConfig(report_hpm=args.report_hpm, wfi_timeout_cycles=args.wfi_timeout)
    if args.list_cases:
        for index, case in enumerate(processor_check_cases(config), start=1):
            print(f"[{index}] {case.name:<18} {case.description}")
        return 0

    if args.hpm_counters < 0 or args.pmp_regions < 0 or args.wfi_timeout < 0:
        parser.error("counts must not be negative")

    hart = HartModel(model_config_from_args(args))
    if args.quirk:
        logger.info("emulating defects: %s", ", ".join(args.quirk))
    try:
        ledger = run_processor_check(hart, config)
    except UnrecoverableError as exc:
        failed = exc.ledger.failed if exc.ledger is not None else 0
        return failed + 1
    return ledger.failed


if __name__ == "__main__":
    sys.exit(main())
