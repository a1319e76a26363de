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

"""Tests for the command-line front end."""

from typing import Any

import pytest

from hartcheck import __version__
from hartcheck.cli import FEATURE_FLAGS, QUIRK_NAMES, build_parser, main, model_config_from_args


class TestArguments:
    def test_every_feature_has_a_switch(self) -> None:
        assert "compressed" in FEATURE_FLAGS
        assert "ext_mem" in FEATURE_FLAGS
        assert "num_hpm_counters" not in FEATURE_FLAGS

    def test_model_config(self) -> None:
        args = build_parser().parse_args(
            [
                "--no-compressed",
                "--no-user-mode",
                "--no-ext-mem",
                "--pmp-regions",
                "0",
                "--quirk",
                "wdt_ignores_lock",
            ]
        )
        config = model_config_from_args(args)
        assert not config.capabilities.compressed
        assert not config.capabilities.user_mode
        assert not config.capabilities.ext_mem
        assert config.capabilities.uart0
        assert config.capabilities.pmp_regions == 0
        assert config.quirks.wdt_ignores_lock
        assert not config.quirks.ignore_pmp_lock

    def test_wfi_timeout_reaches_model(self) -> None:
        args = build_parser().parse_args(["--wfi-timeout", "50"])
        assert model_config_from_args(args).wfi_timeout_cycles == 50

    def test_unknown_quirk_is_rejected(self) -> None:
        assert "bogus" not in QUIRK_NAMES
        with pytest.raises(SystemExit) as info:
            main(["--quirk", "bogus"])
        assert info.value.code == 2

    def test_negative_counts_are_rejected(self) -> None:
        with pytest.raises(SystemExit) as info:
            main(["--hpm-counters", "-1"])
        assert info.value.code == 2

    def test_version(self, capsys: Any) -> None:
        with pytest.raises(SystemExit) as info:
            main(["--version"])
        assert info.value.code == 0
        assert capsys.readouterr().out.strip() == f"hartcheck {__version__}"


class TestMain:
    def test_list_cases(self, capsys: Any) -> None:
        assert main(["--list-cases"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 48
        assert lines[0].startswith("[1] mcycle_carry")
        assert lines[0].endswith("[m]cycle[h] counter")

    def test_compliant_model_exits_zero(self, capsys: Any) -> None:
        assert main([]) == 0
        out = capsys.readouterr().out
        assert "[CPU TEST COMPLETED SUCCESSFULLY!]" in out
        assert "-- HPM reports LOW" in out

    def test_exit_status_counts_failures(self, capsys: Any) -> None:
        assert main(["--quirk", "ignore_pmp_lock"]) == 1
        out = capsys.readouterr().out
        assert "PMP: Entry [mode=off] lock: FAIL" in out
        assert "[CPU TEST FAILED!]" in out

    def test_aborted_run_adds_one(self, capsys: Any) -> None:
        assert main(["--quirk", "unmapped_side_channel"]) == 1
        assert "[CPU TEST ABORTED:" in capsys.readouterr().out

    def test_wfi_timeout_fails_wfi_case(self, capsys: Any) -> None:
        assert main(["--wfi-timeout", "0"]) == 1
        out = capsys.readouterr().out
        assert "WFI (sleep instruction) test (wake-up via MTIME): FAIL" in out
        assert "Atomic access (LR+SC failing access 2): ok" in out

    def test_hpm_report_switch(self, capsys: Any) -> None:
        assert main(["--no-hpm-report"]) == 0
        assert "HPM reports" not in capsys.readouterr().out
