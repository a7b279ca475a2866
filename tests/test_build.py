"""End-to-end orchestration tests with loop mounts and xorriso faked."""
import contextlib
import json
from pathlib import Path

import pytest

from obelion_builder.build import main, run_build
from obelion_builder.build_config import MIB, BuildConfig, load_build_config
from obelion_builder.errors import EnvironmentCheckError
from obelion_builder.lib import stage


def fake_xorriso(argv, **_kwargs):
    out = argv[argv.index("-o") + 1]
    with open(out, "wb") as f:
        f.write(b"OBELION ISO")


@pytest.fixture
def host(mocker, base_tree):
    """Fake the privileged parts: mounting shows base_tree, xorriso writes a stub."""

    @contextlib.contextmanager
    def fake_mount(artifact, mount_dir):
        assert artifact.valid
        yield base_tree

    mount = mocker.patch("obelion_builder.steps.step_30_extract.mount_session", side_effect=fake_mount)
    xorriso = mocker.patch("obelion_builder.lib.compose.run_cmd", side_effect=fake_xorriso)
    mocker.patch("obelion_builder.lib.compose.ensure_host_file", return_value=True)
    return mount, xorriso


@pytest.fixture
def cfg(config_file):
    return load_build_config(str(config_file))


@pytest.fixture
def work(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def cached_iso(work, iso_factory):
    def _cache(arch, *, signed=True):
        return iso_factory(work / "iso" / f"ubuntu-server-{arch}.iso", 501 * MIB, signed=signed)

    return _cache


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "state.json")


class TestRunBuild:
    def test_single_arch_produces_image(self, cfg, host, cached_iso, work, state_path):
        cached_iso("amd64")

        report = run_build(cfg=cfg, state_path=state_path, preflight=False)

        assert report.ok
        output = work / "output" / "obelion-1.0-amd64.iso"
        assert report.results[0].output == output
        assert output.read_bytes() == b"OBELION ISO"
        assert (work / "custom-amd64" / "packages.list").read_text().startswith("# Development Tools\n")
        assert (work / "custom-amd64" / "post-install.sh").exists()
        assert (work / "custom-amd64" / "custom-branding" / "obelion-logo.txt").read_text() == (
            "Obelion 1.0 (ArcticFox)\n"
        )

        state = json.loads(Path(state_path).read_text())
        assert state["targets"]["amd64"]["last_result"]["stage"] == "done"
        assert "30_extract" in state["targets"]["amd64"]["completed_steps"]

    @pytest.mark.parametrize("jobs", [1, 2])
    def test_failing_arch_does_not_stop_others(self, cfg, host, cached_iso, work, state_path, jobs):
        cached_iso("amd64")
        bad = cached_iso("arm64", signed=False)

        report = run_build(cfg=cfg, state_path=state_path, arches=["arm64", "amd64"], jobs=jobs, preflight=False)

        assert not report.ok
        arm, amd = report.results
        assert arm.arch == "arm64"
        assert arm.failed_stage == "verifying"
        assert arm.error_type == "FormatError"
        assert not bad.exists()
        assert amd.arch == "amd64" and amd.ok
        assert (work / "output" / "obelion-1.0-amd64.iso").exists()
        assert not (work / "output" / "obelion-1.0-arm64.iso").exists()
        assert not (work / "custom-arm64").exists()

    def test_skip_download_without_cache(self, cfg, host, cached_iso, state_path):
        cached_iso("amd64")

        report = run_build(
            cfg=cfg, state_path=state_path, arches=["amd64", "arm64"], skip_download=True, preflight=False
        )

        assert [r.ok for r in report.results] == [True, False]
        assert report.results[1].failed_stage == "fetching"
        assert report.results[1].error_type == "TransferError"

    def test_unknown_arch_is_reported(self, cfg, host, cached_iso, state_path):
        cached_iso("amd64")

        report = run_build(cfg=cfg, state_path=state_path, arches=["sparc", "amd64"], preflight=False)

        sparc, amd = report.results
        assert sparc.arch == "sparc"
        assert sparc.failed_stage == "pending"
        assert sparc.error_type == "ConfigError"
        assert amd.ok

    def test_duplicate_arches_build_once(self, cfg, host, cached_iso, state_path):
        cached_iso("amd64")

        report = run_build(cfg=cfg, state_path=state_path, arches=["amd64", "amd64"], preflight=False)

        assert len(report.results) == 1

    def test_second_run_reuses_staged_tree(self, cfg, host, cached_iso, state_path):
        mount, xorriso = host
        cached_iso("amd64")

        run_build(cfg=cfg, state_path=state_path, preflight=False)
        report = run_build(cfg=cfg, state_path=state_path, preflight=False)

        assert report.ok
        assert mount.call_count == 1
        assert xorriso.call_count == 2

    def test_force_restages(self, cfg, host, cached_iso, state_path):
        mount, _ = host
        cached_iso("amd64")

        run_build(cfg=cfg, state_path=state_path, preflight=False)
        run_build(cfg=cfg, state_path=state_path, force=True, preflight=False)

        assert mount.call_count == 2

    def test_failed_restage_is_not_reused(self, cfg, host, cached_iso, work, state_path, mocker):
        mount, _ = host
        cached_iso("amd64")
        run_build(cfg=cfg, state_path=state_path, preflight=False)

        real_copy = stage._copy_entry
        copied = []

        def disk_fills_up(src, dst, **kwargs):
            if len(copied) == 2:
                raise OSError(28, "No space left on device")
            copied.append(src)
            return real_copy(src, dst, **kwargs)

        copy = mocker.patch("obelion_builder.lib.stage._copy_entry", side_effect=disk_fills_up)
        report = run_build(cfg=cfg, state_path=state_path, force=True, preflight=False)
        assert report.failed[0].error_type == "StageError"
        mocker.stop(copy)

        report = run_build(cfg=cfg, state_path=state_path, preflight=False)

        assert report.ok
        assert mount.call_count == 3
        assert (work / "custom-amd64" / "casper" / "vmlinuz").read_bytes() == b"kernel"

    def test_new_base_image_restages(self, cfg, host, iso_factory, tmp_path, work, state_path):
        mount, _ = host
        source = iso_factory(tmp_path / "mirror" / "base-amd64.iso", 2 * MIB)
        arch = {"url": str(source), "cache_name": "ubuntu-server-amd64.iso", "min_size_mib": 1}
        local_cfg = BuildConfig(raw={**cfg.raw, "arch": {"amd64": arch}}, base_dir=cfg.base_dir)

        run_build(cfg=local_cfg, state_path=state_path, preflight=False)
        (work / "iso" / "ubuntu-server-amd64.iso").unlink()
        report = run_build(cfg=local_cfg, state_path=state_path, preflight=False)

        assert report.ok
        assert mount.call_count == 2

    def test_clean_work_removes_tree(self, cfg, host, cached_iso, work, state_path):
        cached_iso("amd64")

        report = run_build(cfg=cfg, state_path=state_path, clean_work=True, preflight=False)

        assert report.ok
        assert not (work / "custom-amd64").exists()
        assert (work / "output" / "obelion-1.0-amd64.iso").exists()

    def test_preflight_failure_stops_everything(self, cfg, host, cached_iso, state_path, mocker):
        mount, _ = host
        cached_iso("amd64")
        mocker.patch(
            "obelion_builder.build.check_environment",
            side_effect=EnvironmentCheckError(["required tool not found on PATH: xorriso"]),
        )

        with pytest.raises(EnvironmentCheckError, match="xorriso"):
            run_build(cfg=cfg, state_path=state_path)

        mount.assert_not_called()


class TestMain:
    @pytest.fixture(autouse=True)
    def _no_logging_setup(self, mocker):
        mocker.patch("obelion_builder.build.configure_logging")

    def _argv(self, config_file, tmp_path, *extra):
        return ["--config", str(config_file), "--state", str(tmp_path / "state.json"), "--skip-preflight", *extra]

    def test_success_exit_code(self, config_file, tmp_path, host, cached_iso, capsys):
        cached_iso("amd64")

        assert main(self._argv(config_file, tmp_path)) == 0

        out = capsys.readouterr().out
        assert "Succeeded (1):" in out
        assert "amd64: done" in out

    def test_failed_arch_exit_code(self, config_file, tmp_path, host, capsys):
        assert main(self._argv(config_file, tmp_path, "--arch", "arm64", "--skip-download")) == 1

        assert "arm64: FAILED at fetching (TransferError" in capsys.readouterr().out

    def test_braces_in_branding_are_kept(self, config_file, tmp_path, host, cached_iso, work):
        cached_iso("amd64")
        (config_file.parent / "assets" / "branding" / "panel.conf").write_text("theme { color: dark } {name}\n{\n")

        assert main(self._argv(config_file, tmp_path)) == 0

        panel = work / "custom-amd64" / "custom-branding" / "panel.conf"
        assert panel.read_text() == "theme { color: dark } Obelion\n{\n"

    def test_boot_menu_without_check_entry(self, config_file, tmp_path, capsys):
        config_file.write_text(config_file.read_text().replace("name: check", "name: rescue"))

        assert main(self._argv(config_file, tmp_path)) == 2
        assert "missing required entries: check" in capsys.readouterr().err

    def test_missing_config(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "absent.yaml")]) == 2
        assert capsys.readouterr().err.startswith("error:")

    def test_check_env(self, config_file, tmp_path, mocker, capsys):
        check = mocker.patch("obelion_builder.build.check_environment")

        assert main(["--config", str(config_file), "--check-env", "--arch", "amd64", "--arch", "arm64"]) == 0

        assert "Environment OK" in capsys.readouterr().out
        assert check.call_args[0][1] == [500 * MIB, 500 * MIB]

    def test_check_env_failure(self, config_file, mocker, capsys):
        mocker.patch(
            "obelion_builder.build.check_environment",
            side_effect=EnvironmentCheckError(["required tool not found on PATH: losetup"]),
        )

        assert main(["--config", str(config_file), "--check-env"]) == 2
        assert "losetup" in capsys.readouterr().err

    def test_interrupt(self, config_file, tmp_path, mocker):
        mocker.patch("obelion_builder.build.run_build", side_effect=KeyboardInterrupt)

        assert main(self._argv(config_file, tmp_path)) == 130

    def test_verbose_and_quiet_are_exclusive(self, config_file):
        with pytest.raises(SystemExit):
            main(["--config", str(config_file), "-v", "-q"])
