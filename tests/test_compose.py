"""Tests for compose_updater.compose — docker CLI wrapper and output parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from compose_updater.compose import DockerComposeCli, _parse_json_records, find_compose_file
from compose_updater.errors import CommandError, PullError, RecreateError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fake_docker(tmp_path: Path, body: str) -> tuple[str, Path]:
    """Write a stand-in ``docker`` script that logs its argv to ``argv.log``."""
    argv_log = tmp_path / "argv.log"
    script = tmp_path / "docker"
    script.write_text(
        f'#!/bin/sh\necho "$@" >> "{argv_log}"\n{body}\n',
        encoding="utf-8",
    )
    script.chmod(0o755)
    return str(script), argv_log


# ---------------------------------------------------------------------------
# find_compose_file
# ---------------------------------------------------------------------------


class TestFindComposeFile:
    """Tests for find_compose_file()."""

    def test_finds_docker_compose_yml(self, project_dir: Path) -> None:
        assert find_compose_file(project_dir) == project_dir / "docker-compose.yml"

    def test_accepts_compose_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "compose.yaml").write_text("services: {}\n")
        assert find_compose_file(tmp_path) == tmp_path / "compose.yaml"

    def test_missing_manifest(self, tmp_path: Path) -> None:
        assert find_compose_file(tmp_path) is None


# ---------------------------------------------------------------------------
# _parse_json_records
# ---------------------------------------------------------------------------


class TestParseJsonRecords:
    """Tests for docker JSON output parsing."""

    def test_array_output(self) -> None:
        assert _parse_json_records('[{"ID": "a"}, {"ID": "b"}]') == [{"ID": "a"}, {"ID": "b"}]

    def test_json_lines_output(self) -> None:
        output = '{"ID": "a"}\n\n{"ID": "b"}\nnot json\n'
        assert _parse_json_records(output) == [{"ID": "a"}, {"ID": "b"}]

    def test_single_object(self) -> None:
        assert _parse_json_records('{"ID": "a"}') == [{"ID": "a"}]

    def test_empty_output(self) -> None:
        assert _parse_json_records("  \n") == []

    def test_non_object_values_dropped(self) -> None:
        assert _parse_json_records('[1, "x", {"ID": "a"}]') == [{"ID": "a"}]


# ---------------------------------------------------------------------------
# DockerComposeCli
# ---------------------------------------------------------------------------


class TestDockerComposeCli:
    """Tests for DockerComposeCli against a scripted docker binary."""

    async def test_pull_runs_in_project_dir(self, tmp_path: Path, project_dir: Path) -> None:
        docker, argv_log = _fake_docker(tmp_path, 'pwd > "$(dirname "$0")/cwd"')

        await DockerComposeCli(docker).pull(project_dir)

        assert argv_log.read_text().strip() == "compose pull"
        assert Path((tmp_path / "cwd").read_text().strip()).resolve() == project_dir.resolve()

    async def test_pull_failure_raises_pull_error(
        self, tmp_path: Path, project_dir: Path
    ) -> None:
        docker, _ = _fake_docker(tmp_path, 'echo "manifest unknown" >&2\nexit 1')

        with pytest.raises(PullError) as excinfo:
            await DockerComposeCli(docker).pull(project_dir)

        assert excinfo.value.returncode == 1
        assert "manifest unknown" in excinfo.value.stderr

    async def test_up_flags(self, tmp_path: Path, project_dir: Path) -> None:
        docker, argv_log = _fake_docker(tmp_path, "exit 0")
        cli = DockerComposeCli(docker)

        await cli.up(project_dir)
        await cli.up(project_dir, force_recreate=True, remove_orphans=False)

        assert argv_log.read_text().splitlines() == [
            "compose up -d --remove-orphans",
            "compose up -d --force-recreate",
        ]

    async def test_up_failure_raises_recreate_error(
        self, tmp_path: Path, project_dir: Path
    ) -> None:
        docker, _ = _fake_docker(tmp_path, "exit 17")

        with pytest.raises(RecreateError):
            await DockerComposeCli(docker).up(project_dir)

    async def test_ps_parses_services(self, tmp_path: Path, project_dir: Path) -> None:
        docker, argv_log = _fake_docker(
            tmp_path,
            "echo '{\"ID\": \"c1\", \"Service\": \"web\"}'\n"
            "echo '{\"ID\": \"c2\", \"Service\": \"db\"}'",
        )

        containers = await DockerComposeCli(docker).ps(project_dir, include_stopped=True)

        assert [(c.service, c.container_id) for c in containers] == [("web", "c1"), ("db", "c2")]
        assert argv_log.read_text().strip() == "compose ps --all --format json"

    async def test_image_ref_ignores_untagged(self, tmp_path: Path, project_dir: Path) -> None:
        docker, _ = _fake_docker(
            tmp_path,
            "echo '[{\"Repository\": \"<none>\", \"Tag\": \"<none>\"},"
            " {\"Repository\": \"nginx\", \"Tag\": \"1.27\"}]'",
        )

        assert await DockerComposeCli(docker).image_ref(project_dir, "web") == "nginx:1.27"

    async def test_image_ref_none_when_untagged(self, tmp_path: Path, project_dir: Path) -> None:
        docker, _ = _fake_docker(
            tmp_path, "echo '[{\"Repository\": \"<none>\", \"Tag\": \"<none>\"}]'"
        )

        assert await DockerComposeCli(docker).image_ref(project_dir, "web") is None

    async def test_inspect_reads_state_and_health(self, tmp_path: Path) -> None:
        docker, _ = _fake_docker(
            tmp_path,
            "echo '[{\"Image\": \"sha256:abc\", \"Config\": {\"Image\": \"nginx:1.27\"},"
            " \"State\": {\"Status\": \"running\", \"Health\": {\"Status\": \"starting\"}}}]'",
        )

        info = await DockerComposeCli(docker).inspect("c1")

        assert info.container_id == "c1"
        assert info.image_id == "sha256:abc"
        assert info.configured_image == "nginx:1.27"
        assert info.state == "running"
        assert info.health == "starting"

    async def test_inspect_without_health_probe(self, tmp_path: Path) -> None:
        docker, _ = _fake_docker(
            tmp_path, "echo '[{\"Image\": \"sha256:abc\", \"State\": {\"Status\": \"exited\"}}]'"
        )

        info = await DockerComposeCli(docker).inspect("c1")

        assert info.health is None
        assert info.state == "exited"

    async def test_image_id_missing_image_is_none(self, tmp_path: Path) -> None:
        docker, _ = _fake_docker(tmp_path, "exit 1")
        assert await DockerComposeCli(docker).image_id("nginx:latest") is None

    async def test_missing_binary_raises_command_error(self, tmp_path: Path) -> None:
        cli = DockerComposeCli(str(tmp_path / "no-such-docker"))

        with pytest.raises(CommandError) as excinfo:
            await cli.prune_images()

        assert excinfo.value.returncode is None

    async def test_query_timeout_kills_command(self, tmp_path: Path) -> None:
        docker, _ = _fake_docker(tmp_path, "exec sleep 10")
        cli = DockerComposeCli(docker, query_timeout=0.2)

        with pytest.raises(CommandError, match="timed out"):
            await cli.tag("sha256:abc", "nginx:latest")
