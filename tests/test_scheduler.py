"""Tests for compose_updater.scheduler — crontab synchronization."""

from __future__ import annotations

from pathlib import Path

import pytest

from compose_updater.constants import CRON_MARKER
from compose_updater.models import ProjectRecord, ProjectStatus
from compose_updater.scheduler import CronEntry, CrontabScheduler

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def crontab(tmp_path: Path) -> tuple[str, Path]:
    """A stand-in ``crontab`` binary backed by a plain file."""
    table = tmp_path / "crontab.txt"
    script = tmp_path / "crontab"
    script.write_text(
        "#!/bin/sh\n"
        f'TABLE="{table}"\n'
        'if [ "$1" = "-l" ]; then\n'
        '  [ -f "$TABLE" ] || { echo "no crontab for user" >&2; exit 1; }\n'
        '  cat "$TABLE"\n'
        "else\n"
        '  cat > "$TABLE"\n'
        "fi\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return str(script), table


def _scheduler(binary: str) -> CrontabScheduler:
    return CrontabScheduler(
        "/usr/local/bin/compose-updater",
        lambda name: Path("/var/log/compose-updater") / f"{name}.log",
        crontab_binary=binary,
    )


def _record(path: str, schedule: str, status: ProjectStatus = ProjectStatus.ENABLED):
    return ProjectRecord.for_directory(path, schedule, status)


# ---------------------------------------------------------------------------
# CronEntry
# ---------------------------------------------------------------------------


class TestCronEntry:
    """Tests for CronEntry.render()."""

    def test_render_appends_log_redirect_and_marker(self) -> None:
        entry = CronEntry("0 */6 * * *", "cu update-single /srv/web", "/var/log/cu/web.log")
        assert entry.render() == (
            f"0 */6 * * * cu update-single /srv/web >> /var/log/cu/web.log 2>&1 {CRON_MARKER}"
        )

    def test_percent_signs_are_escaped(self) -> None:
        entry = CronEntry("0 3 * * *", "cu update-single /srv/100%", "/var/log/cu/x.log")
        assert r"/srv/100\%" in entry.render()


# ---------------------------------------------------------------------------
# CrontabScheduler
# ---------------------------------------------------------------------------


class TestCrontabScheduler:
    """Tests for entry generation and crontab sync."""

    def test_entries_for_enabled_records_only(self) -> None:
        scheduler = _scheduler("crontab")
        entries = scheduler.entries_for(
            [
                _record("/srv/web", "6"),
                _record("/srv/db", "30 2 * * Mon", ProjectStatus.DISABLED),
                _record("/srv/My App", "0 3 * * *"),
            ]
        )

        assert [e.schedule for e in entries] == ["0 */6 * * *", "0 3 * * *"]
        assert entries[0].command == "/usr/local/bin/compose-updater update-single /srv/web"
        assert entries[0].log_path == "/var/log/compose-updater/web.log"
        assert entries[1].command.endswith("update-single '/srv/My App'")

    async def test_sync_into_empty_crontab(self, crontab: tuple[str, Path]) -> None:
        binary, table = crontab

        count = await _scheduler(binary).sync([_record("/srv/web", "12")])

        assert count == 1
        lines = table.read_text().splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("0 */12 * * * ")
        assert lines[0].endswith(CRON_MARKER)

    async def test_sync_preserves_unmanaged_lines(self, crontab: tuple[str, Path]) -> None:
        binary, table = crontab
        table.write_text(
            "MAILTO=ops@example.com\n"
            "15 1 * * * /usr/bin/backup\n"
            f"0 */2 * * * old-entry >> /tmp/x 2>&1 {CRON_MARKER}\n"
        )

        await _scheduler(binary).sync([_record("/srv/web", "6"), _record("/srv/db", "8")])

        lines = table.read_text().splitlines()
        assert lines[:2] == ["MAILTO=ops@example.com", "15 1 * * * /usr/bin/backup"]
        assert len(lines) == 4
        assert not any("old-entry" in line for line in lines)

    async def test_sync_is_idempotent(self, crontab: tuple[str, Path]) -> None:
        binary, table = crontab
        scheduler = _scheduler(binary)
        records = [_record("/srv/web", "6")]

        await scheduler.sync(records)
        first = table.read_text()
        await scheduler.sync(records)

        assert table.read_text() == first

    async def test_remove_all_keeps_foreign_entries(self, crontab: tuple[str, Path]) -> None:
        binary, table = crontab
        table.write_text("15 1 * * * /usr/bin/backup\n")
        scheduler = _scheduler(binary)
        await scheduler.sync([_record("/srv/web", "6")])
        assert await scheduler.managed_count() == 1

        await scheduler.remove_all()

        assert table.read_text() == "15 1 * * * /usr/bin/backup\n"
        assert await scheduler.managed_count() == 0

    async def test_managed_count_without_crontab(self, crontab: tuple[str, Path]) -> None:
        binary, _ = crontab
        assert await _scheduler(binary).managed_count() == 0
