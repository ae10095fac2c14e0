"""
Results publisher. Appends finished races to a cumulative HTML document.

Flow per finished race:
  render section → append to RESULTS_FILE → mirror to PUBLIC_RESULTS_FILE
  → (background) git add / commit / push in PUBLISH_GIT_DIR

Races are never deduplicated: finishing the same race twice appends two
sections. Every failure here is logged and swallowed; the race flow that
triggered the publish never sees it.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from mxcounter.models import Race
from mxcounter.results.render import append_section, new_document, render_race_section

log = logging.getLogger(__name__)


class ResultsPublisher:
    def __init__(
        self,
        results_file: Path,
        public_file: Optional[Path] = None,
        git_dir: Optional[Path] = None,
        git_remote: str = "origin",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.results_file = results_file
        self.public_file = public_file
        self.git_dir = git_dir
        self.git_remote = git_remote
        self._clock = clock
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    async def publish(self, race: Race) -> bool:
        """Append the race to the results document. Returns False if it could not be written."""
        section = render_race_section(race, self._clock())
        async with self._lock:
            try:
                self._append(section)
            except OSError:
                log.exception("Could not write results for race %s to %s", race.id, self.results_file)
                return False
            self._mirror()
        log.info("Published results for race %s (%d riders)", race.id, len(race.riders))

        if self.git_dir is not None:
            task = asyncio.create_task(self._git_publish(race))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return True

    async def wait_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _append(self, section: str) -> None:
        if self.results_file.exists():
            document = self.results_file.read_text(encoding="utf-8")
        else:
            document = new_document()
        self.results_file.parent.mkdir(parents=True, exist_ok=True)
        self.results_file.write_text(append_section(document, section), encoding="utf-8")

    def _mirror(self) -> None:
        if self.public_file is None:
            return
        try:
            self.public_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.results_file, self.public_file)
        except OSError:
            log.exception("Could not mirror results to %s", self.public_file)

    async def _git(self, *args: str) -> bool:
        proc = await asyncio.create_subprocess_exec(
            "git", "-C", str(self.git_dir), *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            log.warning("git %s failed (%d): %s", args[0], proc.returncode, stderr.decode(errors="replace").strip())
            return False
        return True

    async def _git_publish(self, race: Race) -> None:
        target = self.public_file or self.results_file
        try:
            if not await self._git("add", str(target)):
                return
            if not await self._git("commit", "-m", f"Results: {race.name}"):
                return
            await self._git("push", self.git_remote)
        except OSError:
            log.exception("git publish failed for race %s", race.id)
