#!/usr/bin/env python3
"""Walk every platform's gamelist.xml and offer to unhide hidden games.

Only one entry per title is ever offered: for multi-disc sets that is the
primary entry (playlist or disc 1), and the other hidden discs are bypassed
and left alone.  Accepted changes are written back once per platform, after a
timestamped ``.bak`` copy of the original file has been made.  Cancelling
keeps whatever was already accepted on the current platform and stops the
run.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

import pandas as pd
from rich.markup import escape

from gamelist_core import (
    EntryGroup,
    GamelistDocument,
    GamelistError,
    SaveError,
    build_groups,
    load_gamelist,
    make_backup,
    write_gamelist,
)
from gamelist_support import (
    PLATFORMS_CSV,
    ROMS_ROOT,
    Platform,
    console,
    discover_gamelists,
    format_elapsed,
    load_platform_table,
    platform_display_name,
    print_table,
    setup_logging,
    shorten_path,
)

log = logging.getLogger('gamelist.review')

# Prompt answers
ACCEPT = 'accept'
REJECT = 'reject'
CANCEL = 'cancel'

# Per-entry outcomes
UNHIDDEN = 'Unhidden'
SKIPPED = 'Skipped'
CANCELLED = 'Cancelled'

BYPASS_SECONDARY_DISC = 'Disk2+'


@dataclass(frozen=True)
class EntryInfo:
    """What the operator is shown for one hidden entry."""

    platform: str
    name: str
    path: str
    volumes: int
    position: int
    total: int


Ask = Callable[[EntryInfo], str]


@dataclass
class PlatformResult:
    platform: str
    gamelist_path: str
    found: int = 0
    bypassed: int = 0
    unhidden: int = 0
    skipped: int = 0
    bypass_reasons: Counter = field(default_factory=Counter)
    outcomes: list[tuple[int, str]] = field(default_factory=list)
    malformed: bool = False
    cancelled: bool = False
    saved: bool = False
    backup_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def state(self) -> str:
        if self.error:
            return 'Error'
        if self.malformed:
            return 'Malformed'
        if self.cancelled:
            return 'Cancelled (saved)' if self.saved else 'Cancelled'
        return 'Saved' if self.saved else 'Unchanged'


@dataclass
class RunTotals:
    platforms: int = 0
    found: int = 0
    bypassed: int = 0
    unhidden: int = 0
    skipped: int = 0
    malformed: int = 0
    failed: int = 0
    cancelled: bool = False
    bypass_reasons: Counter = field(default_factory=Counter)

    def add(self, result: PlatformResult) -> None:
        self.platforms += 1
        self.found += result.found
        self.bypassed += result.bypassed
        self.unhidden += result.unhidden
        self.skipped += result.skipped
        self.malformed += int(result.malformed)
        self.failed += int(bool(result.error))
        self.cancelled = self.cancelled or result.cancelled
        self.bypass_reasons.update(result.bypass_reasons)


def plan_review(groups: list[EntryGroup]) -> tuple[list[EntryGroup], Counter]:
    """Split hidden entries into groups to prompt for and bypassed secondaries.

    A group is eligible when its primary is hidden.  Hidden non-primary
    members are counted under ``Disk2+`` and never offered.
    """
    eligible = []
    bypass: Counter = Counter()
    for group in groups:
        if group.primary.hidden:
            eligible.append(group)
        for member in group.secondaries():
            if member.hidden:
                bypass[BYPASS_SECONDARY_DISC] += 1
    return eligible, bypass


class ReviewSession:
    """Pending edits for one platform and the backup made before saving them."""

    def __init__(self, document: GamelistDocument):
        self.document = document
        self.backup_path: Optional[str] = None
        self.dirty = False

    def unhide(self, index: int) -> None:
        if self.document.unhide(index):
            self.dirty = True

    def persist(self) -> bool:
        """Write pending edits; the first write of the run makes the backup.

        Returns ``False`` when there was nothing to write.
        """
        if not self.dirty:
            return False
        if self.backup_path is None:
            self.backup_path = make_backup(self.document.path)
        write_gamelist(self.document.path, self.document.to_bytes())
        self.dirty = False
        return True


def _save(session: ReviewSession, result: PlatformResult) -> None:
    if not session.dirty:
        return
    try:
        session.persist()
    except SaveError as exc:
        log.error('Could not save %s: %s', result.gamelist_path, exc)
        result.error = str(exc)
        result.unhidden = 0
        result.backup_path = session.backup_path
        return
    result.saved = True
    result.backup_path = session.backup_path
    log.info('Saved %d unhidden entr%s to %s', result.unhidden,
             'y' if result.unhidden == 1 else 'ies', result.gamelist_path)


def review_platform(platform: Platform, ask: Ask) -> PlatformResult:
    """Prompt for each eligible hidden entry of one platform and save the result."""
    result = PlatformResult(platform.label, platform.gamelist_path)
    try:
        document = load_gamelist(platform.gamelist_path)
    except OSError as exc:
        log.warning('Cannot read %s: %s', platform.gamelist_path, exc)
        result.error = str(exc)
        return result

    eligible, bypass = plan_review(build_groups(document.records()))
    result.bypass_reasons = bypass
    result.bypassed = sum(bypass.values())
    result.found = len(eligible) + result.bypassed

    if document.malformed:
        result.malformed = True
        log.warning('Not editing malformed gamelist %s', platform.gamelist_path)
        return result
    if not eligible:
        return result

    session = ReviewSession(document)
    for position, group in enumerate(eligible, start=1):
        entry = group.primary
        info = EntryInfo(
            platform=platform.label,
            name=entry.display_name,
            path=entry.path_raw,
            volumes=len(group.members),
            position=position,
            total=len(eligible),
        )
        try:
            decision = ask(info)
        except KeyboardInterrupt:
            decision = CANCEL

        if decision == CANCEL:
            result.cancelled = True
            result.outcomes.append((entry.index, CANCELLED))
            log.info('Review cancelled at %s (%d/%d)', info.name, position, len(eligible))
            break
        if decision == ACCEPT:
            session.unhide(entry.index)
            result.unhidden += 1
            result.outcomes.append((entry.index, UNHIDDEN))
        elif decision == REJECT:
            result.skipped += 1
            result.outcomes.append((entry.index, SKIPPED))
        else:
            raise ValueError(f'unexpected prompt answer: {decision!r}')

    _save(session, result)
    return result


def run_review(platforms: list[Platform], ask: Ask) -> tuple[list[PlatformResult], RunTotals]:
    """Review platforms in order; a cancel stops before the next platform."""
    results = []
    totals = RunTotals()
    for platform in platforms:
        console.print(f"[bold cyan]{escape(platform.label)}[/] {escape(shorten_path(platform.gamelist_path))}")
        result = review_platform(platform, ask)
        results.append(result)
        totals.add(result)
        if result.cancelled:
            break
    return results, totals


# --- Prompts ----------------------------------------------------------------

def describe(info: EntryInfo) -> str:
    lines = [f"{info.name}", f"Platform: {info.platform}", f"Path: {info.path}"]
    if info.volumes > 1:
        lines.append(f"Multi-disc set: {info.volumes} entries (only this one will change)")
    lines.append(f"Entry {info.position} of {info.total}")
    return '\n'.join(lines)


class ConsolePrompt:
    """Ask on the terminal: ``y`` unhides, ``n`` (or ENTER) skips, ``c`` cancels."""

    def __init__(self, input_func: Optional[Callable[[str], str]] = None):
        self.input_func = input_func or input

    def __call__(self, info: EntryInfo) -> str:
        console.print(f"\n[bold]{info.position}/{info.total}[/] [green]{escape(info.name)}[/]")
        console.print(f"  {escape(info.path)}")
        if info.volumes > 1:
            console.print(f"  [yellow]{info.volumes} disc entries share this title[/]")
        while True:
            try:
                ans = self.input_func('Unhide? [y/N/c(ancel)]: ').strip().lower()
            except EOFError:
                return CANCEL
            if ans in {'y', 'yes'}:
                return ACCEPT
            if ans in {'', 'n', 'no'}:
                return REJECT
            if ans in {'c', 'cancel', 'q', 'quit'}:
                return CANCEL
            console.print("[bold red]Please answer y, n or c.[/]")


class DialogPrompt:
    """Ask with a Yes/No/Cancel message box."""

    def __init__(self):
        import tkinter as tk
        from tkinter import messagebox

        self._messagebox = messagebox
        self._root = tk.Tk()
        self._root.withdraw()

    def __call__(self, info: EntryInfo) -> str:
        answer = self._messagebox.askyesnocancel(
            'Unhide game?', describe(info) + '\n\nUnhide this game?', parent=self._root
        )
        if answer is None:
            return CANCEL
        return ACCEPT if answer else REJECT

    def close(self) -> None:
        self._root.destroy()


def gui_available() -> bool:
    if os.name != 'nt' and sys.platform != 'darwin':
        if not (os.environ.get('DISPLAY') or os.environ.get('WAYLAND_DISPLAY')):
            return False
    try:
        import tkinter  # noqa: F401
    except ImportError:
        return False
    return True


def choose_prompt(no_gui: bool = False) -> Ask:
    if not no_gui and gui_available():
        import tkinter

        try:
            return DialogPrompt()
        except tkinter.TclError as exc:
            log.debug('Dialog prompt unavailable (%s); using console prompt', exc)
    return ConsolePrompt()


# --- CLI --------------------------------------------------------------------

def summary_frame(results: list[PlatformResult], names: dict[str, str]) -> pd.DataFrame:
    rows = [
        {
            'Platform': platform_display_name(r.platform, names),
            'Found': r.found,
            'Bypassed': r.bypassed,
            'Unhidden': r.unhidden,
            'Skipped': r.skipped,
            'State': r.state,
        }
        for r in results
    ]
    return pd.DataFrame(rows, columns=['Platform', 'Found', 'Bypassed', 'Unhidden', 'Skipped', 'State'])


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description='Review hidden entries in every platform gamelist.xml and unhide selected ones.'
    )
    p.add_argument('--root-dir', default=ROMS_ROOT,
                   help='Top-level ROMs directory containing per-console subfolders (default: ../roms)')
    p.add_argument('--platforms-csv', default=PLATFORMS_CSV,
                   help='Platform names / ignore list (default: wizardry/platforms.csv)')
    p.add_argument('--platform', action='append', default=None,
                   help='Only review this platform folder (repeatable).')
    p.add_argument('--no-gui', action='store_true',
                   help='Always prompt on the terminal, even if a display is available.')
    p.add_argument('--verbose', action='store_true', help='Debug logging.')
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    started = time.perf_counter()

    names, ignored = load_platform_table(args.platforms_csv)
    try:
        platforms = discover_gamelists(args.root_dir, only=args.platform, ignored=ignored)
    except GamelistError as exc:
        console.print(f"[bold red]Error:[/] {escape(str(exc))}")
        return 1
    if not platforms:
        console.print('[bold yellow]No gamelist.xml files found.[/]')
        return 0

    ask = choose_prompt(no_gui=args.no_gui)
    try:
        results, totals = run_review(platforms, ask)
    finally:
        close = getattr(ask, 'close', None)
        if close is not None:
            close()

    print_table(summary_frame(results, names), title='Hidden entry review')
    if totals.bypass_reasons:
        reasons = ', '.join(f"{k}={v}" for k, v in sorted(totals.bypass_reasons.items()))
        console.print(f"Bypassed: {reasons}")
    for r in results:
        if r.malformed:
            console.print(f"[bold yellow]Warning:[/] malformed gamelist not edited: {escape(r.gamelist_path)}")
        if r.error:
            console.print(f"[bold red]Failed:[/] {escape(r.gamelist_path)}: {escape(r.error)}")
            if r.backup_path:
                console.print(f"  Original kept in {escape(r.backup_path)}")
    if totals.cancelled:
        console.print('[bold yellow]Review cancelled; remaining platforms were not processed.[/]')
    console.print(f"[bold green]Done in {format_elapsed(time.perf_counter() - started)}[/]")
    return 3 if totals.failed else 0


if __name__ == '__main__':
    sys.exit(main())
