#!/usr/bin/env python3
"""Flatten every platform's gamelist.xml into one CSV, one row per title.

Multi-disc sets collapse onto their primary entry; ``EntryType`` says whether
the set is driven by an ``.m3u`` playlist, spread over several gamelist
entries, or a single entry.  Nothing under the ROMs root is modified.
"""
from __future__ import annotations

import argparse
import logging
import os
import re
import sys
import time

import pandas as pd
from rich.markup import escape

from gamelist_core import (
    EntryGroup,
    GamelistError,
    ReportError,
    build_groups,
    is_playlist,
    load_gamelist,
)
from gamelist_support import (
    PLATFORMS_CSV,
    ROMS_ROOT,
    SCRIPT_DIR,
    Platform,
    console,
    discover_gamelists,
    format_elapsed,
    iter_progress,
    load_platform_table,
    platform_display_name,
    print_table,
    setup_logging,
    shorten_path,
)

log = logging.getLogger('gamelist.export')

EXPORT_COLUMNS = ['Title', 'PlatformName', 'EntryType', 'DiskCount', 'PlatformFolder', 'FilePath', 'XMLState']
DEFAULT_OUTPUT = os.path.join(SCRIPT_DIR, 'gamelist_export.csv')

SINGLE = 'Single'
MULTI_XML = 'Multi-XML'
MULTI_M3U = 'Multi-M3U'
UNTITLED = '(untitled)'

# --- Titles -----------------------------------------------------------------
# Sequel numbers only (I to XXXIX), so words like MIX or DID are not numerals.
ROMAN_RE = re.compile(r'^(?=[XVI])X{0,3}(?:IX|IV|V?I{0,3})$')
SHORT_CODE_RE = re.compile(r'^[A-Z]{2,3}$')
TOKEN_PARTS_RE = re.compile(r'^(\W*)(.*?)(\W*)$', re.S)
# All-caps words that are ordinary English, not codes.
PLAIN_WORDS = {
    'THE', 'AND', 'OF', 'AN', 'IN', 'ON', 'TO', 'FOR', 'AT', 'BY', 'OR', 'IS', 'IT', 'UP', 'NO', 'MY', 'GO',
    'ALL', 'ARE', 'BIG', 'BOY', 'CAR', 'DAY', 'DID', 'END', 'GET', 'GOD', 'GUN', 'HOT', 'ICE', 'KID',
    'MAN', 'MIX', 'NEW', 'NOT', 'ONE', 'OUT', 'RED', 'RUN', 'SKY', 'SUN', 'TOP', 'TWO', 'WAR', 'WAY', 'YOU',
}


def keep_verbatim(word: str) -> bool:
    """Roman numerals, anything with a digit and short all-caps codes stay as written."""
    if any(c.isdigit() for c in word):
        return True
    if word in PLAIN_WORDS:
        return False
    return bool(ROMAN_RE.match(word) or SHORT_CODE_RE.match(word))


def title_token(token: str) -> str:
    lead, word, trail = TOKEN_PARTS_RE.match(token).groups()
    if not word or keep_verbatim(word):
        return token
    return lead + word[:1].upper() + word[1:].lower() + trail


def make_title(display_name: str, name_raw: str = '') -> str:
    """Title-case ``display_name`` word by word, keeping whitespace runs intact.

    >>> make_title('ZELDA II: the ADVENTURE of LINK')
    'Zelda II: The Adventure Of Link'
    """
    if display_name.strip():
        return ''.join(title_token(t) for t in re.split(r'(\s+)', display_name))
    # Direct callers only: rows always pass a record's own display name, which
    # is never blank while its raw name has text.
    if name_raw.strip():
        return name_raw
    return UNTITLED


# --- Rows -------------------------------------------------------------------

def classify(group: EntryGroup) -> str:
    if is_playlist(group.primary.path_raw):
        return MULTI_M3U
    if group.is_multi:
        return MULTI_XML
    return SINGLE


def build_export_rows(groups: list[EntryGroup], platform_label: str, platform_name: str) -> list[dict]:
    rows = []
    for group in groups:
        primary = group.primary
        rows.append({
            'Title': make_title(primary.display_name, primary.name_raw),
            'PlatformName': platform_name,
            'EntryType': classify(group),
            'DiskCount': len(group.members),
            'PlatformFolder': platform_label,
            'FilePath': primary.path_raw,
            'XMLState': primary.provenance,
        })
    return rows


def collect_rows(platforms: list[Platform], names: dict[str, str]) -> tuple[pd.DataFrame, list[str]]:
    """Read every gamelist and return the export frame plus the paths that were malformed."""
    rows = []
    malformed = []
    for platform in iter_progress(platforms, 'Reading gamelists'):
        try:
            document = load_gamelist(platform.gamelist_path)
        except OSError as exc:
            log.warning('Cannot read %s: %s', platform.gamelist_path, exc)
            continue
        if document.malformed:
            malformed.append(platform.gamelist_path)
        groups = build_groups(document.records())
        rows.extend(build_export_rows(groups, platform.label, platform_display_name(platform.label, names)))
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS), malformed


# --- Output -----------------------------------------------------------------

def check_report_target(out_path: str) -> None:
    """Fail early if ``out_path`` cannot be opened for writing (e.g. open in Excel)."""
    existed = os.path.exists(out_path)
    try:
        os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
        with open(out_path, 'a', encoding='utf-8'):
            pass
    except OSError as exc:
        raise ReportError(f'report file is not writable: {out_path}: {exc}') from exc
    if not existed:
        os.remove(out_path)


def write_report(df: pd.DataFrame, out_path: str) -> None:
    """Write ``df`` as UTF-8 CSV (no BOM); the target only changes once the file is complete."""
    tmp_path = f'{out_path}.tmp'
    try:
        df.to_csv(tmp_path, index=False, encoding='utf-8', columns=EXPORT_COLUMNS)
        os.replace(tmp_path, out_path)
    except OSError as exc:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise ReportError(f'cannot write report {out_path}: {exc}') from exc


def summary_frame(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame()
    counts = pd.crosstab(df['PlatformFolder'], df['EntryType'])
    for col in (SINGLE, MULTI_XML, MULTI_M3U):
        if col not in counts.columns:
            counts[col] = 0
    counts = counts[[SINGLE, MULTI_XML, MULTI_M3U]]
    counts.insert(0, 'Titles', counts.sum(axis=1))
    return counts.reset_index().rename(columns={'PlatformFolder': 'Platform'})


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description='Export all platform gamelist.xml entries to a single CSV (one row per title).'
    )
    p.add_argument('--root-dir', default=ROMS_ROOT,
                   help='Top-level ROMs directory containing per-console subfolders (default: ../roms)')
    p.add_argument('--platforms-csv', default=PLATFORMS_CSV,
                   help='Platform names / ignore list (default: wizardry/platforms.csv)')
    p.add_argument('--platform', action='append', default=None,
                   help='Only export this platform folder (repeatable).')
    p.add_argument('--output', default=DEFAULT_OUTPUT,
                   help='CSV file to write (default: gamelist_export.csv)')
    p.add_argument('--verbose', action='store_true', help='Debug logging.')
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    started = time.perf_counter()

    names, ignored = load_platform_table(args.platforms_csv)
    try:
        platforms = discover_gamelists(args.root_dir, only=args.platform, ignored=ignored)
        check_report_target(args.output)
    except GamelistError as exc:
        console.print(f"[bold red]Error:[/] {escape(str(exc))}")
        return 2 if isinstance(exc, ReportError) else 1

    df, malformed = collect_rows(platforms, names)
    try:
        write_report(df, args.output)
    except ReportError as exc:
        console.print(f"[bold red]Error:[/] {escape(str(exc))}")
        return 2

    print_table(summary_frame(df), title='Gamelist export')
    for path in malformed:
        console.print(f"[bold yellow]Warning:[/] malformed gamelist, entries salvaged: {escape(path)}")
    console.print(f"[bold green]Wrote {len(df)} rows to {escape(shorten_path(args.output))}[/]")
    console.print(f"Done in {format_elapsed(time.perf_counter() - started)}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
