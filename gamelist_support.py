#!/usr/bin/env python3
"""Platform discovery, platform names and console helpers shared by the scripts."""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Iterable, Optional

import pandas as pd
from rich.console import Console
from rich.progress import track
from rich.table import Table

from gamelist_core import GamelistError

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.path.join(SCRIPT_DIR, 'wizardry')
PLATFORMS_CSV = os.path.join(DATA_DIR, 'platforms.csv')
# The ROM library lives next to the scripts folder under "roms".
ROMS_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, os.pardir, 'roms'))
GAMELIST_NAME = 'gamelist.xml'

LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'

log = logging.getLogger('gamelist.platforms')

# Rich console for nicer output
console = Console()

# Folder name (lower-case) -> display name.  platforms.csv entries win.
PLATFORM_NAMES = {
    '3do': 'Panasonic 3DO',
    'amiga': 'Commodore Amiga',
    'atari2600': 'Atari 2600',
    'c64': 'Commodore 64',
    'dreamcast': 'Sega Dreamcast',
    'fbneo': 'FinalBurn Neo',
    'gamegear': 'Sega Game Gear',
    'gb': 'Nintendo Game Boy',
    'gba': 'Nintendo Game Boy Advance',
    'gbc': 'Nintendo Game Boy Color',
    'gc': 'Nintendo GameCube',
    'mame': 'Arcade (MAME)',
    'mastersystem': 'Sega Master System',
    'megadrive': 'Sega Mega Drive',
    'msx': 'MSX',
    'n64': 'Nintendo 64',
    'nds': 'Nintendo DS',
    'neogeo': 'SNK Neo Geo',
    'nes': 'Nintendo Entertainment System',
    'pcengine': 'NEC PC Engine',
    'pcenginecd': 'NEC PC Engine CD',
    'ps2': 'Sony PlayStation 2',
    'psp': 'Sony PlayStation Portable',
    'psx': 'Sony PlayStation',
    'saturn': 'Sega Saturn',
    'segacd': 'Sega CD',
    'snes': 'Super Nintendo Entertainment System',
    'wii': 'Nintendo Wii',
}


@dataclass(frozen=True)
class Platform:
    label: str
    gamelist_path: str


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def load_platform_table(csv_path: Optional[str] = PLATFORMS_CSV) -> tuple[dict[str, str], set[str]]:
    """Return ``(names, ignored)`` built from :data:`PLATFORM_NAMES` and ``csv_path``.

    ``csv_path`` needs a ``Directory`` column; ``FullName`` (or ``Platform``)
    supplies the display name and a truthy ``ignore`` column excludes the
    folder from discovery.  A missing file just leaves the defaults.
    """
    names = dict(PLATFORM_NAMES)
    ignored: set[str] = set()
    if not csv_path or not os.path.isfile(csv_path):
        return names, ignored

    df = pd.read_csv(csv_path, dtype=str).fillna('')
    if 'Directory' not in df.columns:
        log.warning('%s has no Directory column; using built-in platform names', csv_path)
        return names, ignored
    if 'ignore' in df.columns:
        df['ignore'] = df['ignore'].str.strip().str.upper().isin(['TRUE', '1', 'YES'])
    else:
        df['ignore'] = False

    for _, row in df.iterrows():
        directory = row['Directory'].strip().lower()
        if not directory:
            continue
        full_name = row.get('FullName', '').strip() or row.get('Platform', '').strip()
        if full_name:
            names[directory] = full_name
        if row['ignore']:
            ignored.add(directory)
    return names, ignored


def platform_display_name(label: str, names: dict[str, str]) -> str:
    return names.get(label.lower(), label)


def discover_gamelists(
    root_dir: str,
    only: Optional[Iterable[str]] = None,
    ignored: Iterable[str] = (),
) -> list[Platform]:
    """List ``<root_dir>/<platform>/gamelist.xml`` files, sorted by platform folder."""
    if not os.path.isdir(root_dir):
        raise GamelistError(f'root directory not found: {root_dir}')
    wanted = {o.lower() for o in only} if only else None
    skip = {i.lower() for i in ignored}

    platforms = []
    for name in sorted(os.listdir(root_dir), key=str.lower):
        gl_path = os.path.join(root_dir, name, GAMELIST_NAME)
        if not os.path.isfile(gl_path):
            continue
        if wanted is not None and name.lower() not in wanted:
            continue
        if name.lower() in skip:
            log.debug('Ignoring platform %s (platforms.csv)', name)
            continue
        platforms.append(Platform(name, gl_path))
    return platforms


def shorten_path(path: str, depth: int = 2) -> str:
    """Return ``path`` showing only the last ``depth`` directories and filename."""
    s = str(path)
    if "/" not in s and "\\" not in s:
        return s
    s = s.replace("\\", "/")
    parts = [p for p in s.split("/") if p]
    if len(parts) <= depth + 1:
        return "/" + "/".join(parts)
    return "/" + "/".join(parts[-(depth + 1):])


def iter_progress(seq, description: str):
    """Iterate with a progress bar if output is a TTY."""
    return track(seq, description=description) if sys.stdout.isatty() else seq


def format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f'{seconds:.1f}s'
    minutes, secs = divmod(int(round(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f'{hours}h {minutes:02d}m {secs:02d}s'
    return f'{minutes}m {secs:02d}s'


def print_table(df: pd.DataFrame, title: str | None = None) -> None:
    """Pretty-print a DataFrame using rich.

    A ``Total`` row is appended: numeric columns are summed, the first column
    carries the label and other text columns stay blank."""
    if df.empty:
        console.print("[bold red]No data available.[/]")
        return

    total_row = {}
    for i, col in enumerate(df.columns):
        if pd.api.types.is_numeric_dtype(df[col]) and not pd.api.types.is_bool_dtype(df[col]):
            total_row[col] = df[col].sum()
        elif i == 0:
            total_row[col] = "Total"
        else:
            total_row[col] = ""

    df_disp = pd.concat([df, pd.DataFrame([total_row])], ignore_index=True)

    table = Table(show_header=True, header_style="bold magenta", title=title)
    for col in df_disp.columns:
        table.add_column(str(col))
    for _, row in df_disp.iterrows():
        display = []
        for value in row:
            if pd.isna(value):
                display.append('')
            elif isinstance(value, float) and value.is_integer():
                display.append(str(int(value)))
            else:
                display.append(str(value))
        table.add_row(*display)
    console.print(table)
