#!/usr/bin/env python3
"""Shared ``gamelist.xml`` handling for the hidden-entry reviewer and the exporter.

A gamelist is loaded once into a :class:`GamelistDocument`, flattened into
:class:`EntryRecord` values that refer back to their ``<game>`` node by index,
grouped by title and reduced to one primary entry per group.  Broken XML is
not fatal: the ``<game>`` blocks are salvaged one by one and the resulting
records are flagged ``Malformed`` so callers know not to write the file back.
"""
from __future__ import annotations

import datetime
import io
import logging
import os
import re
import shutil
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Iterable, Optional

log = logging.getLogger('gamelist')

NORMAL = 'Normal'
MALFORMED = 'Malformed'

# Same truthy set the platforms.csv ``ignore`` column uses, compared lower-case.
HIDDEN_TRUE_VALUES = {'true', '1', 'yes'}
PLAYLIST_EXT = '.m3u'


class GamelistError(RuntimeError):
    """Base error for gamelist handling."""


class SaveError(GamelistError):
    """Backup or rewrite of a gamelist failed."""


class ReportError(GamelistError):
    """Export report could not be written."""


# --- XML helpers ------------------------------------------------------------

def local_name(tag) -> str:
    """Return ``tag`` without ``{namespace}`` or ``prefix:``; ``''`` for comments."""
    if not isinstance(tag, str):
        return ''
    return tag.rsplit('}', 1)[-1].rsplit(':', 1)[-1]


def child_text(element: ET.Element, name: str) -> str:
    """Text of the first child called ``name`` (any namespace), or ``''``."""
    for child in element:
        if local_name(child.tag).lower() == name:
            return child.text or ''
    return ''


# Non-greedy, so each match stops at the first closing tag after its opener.
GAME_BLOCK_RE = re.compile(
    r'<\s*(?:[\w.-]+:)?game(?=[\s/>])[^>]*?/>'
    r'|<\s*(?:[\w.-]+:)?game(?=[\s>])[^>]*>.*?<\s*/\s*(?:[\w.-]+:)?game\s*>',
    re.IGNORECASE | re.DOTALL,
)
TAG_PREFIX_RE = re.compile(r'(<\s*/?\s*)[\w.-]+:(?=[\w.-])')
# ElementTree reserves these for the prefixes it generates itself.
GENERATED_PREFIX_RE = re.compile(r'ns\d+\.?$')

# expat reports an unusable encoding declaration as ValueError/LookupError.
PARSE_FAILURES = (ET.ParseError, ValueError, LookupError)


def _new_parser() -> ET.XMLParser:
    return ET.XMLParser(target=ET.TreeBuilder(insert_comments=True, insert_pis=True))


def _declared_namespaces(raw: bytes) -> dict[str, str]:
    """Map each namespace URI in ``raw`` to the first prefix declared for it."""
    found: dict[str, str] = {}
    if b'xmlns' not in raw:
        return found
    for _, (prefix, uri) in ET.iterparse(io.BytesIO(raw), events=('start-ns',)):
        found.setdefault(uri, prefix)
    return found


# --- Records ----------------------------------------------------------------

@dataclass(frozen=True)
class EntryRecord:
    """One ``<game>`` entry.  ``index`` is its position in the owning document."""

    index: int
    name_raw: str
    path_raw: str
    hidden_raw: str = ''
    provenance: str = NORMAL

    @property
    def hidden(self) -> bool:
        return is_hidden_value(self.hidden_raw)

    @property
    def display_name(self) -> str:
        return resolve_display_name(self.name_raw, self.path_raw)


class GamelistDocument:
    """A parsed gamelist plus the ordered list of its ``<game>`` nodes.

    Element references never leave this class: callers work with
    :meth:`records` and ask for changes by record index.
    """

    def __init__(self, path: str, root: Optional[ET.Element], games: list[ET.Element],
                 provenance: str = NORMAL, namespaces: Optional[dict[str, str]] = None):
        self.path = path
        self._root = root
        self._games = games
        self.provenance = provenance
        self.namespaces = namespaces or {}

    @property
    def malformed(self) -> bool:
        return self.provenance == MALFORMED

    def __len__(self) -> int:
        return len(self._games)

    def records(self) -> list[EntryRecord]:
        return [
            EntryRecord(
                index=i,
                name_raw=child_text(game, 'name'),
                path_raw=child_text(game, 'path'),
                hidden_raw=child_text(game, 'hidden'),
                provenance=self.provenance,
            )
            for i, game in enumerate(self._games)
        ]

    def unhide(self, index: int) -> bool:
        """Drop every ``<hidden>`` child of game ``index``.

        Returns ``True`` when something was removed.  Salvaged documents
        cannot be written back faithfully, so they refuse edits.
        """
        if self.malformed:
            raise GamelistError(f'refusing to edit malformed gamelist {self.path}')
        game = self._games[index]
        removed = False
        for child in list(game):
            if local_name(child.tag).lower() == 'hidden':
                game.remove(child)
                removed = True
        return removed

    def to_bytes(self) -> bytes:
        """Serialize as UTF-8, keeping the document's own namespace prefixes."""
        if self._root is None:
            raise GamelistError(f'no document tree to serialize for {self.path}')
        default_ns = None
        for uri, prefix in self.namespaces.items():
            if not prefix:
                default_ns = uri
            elif not GENERATED_PREFIX_RE.match(prefix):
                ET.register_namespace(prefix, uri)
        # default_namespace refuses trees with unqualified elements (xmlns="").
        if default_ns and not all(
            el.tag.startswith('{') for el in self._root.iter() if isinstance(el.tag, str)
        ):
            default_ns = None
        buf = io.BytesIO()
        ET.ElementTree(self._root).write(buf, encoding='utf-8', xml_declaration=True,
                                         default_namespace=default_ns)
        return buf.getvalue()


def parse_gamelist(raw: bytes | str, path: str = '') -> GamelistDocument:
    """Parse ``raw`` into a document, salvaging ``<game>`` blocks if the XML is broken."""
    if isinstance(raw, str):
        raw = raw.encode('utf-8')
    try:
        root = ET.fromstring(raw, parser=_new_parser())
    except PARSE_FAILURES as exc:
        log.warning('Malformed gamelist %s (%s); salvaging <game> entries', path or '<memory>', exc)
        return salvage_gamelist(raw.decode('utf-8', errors='replace'), path)
    games = [el for el in root.iter() if local_name(el.tag).lower() == 'game']
    return GamelistDocument(path, root, games, NORMAL, _declared_namespaces(raw))


def salvage_gamelist(text: str, path: str = '') -> GamelistDocument:
    """Recover whatever ``<game>`` blocks still parse on their own.

    Closing-tag-like text inside a field value ends a block early; such
    blocks usually fail to parse and are dropped with the rest.
    """
    games = []
    dropped = 0
    for match in GAME_BLOCK_RE.finditer(text):
        block = TAG_PREFIX_RE.sub(r'\1', match.group(0))
        try:
            games.append(ET.fromstring(block))
        except PARSE_FAILURES:
            dropped += 1
    if dropped:
        log.debug('Dropped %d unparsable <game> block(s) from %s', dropped, path or '<memory>')
    return GamelistDocument(path, None, games, MALFORMED)


def load_gamelist(path: str) -> GamelistDocument:
    with open(path, 'rb') as fh:
        raw = fh.read()
    return parse_gamelist(raw, path)


# --- Normalisation ----------------------------------------------------------

def is_hidden_value(text: Optional[str]) -> bool:
    return (text or '').strip().lower() in HIDDEN_TRUE_VALUES


def filename_of(path: Optional[str]) -> str:
    """Last component of ``path``; gamelists mix ``/`` and ``\\`` separators."""
    return re.split(r'[\\/]', path or '')[-1]


def is_playlist(path: Optional[str]) -> bool:
    return (path or '').strip().lower().endswith(PLAYLIST_EXT)


def resolve_display_name(name: Optional[str], path: Optional[str]) -> str:
    """Return the trimmed name, else the path's filename without extension."""
    name = (name or '').strip()
    if name:
        return name
    fname = filename_of((path or '').strip())
    return os.path.splitext(fname)[0].strip()


def group_key(record: EntryRecord) -> str:
    """Grouping key shared by the reviewer and the exporter.

    Trimmed name when present, otherwise the raw path.  Entries with neither
    get a key of their own.
    """
    name = record.name_raw.strip()
    if name:
        return name
    if record.path_raw.strip():
        return record.path_raw
    return f'\x00entry-{record.index}'


# --- Disc numbers -----------------------------------------------------------
# A token must not follow a letter, so "Discworld" or "abcd2" do not count.
DISC_RE = re.compile(r'(?<![a-z])dis[ck]\s*[-_#.]?\s*(\d+)(?:\s*of\s*\d+)?', re.I)
CD_RE = re.compile(r'(?<![a-z])cd\s*[-_#.]?\s*(\d+)', re.I)
SIDE_RE = re.compile(r'(?<![a-z])side\s*[-_]?\s*([a-z])(?![a-z])', re.I)


def infer_volume_index(path: Optional[str]) -> Optional[int]:
    """Return the 1-based disc/CD/side number in the filename of ``path``.

    ``None`` means the filename carries no recognisable volume marker.
    """
    fname = filename_of(path)
    match = DISC_RE.search(fname)
    if match:
        return int(match.group(1))
    match = CD_RE.search(fname)
    if match:
        return int(match.group(1))
    match = SIDE_RE.search(fname)
    if match:
        return ord(match.group(1).lower()) - ord('a') + 1
    return None


# --- Groups -----------------------------------------------------------------

@dataclass
class EntryGroup:
    key: str
    members: list[EntryRecord]
    primary: EntryRecord

    @property
    def is_multi(self) -> bool:
        return len(self.members) > 1

    def secondaries(self) -> list[EntryRecord]:
        return [m for m in self.members if m.index != self.primary.index]


def _path_order(record: EntryRecord):
    return (record.path_raw, record.name_raw, record.hidden, record.index)


def select_primary(members: Iterable[EntryRecord]) -> EntryRecord:
    """Pick the representative of a group.

    Preference: an ``.m3u`` playlist (visible first), then disc 1, then the
    first visible entry, then simply the first entry.  Every step breaks
    ties by raw path so the choice does not depend on document order.
    """
    ordered = sorted(members, key=_path_order)
    if not ordered:
        raise ValueError('cannot select a primary from an empty group')

    playlists = [r for r in ordered if is_playlist(r.path_raw)]
    if playlists:
        return next((r for r in playlists if not r.hidden), playlists[0])

    first_disc = next((r for r in ordered if infer_volume_index(r.path_raw) == 1), None)
    if first_disc is not None:
        return first_disc

    return next((r for r in ordered if not r.hidden), ordered[0])


def build_groups(records: Iterable[EntryRecord]) -> list[EntryGroup]:
    """Group records by :func:`group_key`, in order of first appearance."""
    by_key: dict[str, list[EntryRecord]] = {}
    for record in records:
        by_key.setdefault(group_key(record), []).append(record)
    return [
        EntryGroup(key=key, members=members, primary=select_primary(members))
        for key, members in by_key.items()
    ]


# --- Persistence ------------------------------------------------------------

def backup_name(path: str, now: Optional[datetime.datetime] = None) -> str:
    ts = (now or datetime.datetime.now()).strftime('%Y%m%d_%H%M%S')
    return f'{path}.{ts}.bak'


def make_backup(path: str, now: Optional[datetime.datetime] = None) -> str:
    """Copy ``path`` byte-for-byte to ``<path>.<yyyyMMdd_HHmmss>.bak``.

    An existing backup is never overwritten; a second one within the same
    second gets a ``_2``, ``_3``... suffix.
    """
    first = backup_name(path, now)
    backup_path = first
    n = 1
    while os.path.exists(backup_path):
        n += 1
        backup_path = f'{first[:-len(".bak")]}_{n}.bak'
    try:
        shutil.copy2(path, backup_path)
    except OSError as exc:
        raise SaveError(f'backup of {path} failed: {exc}') from exc
    log.info('Backup written: %s', backup_path)
    return backup_path


def write_gamelist(path: str, data: bytes) -> None:
    try:
        with open(path, 'wb') as fh:
            fh.write(data)
    except OSError as exc:
        raise SaveError(f'writing {path} failed: {exc}') from exc
