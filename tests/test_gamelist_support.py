"""Tests for platform discovery, the platform table and console helpers."""

import pandas as pd
import pytest

from gamelist_core import GamelistError
from gamelist_support import (
    PLATFORM_NAMES,
    Platform,
    discover_gamelists,
    format_elapsed,
    load_platform_table,
    platform_display_name,
    print_table,
    shorten_path,
)


def make_platform(root, name, with_gamelist=True):
    folder = root / name
    folder.mkdir(parents=True)
    if with_gamelist:
        (folder / 'gamelist.xml').write_text('<gameList/>', encoding='utf-8')


class TestDiscovery:
    def test_sorted_and_filtered(self, tmp_path):
        for name in ['snes', 'PSX', 'gba']:
            make_platform(tmp_path, name)
        make_platform(tmp_path, 'bios', with_gamelist=False)
        (tmp_path / 'readme.txt').write_text('x')

        platforms = discover_gamelists(str(tmp_path))
        assert [p.label for p in platforms] == ['gba', 'PSX', 'snes']
        assert platforms[0] == Platform('gba', str(tmp_path / 'gba' / 'gamelist.xml'))

    def test_only_and_ignored(self, tmp_path):
        for name in ['snes', 'psx', 'gba']:
            make_platform(tmp_path, name)
        assert [p.label for p in discover_gamelists(str(tmp_path), only=['PSX', 'snes'])] == ['psx', 'snes']
        assert [p.label for p in discover_gamelists(str(tmp_path), ignored={'gba'})] == ['psx', 'snes']

    def test_missing_root(self, tmp_path):
        with pytest.raises(GamelistError):
            discover_gamelists(str(tmp_path / 'nope'))


class TestPlatformTable:
    def test_defaults_without_csv(self, tmp_path):
        names, ignored = load_platform_table(str(tmp_path / 'missing.csv'))
        assert names == PLATFORM_NAMES
        assert ignored == set()

    def test_csv_overrides_and_ignores(self, tmp_path):
        csv_path = tmp_path / 'platforms.csv'
        pd.DataFrame([
            {'Platform': 'PS', 'Directory': 'psx', 'FullName': 'PlayStation', 'ignore': 'FALSE'},
            {'Platform': 'X360', 'Directory': 'xbox360', 'FullName': '', 'ignore': 'yes'},
        ]).to_csv(csv_path, index=False)
        names, ignored = load_platform_table(str(csv_path))
        assert names['psx'] == 'PlayStation'
        assert names['xbox360'] == 'X360'
        assert names['snes'] == PLATFORM_NAMES['snes']
        assert ignored == {'xbox360'}

    def test_csv_without_directory_column(self, tmp_path):
        csv_path = tmp_path / 'platforms.csv'
        csv_path.write_text('Name\nfoo\n', encoding='utf-8')
        names, ignored = load_platform_table(str(csv_path))
        assert names == PLATFORM_NAMES
        assert ignored == set()

    def test_display_name_falls_back_to_label(self):
        assert platform_display_name('PSX', PLATFORM_NAMES) == 'Sony PlayStation'
        assert platform_display_name('mystery', PLATFORM_NAMES) == 'mystery'


class TestHelpers:
    @pytest.mark.parametrize('seconds,expected', [
        (0.04, '0.0s'),
        (12.34, '12.3s'),
        (75, '1m 15s'),
        (3725, '1h 02m 05s'),
    ])
    def test_format_elapsed(self, seconds, expected):
        assert format_elapsed(seconds) == expected

    def test_shorten_path(self):
        assert shorten_path('/a/b/c/d/gamelist.xml') == '/c/d/gamelist.xml'
        assert shorten_path('gamelist.xml') == 'gamelist.xml'

    def test_print_table_appends_total(self, capsys):
        print_table(pd.DataFrame([{'Platform': 'psx', 'Found': 2}, {'Platform': 'snes', 'Found': 3}]))
        out = capsys.readouterr().out
        assert 'Total' in out
        assert '5' in out

    def test_print_table_empty(self, capsys):
        print_table(pd.DataFrame())
        assert 'No data available' in capsys.readouterr().out
