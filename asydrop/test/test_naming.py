import re
import datetime

from asydrop.repository.naming import unique_name, unique_folder_name, hash_suffix


def test_unique_name_free_name_is_kept(tmp_path):
    assert unique_name(str(tmp_path), 'report.txt') == 'report.txt'


def test_unique_name_counts_up(tmp_path):
    (tmp_path / 'report.txt').write_bytes(b'first')
    assert unique_name(str(tmp_path), 'report.txt') == 'report_1.txt'

    (tmp_path / 'report_1.txt').write_bytes(b'second')
    assert unique_name(str(tmp_path), 'report.txt') == 'report_2.txt'


def test_unique_name_without_extension(tmp_path):
    (tmp_path / 'README').write_bytes(b'')
    assert unique_name(str(tmp_path), 'README') == 'README_1'


def test_unique_name_counts_directories_as_taken(tmp_path):
    (tmp_path / 'data').mkdir()
    assert unique_name(str(tmp_path), 'data') == 'data_1'


def test_hash_suffix_is_six_hex_and_deterministic():
    now = datetime.datetime(2024, 5, 1, 12, 30, 15)
    suffix = hash_suffix('data', now)
    assert re.fullmatch(r'[0-9a-f]{6}', suffix)
    assert suffix == hash_suffix('data', now)
    assert suffix != hash_suffix('data', now, 1)


def test_unique_folder_name(tmp_path):
    now = datetime.datetime(2024, 5, 1, 12, 30, 15)
    assert unique_folder_name(str(tmp_path), 'data', now) == 'data'

    (tmp_path / 'data').mkdir()
    first = unique_folder_name(str(tmp_path), 'data', now)
    assert first == 'data_' + hash_suffix('data', now, 0)

    (tmp_path / first).mkdir()
    second = unique_folder_name(str(tmp_path), 'data', now)
    assert re.fullmatch(r'data_[0-9a-f]{6}', second)
    assert second != first
