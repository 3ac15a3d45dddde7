import json

import pytest

from gigecap.config import ConfigError, ModuleType, read_configuration


def _write(tmp_path, document, name="config.json"):
    path = tmp_path / name
    path.write_text(document if isinstance(document, str) else json.dumps(document))
    return path


GOOD = [
    {"id": 0, "name": "source", "parameters": ["-a", "1"], "type": "FIRST", "next_id": 1},
    {"id": 1, "name": "filter", "parameters": [], "type": "MIDDLE", "next_id": 2},
    {"id": 2, "name": "sink", "parameters": ["out"], "type": "LAST", "next_id": None},
]


def test_good_test_json(tmp_path):
    modules = read_configuration(_write(tmp_path, GOOD))
    assert len(modules) == 3
    assert [m.type for m in modules] == [ModuleType.FIRST, ModuleType.MIDDLE, ModuleType.LAST]
    assert [m.next for m in modules] == [1, 2, -1]
    assert modules[0].argv == ["source", "-a", "1"]
    assert modules[2].argv == ["sink", "out"]


def test_ill_test_json_is_accepted_without_topology_check(tmp_path):
    ill = [
        {"id": 0, "name": "a", "parameters": [], "type": "FIRST", "next_id": 7},
        {"id": 1, "name": "b", "parameters": [], "type": "MIDDLE", "next_id": 1},
        {"id": 2, "name": "c", "parameters": [], "type": "LAST"},
    ]
    modules = read_configuration(_write(tmp_path, ill))
    assert len(modules) == 3
    assert modules[0].next == 7


def test_bad_test_json(tmp_path):
    bad = [{"id": 0, "name": "a", "type": "FIRST", "next_id": 1}]
    with pytest.raises(ConfigError):
        read_configuration(_write(tmp_path, bad))


def test_non_existing_test_json(tmp_path):
    with pytest.raises(ConfigError):
        read_configuration(tmp_path / "not_test.json")


def test_empty_test_json(tmp_path):
    with pytest.raises(ConfigError):
        read_configuration(_write(tmp_path, ""))


def test_empty_file_name():
    with pytest.raises(ConfigError):
        read_configuration("")


def test_empty_list_has_no_first(tmp_path):
    with pytest.raises(ConfigError, match="FIRST"):
        read_configuration(_write(tmp_path, []))


def test_module_without_name_uses_parameters_only(tmp_path):
    doc = [
        {"id": 0, "parameters": ["x", "y"], "type": "FIRST", "next_id": 1},
        {"id": 1, "parameters": [], "type": "LAST"},
    ]
    modules = read_configuration(_write(tmp_path, doc))
    assert modules[0].argv == ["x", "y"]
    assert modules[1].argv == []


def test_two_first_modules_rejected(tmp_path):
    doc = [
        {"id": 0, "name": "a", "parameters": [], "type": "FIRST", "next_id": 1},
        {"id": 1, "name": "b", "parameters": [], "type": "FIRST", "next_id": 2},
        {"id": 2, "name": "c", "parameters": [], "type": "LAST"},
    ]
    with pytest.raises(ConfigError, match="MIDDLE"):
        read_configuration(_write(tmp_path, doc))


def test_last_with_next_rejected(tmp_path):
    doc = [
        {"id": 0, "name": "a", "parameters": [], "type": "FIRST", "next_id": 1},
        {"id": 1, "name": "b", "parameters": [], "type": "LAST", "next_id": 0},
    ]
    with pytest.raises(ConfigError, match="MIDDLE"):
        read_configuration(_write(tmp_path, doc))


def test_module_without_next_must_be_last(tmp_path):
    doc = [{"id": 0, "name": "a", "parameters": [], "type": "FIRST"}]
    with pytest.raises(ConfigError, match="LAST"):
        read_configuration(_write(tmp_path, doc))


def test_missing_id_rejected(tmp_path):
    doc = [{"name": "a", "parameters": [], "type": "FIRST", "next_id": 0}]
    with pytest.raises(ConfigError):
        read_configuration(_write(tmp_path, doc))


def test_ids_are_kept(tmp_path):
    modules = read_configuration(_write(tmp_path, GOOD))
    assert [m.id for m in modules] == [0, 1, 2]