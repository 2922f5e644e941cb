import json

from site_config import DEFAULT_CONFIG, load_config, load_json_with_comments


def test_load_json_with_comments(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(
        '{\n'
        '  # server settings\n'
        '  "server": {"port": 8080},  # trailing comment\n'
        '  "mail": {"from_address": "games#1@example.com"}\n'
        '}\n'
    )
    data = load_json_with_comments(str(path))
    assert data['server']['port'] == 8080
    assert data['mail']['from_address'] == 'games#1@example.com'


def test_load_json_with_comments_missing_file(tmp_path):
    assert load_json_with_comments(str(tmp_path / 'nope.json')) == {}


def test_load_config_writes_defaults_when_missing(tmp_path):
    path = tmp_path / 'sub' / 'config.json'
    config = load_config(str(path))
    assert config == DEFAULT_CONFIG
    assert json.loads(path.read_text())['server']['port'] == DEFAULT_CONFIG['server']['port']


def test_load_config_merges_sections(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'server': {'port': 9000}, 'secret_key': 'abc'}))
    config = load_config(str(path))
    assert config['server']['port'] == 9000
    assert config['server']['host'] == DEFAULT_CONFIG['server']['host']
    assert config['secret_key'] == 'abc'
    assert config['image_proxy']['mappings']['pacman'] == DEFAULT_CONFIG['image_proxy']['mappings']['pacman']


def test_load_config_invalid_file_falls_back(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text('{ not json')
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_defaults_are_not_mutated(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'ads': {'pre_game_skip_seconds': 9}}))
    load_config(str(path))
    assert DEFAULT_CONFIG['ads']['pre_game_skip_seconds'] == 5
