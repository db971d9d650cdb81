import json

from cmdstruct.config import DEFAULT_CONFIG, Config, load_config


def test_missing_file_is_created_with_defaults(config_path):
    config = Config(config_path)
    assert config_path.exists()
    assert json.loads(config_path.read_text(encoding='utf-8')) == DEFAULT_CONFIG
    assert config.get('structure', 'namespace') == 'minecraft'


def test_set_persists(config_path):
    Config(config_path).set('schem', 'include_air', True)
    assert Config(config_path).getboolean('schem', 'include_air') is True


def test_partial_file_merged_with_defaults(config_path):
    config_path.write_text(json.dumps({"structure": {"namespace": "custom"}}), encoding='utf-8')
    config = Config(config_path)
    assert config.get('structure', 'namespace') == 'custom'
    assert config.get('structure', 'block_version') == 18163713


def test_corrupt_file_falls_back_to_defaults(config_path):
    config_path.write_text('{not json', encoding='utf-8')
    config = Config(config_path)
    assert config.get('web_server', 'port') == 5000


def test_non_object_file_falls_back_to_defaults(config_path):
    config_path.write_text('[]', encoding='utf-8')
    assert Config(config_path).get('web_server', 'port') == 5000
    assert load_config(config_path) == DEFAULT_CONFIG


def test_getboolean_accepts_strings(config_path):
    config = Config(config_path)
    config.set('ui', 'colored_output', 'no')
    assert config.getboolean('ui', 'colored_output') is False
    config.set('ui', 'colored_output', 'Yes')
    assert config.getboolean('ui', 'colored_output') is True


def test_get_fallback(config_path):
    config = Config(config_path)
    assert config.get('missing', 'key', 7) == 7
    assert config.get('ui', 'missing', 'x') == 'x'


def test_load_config_does_not_write(config_path):
    assert load_config(config_path) == DEFAULT_CONFIG
    assert not config_path.exists()
