"""JSON配置"""
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "1.0.0",
    "ui": {
        "colored_output": True,
    },
    "structure": {
        "namespace": "minecraft",
        "block_version": 18163713,
        "origin": [0, 0, 0],
        "max_volume_warning": 10000000,
    },
    "schem": {
        "include_air": False,
        "offset": [0, 0, 0],
        "data_version": 3100,
    },
    "nbt": {
        "min_buffer_size": 10 * 1024 * 1024,
    },
    "extract": {
        "filter_commands": True,
    },
    "web_server": {
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,
        "max_content_length": 64 * 1024 * 1024,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Union[str, Path] = CONFIG_FILE) -> Dict[str, Any]:
    """读取配置文件并合并默认值，不写入文件"""
    config_path = Path(config_path)
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"加载配置文件失败: {e}")
        else:
            if isinstance(data, dict):
                return _merge(DEFAULT_CONFIG, data)
            logger.warning("配置文件顶层不是对象，使用默认配置")
    return copy.deepcopy(DEFAULT_CONFIG)


class Config:
    """JSON配置管理器"""
    def __init__(self, config_path: Union[str, Path] = CONFIG_FILE):
        self.config_path = Path(config_path)
        self.config_data: Dict[str, Any] = {}
        self.load()

    def load(self):
        """加载配置文件"""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except json.JSONDecodeError:
                data = None
            if isinstance(data, dict):
                self.config_data = _merge(DEFAULT_CONFIG, data)
            else:
                logger.warning("配置文件损坏，使用默认配置")
                self.config_data = copy.deepcopy(DEFAULT_CONFIG)
        else:
            self.create_default()

    def create_default(self):
        self.config_data = copy.deepcopy(DEFAULT_CONFIG)
        self.save()

    def save(self):
        """保存配置文件"""
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(self.config_data, f, indent=2, ensure_ascii=False)

    def get(self, section: str, key: str, fallback: Any = None) -> Any:
        """获取配置值"""
        section_data = self.config_data.get(section)
        if not isinstance(section_data, dict):
            return fallback
        return section_data.get(key, fallback)

    def getboolean(self, section: str, key: str, fallback: bool = False) -> bool:
        """获取布尔配置值"""
        value = self.get(section, key, fallback)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ['true', 'yes', '1', 'y']
        return bool(value)

    def set(self, section: str, key: str, value: Any):
        """设置配置值"""
        if section not in self.config_data:
            self.config_data[section] = {}
        self.config_data[section][key] = value
        self.save()
