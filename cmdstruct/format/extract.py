"""从NBT/文本数据中提取原始命令"""
import logging
import re
from typing import Iterable, List

logger = logging.getLogger(__name__)

CMD_LINE_PATTERN = re.compile(r'"cmd_line"\s*:\s*"((?:[^"\\]|\\.)*)"')
FALLBACK_PATTERN = re.compile(
    r'(setblock|fill)\s+~?-?\d+\s+~?-?\d+\s+~?-?\d+'
    r'(?:\s+~?-?\d+\s+~?-?\d+\s+~?-?\d+)?'
    r'\s+minecraft:[\w:]+(?:\[[^\]]*\])?'
)
PLACEMENT_PREFIXES = ('fill ', 'setblock ')


def post_process_commands(commands: Iterable[str]) -> List[str]:
    """还原转义的引号"""
    processed = []
    for command in commands:
        # 先处理三重反斜杠转义，再处理普通转义
        command = command.replace('\\\\\\"', '"')
        command = command.replace('\\"', '"')
        processed.append(command.strip())
    return processed


def extract_commands(text: str, filter_commands: bool = False) -> List[str]:
    """提取命令，cmd_line 匹配优先，去重后保持首次出现的顺序"""
    primary = [match.group(1) for match in CMD_LINE_PATTERN.finditer(text)]
    fallback = [match.group(0) for match in FALLBACK_PATTERN.finditer(text)]
    unique = list(dict.fromkeys(primary + fallback))
    commands = post_process_commands(unique)

    if filter_commands:
        commands = [cmd for cmd in commands if cmd.strip().lower().startswith(PLACEMENT_PREFIXES)]
        logger.info("过滤后剩余 %d 条命令", len(commands))
    logger.info("共提取 %d 条命令", len(commands))
    return commands


def extract_commands_from_bytes(data: bytes, filter_commands: bool = False) -> List[str]:
    return extract_commands(data.decode('utf-8', errors='replace'), filter_commands)
