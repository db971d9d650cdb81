"""fill / setblock 命令解析

把命令文本应用到稀疏坐标表上，后写入的方块覆盖先写入的方块。
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, NamedTuple, Optional, Tuple

from cmdstruct.errors import CommandParseError

logger = logging.getLogger(__name__)

Coord = Tuple[int, int, int]

BLOCK_PATTERN = re.compile(r'^([\w:.\-]+)(?:\[(.*)\])?')
INTEGER_PATTERN = re.compile(r'[+-]?[0-9]+')


class BlockCell(NamedTuple):
    """方块ID和状态"""
    block_id: str
    states: Dict[str, Any]


class SparseVoxelMap:
    """(x, y, z) -> BlockCell 的稀疏方块表"""
    def __init__(self):
        self.blocks: Dict[Coord, BlockCell] = {}

    def set_block(self, x: int, y: int, z: int, block_id: str, states: Optional[Dict[str, Any]] = None):
        self.blocks[(x, y, z)] = BlockCell(block_id, dict(states or {}))

    def fill(self, start: Coord, end: Coord, block_id: str, states: Optional[Dict[str, Any]] = None):
        x_min, x_max = min(start[0], end[0]), max(start[0], end[0])
        y_min, y_max = min(start[1], end[1]), max(start[1], end[1])
        z_min, z_max = min(start[2], end[2]), max(start[2], end[2])
        for x in range(x_min, x_max + 1):
            for y in range(y_min, y_max + 1):
                for z in range(z_min, z_max + 1):
                    self.set_block(x, y, z, block_id, states)

    def get(self, pos: Coord) -> Optional[BlockCell]:
        return self.blocks.get(pos)

    def bounds(self) -> Tuple[Coord, Coord]:
        """返回包含所有方块的最小包围盒 (min, max)"""
        if not self.blocks:
            raise ValueError("方块表为空")
        xs, ys, zs = zip(*self.blocks)
        return (min(xs), min(ys), min(zs)), (max(xs), max(ys), max(zs))

    def __len__(self) -> int:
        return len(self.blocks)

    def __contains__(self, pos: Coord) -> bool:
        return pos in self.blocks

    def __iter__(self) -> Iterator[Coord]:
        return iter(self.blocks)

    def items(self):
        return self.blocks.items()


def parse_coord(token: str, base: int = 0) -> int:
    """解析坐标（支持相对坐标 ~）"""
    token = token.strip()
    if token.startswith('~'):
        value = token[1:]
        if not value:
            return base
        try:
            return base + int(value)
        except ValueError:
            raise CommandParseError(f"相对坐标无效: {token}") from None
    try:
        return int(token)
    except ValueError:
        raise CommandParseError(f"坐标无效: {token}") from None


def _coerce_state_value(value: str) -> Any:
    unquoted = value.strip('"')
    if unquoted.lower() == 'true':
        return True
    if unquoted.lower() == 'false':
        return False
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    if INTEGER_PATTERN.fullmatch(value):
        return int(value)
    return value


def parse_block_states(content: str) -> Dict[str, Any]:
    """解析 key=value,key2=value2 形式的方块状态"""
    content = content.strip()
    if content.startswith('[') and content.endswith(']'):
        content = content[1:-1].strip()
    if not content:
        return {}

    # 分割属性，考虑引号内的逗号
    parts = []
    start = 0
    in_quotes = False
    for i, char in enumerate(content):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            parts.append(content[start:i])
            start = i + 1
    parts.append(content[start:])

    states = {}
    for part in parts:
        part = part.strip()
        if not part:
            continue
        if '=' not in part:
            raise CommandParseError(f"状态条目无效: {part}")
        key, value = part.split('=', 1)
        states[key.strip().strip('"')] = _coerce_state_value(value.strip())
    return states


def parse_block(block_str: str) -> Tuple[str, Dict[str, Any]]:
    """拆分 'minecraft:stone[a=1]' 为 (名称, 状态)"""
    block_str = block_str.strip()
    match = BLOCK_PATTERN.match(block_str)
    if not match:
        raise CommandParseError(f"无法解析方块: {block_str}")
    name, state_part = match.group(1), match.group(2)
    return name, parse_block_states(state_part) if state_part else {}


@dataclass
class ParseResult:
    voxels: SparseVoxelMap = field(default_factory=SparseVoxelMap)
    command_count: int = 0
    error_count: int = 0

    @property
    def blocks_found(self) -> bool:
        return len(self.voxels) > 0


class MCFunctionParser:
    """把 fill / setblock 命令文本转换为稀疏方块表

    每次 parse 都会创建新的方块表，不会保留上一次转换的数据。
    """
    def __init__(self, origin: Coord = (0, 0, 0)):
        self.origin = tuple(origin)

    def apply_command(self, voxels: SparseVoxelMap, command: str):
        parts = command.split()
        name = parts[0].lower()
        base_x, base_y, base_z = self.origin

        if name == 'fill' and len(parts) >= 8:
            start = (parse_coord(parts[1], base_x), parse_coord(parts[2], base_y), parse_coord(parts[3], base_z))
            end = (parse_coord(parts[4], base_x), parse_coord(parts[5], base_y), parse_coord(parts[6], base_z))
            block_id, states = parse_block(' '.join(parts[7:]))
            voxels.fill(start, end, block_id, states)
        elif name == 'setblock' and len(parts) >= 5:
            x = parse_coord(parts[1], base_x)
            y = parse_coord(parts[2], base_y)
            z = parse_coord(parts[3], base_z)
            block_id, states = parse_block(' '.join(parts[4:]))
            voxels.set_block(x, y, z, block_id, states)
        else:
            raise CommandParseError(f"无法识别的命令: {command}")

    def parse(self, text: str) -> ParseResult:
        result = ParseResult()
        for line_number, line in enumerate(text.splitlines(), start=1):
            command = line.strip()
            # 跳过空行和注释
            if not command or command.startswith('#'):
                continue
            result.command_count += 1
            try:
                self.apply_command(result.voxels, command)
            except CommandParseError as e:
                logger.warning("第 %d 行解析失败: %s", line_number, e)
                result.error_count += 1

        logger.info("处理了 %d 条命令, %d 个错误", result.command_count, result.error_count)
        if not result.blocks_found:
            logger.warning("没有解析到任何方块")
        return result


def parse_commands(text: str, origin: Coord = (0, 0, 0)) -> ParseResult:
    return MCFunctionParser(origin).parse(text)
