"""基岩版结构 (mcstructure) 调色板编码

把稀疏方块表压缩为包围盒内的扁平索引数组和去重调色板。
遍历顺序固定为 Y 外层, Z 中层, X 内层，解码端必须使用相同顺序。
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from cmdstruct.errors import InternalConsistencyError, NoBlocksError
from cmdstruct.format.mcfunction import BlockCell, Coord, ParseResult, SparseVoxelMap, parse_commands
from cmdstruct.format.nbt import MIN_BUFFER_SIZE, create_nbt_buffer, estimate_buffer_size
from cmdstruct.format.varint import encode_varints

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "minecraft"
DEFAULT_BLOCK_VERSION = 18163713
AIR_BLOCK = "minecraft:air"
AIR_INDEX = -1
LARGE_VOLUME = 10000000


def canonical_block_id(name: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """确保有命名空间"""
    if ':' in name:
        return name
    return f"{namespace}:{name}"


def palette_key(block_id: str, states: Dict[str, Any]) -> str:
    """调色板去重键，状态按键名排序"""
    entries = sorted(states.items(), key=lambda item: item[0])
    return json.dumps([block_id, entries])


def _state_value_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


@dataclass
class PaletteEntry:
    name: str
    states: Dict[str, Any] = field(default_factory=dict)
    version: int = DEFAULT_BLOCK_VERSION

    def to_nbt(self) -> Dict[str, Any]:
        return {"name": self.name, "states": dict(self.states), "version": self.version}

    def block_state_string(self) -> str:
        """Java版方块状态字符串，例如 minecraft:oak_log[axis=y]"""
        if not self.states:
            return self.name
        props = ','.join(f"{key}={_state_value_text(value)}" for key, value in sorted(self.states.items()))
        return f"{self.name}[{props}]"


@dataclass
class EncodedStructure:
    """编码后的结构"""
    width: int
    height: int
    depth: int
    origin: Coord
    primary: np.ndarray
    secondary: np.ndarray
    palette: List[PaletteEntry]
    block_count: int = 0

    @property
    def volume(self) -> int:
        return self.width * self.height * self.depth

    @property
    def size(self) -> Tuple[int, int, int]:
        return self.width, self.height, self.depth

    def index_of(self, x: int, y: int, z: int) -> int:
        """局部坐标对应的扁平索引"""
        return (y * self.depth + z) * self.width + x

    def block_at(self, x: int, y: int, z: int) -> Optional[PaletteEntry]:
        index = int(self.primary[self.index_of(x, y, z)])
        if index == AIR_INDEX:
            return None
        return self.palette[index]

    def to_nbt_data(self) -> Dict[str, Any]:
        """构建mcstructure文档"""
        return {
            "format_version": 1,
            "size": [self.width, self.height, self.depth],
            "structure": {
                "block_indices": [self.primary.tolist(), self.secondary.tolist()],
                "entities": [],
                "palette": {
                    "default": {
                        "block_palette": [entry.to_nbt() for entry in self.palette],
                        "block_position_data": {},
                    }
                },
            },
            "structure_world_origin": list(self.origin),
        }

    def to_bytes(self, min_buffer_size: int = MIN_BUFFER_SIZE) -> bytes:
        """小端序NBT字节"""
        data = self.to_nbt_data()
        return create_nbt_buffer(data, little_endian=True, buffer_size=estimate_buffer_size(data, min_buffer_size))

    def to_schematic(self) -> Tuple[Dict[str, int], bytes]:
        """转换为schem调色板 (方块状态 -> 索引) 和VarInt编码的方块数据

        空位映射为空气，已有空气条目时复用。
        """
        palette_map: Dict[str, int] = {}
        remap = np.zeros(max(len(self.palette), 1), dtype=np.int64)
        for i, entry in enumerate(self.palette):
            remap[i] = palette_map.setdefault(entry.block_state_string(), len(palette_map))

        empty = self.primary == AIR_INDEX
        indices = remap[np.where(empty, 0, self.primary)]
        if empty.any():
            air = palette_map.setdefault(AIR_BLOCK, len(palette_map))
            indices = np.where(empty, air, indices)
        return palette_map, encode_varints(indices.tolist())


class StructureEncoder:
    """稀疏方块表 -> 调色板 + 扁平索引数组"""
    def __init__(self, namespace: str = DEFAULT_NAMESPACE, block_version: int = DEFAULT_BLOCK_VERSION,
                 max_volume_warning: int = LARGE_VOLUME):
        self.namespace = namespace
        self.block_version = block_version
        self.max_volume_warning = max_volume_warning

    def encode(self, voxels: SparseVoxelMap) -> EncodedStructure:
        if not len(voxels):
            raise NoBlocksError("没有找到方块, 无法生成结构")

        (min_x, min_y, min_z), (max_x, max_y, max_z) = voxels.bounds()
        width = max_x - min_x + 1
        height = max_y - min_y + 1
        depth = max_z - min_z + 1
        volume = width * height * depth

        if volume > self.max_volume_warning:
            logger.warning("结构过大: %d 个位置 (%dx%dx%d)", volume, width, height, depth)
        logger.info("边界: X(%d~%d) Y(%d~%d) Z(%d~%d), 尺寸 %dx%dx%d",
                    min_x, max_x, min_y, max_y, min_z, max_z, width, height, depth)

        # 每次编码使用新的去重表
        unique: Dict[str, int] = {}
        palette: List[PaletteEntry] = []
        indices: List[int] = []
        block_count = 0

        for y in range(min_y, max_y + 1):
            for z in range(min_z, max_z + 1):
                for x in range(min_x, max_x + 1):
                    cell = voxels.get((x, y, z))
                    if cell is None:
                        indices.append(AIR_INDEX)
                        continue
                    block_count += 1
                    indices.append(self._palette_index(cell, unique, palette))

        if len(indices) != volume:
            raise InternalConsistencyError(
                f"block_indices 长度 ({len(indices)}) 与体积 ({volume}) 不一致, 结构文件将会损坏")

        logger.info("找到 %d 个方块, 调色板 %d 项", block_count, len(palette))
        return EncodedStructure(
            width=width,
            height=height,
            depth=depth,
            origin=(min_x, min_y, min_z),
            primary=np.asarray(indices, dtype=np.int32),
            secondary=np.full(volume, AIR_INDEX, dtype=np.int32),
            palette=palette,
            block_count=block_count,
        )

    def _palette_index(self, cell: BlockCell, unique: Dict[str, int], palette: List[PaletteEntry]) -> int:
        block_id = canonical_block_id(cell.block_id, self.namespace)
        key = palette_key(block_id, cell.states)
        index = unique.get(key)
        if index is None:
            index = len(palette)
            unique[key] = index
            palette.append(PaletteEntry(block_id, dict(cell.states), self.block_version))
        return index


def commands_to_structure(text: str, origin: Coord = (0, 0, 0), namespace: str = DEFAULT_NAMESPACE,
                          block_version: int = DEFAULT_BLOCK_VERSION) -> Tuple[EncodedStructure, ParseResult]:
    """命令文本 -> 编码结构"""
    parsed = parse_commands(text, origin)
    encoded = StructureEncoder(namespace, block_version).encode(parsed.voxels)
    return encoded, parsed
