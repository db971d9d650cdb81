"""Sponge schematic (.schem) -> fill / setblock 命令

BlockData 为VarInt编码的调色板索引流，按 Y, Z, X 顺序排列。
同一行 (y, z) 内连续相同的方块合并为 fill，长度不足3时逐个 setblock。
"""
import gzip
import logging
import math
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import nbtlib
import numpy as np
from nbtlib.tag import Compound, Int, IntArray, List as NBTList, Short

from cmdstruct.errors import MalformedVarInt, PaletteIndexMiss, PrematureStreamEnd, SchematicFormatError
from cmdstruct.format.mcstructure import AIR_BLOCK, EncodedStructure
from cmdstruct.format.nbt import ByteTag, CompoundTag, IntTag, ListTag, LongTag, ShortTag, Tag, load_nbt
from cmdstruct.format.varint import VarIntCursor

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'
MIN_RUN_LENGTH = 3
DEFAULT_DATA_VERSION = 3100

_INTEGER_TAGS = (ByteTag, ShortTag, IntTag, LongTag)


def maybe_decompress(data: bytes, inflate: Callable[[bytes], bytes] = gzip.decompress) -> bytes:
    """gzip魔数开头时解压，否则原样返回"""
    if data[:2] == GZIP_MAGIC:
        try:
            return inflate(data)
        except (OSError, EOFError, zlib.error) as e:
            raise SchematicFormatError(f"gzip解压失败: {e}") from e
    logger.warning("文件未经gzip压缩, 尝试直接解析")
    return data


@dataclass
class SchematicData:
    width: int
    height: int
    length: int
    palette: CompoundTag
    block_data: bytes

    @property
    def dims(self) -> Tuple[int, int, int]:
        return self.width, self.height, self.length


def _int_value(tag: Optional[Tag]) -> Optional[int]:
    if isinstance(tag, _INTEGER_TAGS):
        return tag.value
    return None


def _find_dimensions(root: CompoundTag) -> Tuple[int, int, int, CompoundTag]:
    width, height, length = (_int_value(root.get(key)) for key in ("Width", "Height", "Length"))
    if None not in (width, height, length):
        return width, height, length, root

    nested = root.get("Schematic")
    if isinstance(nested, CompoundTag) and _int_value(nested.get("Width")) is not None:
        logger.info("检测到嵌套的Schematic结构 (Sponge v3)")
        width, height, length = (_int_value(nested.get(key)) for key in ("Width", "Height", "Length"))
        if None not in (width, height, length):
            return width, height, length, nested

    raise SchematicFormatError(f"缺少尺寸标签 (Width, Height, Length), 根标签: {sorted(root.keys())}")


def _find_block_data(container: CompoundTag) -> Tuple[CompoundTag, Tag]:
    if "Palette" in container and "BlockData" in container:
        palette, block_data = container["Palette"], container["BlockData"]
    else:
        blocks = container.get("Blocks")
        if isinstance(blocks, CompoundTag) and "Palette" in blocks and "Data" in blocks:
            palette, block_data = blocks["Palette"], blocks["Data"]
        else:
            raise SchematicFormatError(f"找不到 Palette 和 BlockData, 可用键: {sorted(container.keys())}")

    if not isinstance(palette, CompoundTag):
        raise SchematicFormatError(f"Palette 类型无效: 期望 TAG_Compound, 实际 {palette.kind.name}")
    return palette, block_data


def _block_data_bytes(tag: Tag) -> bytes:
    if isinstance(tag, ListTag) and all(isinstance(item, _INTEGER_TAGS) for item in tag.elements):
        logger.warning("BlockData 是列表, 转换为字节数组")
        return bytes(item.value & 0xFF for item in tag.elements)
    value = tag.unwrap()
    if not isinstance(value, bytes):
        raise SchematicFormatError(f"BlockData 类型无效: 期望 TAG_Byte_Array, 实际 {tag.kind.name}")
    return value


def load_schematic(data: bytes, inflate: Callable[[bytes], bytes] = gzip.decompress) -> SchematicData:
    """解析schem文件字节 (支持v2和嵌套的v3结构)"""
    root = load_nbt(maybe_decompress(data, inflate))
    width, height, length, container = _find_dimensions(root)
    if width <= 0 or height <= 0 or length <= 0:
        raise SchematicFormatError(f"尺寸无效: W={width}, H={height}, L={length}")
    palette, block_data = _find_block_data(container)
    return SchematicData(width, height, length, palette, _block_data_bytes(block_data))


def invert_palette(palette: Union[CompoundTag, Mapping]) -> Dict[int, str]:
    """方块状态 -> 索引 的调色板反转为 索引 -> 方块状态，重复索引以后出现的为准"""
    if not isinstance(palette, (CompoundTag, Mapping)):
        raise SchematicFormatError("调色板格式无效: 期望 TAG_Compound")
    inverted = {}
    for block_state, value in palette.items():
        index = _int_value(value) if isinstance(value, Tag) else value
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            logger.warning("调色板条目 %s 的值无效, 跳过", block_state)
            continue
        inverted[int(index)] = block_state
    if not inverted:
        logger.warning("反转后的调色板为空")
    return inverted


class RunEmitter:
    """收集一行内的连续方块并输出命令"""
    def __init__(self, offset: Sequence[float] = (0, 0, 0)):
        self.dx, self.dy, self.dz = offset
        self.commands: List[str] = []
        self.run_start: Optional[int] = None
        self.run_block: Optional[str] = None

    def push(self, x: int, y: int, z: int, block: str):
        if self.run_start is None:
            self.run_start, self.run_block = x, block
        elif block != self.run_block:
            self.flush(x - 1, y, z)
            self.run_start, self.run_block = x, block

    def flush(self, end: int, y: int, z: int):
        """结束当前连续段 [run_start, end]"""
        if self.run_start is None:
            return
        start, block = self.run_start, self.run_block
        self.run_start = self.run_block = None
        if end - start + 1 <= 0:
            return
        if not isinstance(block, str) or ':' not in block:
            logger.warning("方块类型无效, 跳过该段: %r", block)
            return

        cur_y = math.floor(self.dy + y)
        cur_z = math.floor(self.dz + z)
        if end - start + 1 >= MIN_RUN_LENGTH:
            start_x = math.floor(self.dx + start)
            end_x = math.floor(self.dx + end)
            self.commands.append(f"fill ~{start_x} ~{cur_y} ~{cur_z} ~{end_x} ~{cur_y} ~{cur_z} {block}")
        else:
            for x in range(start, end + 1):
                self.commands.append(f"setblock ~{math.floor(self.dx + x)} ~{cur_y} ~{cur_z} {block}")


class CommandGenerator:
    """按 Y, Z, X 顺序遍历索引流并生成命令"""
    def __init__(self, inverted_palette: Dict[int, str], dims: Sequence[int],
                 offset: Sequence[float] = (0, 0, 0), include_air: bool = False):
        if len(dims) != 3 or any(not isinstance(d, (int, float)) or d <= 0 for d in dims):
            raise ValueError(f"尺寸无效: {list(dims)}")
        if len(offset) != 3 or any(not isinstance(o, (int, float)) for o in offset):
            raise ValueError(f"偏移无效: {list(offset)}")
        self.palette = inverted_palette
        self.width, self.height, self.length = (math.floor(d) for d in dims)
        self.offset = tuple(math.floor(o) for o in offset)
        self.include_air = include_air
        self.processed = 0
        self.skipped = 0

    @property
    def expected(self) -> int:
        return self.width * self.height * self.length

    def resolve(self, index: int, position: tuple) -> str:
        block = self.palette.get(index)
        if block is None:
            raise PaletteIndexMiss(index, position)
        return block

    def generate(self, block_data: bytes) -> List[str]:
        cursor = VarIntCursor(block_data)
        emitter = RunEmitter(self.offset)

        for y in range(self.height):
            for z in range(self.length):
                for x in range(self.width):
                    try:
                        index = cursor.pull()
                    except MalformedVarInt as e:
                        emitter.flush(x - 1, y, z)
                        logger.warning("BlockData 在索引 %d 处损坏 (x=%d, y=%d, z=%d)", self.processed, x, y, z)
                        raise PrematureStreamEnd(self.processed, self.expected, emitter.commands) from e
                    if index is None:
                        emitter.flush(x - 1, y, z)
                        logger.warning("BlockData 在索引 %d 处提前结束 (x=%d, y=%d, z=%d)", self.processed, x, y, z)
                        raise PrematureStreamEnd(self.processed, self.expected, emitter.commands)
                    self.processed += 1

                    try:
                        block = self.resolve(index, (x, y, z))
                    except PaletteIndexMiss as e:
                        logger.warning("%s, 最大索引 %d, 跳过", e, len(self.palette) - 1)
                        self.skipped += 1
                        emitter.flush(x - 1, y, z)
                        continue

                    if not self.include_air and block == AIR_BLOCK:
                        emitter.flush(x - 1, y, z)
                        continue
                    emitter.push(x, y, z, block)
                emitter.flush(self.width - 1, y, z)

        if not cursor.exhausted:
            logger.warning("处理 %d 个方块后 BlockData 仍有剩余数据", self.expected)
        logger.info("生成 %d 条命令 (包含空气: %s), 处理 %d 个方块", len(emitter.commands), self.include_air, self.processed)
        return emitter.commands


def generate_schem_commands(block_data: bytes, palette: Union[CompoundTag, Mapping], dims: Sequence[int],
                            offset: Sequence[float] = (0, 0, 0), include_air: bool = False) -> List[str]:
    generator = CommandGenerator(invert_palette(palette), dims, offset, include_air)
    return generator.generate(block_data)


def schem_to_commands(data: bytes, offset: Sequence[float] = (0, 0, 0), include_air: bool = False,
                      inflate: Callable[[bytes], bytes] = gzip.decompress) -> List[str]:
    """schem文件字节 -> 命令列表"""
    schematic = load_schematic(data, inflate)
    logger.info("正在为 %dx%dx%d 的结构生成命令", *schematic.dims)
    return generate_schem_commands(schematic.block_data, schematic.palette, schematic.dims, offset, include_air)


def save_schematic(encoded: EncodedStructure, output_path: Union[str, Path],
                   data_version: int = DEFAULT_DATA_VERSION) -> Path:
    """保存为gzip压缩的Sponge v2 schem文件"""
    output_path = Path(output_path)
    if output_path.suffix.lower() != '.schem':
        output_path = output_path.with_name(output_path.name + '.schem')

    palette_map, block_data = encoded.to_schematic()

    schem_data = Compound()
    schem_data["Version"] = Int(2)
    schem_data["DataVersion"] = Int(data_version)
    schem_data["Width"] = Short(encoded.width)
    schem_data["Height"] = Short(encoded.height)
    schem_data["Length"] = Short(encoded.depth)
    schem_data["Offset"] = IntArray(list(encoded.origin))
    schem_data["Palette"] = Compound({name: Int(index) for name, index in palette_map.items()})
    schem_data["PaletteMax"] = Int(len(palette_map))
    schem_data["BlockData"] = nbtlib.ByteArray(np.frombuffer(block_data, dtype=np.int8))
    schem_data["BlockEntities"] = NBTList[Compound]([])

    output_path.parent.mkdir(parents=True, exist_ok=True)
    nbt_file = nbtlib.File(schem_data)
    nbt_file.save(str(output_path), gzipped=True)
    logger.info("schem文件保存完成: %s", output_path)
    return output_path


def verify_schematic(file_path: Union[str, Path]) -> Tuple[bool, str]:
    """用nbtlib重新加载并检查必要字段"""
    try:
        nbt_file = nbtlib.load(str(file_path), gzipped=True)
    except (OSError, ValueError, EOFError) as e:
        return False, f"验证错误: {e}"

    required_fields = ["Version", "DataVersion", "Width", "Height", "Length", "Palette", "BlockData"]
    missing_fields = [name for name in required_fields if name not in nbt_file]
    if missing_fields:
        return False, f"文件缺少必要字段: {', '.join(missing_fields)}"

    width, height, length = int(nbt_file["Width"]), int(nbt_file["Height"]), int(nbt_file["Length"])
    if width <= 0 or height <= 0 or length <= 0:
        return False, "尺寸数据无效"
    if not nbt_file["Palette"]:
        return False, "调色板为空"
    if not len(nbt_file["BlockData"]):
        return False, "方块数据为空"
    return True, "文件验证通过"
