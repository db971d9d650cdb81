"""NBT (Named Binary Tag) 读写

读取路径默认大端 (Java版 schem)，写入路径默认小端 (基岩版 mcstructure)。
两种字节序都可以显式指定，但默认值不可统一。
"""
import json
import logging
import numbers
import struct
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar, Dict, Iterator, List, Optional

import numpy as np

from cmdstruct.errors import (
    BufferOverflowError,
    HeterogeneousListError,
    InvalidRootTag,
    MalformedLength,
    MalformedString,
    UnexpectedEndOfBuffer,
    UnknownTagType,
    UnsupportedValueError,
)

logger = logging.getLogger(__name__)

MIN_BUFFER_SIZE = 10 * 1024 * 1024
MAX_STRING_LENGTH = 0xFFFF


class NBTType(IntEnum):
    """NBT标签类型"""
    TAG_End = 0
    TAG_Byte = 1
    TAG_Short = 2
    TAG_Int = 3
    TAG_Long = 4
    TAG_Float = 5
    TAG_Double = 6
    TAG_Byte_Array = 7
    TAG_String = 8
    TAG_List = 9
    TAG_Compound = 10
    TAG_Int_Array = 11
    TAG_Long_Array = 12


# ---------------------------------------------------------------- 标签模型

class Tag:
    """NBT标签基类

    name 只在复合标签的直接子标签上存在，列表元素和根以外的位置为 None。
    """
    kind: ClassVar[NBTType]

    def unwrap(self) -> Any:
        """转换为普通Python值"""
        return self.value


@dataclass
class EndTag(Tag):
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_End

    def unwrap(self) -> Any:
        return None


@dataclass
class ByteTag(Tag):
    value: int
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Byte


@dataclass
class ShortTag(Tag):
    value: int
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Short


@dataclass
class IntTag(Tag):
    value: int
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Int


@dataclass
class LongTag(Tag):
    value: int
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Long


@dataclass
class FloatTag(Tag):
    value: float
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Float


@dataclass
class DoubleTag(Tag):
    value: float
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Double


@dataclass
class ByteArrayTag(Tag):
    value: bytes
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Byte_Array


@dataclass
class StringTag(Tag):
    value: str
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_String


@dataclass
class ListTag(Tag):
    element_kind: NBTType
    elements: List[Tag] = field(default_factory=list)
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_List

    def unwrap(self) -> List[Any]:
        return [element.unwrap() for element in self.elements]

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[Tag]:
        return iter(self.elements)


@dataclass
class CompoundTag(Tag):
    value: Dict[str, Tag] = field(default_factory=dict)
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Compound

    def unwrap(self) -> Dict[str, Any]:
        return {key: tag.unwrap() for key, tag in self.value.items()}

    def __getitem__(self, key: str) -> Tag:
        return self.value[key]

    def __contains__(self, key: str) -> bool:
        return key in self.value

    def __len__(self) -> int:
        return len(self.value)

    def get(self, key: str, default: Optional[Tag] = None) -> Optional[Tag]:
        return self.value.get(key, default)

    def keys(self):
        return self.value.keys()

    def items(self):
        return self.value.items()


@dataclass
class IntArrayTag(Tag):
    value: List[int] = field(default_factory=list)
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Int_Array


@dataclass
class LongArrayTag(Tag):
    value: List[int] = field(default_factory=list)
    name: Optional[str] = None
    kind: ClassVar[NBTType] = NBTType.TAG_Long_Array


# ---------------------------------------------------------------- 类型推断

def value_to_kind(value: Any) -> NBTType:
    """根据Python值推断写入时的标签类型

    bool -> Byte, 整数 (包括整数值的浮点数) -> Int, 其他实数 -> Float,
    str -> String, 序列 -> List, 映射 -> Compound
    """
    if isinstance(value, (bool, np.bool_)):
        return NBTType.TAG_Byte
    if isinstance(value, numbers.Integral):
        return NBTType.TAG_Int
    if isinstance(value, numbers.Real):
        if float(value).is_integer():
            return NBTType.TAG_Int
        return NBTType.TAG_Float
    if isinstance(value, str):
        return NBTType.TAG_String
    if isinstance(value, Mapping):
        return NBTType.TAG_Compound
    if isinstance(value, (bytes, bytearray)):
        raise UnsupportedValueError("不支持直接写入bytes, 请使用整数列表")
    if isinstance(value, (Sequence, np.ndarray)):
        return NBTType.TAG_List
    raise UnsupportedValueError(f"不支持的Python类型: {type(value).__name__}")


# ---------------------------------------------------------------- 读取

class NBTReader:
    """从字节缓冲区顺序读取NBT

    position 在每次读取后前进，读取前都会检查剩余长度。
    """
    def __init__(self, data: bytes, little_endian: bool = False):
        self.data = bytes(data)
        self.position = 0
        self.little_endian = little_endian
        self.endian = '<' if little_endian else '>'

    def ensure_readable(self, count: int):
        available = len(self.data) - self.position
        if count > available:
            raise UnexpectedEndOfBuffer(self.position, count, available)

    def _unpack(self, fmt: str, size: int):
        self.ensure_readable(size)
        value = struct.unpack_from(self.endian + fmt, self.data, self.position)[0]
        self.position += size
        return value

    def read_byte(self) -> int:
        return self._unpack('b', 1)

    def read_ubyte(self) -> int:
        return self._unpack('B', 1)

    def read_short(self) -> int:
        return self._unpack('h', 2)

    def read_ushort(self) -> int:
        return self._unpack('H', 2)

    def read_int(self) -> int:
        return self._unpack('i', 4)

    def read_long(self) -> int:
        return self._unpack('q', 8)

    def read_float(self) -> float:
        return self._unpack('f', 4)

    def read_double(self) -> float:
        return self._unpack('d', 8)

    def read_bytes(self, length: int) -> bytes:
        self.ensure_readable(length)
        data = self.data[self.position:self.position + length]
        self.position += length
        return data

    def read_string(self) -> str:
        """读取无符号16位长度前缀的UTF-8字符串"""
        length = self.read_ushort()
        if length == 0:
            return ""
        offset = self.position
        try:
            return self.read_bytes(length).decode('utf-8')
        except UnicodeDecodeError:
            raise MalformedString(offset, length) from None

    def read_length(self, what: str) -> int:
        offset = self.position
        length = self.read_int()
        if length < 0:
            raise MalformedLength(what, length, offset)
        return length

    def read_tag_type(self) -> NBTType:
        offset = self.position
        raw = self.read_ubyte()
        try:
            return NBTType(raw)
        except ValueError:
            raise UnknownTagType(raw, offset) from None

    def read_payload(self, tag_type: NBTType, name: Optional[str] = None) -> Tag:
        """按类型读取标签负载"""
        if tag_type == NBTType.TAG_End:
            return EndTag(name)
        elif tag_type == NBTType.TAG_Byte:
            return ByteTag(self.read_byte(), name)
        elif tag_type == NBTType.TAG_Short:
            return ShortTag(self.read_short(), name)
        elif tag_type == NBTType.TAG_Int:
            return IntTag(self.read_int(), name)
        elif tag_type == NBTType.TAG_Long:
            return LongTag(self.read_long(), name)
        elif tag_type == NBTType.TAG_Float:
            return FloatTag(self.read_float(), name)
        elif tag_type == NBTType.TAG_Double:
            return DoubleTag(self.read_double(), name)
        elif tag_type == NBTType.TAG_Byte_Array:
            length = self.read_length('TAG_Byte_Array')
            return ByteArrayTag(self.read_bytes(length), name)
        elif tag_type == NBTType.TAG_String:
            return StringTag(self.read_string(), name)
        elif tag_type == NBTType.TAG_List:
            element_kind = self.read_tag_type()
            length = self.read_length('TAG_List')
            elements = [self.read_payload(element_kind) for _ in range(length)]
            return ListTag(element_kind, elements, name)
        elif tag_type == NBTType.TAG_Compound:
            entries = {}
            while True:
                tag = self.read_named_tag()
                if tag.kind == NBTType.TAG_End:
                    break
                entries[tag.name] = tag
            return CompoundTag(entries, name)
        elif tag_type == NBTType.TAG_Int_Array:
            length = self.read_length('TAG_Int_Array')
            return IntArrayTag([self.read_int() for _ in range(length)], name)
        elif tag_type == NBTType.TAG_Long_Array:
            length = self.read_length('TAG_Long_Array')
            return LongArrayTag([self.read_long() for _ in range(length)], name)
        raise UnknownTagType(int(tag_type), self.position)

    def read_named_tag(self) -> Tag:
        """读取 (类型, 名称, 负载)，TAG_End 没有名称和负载"""
        tag_type = self.read_tag_type()
        if tag_type == NBTType.TAG_End:
            return EndTag()
        name = self.read_string()
        return self.read_payload(tag_type, name)


def load_nbt(data: bytes, little_endian: bool = False) -> CompoundTag:
    """解析完整的NBT文档，根标签必须是复合标签"""
    reader = NBTReader(data, little_endian)
    root = reader.read_named_tag()
    if root.kind != NBTType.TAG_Compound:
        raise InvalidRootTag(int(root.kind))
    if reader.position < len(reader.data):
        logger.debug("NBT根标签之后还有 %d 字节未读取", len(reader.data) - reader.position)
    return root


# ---------------------------------------------------------------- 写入

class NBTWriter:
    """向预分配的缓冲区写入NBT

    缓冲区不会自动扩容，offset 在整个文档内连续推进。
    """
    def __init__(self, buffer_size: int, little_endian: bool = True):
        self.buffer = bytearray(buffer_size)
        self.offset = 0
        self.little_endian = little_endian
        self.endian = '<' if little_endian else '>'

    def _pack(self, fmt: str, value):
        size = struct.calcsize(fmt)
        if self.offset + size > len(self.buffer):
            raise BufferOverflowError(
                f"缓冲区已满: 位置 {self.offset}, 需要 {size} 字节, 容量 {len(self.buffer)}")
        try:
            struct.pack_into(self.endian + fmt, self.buffer, self.offset, value)
        except (struct.error, OverflowError) as e:
            raise UnsupportedValueError(f"值 {value!r} 无法按 '{fmt}' 写入: {e}") from e
        self.offset += size

    def write_ubyte(self, value: int):
        self._pack('B', value)

    def write_byte(self, value: int):
        self._pack('b', value)

    def write_ushort(self, value: int):
        self._pack('H', value)

    def write_int(self, value: int):
        self._pack('i', value)

    def write_float(self, value: float):
        """把32位浮点数的位模式当作有符号整数写入"""
        try:
            bits = struct.unpack(self.endian + 'i', struct.pack(self.endian + 'f', value))[0]
        except OverflowError as e:
            raise UnsupportedValueError(f"浮点数超出32位范围: {value!r}") from e
        self.write_int(bits)

    def write_bytes(self, data: bytes):
        end = self.offset + len(data)
        if end > len(self.buffer):
            raise BufferOverflowError(
                f"缓冲区已满: 位置 {self.offset}, 需要 {len(data)} 字节, 容量 {len(self.buffer)}")
        self.buffer[self.offset:end] = data
        self.offset = end

    def write_string(self, text: Optional[str]):
        encoded = (text or "").encode('utf-8')
        if len(encoded) > MAX_STRING_LENGTH:
            raise UnsupportedValueError(f"字符串过长: {len(encoded)} 字节")
        self.write_ushort(len(encoded))
        self.write_bytes(encoded)

    def write_tag(self, name: Optional[str], value: Any):
        """写入类型字节、名称 (如果有) 和负载"""
        kind = value_to_kind(value)
        self.write_ubyte(kind)
        if name is not None:
            self.write_string(name)
        self.write_payload(kind, value)

    def write_payload(self, kind: NBTType, value: Any):
        if kind == NBTType.TAG_Byte:
            self.write_byte(1 if value else 0)
        elif kind == NBTType.TAG_Int:
            self.write_int(int(value))
        elif kind == NBTType.TAG_Float:
            self.write_float(float(value))
        elif kind == NBTType.TAG_String:
            self.write_string(value)
        elif kind == NBTType.TAG_List:
            self.write_list(value)
        elif kind == NBTType.TAG_Compound:
            self.write_compound(value)
        else:
            raise UnsupportedValueError(f"写入器不支持的标签类型: {kind.name}")

    def write_list(self, values: Any):
        """写入列表，元素类型由第一个元素决定，元素不写类型字节和名称"""
        if isinstance(values, np.ndarray):
            values = values.tolist()
        if not len(values):
            self.write_ubyte(NBTType.TAG_End)
            self.write_int(0)
            return

        element_kind = value_to_kind(values[0])
        for index, item in enumerate(values):
            item_kind = value_to_kind(item)
            if item_kind != element_kind:
                raise HeterogeneousListError(
                    f"列表元素类型不一致: 索引 {index} 为 {item_kind.name}, 期望 {element_kind.name}")

        self.write_ubyte(element_kind)
        self.write_int(len(values))
        for item in values:
            self.write_payload(element_kind, item)

    def write_compound(self, mapping: Mapping):
        for key, value in mapping.items():
            if not isinstance(key, str):
                raise UnsupportedValueError(f"复合标签的键必须是字符串: {key!r}")
            self.write_tag(key, value)
        self.write_ubyte(NBTType.TAG_End)

    def write_root(self, data: Mapping, root_name: str = ""):
        self.write_ubyte(NBTType.TAG_Compound)
        self.write_string(root_name)
        self.write_compound(data)

    def get_bytes(self) -> bytes:
        return bytes(self.buffer[:self.offset])


def _json_default(obj):
    if hasattr(obj, 'tolist'):
        return obj.tolist()
    raise TypeError(f"无法序列化 {type(obj).__name__}")


def estimate_buffer_size(data: Any, min_size: int = MIN_BUFFER_SIZE) -> int:
    """估算写入缓冲区大小: max(4 x JSON长度, min_size)"""
    try:
        json_size = len(json.dumps(data, default=_json_default))
    except (TypeError, ValueError) as e:
        raise UnsupportedValueError(f"无法估算NBT大小: {e}") from e
    return max(json_size * 4, min_size)


def create_nbt_buffer(data: Mapping, little_endian: bool = True,
                      buffer_size: Optional[int] = None, root_name: str = "") -> bytes:
    """把Python字典写成完整的NBT文档并截取已使用部分"""
    if buffer_size is None:
        buffer_size = estimate_buffer_size(data)
    writer = NBTWriter(buffer_size, little_endian)
    writer.write_root(data, root_name)
    return writer.get_bytes()
