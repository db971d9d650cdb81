"""cmdstruct 异常定义"""
from typing import List, Optional


class CmdStructError(Exception):
    """所有转换错误的基类"""


class NBTError(CmdStructError, ValueError):
    """NBT格式错误"""


class UnexpectedEndOfBuffer(NBTError):
    """读取超出缓冲区末尾"""
    def __init__(self, offset: int, needed: int, available: int):
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(f"缓冲区数据不足: 需要 {needed} 字节, 剩余 {available} 字节, 位置 {offset}")


class InvalidRootTag(NBTError):
    """根标签不是TAG_Compound"""
    def __init__(self, tag_type: int):
        self.tag_type = tag_type
        super().__init__(f"根标签必须是TAG_Compound, 实际类型: {tag_type}")


class MalformedLength(NBTError):
    """长度前缀为负数"""
    def __init__(self, what: str, length: int, offset: int):
        self.what = what
        self.length = length
        self.offset = offset
        super().__init__(f"{what} 长度无效: {length} (位置 {offset})")


class UnknownTagType(NBTError):
    """不支持的标签类型"""
    def __init__(self, tag_type: int, offset: int):
        self.tag_type = tag_type
        self.offset = offset
        super().__init__(f"不支持的NBT标签类型: {tag_type} (位置 {offset})")


class MalformedString(NBTError):
    """字符串不是有效的UTF-8"""
    def __init__(self, offset: int, length: int):
        self.offset = offset
        self.length = length
        super().__init__(f"字符串不是有效的UTF-8: 长度 {length} (位置 {offset})")


class MalformedVarInt(NBTError):
    """VarInt编码错误"""


class NBTWriteError(NBTError):
    """NBT写入失败"""


class UnsupportedValueError(NBTWriteError):
    """值无法转换为NBT标签"""


class HeterogeneousListError(NBTWriteError):
    """列表元素类型不一致"""


class BufferOverflowError(NBTWriteError):
    """预分配缓冲区不足"""


class PaletteIndexMiss(CmdStructError, LookupError):
    """调色板中不存在的索引"""
    def __init__(self, index: int, position: tuple):
        self.index = index
        self.position = position
        super().__init__(f"调色板索引 {index} 不存在 (x={position[0]}, y={position[1]}, z={position[2]})")


class PrematureStreamEnd(CmdStructError):
    """方块数据流提前结束，commands 保存已生成的部分命令"""
    def __init__(self, processed: int, expected: int, commands: Optional[List[str]] = None):
        self.processed = processed
        self.expected = expected
        self.commands = commands if commands is not None else []
        super().__init__(f"方块数据在索引 {processed} 处耗尽, 期望 {expected} 个方块")


class InternalConsistencyError(CmdStructError, RuntimeError):
    """内部一致性检查失败"""


class NoBlocksError(CmdStructError, ValueError):
    """没有可转换的方块"""


class SchematicFormatError(CmdStructError, ValueError):
    """schem文件结构不符合预期"""


class CommandParseError(CmdStructError, ValueError):
    """命令解析失败"""
