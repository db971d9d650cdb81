"""VarInt (LEB128) 编解码

每字节7位有效数据，除最后一个字节外最高位为延续标志。
"""
from typing import Iterable, Optional, Tuple

from cmdstruct.errors import MalformedVarInt

MAX_VARINT_BYTES = 5
MAX_VARINT_VALUE = 0xFFFFFFFF


def encode_varint(value: int) -> bytes:
    """编码单个无符号整数"""
    if value < 0 or value > MAX_VARINT_VALUE:
        raise ValueError(f"VarInt值超出范围: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_varints(values: Iterable[int]) -> bytes:
    """编码整数序列"""
    out = bytearray()
    for value in values:
        out += encode_varint(int(value))
    return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """从 offset 解码一个VarInt，返回 (值, 新位置)"""
    value = 0
    shift = 0
    for count in range(MAX_VARINT_BYTES):
        if offset >= len(data):
            raise MalformedVarInt(f"VarInt读取错误: 在位置 {offset} 意外到达缓冲区末尾")
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return value, offset
    raise MalformedVarInt(f"VarInt过长 (超过{MAX_VARINT_BYTES}字节), 位置 {offset}")


class VarIntCursor:
    """按需读取VarInt的游标

    每次 pull() 读取一个整数并推进位置，数据耗尽时返回 None。
    游标不可重置，每次解码需要新建。
    """
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.position = 0
        self.count = 0

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.data)

    @property
    def remaining(self) -> int:
        return len(self.data) - self.position

    def pull(self) -> Optional[int]:
        if self.exhausted:
            return None
        value, self.position = decode_varint(self.data, self.position)
        self.count += 1
        return value
