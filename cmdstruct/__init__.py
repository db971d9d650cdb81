"""命令文本与NBT结构文件互相转换"""

__version__ = "1.0.0"
