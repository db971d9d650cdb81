"""cmdstruct 命令行入口

  cmdstruct build    命令文本 -> .mcstructure / .schem
  cmdstruct commands .schem -> 命令文本
  cmdstruct extract  NBT/文本 -> 原始命令
"""
import argparse
import datetime
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cmdstruct.config import CONFIG_FILE, Config
from cmdstruct.errors import CmdStructError, PrematureStreamEnd
from cmdstruct.format.extract import extract_commands_from_bytes
from cmdstruct.format.mcfunction import parse_commands
from cmdstruct.format.mcstructure import StructureEncoder
from cmdstruct.format.schem import save_schematic, schem_to_commands, verify_schematic

logger = logging.getLogger(__name__)


class Color:
    """终端颜色"""
    RESET = '\033[0m'
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    CYAN = '\033[96m'


class Console:
    def __init__(self, use_color: bool = True):
        self.use_color = use_color

    def _print(self, color: str, icon: str, message: str):
        if self.use_color:
            print(f"{color}{icon} {message}{Color.RESET}")
        else:
            print(f"{icon} {message}")

    def info(self, message: str, icon: str = "📄"):
        self._print(Color.CYAN, icon, message)

    def success(self, message: str):
        self._print(Color.GREEN, "✅", message)

    def warning(self, message: str):
        self._print(Color.YELLOW, "⚠️ ", message)

    def error(self, message: str):
        self._print(Color.RED, "❌", message)


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def run_build(args, config: Config, console: Console) -> int:
    input_path = Path(args.input)
    console.info(f"正在加载命令文件: {input_path}")
    text = input_path.read_text(encoding='utf-8')

    origin = args.origin or config.get('structure', 'origin', [0, 0, 0])
    parsed = parse_commands(text, tuple(origin))
    console.info(f"处理了 {parsed.command_count} 条命令, {parsed.error_count} 个错误/警告", "📊")

    encoder = StructureEncoder(
        namespace=config.get('structure', 'namespace', 'minecraft'),
        block_version=config.get('structure', 'block_version', 18163713),
        max_volume_warning=config.get('structure', 'max_volume_warning', 10000000),
    )
    encoded = encoder.encode(parsed.voxels)
    size = "×".join(str(v) for v in encoded.size)
    console.info(f"尺寸: {size}, 方块数: {encoded.block_count}, 调色板: {len(encoded.palette)} 项", "📐")

    if args.format == 'schem':
        output = Path(args.output) if args.output else input_path.with_suffix('.schem')
        output = save_schematic(encoded, output, config.get('schem', 'data_version', 3100))
        is_valid, message = verify_schematic(output)
        if is_valid:
            console.success(message)
        else:
            console.warning(f"文件验证发现问题: {message}")
    else:
        output = Path(args.output) if args.output else input_path.with_suffix('.mcstructure')
        data = encoded.to_bytes(config.get('nbt', 'min_buffer_size', 10 * 1024 * 1024))
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(data)

    console.success(f"输出文件: {output.resolve()}")
    return 0


def run_commands(args, config: Config, console: Console) -> int:
    input_path = Path(args.input)
    if input_path.suffix.lower() not in ('.schem', '.schematic'):
        console.warning(f"文件不是 .schem/.schematic 格式: {input_path.name}")

    offset = args.offset or config.get('schem', 'offset', [0, 0, 0])
    include_air = args.include_air or config.getboolean('schem', 'include_air', False)

    console.info("正在解压并解析schem文件...")
    data = input_path.read_bytes()
    complete = True
    try:
        commands = schem_to_commands(data, offset, include_air)
    except PrematureStreamEnd as e:
        console.error(str(e))
        console.warning(f"仅保存已生成的 {len(e.commands)} 条命令")
        commands = e.commands
        complete = False

    if not commands:
        console.warning("没有生成任何命令, 结构可能为空或只包含空气")
        return 0 if complete else 1

    output = Path(args.output) if args.output else input_path.with_name(f"{input_path.stem}_{_timestamp()}.txt")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text('\n'.join(commands), encoding='utf-8')
    console.success(f"生成 {len(commands)} 条命令: {output.resolve()}")
    return 0 if complete else 1


def run_extract(args, config: Config, console: Console) -> int:
    input_path = Path(args.input)
    filter_commands = not args.all and config.getboolean('extract', 'filter_commands', True)

    commands = extract_commands_from_bytes(input_path.read_bytes(), filter_commands)
    suffix = " (已过滤)" if filter_commands else ""
    if not commands:
        console.info(f"没有找到匹配的命令{suffix}")
        return 0

    output = Path(args.output) if args.output else input_path.with_name(f"{input_path.stem}_extracted_commands.txt")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text('\n'.join(commands), encoding='utf-8')
    console.success(f"提取了 {len(commands)} 条不重复的命令{suffix}: {output.resolve()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='cmdstruct', description='命令与NBT结构互相转换')
    parser.add_argument('--config', default=CONFIG_FILE, help='配置文件路径')
    subparsers = parser.add_subparsers(dest='command', required=True)

    build = subparsers.add_parser('build', help='命令文本 -> 结构文件')
    build.add_argument('input')
    build.add_argument('output', nargs='?')
    build.add_argument('--origin', nargs=3, type=int, metavar=('X', 'Y', 'Z'))
    build.add_argument('--format', choices=('mcstructure', 'schem'), default='mcstructure')
    build.set_defaults(handler=run_build)

    commands = subparsers.add_parser('commands', help='schem -> 命令文本')
    commands.add_argument('input')
    commands.add_argument('output', nargs='?')
    commands.add_argument('--offset', nargs=3, type=int, metavar=('X', 'Y', 'Z'))
    commands.add_argument('--include-air', action='store_true')
    commands.set_defaults(handler=run_commands)

    extract = subparsers.add_parser('extract', help='从NBT/文本中提取命令')
    extract.add_argument('input')
    extract.add_argument('output', nargs='?')
    extract.add_argument('--all', action='store_true', help='不过滤 fill/setblock 以外的命令')
    extract.set_defaults(handler=run_extract)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """主程序入口"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    config = Config(args.config)
    console = Console(config.getboolean('ui', 'colored_output', True))

    try:
        return args.handler(args, config, console)
    except CmdStructError as e:
        console.error(f"转换失败: {e}")
        return 1
    except OSError as e:
        console.error(f"文件读写失败: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
