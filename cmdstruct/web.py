"""cmdstruct Web API"""
import io
import logging
import os
import tempfile
from pathlib import Path

from flask import Flask, jsonify, request, send_file

from cmdstruct.config import load_config
from cmdstruct.errors import CmdStructError, PrematureStreamEnd
from cmdstruct.format.extract import extract_commands_from_bytes
from cmdstruct.format.mcfunction import parse_commands
from cmdstruct.format.mcstructure import StructureEncoder
from cmdstruct.format.schem import save_schematic, schem_to_commands

# 配置日志
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIG = load_config(os.environ.get('CMDSTRUCT_CONFIG', 'config.json'))

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = CONFIG['web_server'].get('max_content_length')

ENDPOINTS = [
    '/api/status',
    '/api/commands-to-structure',
    '/api/schem-to-commands',
    '/api/extract-commands',
]


def _form_bool(name, default):
    value = request.form.get(name)
    if value is None:
        return default
    return value.lower() in ['true', 'yes', '1', 'y', 'on']


def _form_vector(prefix, default):
    return [request.form.get(f'{prefix}_{axis}', default=default[i], type=int) for i, axis in enumerate('xyz')]


def _uploaded_file():
    if 'file' not in request.files:
        return None
    upload = request.files['file']
    if upload.filename == '':
        return None
    return upload


@app.route('/api/status')
def status():
    return jsonify({'version': CONFIG['version'], 'endpoints': ENDPOINTS})


@app.route('/api/commands-to-structure', methods=['POST'])
def commands_to_structure():
    try:
        payload = request.get_json(silent=True) or {}
        upload = _uploaded_file()
        if upload is not None:
            text = upload.read().decode('utf-8', errors='replace')
            filename_base = Path(upload.filename).stem
            origin = _form_vector('origin', CONFIG['structure']['origin'])
            format_type = request.form.get('format', 'mcstructure')
        elif isinstance(payload.get('commands'), str):
            text = payload['commands']
            filename_base = payload.get('name', 'structure')
            origin = payload.get('origin', CONFIG['structure']['origin'])
            format_type = payload.get('format', 'mcstructure')
        else:
            return jsonify({'error': '没有提供命令'}), 400

        if format_type not in ['mcstructure', 'schem']:
            return jsonify({'error': '不支持的格式类型'}), 400
        if not isinstance(origin, list) or len(origin) != 3:
            return jsonify({'error': '原点无效'}), 400

        parsed = parse_commands(text, tuple(int(v) for v in origin))
        structure = CONFIG['structure']
        encoded = StructureEncoder(structure['namespace'], structure['block_version'],
                                   structure['max_volume_warning']).encode(parsed.voxels)
        logger.info(f"命令 {parsed.command_count} 条, 错误 {parsed.error_count} 个, 尺寸 {encoded.size}")

        if format_type == 'schem':
            with tempfile.TemporaryDirectory() as temp_dir:
                path = save_schematic(encoded, Path(temp_dir) / f"{filename_base}.schem",
                                      CONFIG['schem']['data_version'])
                data = path.read_bytes()
        else:
            data = encoded.to_bytes(CONFIG['nbt']['min_buffer_size'])

        response = send_file(
            io.BytesIO(data),
            as_attachment=True,
            download_name=f"{filename_base}.{format_type}",
            mimetype='application/octet-stream'
        )
        response.headers['X-Command-Count'] = str(parsed.command_count)
        response.headers['X-Error-Count'] = str(parsed.error_count)
        return response

    except CmdStructError as e:
        error_msg = f"转换失败: {e}"
        logger.error(error_msg)
        return jsonify({'error': error_msg}), 400
    except Exception as e:
        error_msg = f"服务器错误: {str(e)}"
        logger.error(error_msg)
        return jsonify({'error': error_msg}), 500


@app.route('/api/schem-to-commands', methods=['POST'])
def schem_commands():
    upload = _uploaded_file()
    if upload is None:
        return jsonify({'error': '没有上传文件'}), 400

    offset = _form_vector('offset', CONFIG['schem']['offset'])
    include_air = _form_bool('include_air', CONFIG['schem']['include_air'])

    result = {'success': True, 'complete': True}
    try:
        commands = schem_to_commands(upload.read(), offset, include_air)
    except PrematureStreamEnd as e:
        logger.warning(f"方块数据不完整: {e}")
        commands = e.commands
        result['complete'] = False
        result['warning'] = str(e)
    except CmdStructError as e:
        error_msg = f"解析schem失败: {e}"
        logger.error(error_msg)
        return jsonify({'error': error_msg}), 400
    except Exception as e:
        error_msg = f"服务器错误: {str(e)}"
        logger.error(error_msg)
        return jsonify({'error': error_msg}), 500

    if not commands and result['complete']:
        result['warning'] = '没有生成任何命令, 结构可能为空或只包含空气'
    result['commands'] = commands
    result['count'] = len(commands)
    return jsonify(result)


@app.route('/api/extract-commands', methods=['POST'])
def extract_commands():
    upload = _uploaded_file()
    if upload is None:
        return jsonify({'error': '没有上传文件'}), 400

    filter_commands = _form_bool('filter', CONFIG['extract']['filter_commands'])
    try:
        commands = extract_commands_from_bytes(upload.read(), filter_commands)
    except Exception as e:
        error_msg = f"提取失败: {str(e)}"
        logger.error(error_msg)
        return jsonify({'error': error_msg}), 500
    return jsonify({'success': True, 'commands': commands, 'count': len(commands)})


def main():
    server = CONFIG['web_server']
    print("🚀 cmdstruct Web服务器启动中...")
    print(f"📝 版本: {CONFIG['version']}")
    print(f"🌐 API地址 http://127.0.0.1:{server['port']}/api/status")
    app.run(
        debug=server.get('debug', False),
        host=server.get('host', '0.0.0.0'),
        port=server.get('port', 5000)
    )


if __name__ == '__main__':
    main()
