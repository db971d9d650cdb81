import io

import pytest

from cmdstruct.format.nbt import load_nbt
from cmdstruct.web import ENDPOINTS, app


@pytest.fixture
def client():
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


def upload(data, filename, **fields):
    fields['file'] = (io.BytesIO(data), filename)
    return fields


def test_status(client):
    response = client.get('/api/status')
    assert response.status_code == 200
    assert response.get_json()['endpoints'] == ENDPOINTS


def test_commands_to_mcstructure(client):
    response = client.post('/api/commands-to-structure', json={
        'commands': 'fill 0 0 0 2 0 0 stone\nbogus',
        'name': 'wall',
    })
    assert response.status_code == 200
    assert response.headers['X-Command-Count'] == '2'
    assert response.headers['X-Error-Count'] == '1'
    assert 'wall.mcstructure' in response.headers['Content-Disposition']
    document = load_nbt(response.data, little_endian=True).unwrap()
    assert document['size'] == [3, 1, 1]


def test_commands_to_schem_from_upload(client):
    response = client.post('/api/commands-to-structure',
                           data=upload(b'setblock 0 0 0 stone', 'tower.txt', format='schem', origin_x='4'),
                           content_type='multipart/form-data')
    assert response.status_code == 200
    assert response.data[:2] == b'\x1f\x8b'
    assert 'tower.schem' in response.headers['Content-Disposition']


def test_commands_missing(client):
    response = client.post('/api/commands-to-structure', json={})
    assert response.status_code == 400


def test_unsupported_format(client):
    response = client.post('/api/commands-to-structure', json={'commands': 'setblock 0 0 0 stone', 'format': 'bdx'})
    assert response.status_code == 400


def test_commands_without_blocks(client):
    response = client.post('/api/commands-to-structure', json={'commands': '# empty'})
    assert response.status_code == 400
    assert 'error' in response.get_json()


def test_schem_to_commands(client, make_schem):
    data = make_schem({'minecraft:stone': 0, 'minecraft:air': 1}, [0, 1, 0], (3, 1, 1))
    response = client.post('/api/schem-to-commands',
                           data=upload(data, 'a.schem', offset_x='2', include_air='true'),
                           content_type='multipart/form-data')
    body = response.get_json()
    assert response.status_code == 200
    assert body['complete'] is True
    assert body['count'] == 3
    assert body['commands'][1] == 'setblock ~3 ~0 ~0 minecraft:air'


def test_schem_to_commands_truncated(client, make_schem):
    data = make_schem({'minecraft:stone': 0}, [0, 0, 0], (4, 1, 1))
    response = client.post('/api/schem-to-commands', data=upload(data, 'a.schem'),
                           content_type='multipart/form-data')
    body = response.get_json()
    assert response.status_code == 200
    assert body['complete'] is False
    assert body['commands'] == ['fill ~0 ~0 ~0 ~2 ~0 ~0 minecraft:stone']
    assert 'warning' in body


def test_schem_to_commands_rejects_garbage(client):
    response = client.post('/api/schem-to-commands', data=upload(b'hello', 'a.schem'),
                           content_type='multipart/form-data')
    assert response.status_code == 400


def test_schem_to_commands_rejects_corrupt_gzip(client):
    response = client.post('/api/schem-to-commands', data=upload(b'\x1f\x8bbroken', 'a.schem'),
                           content_type='multipart/form-data')
    assert response.status_code == 400


def test_schem_to_commands_requires_file(client):
    response = client.post('/api/schem-to-commands', data={}, content_type='multipart/form-data')
    assert response.status_code == 400


def test_extract_commands(client):
    data = b'\x00"cmd_line": "say hi"\x00fill 0 0 0 1 1 1 minecraft:stone\x00'
    response = client.post('/api/extract-commands', data=upload(data, 'dump.nbt', filter='false'),
                           content_type='multipart/form-data')
    body = response.get_json()
    assert body['success'] is True
    assert body['commands'] == ['say hi', 'fill 0 0 0 1 1 1 minecraft:stone']
