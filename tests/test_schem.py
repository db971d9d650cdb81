import gzip
import logging

import pytest

from cmdstruct.errors import MalformedVarInt, PrematureStreamEnd, SchematicFormatError
from cmdstruct.format.mcstructure import commands_to_structure
from cmdstruct.format.nbt import CompoundTag, IntTag, StringTag, create_nbt_buffer
from cmdstruct.format.schem import (
    CommandGenerator,
    generate_schem_commands,
    invert_palette,
    load_schematic,
    maybe_decompress,
    save_schematic,
    schem_to_commands,
    verify_schematic,
)
from cmdstruct.format.varint import encode_varints

PALETTE = {"minecraft:stone": 0, "minecraft:air": 1, "minecraft:dirt": 2}


def generate(indices, dims, **kwargs):
    return generate_schem_commands(encode_varints(indices), PALETTE, dims, **kwargs)


def test_invert_palette_from_compound():
    palette = CompoundTag({
        "minecraft:stone": IntTag(0, "minecraft:stone"),
        "minecraft:granite": IntTag(0, "minecraft:granite"),
        "minecraft:bad": StringTag("x", "minecraft:bad"),
        "minecraft:dirt": IntTag(1, "minecraft:dirt"),
    })
    assert invert_palette(palette) == {0: "minecraft:granite", 1: "minecraft:dirt"}


def test_invert_palette_rejects_non_mapping():
    with pytest.raises(SchematicFormatError):
        invert_palette(["minecraft:stone"])


def test_runs_of_three_become_fill():
    assert generate([0, 0, 0, 2, 2], (5, 1, 1)) == [
        "fill ~0 ~0 ~0 ~2 ~0 ~0 minecraft:stone",
        "setblock ~3 ~0 ~0 minecraft:dirt",
        "setblock ~4 ~0 ~0 minecraft:dirt",
    ]


def test_unknown_index_splits_run():
    assert generate([0, 0, 7, 0, 0, 0], (6, 1, 1)) == [
        "setblock ~0 ~0 ~0 minecraft:stone",
        "setblock ~1 ~0 ~0 minecraft:stone",
        "fill ~3 ~0 ~0 ~5 ~0 ~0 minecraft:stone",
    ]


def test_unknown_index_is_counted():
    generator = CommandGenerator(invert_palette(PALETTE), (3, 1, 1))
    generator.generate(encode_varints([0, 9, 9]))
    assert generator.skipped == 2
    assert generator.processed == 3


def test_air_skipped_by_default():
    assert generate([0, 1, 0], (3, 1, 1)) == [
        "setblock ~0 ~0 ~0 minecraft:stone",
        "setblock ~2 ~0 ~0 minecraft:stone",
    ]


def test_air_included_on_request():
    assert generate([0, 1, 0], (3, 1, 1), include_air=True) == [
        "setblock ~0 ~0 ~0 minecraft:stone",
        "setblock ~1 ~0 ~0 minecraft:air",
        "setblock ~2 ~0 ~0 minecraft:stone",
    ]


def test_offset_applied_to_coordinates():
    assert generate([0, 0, 0], (3, 1, 1), offset=(10, -5, 2)) == [
        "fill ~10 ~-5 ~2 ~12 ~-5 ~2 minecraft:stone",
    ]


def test_runs_do_not_cross_rows():
    assert generate([0, 2, 0, 2], (1, 2, 2)) == [
        "setblock ~0 ~0 ~0 minecraft:stone",
        "setblock ~0 ~0 ~1 minecraft:dirt",
        "setblock ~0 ~1 ~0 minecraft:stone",
        "setblock ~0 ~1 ~1 minecraft:dirt",
    ]


def test_multibyte_indices():
    palette = {"minecraft:stone": 300}
    commands = generate_schem_commands(encode_varints([300, 300, 300]), palette, (3, 1, 1))
    assert commands == ["fill ~0 ~0 ~0 ~2 ~0 ~0 minecraft:stone"]


def test_premature_end_keeps_partial_commands():
    with pytest.raises(PrematureStreamEnd) as excinfo:
        generate([0, 0, 0], (4, 1, 1))
    assert excinfo.value.processed == 3
    assert excinfo.value.expected == 4
    assert excinfo.value.commands == ["fill ~0 ~0 ~0 ~2 ~0 ~0 minecraft:stone"]


def test_truncated_varint_keeps_partial_commands():
    with pytest.raises(PrematureStreamEnd) as excinfo:
        generate_schem_commands(encode_varints([0, 0, 0]) + b'\x80', {"minecraft:stone": 0}, (4, 1, 1))
    assert excinfo.value.processed == 3
    assert excinfo.value.commands == ["fill ~0 ~0 ~0 ~2 ~0 ~0 minecraft:stone"]
    assert isinstance(excinfo.value.__cause__, MalformedVarInt)


def test_extra_data_only_warns(caplog):
    with caplog.at_level(logging.WARNING):
        assert generate([0, 0], (1, 1, 1)) == ["setblock ~0 ~0 ~0 minecraft:stone"]
    assert "剩余" in caplog.text


@pytest.mark.parametrize("dims", [(0, 1, 1), (1, 1), (1, -1, 1)])
def test_invalid_dimensions(dims):
    with pytest.raises(ValueError):
        generate([0], dims)


def test_invalid_offset():
    with pytest.raises(ValueError):
        generate([0], (1, 1, 1), offset=(0, "a", 0))


def test_block_without_namespace_is_skipped():
    assert generate_schem_commands(encode_varints([0]), {"stone": 0}, (1, 1, 1)) == []


def test_maybe_decompress_detects_gzip():
    assert maybe_decompress(gzip.compress(b'payload')) == b'payload'
    assert maybe_decompress(b'raw') == b'raw'


@pytest.mark.parametrize("data", [
    b'\x1f\x8bnot gzip at all',
    gzip.compress(b'x' * 100)[:-8],
])
def test_corrupt_gzip_is_a_format_error(data):
    with pytest.raises(SchematicFormatError):
        maybe_decompress(data)


def test_load_version_two(make_schem):
    data = make_schem(PALETTE, [0, 2], (2, 1, 1))
    schematic = load_schematic(data)
    assert schematic.dims == (2, 1, 1)
    assert schematic.block_data == bytes([0, 2])
    assert invert_palette(schematic.palette) == {0: "minecraft:stone", 1: "minecraft:air", 2: "minecraft:dirt"}


def test_load_nested_version_three(make_schem):
    data = make_schem(PALETTE, [2, 2, 2], (3, 1, 1), nested=True)
    assert schem_to_commands(data) == ["fill ~0 ~0 ~0 ~2 ~0 ~0 minecraft:dirt"]


def test_load_uncompressed(make_schem):
    data = make_schem(PALETTE, [0], (1, 1, 1), gzipped=False)
    assert schem_to_commands(data) == ["setblock ~0 ~0 ~0 minecraft:stone"]


def test_inflate_is_injectable(make_schem):
    data = make_schem(PALETTE, [0], (1, 1, 1))
    calls = []

    def inflate(raw):
        calls.append(len(raw))
        return gzip.decompress(raw)

    schem_to_commands(data, inflate=inflate)
    assert calls == [len(data)]


def test_missing_dimensions():
    data = create_nbt_buffer({"Palette": {}}, little_endian=False)
    with pytest.raises(SchematicFormatError):
        load_schematic(data)


def test_missing_block_data():
    data = create_nbt_buffer({"Width": 1, "Height": 1, "Length": 1}, little_endian=False)
    with pytest.raises(SchematicFormatError):
        load_schematic(data)


def test_block_data_as_int_list():
    data = create_nbt_buffer({
        "Width": 2, "Height": 1, "Length": 1,
        "Palette": {"minecraft:stone": 0, "minecraft:dirt": 1},
        "BlockData": [0, 1],
    }, little_endian=False)
    assert load_schematic(data).block_data == bytes([0, 1])


def test_air_overwrite_splits_fill():
    encoded, _ = commands_to_structure("fill 0 0 0 2 0 0 minecraft:stone\nsetblock 1 0 0 minecraft:air")
    palette, block_data = encoded.to_schematic()
    assert generate_schem_commands(block_data, palette, encoded.size) == [
        "setblock ~0 ~0 ~0 minecraft:stone",
        "setblock ~2 ~0 ~0 minecraft:stone",
    ]


def test_save_and_reload_schematic(tmp_path):
    encoded, _ = commands_to_structure("fill 0 0 0 3 0 0 stone\nsetblock 0 1 0 oak_log[axis=y]")
    path = save_schematic(encoded, tmp_path / "house")
    assert path.name == "house.schem"

    is_valid, message = verify_schematic(path)
    assert is_valid, message

    assert schem_to_commands(path.read_bytes()) == [
        "fill ~0 ~0 ~0 ~3 ~0 ~0 minecraft:stone",
        "setblock ~0 ~1 ~0 minecraft:oak_log[axis=y]",
    ]


def test_verify_rejects_garbage(tmp_path):
    path = tmp_path / "broken.schem"
    path.write_bytes(b'not a schematic')
    is_valid, _ = verify_schematic(path)
    assert not is_valid
