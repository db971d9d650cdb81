import itertools

import nbtlib
import numpy as np
import pytest
from nbtlib.tag import Compound, Int, Short

from cmdstruct.format.varint import encode_varints


@pytest.fixture
def make_schem(tmp_path):
    """用nbtlib生成schem文件字节"""
    counter = itertools.count()

    def _make(palette, indices, dims, nested=False, gzipped=True):
        width, height, length = dims
        body = {
            "Width": Short(width),
            "Height": Short(height),
            "Length": Short(length),
        }
        palette_tag = Compound({name: Int(index) for name, index in palette.items()})
        data_tag = nbtlib.ByteArray(np.frombuffer(encode_varints(indices), dtype=np.int8))
        if nested:
            body["Version"] = Int(3)
            body["Blocks"] = Compound({"Palette": palette_tag, "Data": data_tag})
            root = Compound({"Schematic": Compound(body)})
        else:
            body["Version"] = Int(2)
            body["Palette"] = palette_tag
            body["BlockData"] = data_tag
            root = Compound(body)

        path = tmp_path / f"fixture_{next(counter)}.schem"
        nbtlib.File(root).save(str(path), gzipped=gzipped)
        return path.read_bytes()

    return _make


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.json"
