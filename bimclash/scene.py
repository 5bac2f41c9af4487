#!/usr/bin/env python3
"""
シーンファイル読み込み

YAML / JSON で記述されたオブジェクト一覧を ModelObject のリストへ変換します。
ジオメトリは数値リスト、またはジオメトリストアの生バッファ（base64）で指定できます。

形式:
    objects:
      - id: wall-1
        type: IfcWall
        geometry:
          indices: [0, 1, 2, ...]
          vertices: [[x, y, z], ...]     # フラットなリストも可
          transform: [16 values]         # 省略時は単位行列
          min_bounds: [x, y, z]          # 省略時は変換後の頂点から算出
          max_bounds: [x, y, z]
      - id: door-1
        type: IfcDoor
        geometry:
          indices_b64: "..."             # int32 LE
          vertices_b64: "..."            # float32 LE
          transform_b64: "..."           # float64 LE × 16
          min_bounds: [x, y, z]
          max_bounds: [x, y, z]
      - id: site
        type: IfcSite                    # ジオメトリなし
"""

import base64
import binascii
import json
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import yaml

from . import get_logger
from .clash.geometry import GeometryRecord, decode_geometry
from .clash.types import ModelObject
from .errors import MalformedGeometryError

logger = get_logger(__name__)


def load_scene(path: Union[str, Path]) -> List[ModelObject]:
    """
    シーンファイルを読み込み

    Args:
        path: .yaml / .yml / .json ファイル

    Returns:
        オブジェクトのリスト（ファイル内の順序）
    """
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() == '.json':
            document = json.load(f)
        else:
            document = yaml.safe_load(f)

    objects = parse_scene(document)
    logger.info(f"Loaded {len(objects)} objects from {path}")
    return objects


def parse_scene(document: Any) -> List[ModelObject]:
    """読み込み済みドキュメントからオブジェクト一覧を作成"""
    if not isinstance(document, dict) or not isinstance(document.get('objects'), list):
        raise MalformedGeometryError("scene must be a mapping with an 'objects' list")

    objects = []
    seen_ids = set()
    for position, entry in enumerate(document['objects']):
        if not isinstance(entry, dict):
            raise MalformedGeometryError(f"scene object #{position} must be a mapping")

        object_id = entry.get('id', position)
        if object_id in seen_ids:
            raise MalformedGeometryError("duplicate object id in scene", object_id)
        seen_ids.add(object_id)

        type_name = entry.get('type')
        if not isinstance(type_name, str) or not type_name:
            raise MalformedGeometryError("scene object is missing its type", object_id)

        geometry_entry = entry.get('geometry')
        geometry = None
        if geometry_entry is not None:
            geometry = _parse_geometry(geometry_entry, object_id)

        objects.append(ModelObject(object_id=object_id, type_name=type_name, geometry=geometry))

    return objects


def _parse_geometry(entry: Dict[str, Any], object_id: Any) -> GeometryRecord:
    """ジオメトリ項目を解析"""
    if not isinstance(entry, dict):
        raise MalformedGeometryError("geometry must be a mapping", object_id)

    if 'indices_b64' in entry or 'vertices_b64' in entry:
        for key in ('indices_b64', 'vertices_b64', 'min_bounds', 'max_bounds'):
            if key not in entry:
                raise MalformedGeometryError(f"raw geometry is missing '{key}'", object_id)
        transform_buffer = (
            _decode_base64(entry['transform_b64'], object_id)
            if 'transform_b64' in entry
            else np.eye(4, dtype='<f8').tobytes()
        )
        return decode_geometry(
            _decode_base64(entry['indices_b64'], object_id),
            _decode_base64(entry['vertices_b64'], object_id),
            transform_buffer,
            entry['min_bounds'],
            entry['max_bounds'],
            object_id=object_id,
        )

    if 'indices' not in entry or 'vertices' not in entry:
        raise MalformedGeometryError("geometry needs 'indices' and 'vertices'", object_id)

    try:
        return GeometryRecord.from_arrays(
            entry['indices'],
            entry['vertices'],
            transform=entry.get('transform'),
            min_bounds=entry.get('min_bounds'),
            max_bounds=entry.get('max_bounds'),
        )
    except MalformedGeometryError as e:
        raise MalformedGeometryError(str(e), object_id) from e
    except (TypeError, ValueError) as e:
        raise MalformedGeometryError(f"invalid geometry values: {e}", object_id) from e


def _decode_base64(text: Any, object_id: Any) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise MalformedGeometryError(f"invalid base64 buffer: {e}", object_id) from e
