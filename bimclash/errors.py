#!/usr/bin/env python3
"""
干渉チェックの例外定義

構造的な不正（バッファ破損・設定不正）は例外として上位へ伝播させ、
実行全体を中断します。退化三角形などの数値的な問題は例外にせず、
判定側で「非干渉」として扱います。
"""


class ClashDetectionError(Exception):
    """干渉チェックの基底例外"""


class MalformedGeometryError(ClashDetectionError, ValueError):
    """ジオメトリレコードの不正（ストライド不一致・範囲外インデックスなど）"""

    def __init__(self, message: str, object_id=None):
        if object_id is not None:
            message = f"{message} (object: {object_id!r})"
        super().__init__(message)
        self.object_id = object_id


class InvalidConfigurationError(ClashDetectionError, ValueError):
    """設定値の不正（負の許容距離など）"""
