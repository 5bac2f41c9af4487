#!/usr/bin/env python3
"""
干渉チェック - ペアフィルタ

2つのオブジェクトの型名だけから、その組を判定対象にするかを決めます。
除外テーブルは一度だけ構築される不変値として明示的に受け渡します。
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Tuple, Optional, TYPE_CHECKING

from ..constants import DEFAULT_SELF_ONLY_TYPES, DEFAULT_IGNORED_COMBINATIONS

if TYPE_CHECKING:
    from ..config import ClashConfig


@dataclass(frozen=True)
class Combination:
    """順序を持たない型名ペア（辞書順に正規化）"""
    first: str
    second: str

    def __post_init__(self):
        if self.first > self.second:
            swapped_first, swapped_second = self.second, self.first
            object.__setattr__(self, 'first', swapped_first)
            object.__setattr__(self, 'second', swapped_second)

    def as_tuple(self) -> Tuple[str, str]:
        return (self.first, self.second)


@dataclass(frozen=True)
class ExemptionTables:
    """除外テーブル（不変）"""
    self_only_types: FrozenSet[str] = field(default_factory=frozenset)
    ignored_combinations: FrozenSet[Combination] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        self_only_types: Iterable[str] = (),
        ignored_combinations: Iterable[Tuple[str, str]] = ()
    ) -> 'ExemptionTables':
        """型名リストと型名ペアのリストから作成"""
        return cls(
            self_only_types=frozenset(self_only_types),
            ignored_combinations=frozenset(
                Combination(type_a, type_b) for type_a, type_b in ignored_combinations
            ),
        )

    @classmethod
    def default(cls) -> 'ExemptionTables':
        """IFCモデル用の既定テーブル"""
        return cls.build(DEFAULT_SELF_ONLY_TYPES, DEFAULT_IGNORED_COMBINATIONS)

    @classmethod
    def from_config(cls, clash_config: 'ClashConfig') -> 'ExemptionTables':
        """設定から作成"""
        return cls.build(
            clash_config.self_only_types,
            [tuple(pair) for pair in clash_config.ignored_combinations],
        )

    def is_self_only(self, type_name: str) -> bool:
        return type_name in self.self_only_types

    def is_ignored(self, type_a: str, type_b: str) -> bool:
        return Combination(type_a, type_b) in self.ignored_combinations


class PairFilter:
    """
    型名による判定対象ペアの選別

    型名は大文字小文字を含めて完全一致で比較します。既定テーブルは IFC の
    クラス名（"IfcWall", "IfcOpeningElement" など）なので、"Wall" のような
    別名を使うモデルでは ExemptionTables.build や設定で独自のテーブルを渡します。
    """

    def __init__(self, tables: Optional[ExemptionTables] = None):
        self.tables = tables if tables is not None else ExemptionTables.default()

    def should_check(self, type_a: str, type_b: str) -> bool:
        """
        型ペアを判定対象とするか

        1. どちらかが同型専用で、型が異なれば対象外
        2. 除外組み合わせに含まれれば対象外
        3. それ以外は対象
        """
        if (self.tables.is_self_only(type_a) or self.tables.is_self_only(type_b)) and type_a != type_b:
            return False
        if self.tables.is_ignored(type_a, type_b):
            return False
        return True
