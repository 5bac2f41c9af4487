#!/usr/bin/env python3
"""
bimclash 設定管理システム

許容距離・並列数・除外テーブルなどの設定値を統一管理し、
YAMLファイルからの読み込み／保存を提供します。
"""

import math
import yaml
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from pathlib import Path

from . import get_logger
from .constants import (
    DEFAULT_EPSILON,
    DEFAULT_MAX_WORKERS,
    DEFAULT_PROGRESS_INTERVAL_S,
    DEFAULT_SELF_ONLY_TYPES,
    DEFAULT_IGNORED_COMBINATIONS,
)
from .errors import InvalidConfigurationError

logger = get_logger(__name__)


@dataclass
class ClashConfig:
    """干渉チェック設定"""
    # 判定精度設定
    epsilon: float = DEFAULT_EPSILON

    # 並列・進捗設定
    max_workers: int = DEFAULT_MAX_WORKERS
    progress_interval_s: float = DEFAULT_PROGRESS_INTERVAL_S

    # 除外テーブル
    self_only_types: List[str] = field(default_factory=lambda: list(DEFAULT_SELF_ONLY_TYPES))
    ignored_combinations: List[List[str]] = field(
        default_factory=lambda: [list(pair) for pair in DEFAULT_IGNORED_COMBINATIONS]
    )

    def validate(self) -> None:
        """設定値を検証（不正なら InvalidConfigurationError）"""
        validate_epsilon(self.epsilon)
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise InvalidConfigurationError(
                f"max_workers must be a positive integer, got {self.max_workers!r}"
            )
        if not self.progress_interval_s >= 0.0:
            raise InvalidConfigurationError(
                f"progress_interval_s must be non-negative, got {self.progress_interval_s!r}"
            )
        # 文字列をそのまま渡すと1文字ずつの型名集合になってしまう
        if not isinstance(self.self_only_types, (list, tuple)) or not all(
            isinstance(type_name, str) for type_name in self.self_only_types
        ):
            raise InvalidConfigurationError(
                f"self_only_types must be a list of type names, got {self.self_only_types!r}"
            )
        if not isinstance(self.ignored_combinations, (list, tuple)):
            raise InvalidConfigurationError(
                f"ignored_combinations must be a list of type pairs, got {self.ignored_combinations!r}"
            )
        for pair in self.ignored_combinations:
            if (not isinstance(pair, (list, tuple)) or len(pair) != 2
                    or not all(isinstance(type_name, str) for type_name in pair)):
                raise InvalidConfigurationError(
                    f"ignored_combinations entries must name two types, got {pair!r}"
                )


@dataclass
class BimClashConfig:
    """プロジェクト全体設定"""
    clash: ClashConfig = field(default_factory=ClashConfig)

    # ログ設定
    log_level: str = "INFO"
    log_format_style: str = "detailed"


def validate_epsilon(epsilon: float) -> float:
    """許容距離を検証して float で返す"""
    try:
        value = float(epsilon)
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"epsilon must be a number, got {epsilon!r}") from e
    if not math.isfinite(value) or value < 0.0:
        raise InvalidConfigurationError(f"epsilon must be finite and non-negative, got {epsilon!r}")
    return value


class ConfigManager:
    """設定管理クラス"""

    def __init__(self):
        self._config: Optional[BimClashConfig] = None
        self._config_file_path: Optional[Path] = None

    def load_config(self, config_file: Optional[Path] = None) -> BimClashConfig:
        """
        設定ファイルを読み込み

        Args:
            config_file: 設定ファイルパス（Noneの場合は既定の場所を探索）

        Returns:
            読み込まれた設定
        """
        if config_file is None:
            default_paths = [
                Path.cwd() / "bimclash.yaml",
                Path.cwd() / "config.yaml",
                Path.home() / ".bimclash" / "config.yaml"
            ]

            for path in default_paths:
                if path.exists():
                    config_file = path
                    break

        if config_file and Path(config_file).exists():
            config_file = Path(config_file)
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    config_dict = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {config_file}: {e}")
                logger.info("Using default configuration")
                self._config = BimClashConfig()
            else:
                self._config = self._dict_to_config(config_dict)
                self._config_file_path = config_file
                logger.info(f"Configuration loaded from {config_file}")
        else:
            logger.info("No config file found, using default configuration")
            self._config = BimClashConfig()

        return self._config

    def save_config(self, config_file: Optional[Path] = None) -> bool:
        """
        設定をファイルに保存

        Args:
            config_file: 保存先ファイルパス

        Returns:
            保存成功したかどうか
        """
        if self._config is None:
            logger.error("No configuration to save")
            return False

        if config_file is None:
            config_file = self._config_file_path or Path("bimclash.yaml")
        config_file = Path(config_file)

        try:
            config_dict = self._config_to_dict(self._config)

            config_file.parent.mkdir(parents=True, exist_ok=True)

            with open(config_file, 'w', encoding='utf-8') as f:
                yaml.dump(config_dict, f, default_flow_style=False,
                          allow_unicode=True, indent=2)

            logger.info(f"Configuration saved to {config_file}")
            return True

        except OSError as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False

    def get_config(self) -> BimClashConfig:
        """現在の設定を取得"""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> BimClashConfig:
        """辞書を設定オブジェクトに変換"""
        if not isinstance(config_dict, dict):
            raise InvalidConfigurationError("Configuration root must be a mapping")

        config = BimClashConfig()

        clash_dict = config_dict.get('clash')
        if isinstance(clash_dict, dict):
            for key, value in clash_dict.items():
                if hasattr(config.clash, key):
                    setattr(config.clash, key, value)
                else:
                    logger.warning(f"Unknown clash setting ignored: {key}")

        for key in ('log_level', 'log_format_style'):
            if key in config_dict:
                setattr(config, key, config_dict[key])

        config.clash.validate()
        return config

    def _config_to_dict(self, config: BimClashConfig) -> Dict[str, Any]:
        """設定オブジェクトを辞書に変換"""
        return {
            'clash': {
                'epsilon': config.clash.epsilon,
                'max_workers': config.clash.max_workers,
                'progress_interval_s': config.clash.progress_interval_s,
                'self_only_types': list(config.clash.self_only_types),
                'ignored_combinations': [list(pair) for pair in config.clash.ignored_combinations],
            },
            'log_level': config.log_level,
            'log_format_style': config.log_format_style,
        }


# グローバル設定マネージャー
_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """グローバル設定マネージャーを取得"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def get_config() -> BimClashConfig:
    """現在の設定を取得"""
    return get_config_manager().get_config()

def load_config(config_file: Optional[Path] = None) -> BimClashConfig:
    """設定を読み込み"""
    return get_config_manager().load_config(config_file)

def save_config(config_file: Optional[Path] = None) -> bool:
    """設定を保存"""
    return get_config_manager().save_config(config_file)
