#!/usr/bin/env python3
"""
bimclash コマンドラインツール

シーンファイルを読み込んで干渉チェックを実行し、干渉ペアを出力します。

使い方:
    bimclash scene.yaml                      # 既定設定で実行
    bimclash scene.yaml --epsilon 0.001      # 許容距離を指定
    bimclash scene.yaml --workers 4 --json   # 並列実行、JSON出力
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from . import get_logger, setup_logging, __version__
from .clash.detector import ClashDetector
from .clash.progress import log_progress
from .config import load_config
from .errors import ClashDetectionError
from .scene import load_scene

logger = get_logger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    """引数パーサーを作成"""
    parser = argparse.ArgumentParser(
        prog="bimclash",
        description="建築モデルの三角形メッシュ干渉チェック",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('scene', type=Path, help='シーンファイル (.yaml / .json)')
    parser.add_argument('--epsilon', type=float, default=None,
                        help='許容距離（モデル座標単位、省略時は設定ファイルの値）')
    parser.add_argument('--workers', type=int, default=None,
                        help='並列ワーカー数（省略時は設定ファイルの値）')
    parser.add_argument('--config', type=Path, default=None, help='設定ファイル (YAML)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='ログレベル (DEBUG, INFO, WARNING, ERROR)')
    parser.add_argument('--json', action='store_true', help='結果をJSONで出力')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """メイン関数"""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        setup_logging(level=args.log_level or config.log_level,
                      format_style=config.log_format_style)

        if args.epsilon is not None:
            config.clash.epsilon = args.epsilon
        if args.workers is not None:
            config.clash.max_workers = args.workers

        detector = ClashDetector.from_config(config.clash, progress_callback=log_progress)
        objects = load_scene(args.scene)
        result = detector.find_clashes(objects, config.clash.epsilon)
    except (ClashDetectionError, OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Clash detection failed: {e}")
        return 1

    if args.json:
        json.dump(result.to_dict(), sys.stdout, indent=2, default=str)
        sys.stdout.write("\n")
    else:
        for clash in result.clashes:
            print(f"{clash.object_a.object_id}\t{clash.object_b.object_id}\t"
                  f"{clash.object_a.type_name}\t{clash.object_b.type_name}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
