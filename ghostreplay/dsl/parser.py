"""
スクリプトパーサー — 記録スクリプト（YAML / JSON）の読み込み・書き出し・検証

拡張子 .json のファイルは JSON として、それ以外は YAML として扱う。
YAML は ruamel.yaml のラウンドトリップモードで読み書きし、
Pydantic の Script モデルとの相互変換を行う。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .schema import Script

_JSON_SUFFIXES = frozenset({".json"})


# ---------------------------------------------------------------------------
# バリデーションエラー表現
# ---------------------------------------------------------------------------

@dataclass
class ScriptValidationError:
    """スクリプトのスキーマ検証で検出されたエラー。

    Attributes:
        message: エラーメッセージ
        location: エラー箇所（フィールドパス等）
        line: ファイル内の行番号（取得可能な場合）
    """

    message: str
    location: str = ""
    line: Optional[int] = None


class _SyntaxError(Exception):
    """YAML / JSON 構文エラーを行番号付きで運ぶ内部例外。"""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.line = line
        self.column = column


# ---------------------------------------------------------------------------
# ScriptParser 本体
# ---------------------------------------------------------------------------

class ScriptParser:
    """記録スクリプトの読み込み・書き出し・検証を担当するパーサー。"""

    def __init__(self) -> None:
        self._yaml = YAML()
        self._yaml.preserve_quotes = True
        self._yaml.default_flow_style = False

    # ----- load -----

    def load(self, path: Path) -> Script:
        """スクリプトファイルを読み込み、Script モデルに変換する。

        Args:
            path: 読み込むファイルのパス

        Returns:
            パース済みの Script

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            ValueError: 構文エラーまたはスキーマ検証エラーの場合
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"スクリプトファイルが見つかりません: {path}")

        try:
            data = self._read(path)
        except _SyntaxError as e:
            line_info = ""
            if e.line is not None:
                line_info = f" (行 {e.line}, 列 {e.column})"
            raise ValueError(f"構文エラー{line_info}: {e}") from e

        if data is None:
            raise ValueError("スクリプトファイルが空です")

        try:
            return Script.model_validate(data)
        except PydanticValidationError as e:
            raise ValueError(f"スキーマ検証エラー: {e}") from e

    def loads(self, text: str, *, fmt: str = "yaml") -> Script:
        """文字列からスクリプトを読み込む。

        Args:
            text: スクリプトの内容
            fmt: "yaml" または "json"

        Raises:
            ValueError: 構文エラーまたはスキーマ検証エラーの場合
        """
        try:
            data = self._parse(text, fmt)
        except _SyntaxError as e:
            raise ValueError(f"構文エラー: {e}") from e
        if data is None:
            raise ValueError("スクリプトが空です")
        try:
            return Script.model_validate(data)
        except PydanticValidationError as e:
            raise ValueError(f"スキーマ検証エラー: {e}") from e

    # ----- dump -----

    def dump(self, script: Script, path: Path) -> None:
        """Script をファイルに書き出す。拡張子 .json なら JSON で書き出す。

        未設定のフィールドは出力しない。
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = script.model_dump(mode="json", exclude_none=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.suffix.lower() in _JSON_SUFFIXES:
                json.dump(data, f, ensure_ascii=False, indent=2)
            else:
                self._yaml.dump(data, f)

    # ----- validate -----

    def validate(self, path: Path) -> list[ScriptValidationError]:
        """スクリプトファイルのスキーマ検証を行い、違反箇所を報告する。

        Returns:
            検出されたエラーのリスト（問題なしの場合は空リスト）
        """
        path = Path(path)
        errors: list[ScriptValidationError] = []

        if not path.exists():
            errors.append(ScriptValidationError(
                message=f"スクリプトファイルが見つかりません: {path}",
                location="file",
            ))
            return errors

        try:
            data = self._read(path)
        except _SyntaxError as e:
            errors.append(ScriptValidationError(
                message=f"構文エラー: {e}",
                location="json" if path.suffix.lower() in _JSON_SUFFIXES else "yaml",
                line=e.line,
            ))
            return errors

        if data is None:
            errors.append(ScriptValidationError(
                message="スクリプトファイルが空です",
                location="file",
            ))
            return errors

        try:
            Script.model_validate(data)
        except PydanticValidationError as e:
            for err in e.errors():
                loc_parts = [str(part) for part in err.get("loc", [])]
                location = " -> ".join(loc_parts) if loc_parts else "unknown"
                errors.append(ScriptValidationError(
                    message=err.get("msg", "不明なエラー"),
                    location=location,
                ))

        return errors

    # ----- ユーティリティ -----

    def _read(self, path: Path) -> Any:
        fmt = "json" if path.suffix.lower() in _JSON_SUFFIXES else "yaml"
        with open(path, "r", encoding="utf-8") as f:
            return self._parse(f.read(), fmt)

    def _parse(self, text: str, fmt: str) -> Any:
        if fmt == "json":
            if not text.strip():
                return None
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                raise _SyntaxError(e.msg, e.lineno, e.colno) from e
        if fmt != "yaml":
            raise ValueError(f"未対応の形式です: {fmt}")

        try:
            data = self._yaml.load(text)
        except YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            if mark is not None:
                raise _SyntaxError(str(e), mark.line + 1, mark.column + 1) from e
            raise _SyntaxError(str(e)) from e
        return self._to_plain_dict(data)

    def _to_plain_dict(self, data: object) -> object:
        """ruamel.yaml の CommentedMap/CommentedSeq を通常の dict/list に再帰変換する。"""
        if isinstance(data, dict):
            return {key: self._to_plain_dict(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._to_plain_dict(item) for item in data]
        return data
