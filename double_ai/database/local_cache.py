from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional


class LocalCache:
    """
    简单的 JSON key/value 缓存层：
    - 所有 key 保存在同一个 JSON 文件里
    - 每次读写都直接访问文件（同步，持久）
    - 仅作为远端仓库不可用时的兜底缓存
    """

    def __init__(self, save_path: str):
        self.save_path = Path(save_path)
        self.save_path.parent.mkdir(parents=True, exist_ok=True)

    # --------- 基础读写 --------- #

    def _load(self) -> Dict[str, Any]:
        """
        从 JSON 文件加载全部数据。
        如果文件不存在或已损坏 → 返回空字典。
        """
        if not self.save_path.exists():
            return {}

        try:
            with self.save_path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            return {}

        return raw if isinstance(raw, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        """
        覆盖式写入。
        """
        with self.save_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

    # --------- key/value --------- #

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._load().get(key, default)

    def update(self, values: Dict[str, Any]) -> None:
        """一次写入多个 key"""
        data = self._load()
        data.update(values)
        self._save(data)

    def clear(self) -> None:
        if self.save_path.exists():
            self.save_path.unlink()
