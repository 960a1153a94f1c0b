"""系统前导语加载工具。

按语言(locale) 从 prompts/<locale> 目录读取对应的 system prompt 文本，
作为上下文窗口最前面的固定前导语。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_system_prompt(name: str = "chat", locale: str = "en") -> str:
    """根据提示词名称和语言加载系统前导语文本。"""

    fname = PROMPTS_DIR / locale / f"{name}_system.md"
    return fname.read_text(encoding="utf-8").strip()
