"""AI 回复分段解析。

把助手的原始文本切成有序的 TextSegment / CodeSegment 序列，供渲染层逐段展示。
实现为一个两态（围栏外 / 围栏内）的逐行扫描器：

- 开始围栏：整行为三个反引号，后面紧跟可选的语言标记（\\w+），中间不允许空白；
- 结束围栏：整行为三个反引号（允许行尾空白）；
- 文件结束时仍未闭合的围栏按普通文本处理（包括开始围栏那一行）；
- 去掉首尾空白后为空的片段直接丢弃。

结果每次调用都重新计算，不做缓存。
"""

import re
from typing import List, Optional

from jai_core.domain.models import CodeSegment, Segment, TextSegment

DEFAULT_LANGUAGE = "javascript"

_OPEN_FENCE = re.compile(r"^```(\w*)$")
_CLOSE_FENCE = re.compile(r"^```\s*$")


def segment(raw: Optional[str], default_language: str = DEFAULT_LANGUAGE) -> List[Segment]:
    if not raw:
        return []

    segments: List[Segment] = []
    text_lines: List[str] = []
    code_lines: List[str] = []
    fence_line = ""
    language: Optional[str] = None
    in_fence = False

    def flush_text() -> None:
        content = "\n".join(text_lines).strip("\n")
        text_lines.clear()
        if content.strip():
            segments.append(TextSegment(content=content))

    for line in raw.replace("\r\n", "\n").split("\n"):
        if not in_fence:
            match = _OPEN_FENCE.match(line)
            if match:
                flush_text()
                in_fence = True
                fence_line = line
                language = match.group(1) or default_language
                code_lines = []
            else:
                text_lines.append(line)
            continue

        if _CLOSE_FENCE.match(line):
            content = "\n".join(code_lines).strip()
            if content:
                segments.append(CodeSegment(language=language or default_language, content=content))
            in_fence = False
            language = None
        else:
            code_lines.append(line)

    if in_fence:
        # 未闭合的围栏按原文回退为文本
        text_lines.append(fence_line)
        text_lines.extend(code_lines)
    flush_text()
    return segments
