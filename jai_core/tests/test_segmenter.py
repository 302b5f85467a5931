from jai_core.chat.segmenter import DEFAULT_LANGUAGE, segment
from jai_core.domain.models import CodeSegment, TextSegment


def test_segment_text_code_text():
    raw = "Here:\n```python\nprint(1)\n```\nDone"
    assert segment(raw) == [
        TextSegment("Here:"),
        CodeSegment("python", "print(1)"),
        TextSegment("Done"),
    ]


def test_segment_default_language_and_custom_default():
    raw = "```\nconsole.log(1)\n```"
    assert segment(raw) == [CodeSegment(DEFAULT_LANGUAGE, "console.log(1)")]
    assert segment(raw, default_language="bash")[0].language == "bash"


def test_segment_plain_text_and_empty():
    assert segment("") == []
    assert segment(None) == []
    assert segment("just words") == [TextSegment("just words")]
    assert segment("   \n\n  ") == []


def test_segment_drops_blank_blocks():
    raw = "```js\n   \n```\n\n```go\nfmt.Println(1)\n```"
    assert segment(raw) == [CodeSegment("go", "fmt.Println(1)")]


def test_segment_unclosed_fence_stays_text():
    raw = "intro\n```python\nprint(1)"
    assert segment(raw) == [TextSegment("intro\n```python\nprint(1)")]


def test_segment_tag_with_space_is_not_a_fence():
    raw = "``` python\nx\n```"
    result = segment(raw)
    # 第一行不是合法的开始围栏，最后一行因此被当作开始围栏且未闭合
    assert all(isinstance(s, TextSegment) for s in result)


def test_segment_multiple_blocks_and_crlf():
    raw = "a\r\n```sql\r\nselect 1;\r\n```\r\nb\r\n```\r\nlet x = 1\r\n```"
    result = segment(raw)
    assert [s.type for s in result] == ["text", "code", "text", "code"]
    assert result[1] == CodeSegment("sql", "select 1;")
    assert result[3].language == DEFAULT_LANGUAGE
    assert all(s.language for s in result if isinstance(s, CodeSegment))


def test_segment_reconstructs_non_fence_content():
    raw = "First line\nsecond\n```rust\nfn main() {}\n```\nlast"
    joined = "\n".join(s.content for s in segment(raw))
    assert joined == "First line\nsecond\nfn main() {}\nlast"
