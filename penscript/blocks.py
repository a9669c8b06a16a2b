from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ProseBlock:
    # Markdown source, converted by the output writer
    text: str


@dataclass
class CodeBlock:
    text: str
    lang: str = ""


@dataclass
class ParagraphBlock:
    text: str


@dataclass
class RawBlock:
    text: str
    # When set, only emitted by the writer for this output kind ("html" or "latex")
    output_kind: Optional[str] = None


@dataclass
class TableBlock:
    headers: list[str]
    rows: list[list[str]] = field(default_factory=list)


Block = ProseBlock | CodeBlock | ParagraphBlock | RawBlock | TableBlock
