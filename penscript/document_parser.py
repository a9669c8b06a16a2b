from dataclasses import dataclass

import pytest

from penscript.lexer import TokenType
from penscript.markdown_parser import Command, MarkdownParser, DefineSnippet, EmbedResultCommand, ShowCommand
from penscript.results import EmbedKind
from penscript.snippet import EmbedSnippet, EmbedText, SnippetHeader


PROSE_MARKER = "#~"
SCRIPT_DIRECTIVES = {
    "include-output": EmbedKind.Output,
    "include-it": EmbedKind.ItValue,
}


@dataclass
class TextSection:
    text: str


@dataclass
class CommandSection:
    command: Command


DocumentSection = TextSection | CommandSection


def parse_document_text(text: str) -> list[DocumentSection]:
    output_sections = []
    parser = MarkdownParser(text)
    while True:
        tokens_before_command = parser.read_tokens_until_command_begins()
        # We may immediately start with a command
        if len(tokens_before_command):
            text_before_command = "".join(t.value for t in tokens_before_command)
            output_sections.append(TextSection(text_before_command))

        if parser.lexer.peek().type == TokenType.EOF:
            break

        output_sections.append(CommandSection(parser.parse_command()))

    return output_sections


def _prose_line(line: str) -> str:
    content = line[len(PROSE_MARKER):]
    # Allow a single space after the marker
    return content[1:] if content.startswith(" ") else content


def parse_script_text(text: str) -> list[DocumentSection]:
    """Splits a literate Python script into prose and code.

    Lines starting with `#~` are Markdown prose; everything else is code. Each run of code
    becomes a snippet named `chunk_N` that is shown where it appears. A prose line containing
    only `include-output` or `include-it` embeds that result of the preceding chunk.
    """
    output_sections: list[DocumentSection] = []
    prose_lines: list[str] = []
    code_lines: list[str] = []
    chunk_count = 0

    def flush_prose() -> None:
        if prose_lines:
            output_sections.append(TextSection("\n".join(prose_lines) + "\n"))
            prose_lines.clear()

    def flush_code() -> None:
        nonlocal chunk_count
        code = "\n".join(code_lines).strip("\n")
        code_lines.clear()
        if not code.strip():
            return
        chunk_count += 1
        snippet_name = f"chunk_{chunk_count}"
        output_sections.append(
            CommandSection(DefineSnippet(header=SnippetHeader(), snippet_name=snippet_name, content=[EmbedText(code)]))
        )
        output_sections.append(CommandSection(ShowCommand(snippet_name)))

    for line in text.splitlines():
        if not line.startswith(PROSE_MARKER):
            if prose_lines and line.strip():
                flush_prose()
            if line.strip() or code_lines:
                code_lines.append(line)
            elif prose_lines:
                # Blank lines inside a prose run separate paragraphs
                prose_lines.append("")
            continue

        flush_code()
        prose = _prose_line(line)
        if prose.strip() in SCRIPT_DIRECTIVES:
            if chunk_count == 0:
                raise ValueError(f'"{prose.strip()}" must follow a code chunk')
            flush_prose()
            kind = SCRIPT_DIRECTIVES[prose.strip()]
            output_sections.append(CommandSection(EmbedResultCommand(f"chunk_{chunk_count}", kind)))
            continue
        prose_lines.append(prose)

    flush_code()
    flush_prose()
    return output_sections


class TestDocumentParser:
    def test_sections(self):
        src = """# Totals

{{define totals
###
{{prices}}
print(sum(prices))
}}

{{define prices
###
prices = [1, 2, 3]
}}
{{show totals}}
Which prints:
{{output totals}}
"""
        sections = parse_document_text(src)
        assert sections == [
            TextSection(text="# Totals\n\n"),
            CommandSection(
                command=DefineSnippet(
                    header=SnippetHeader(),
                    snippet_name="totals",
                    content=[
                        EmbedSnippet(snippet_name="prices"),
                        EmbedText(text="\nprint(sum(prices))"),
                    ],
                )
            ),
            TextSection(text="\n"),
            CommandSection(
                command=DefineSnippet(
                    header=SnippetHeader(),
                    snippet_name="prices",
                    content=[EmbedText(text="prices = [1, 2, 3]")],
                )
            ),
            CommandSection(command=ShowCommand(snippet_name="totals")),
            TextSection(text="Which prints:\n"),
            CommandSection(command=EmbedResultCommand(snippet_name="totals", kind=EmbedKind.Output)),
        ]

    def test_script(self):
        src = """#~ # Squares
#~
#~ First, some numbers.
numbers = [1, 2, 3]

squares = [n * n for n in numbers]
#~ Then print them:
# a regular comment stays in the code
print(squares)
#~ include-output
#~ That's all.
"""
        assert parse_script_text(src) == [
            TextSection(text="# Squares\n\nFirst, some numbers.\n"),
            CommandSection(
                DefineSnippet(
                    header=SnippetHeader(),
                    snippet_name="chunk_1",
                    content=[EmbedText("numbers = [1, 2, 3]\n\nsquares = [n * n for n in numbers]")],
                )
            ),
            CommandSection(ShowCommand("chunk_1")),
            TextSection(text="Then print them:\n"),
            CommandSection(
                DefineSnippet(
                    header=SnippetHeader(),
                    snippet_name="chunk_2",
                    content=[EmbedText("# a regular comment stays in the code\nprint(squares)")],
                )
            ),
            CommandSection(ShowCommand("chunk_2")),
            CommandSection(EmbedResultCommand("chunk_2", EmbedKind.Output)),
            TextSection(text="That's all.\n"),
        ]

    def test_script_directive_needs_a_chunk(self):
        with pytest.raises(ValueError):
            parse_script_text("#~ include-it\nx = 1\n")
