import html
import re
from enum import Enum
from pathlib import Path
from typing import Optional

import jinja2
import markdown

from penscript.blocks import Block, CodeBlock, ParagraphBlock, ProseBlock, RawBlock, TableBlock
from penscript.env import TEMPLATES_ROOT


class OutputKind(Enum):
    Html = "html"
    Latex = "latex"

    @property
    def default_template(self) -> Path:
        return TEMPLATES_ROOT / {OutputKind.Html: "template.html", OutputKind.Latex: "template.tex"}[self]

    @property
    def file_extension(self) -> str:
        return {OutputKind.Html: ".html", OutputKind.Latex: ".tex"}[self]


class HtmlWriter:
    output_kind = OutputKind.Html

    def render_block(self, block: Block) -> str:
        match block:
            case ProseBlock(text):
                return markdown.markdown(text, extensions=["fenced_code", "tables"])
            case CodeBlock(text, lang) if lang:
                return f'<pre><code class="language-{html.escape(lang)}">{html.escape(text)}</code></pre>'
            case CodeBlock(text):
                return f'<pre class="output"><code>{html.escape(text)}</code></pre>'
            case ParagraphBlock(text):
                return f"<p>{html.escape(text)}</p>"
            case RawBlock(text, output_kind) if output_kind in (None, self.output_kind.value):
                return text
            case RawBlock():
                return ""
            case TableBlock(headers, rows):
                out = "<table>\n<thead>\n<tr>"
                out += "".join(f"<th>{html.escape(header)}</th>" for header in headers)
                out += "</tr>\n</thead>\n<tbody>\n"
                for row in rows:
                    out += "<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in row) + "</tr>\n"
                out += "</tbody>\n</table>"
                return out
            case _:
                raise NotImplementedError(f"Don't know how to write a {block}")

    def render(self, blocks: list[Block]) -> str:
        return "\n".join(text for text in (self.render_block(block) for block in blocks) if text)


_LATEX_SPECIAL_CHARACTERS = str.maketrans({
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
})

_INLINE_MARKUP = re.compile(r"`([^`]+)`|\*\*([^*]+)\*\*|\*([^*]+)\*")
_HEADING = re.compile(r"^(#{1,3})\s+(.*)$")
_LIST_ITEM = re.compile(r"^\s*[-*+]\s+(.*)$")
_LATEX_SECTIONS = {1: "section", 2: "subsection", 3: "subsubsection"}


def latex_escape(text: str) -> str:
    return text.translate(_LATEX_SPECIAL_CHARACTERS)


def _latex_inline(text: str) -> str:
    out = []
    position = 0
    for match in _INLINE_MARKUP.finditer(text):
        out.append(latex_escape(text[position:match.start()]))
        code, strong, emphasis = match.groups()
        if code is not None:
            out.append(rf"\texttt{{{latex_escape(code)}}}")
        elif strong is not None:
            out.append(rf"\textbf{{{latex_escape(strong)}}}")
        else:
            out.append(rf"\emph{{{latex_escape(emphasis)}}}")
        position = match.end()
    out.append(latex_escape(text[position:]))
    return "".join(out)


def markdown_to_latex(text: str) -> str:
    """Converts the Markdown subset used in document prose into LaTeX.

    Handles headings (up to three levels), paragraphs, bullet lists, fenced code and inline
    code, bold and emphasis. Anything else is escaped and passed through as paragraph text.
    """
    out: list[str] = []
    paragraph: list[str] = []
    list_items: list[str] = []
    lines = iter(text.splitlines())

    def flush() -> None:
        if paragraph:
            out.append(_latex_inline(" ".join(paragraph)))
            paragraph.clear()
        if list_items:
            items = "\n".join(rf"  \item {_latex_inline(item)}" for item in list_items)
            out.append(f"\\begin{{itemize}}\n{items}\n\\end{{itemize}}")
            list_items.clear()

    for line in lines:
        if line.startswith("```"):
            flush()
            code_lines = []
            for code_line in lines:
                if code_line.startswith("```"):
                    break
                code_lines.append(code_line)
            out.append("\\begin{verbatim}\n" + "\n".join(code_lines) + "\n\\end{verbatim}")
        elif heading := _HEADING.match(line):
            flush()
            level, title = heading.groups()
            out.append(rf"\{_LATEX_SECTIONS[len(level)]}{{{_latex_inline(title)}}}")
        elif item := _LIST_ITEM.match(line):
            if paragraph:
                flush()
            list_items.append(item.group(1))
        elif not line.strip():
            flush()
        else:
            if list_items:
                flush()
            paragraph.append(line.strip())
    flush()
    return "\n\n".join(out)


class LatexWriter:
    output_kind = OutputKind.Latex

    def render_block(self, block: Block) -> str:
        match block:
            case ProseBlock(text):
                return markdown_to_latex(text)
            case CodeBlock(text):
                return f"\\begin{{verbatim}}\n{text}\n\\end{{verbatim}}"
            case ParagraphBlock(text):
                return latex_escape(text)
            case RawBlock(text, output_kind) if output_kind in (None, self.output_kind.value):
                return text
            case RawBlock():
                return ""
            case TableBlock(headers, rows):
                columns = "l" * len(headers)
                out = f"\\begin{{tabular}}{{{columns}}}\n\\hline\n"
                out += " & ".join(latex_escape(header) for header in headers) + " \\\\\n\\hline\n"
                for row in rows:
                    out += " & ".join(latex_escape(cell) for cell in row) + " \\\\\n"
                out += "\\hline\n\\end{tabular}"
                return out
            case _:
                raise NotImplementedError(f"Don't know how to write a {block}")

    def render(self, blocks: list[Block]) -> str:
        return "\n\n".join(text for text in (self.render_block(block) for block in blocks) if text)


def _template_environment(output_kind: OutputKind, template_dir: Path) -> jinja2.Environment:
    loader = jinja2.FileSystemLoader(str(template_dir))
    if output_kind == OutputKind.Html:
        # Content is already HTML
        return jinja2.Environment(loader=loader, autoescape=False)
    # Braces are everywhere in LaTeX, so use delimiters that don't clash with them
    return jinja2.Environment(
        loader=loader,
        block_start_string=r"\BLOCK{",
        block_end_string="}",
        variable_start_string=r"\VAR{",
        variable_end_string="}",
        comment_start_string=r"\#{",
        comment_end_string="}",
        trim_blocks=True,
        autoescape=False,
    )


def write_document(
    blocks: list[Block],
    output_kind: OutputKind,
    template: Optional[Path] = None,
    title: Optional[str] = None,
) -> str:
    writer = HtmlWriter() if output_kind == OutputKind.Html else LatexWriter()
    content = writer.render(blocks)

    template = Path(template) if template else output_kind.default_template
    env = _template_environment(output_kind, template.parent)
    title = title or ""
    escaped_title = html.escape(title) if output_kind == OutputKind.Html else latex_escape(title)
    return env.get_template(template.name).render(title=escaped_title, content=content)


class TestHtmlWriter:
    def test_blocks(self):
        writer = HtmlWriter()
        assert writer.render_block(CodeBlock("x = 1 < 2", lang="python")) == (
            '<pre><code class="language-python">x = 1 &lt; 2</code></pre>'
        )
        assert writer.render_block(CodeBlock("output")) == '<pre class="output"><code>output</code></pre>'
        assert writer.render_block(ParagraphBlock("a & b")) == "<p>a &amp; b</p>"
        assert writer.render_block(RawBlock("<hr>")) == "<hr>"
        assert writer.render_block(RawBlock(r"\hrule", output_kind="latex")) == ""
        assert writer.render_block(TableBlock(["n"], [["1"]])) == (
            "<table>\n<thead>\n<tr><th>n</th></tr>\n</thead>\n<tbody>\n<tr><td>1</td></tr>\n</tbody>\n</table>"
        )

    def test_prose(self):
        assert HtmlWriter().render_block(ProseBlock("# Title\n\nSome *text*.")) == (
            "<h1>Title</h1>\n<p>Some <em>text</em>.</p>"
        )


class TestLatexWriter:
    def test_escape(self):
        assert latex_escape("50% of $x_1 & {y}") == r"50\% of \$x\_1 \& \{y\}"

    def test_markdown_to_latex(self):
        src = """# Results

Values are **bold**, *emphasised* and `in_code`.

- first
- second

```python
print("raw_text")
```
"""
        assert markdown_to_latex(src) == (
            "\\section{Results}\n"
            "\n"
            "Values are \\textbf{bold}, \\emph{emphasised} and \\texttt{in\\_code}.\n"
            "\n"
            "\\begin{itemize}\n"
            "  \\item first\n"
            "  \\item second\n"
            "\\end{itemize}\n"
            "\n"
            "\\begin{verbatim}\n"
            'print("raw_text")\n'
            "\\end{verbatim}"
        )

    def test_blocks(self):
        writer = LatexWriter()
        assert writer.render_block(CodeBlock("a_b", lang="python")) == "\\begin{verbatim}\na_b\n\\end{verbatim}"
        assert writer.render_block(RawBlock("<hr>", output_kind="html")) == ""
        assert writer.render_block(TableBlock(["name", "n"], [["a_1", "2"]])) == (
            "\\begin{tabular}{ll}\n\\hline\nname & n \\\\\n\\hline\na\\_1 & 2 \\\\\n\\hline\n\\end{tabular}"
        )


class TestWriteDocument:
    def test_default_templates(self):
        blocks = [ProseBlock("Hello"), CodeBlock("1 + 1", lang="python")]
        html_document = write_document(blocks, OutputKind.Html, title="Fish & Chips")
        assert "<title>Fish &amp; Chips</title>" in html_document
        assert '<pre><code class="language-python">1 + 1</code></pre>' in html_document

        latex_document = write_document(blocks, OutputKind.Latex, title="Fish & Chips")
        assert r"\title{Fish \& Chips}" in latex_document
        assert "\\begin{verbatim}\n1 + 1\n\\end{verbatim}" in latex_document

    def test_custom_template(self, tmp_path):
        template = tmp_path / "custom.html"
        template.write_text("<main data-title=\"{{ title }}\">{{ content }}</main>")
        assert write_document([ParagraphBlock("hi")], OutputKind.Html, template=template, title="T") == (
            '<main data-title="T"><p>hi</p></main>'
        )
