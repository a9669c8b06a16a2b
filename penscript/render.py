from pathlib import Path
from typing import Optional

import pytest

from penscript.blocks import Block, CodeBlock, ProseBlock
from penscript.document_parser import DocumentSection, TextSection, CommandSection, parse_document_text
from penscript.evaluation import Evaluator, SnippetEvaluator
from penscript.formatter import NO_OUTPUT_PLACEHOLDER, NO_VALUE_PLACEHOLDER
from penscript.markdown_parser import DefineSnippet, EmbedResultCommand, ShowCommand
from penscript.results import EvaluationResult
from penscript.snippet import InlineSnippet, SnippetName, compose_snippet_text


class DocumentRenderer:
    def __init__(
        self,
        document_sections: list[DocumentSection],
        evaluator: Optional[SnippetEvaluator] = None,
        file: Optional[Path] = None,
    ) -> None:
        self.document_sections = document_sections
        self.evaluator = evaluator
        # The document the sections came from, so snippets resolve relative paths against it
        self.file = file
        self.defined_snippets: dict[SnippetName, InlineSnippet] = dict()
        # Composed once, when the snippet is defined, so what is shown is exactly what ran
        self.snippet_texts: dict[SnippetName, str] = dict()
        self.evaluation_results: dict[SnippetName, EvaluationResult] = dict()

    @staticmethod
    def render_text_section(text_section: TextSection) -> list[Block]:
        if not text_section.text.strip():
            return []
        return [ProseBlock(text_section.text)]

    def _get_snippet(self, snippet_name: SnippetName) -> InlineSnippet:
        if snippet_name not in self.defined_snippets:
            raise ValueError(f'Snippet "{snippet_name}" is used before it is defined')
        return self.defined_snippets[snippet_name]

    def render_command__define(self, command: DefineSnippet) -> list[Block]:
        # Nothing to output for definitions, but track the snippet and run it in document order
        snippet_name = command.snippet_name
        snippet = InlineSnippet(command.header, snippet_name, command.content)
        self.defined_snippets[snippet_name] = snippet
        text = compose_snippet_text(self.defined_snippets, snippet).strip("\n")
        self.snippet_texts[snippet_name] = text
        print(f"Defined and tracked snippet {snippet_name}")

        if self.evaluator and snippet.header.should_evaluate:
            print(f"Evaluating snippet {snippet_name}")
            self.evaluation_results[snippet_name] = self.evaluator.evaluate(
                text,
                as_expression=snippet.header.is_expression,
                file=self.file,
            )
        return []

    def render_command__show(self, command: ShowCommand) -> list[Block]:
        snippet = self._get_snippet(command.snippet_name)
        return [CodeBlock(self.snippet_texts[command.snippet_name], lang=snippet.header.lang.value)]

    def render_command__embed_result(self, command: EmbedResultCommand) -> list[Block]:
        self._get_snippet(command.snippet_name)
        if not self.evaluator:
            return []
        if command.snippet_name not in self.evaluation_results:
            print(f"Snippet {command.snippet_name} was not evaluated, so there's nothing to embed")
            return []
        result = self.evaluation_results[command.snippet_name]
        return self.evaluator.format(result, command.kind)

    def render_command_section(self, command_section: CommandSection) -> list[Block]:
        command = command_section.command
        match command:
            case DefineSnippet():
                return self.render_command__define(command)
            case ShowCommand():
                return self.render_command__show(command)
            case EmbedResultCommand():
                return self.render_command__embed_result(command)
            case command_type:
                raise NotImplementedError(f"Don't know how to render a {command_type}")

    def render(self) -> list[Block]:
        out = []
        for section in self.document_sections:
            match section:
                case TextSection():
                    out.extend(self.render_text_section(section))
                case CommandSection():
                    out.extend(self.render_command_section(section))
        return out


class TestRenderer:
    SOURCE = """# Shopping

{{define prices
###
prices = {"apple": 3, "pear": 2}
print(f"{len(prices)} items")
sum(prices.values())
}}
{{show prices}}
{{output prices}}
{{it prices}}

{{define cheapest
expression: true
###
min(prices, key=prices.get)
}}
{{value cheapest}}
{{it cheapest}}
"""

    def test_render_with_evaluation(self):
        renderer = DocumentRenderer(parse_document_text(self.SOURCE), evaluator=Evaluator())
        assert renderer.render() == [
            ProseBlock("# Shopping\n\n"),
            CodeBlock(
                'prices = {"apple": 3, "pear": 2}\nprint(f"{len(prices)} items")\nsum(prices.values())',
                lang="python",
            ),
            CodeBlock("2 items"),
            CodeBlock("5"),
            CodeBlock("'pear'"),
            CodeBlock(NO_VALUE_PLACEHOLDER),
        ]

    def test_render_without_evaluation(self):
        renderer = DocumentRenderer(parse_document_text(self.SOURCE))
        blocks = renderer.render()
        assert blocks[0] == ProseBlock("# Shopping\n\n")
        assert len(blocks) == 2
        assert renderer.evaluation_results == {}

    def test_failed_snippet_renders_placeholders(self):
        src = "{{define broken\n###\nprint('partial')\nraise ValueError('nope')\n}}\n{{output broken}}\n{{it broken}}\n"
        evaluator = Evaluator()
        failures = []
        evaluator.evaluation_failed.subscribe(failures.append)
        blocks = DocumentRenderer(parse_document_text(src), evaluator=evaluator).render()
        assert blocks == [CodeBlock(NO_OUTPUT_PLACEHOLDER), CodeBlock(NO_VALUE_PLACEHOLDER)]
        assert len(failures) == 1
        assert failures[0].text == "print('partial')\nraise ValueError('nope')"

    def test_non_python_snippets_are_not_evaluated(self):
        src = "{{define install\nlang: shell\n###\npip install penscript\n}}\n{{show install}}\n{{output install}}\n"
        blocks = DocumentRenderer(parse_document_text(src), evaluator=Evaluator()).render()
        assert blocks == [CodeBlock("pip install penscript", lang="shell")]

    def test_snippets_run_in_document_directory(self, tmp_path):
        (tmp_path / "greeting.txt").write_text("hello from disk")
        src = "{{define read\n###\nprint(open('greeting.txt').read())\n}}\n{{output read}}\n"
        renderer = DocumentRenderer(parse_document_text(src), evaluator=Evaluator(), file=tmp_path / "doc.md")
        assert renderer.render() == [CodeBlock("hello from disk")]

    def test_shown_code_is_the_code_that_ran(self):
        src = (
            "{{define totals\n###\n{{prices}}\nprint(sum(prices))\n}}\n"
            "{{define prices\n###\nprices = [1, 2, 3]\n}}\n"
            "{{show totals}}\n"
            "{{output totals}}\n"
        )
        evaluator = Evaluator()
        failures = []
        evaluator.evaluation_failed.subscribe(failures.append)
        blocks = DocumentRenderer(parse_document_text(src), evaluator=evaluator).render()

        # `prices` did not exist yet when `totals` was defined and run
        assert blocks == [CodeBlock("print(sum(prices))", lang="python"), CodeBlock(NO_OUTPUT_PLACEHOLDER)]
        assert [failure.text for failure in failures] == ["print(sum(prices))"]
        assert isinstance(failures[0].exception, NameError)

    def test_undefined_snippet(self):
        with pytest.raises(ValueError, match="used before it is defined"):
            DocumentRenderer(parse_document_text("{{show missing}}")).render()
