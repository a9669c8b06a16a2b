from dataclasses import dataclass
from enum import Enum
from typing import Optional

import pytest
import yaml
from pydantic import BaseModel, ConfigDict, Field


SnippetName = str


class SnippetLanguage(Enum):
    PYTHON = "python"
    SHELL = "shell"
    TEXT = "text"
    TOML = "toml"
    YAML = "yaml"
    JSON = "json"


class SnippetHeader(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lang: SnippetLanguage = SnippetLanguage.PYTHON
    # Should the snippet be run in the document's interpreter session?
    evaluate: bool = True
    # Evaluate as a single expression rather than a sequence of statements
    is_expression: bool = Field(default=False, alias="expression")

    @classmethod
    def from_yaml(cls, text: str) -> "SnippetHeader":
        raw_header = yaml.load(text, Loader=yaml.SafeLoader)
        # An empty header means "all defaults"
        return cls.model_validate(raw_header or {})

    @property
    def should_evaluate(self) -> bool:
        return self.evaluate and self.lang == SnippetLanguage.PYTHON

    def __str__(self) -> str:
        return f"Header(lang={self.lang.value}, evaluate={self.evaluate}, is_expression={self.is_expression})"


@dataclass
class EmbedSnippet:
    snippet_name: SnippetName


@dataclass
class EmbedText:
    text: str


SnippetProductionRule = EmbedSnippet | EmbedText


@dataclass
class InlineSnippet:
    header: SnippetHeader
    name: SnippetName
    production_rules: list[SnippetProductionRule]


def compose_snippet_text(
    defined_snippets: dict[SnippetName, InlineSnippet],
    snippet: InlineSnippet,
    _expanding: tuple[SnippetName, ...] = (),
) -> str:
    if snippet.name in _expanding:
        cycle = " -> ".join([*_expanding, snippet.name])
        raise ValueError(f"Snippet embeds itself: {cycle}")

    out = str()
    for production_rule in snippet.production_rules:
        match production_rule:
            case EmbedText(text):
                out += text
            case EmbedSnippet(inner_snippet_name):
                if inner_snippet_name in defined_snippets:
                    inner_snippet = defined_snippets[inner_snippet_name]
                    out += compose_snippet_text(defined_snippets, inner_snippet, (*_expanding, snippet.name))
                else:
                    print(f"Substituting empty block for undefined snippet {inner_snippet_name}")
    return out


class TestSnippet:
    def test_header_from_yaml(self):
        assert SnippetHeader.from_yaml("") == SnippetHeader()
        header = SnippetHeader.from_yaml("lang: shell\nevaluate: true\n")
        assert header.lang == SnippetLanguage.SHELL
        assert not header.should_evaluate
        assert SnippetHeader.from_yaml("expression: true").is_expression

    def test_header_rejects_unknown_language(self):
        with pytest.raises(ValueError):
            SnippetHeader.from_yaml("lang: cobol")

    def test_compose(self):
        defined = {
            "imports": InlineSnippet(SnippetHeader(), "imports", [EmbedText("import math\n")]),
            "main": InlineSnippet(
                SnippetHeader(),
                "main",
                [EmbedSnippet("imports"), EmbedText("print(math.pi)\n"), EmbedSnippet("later")],
            ),
        }
        assert compose_snippet_text(defined, defined["main"]) == "import math\nprint(math.pi)\n"

    def test_compose_detects_cycles(self):
        defined = {
            "a": InlineSnippet(SnippetHeader(), "a", [EmbedSnippet("b")]),
            "b": InlineSnippet(SnippetHeader(), "b", [EmbedSnippet("a")]),
        }
        with pytest.raises(ValueError, match="a -> b -> a"):
            compose_snippet_text(defined, defined["a"])
