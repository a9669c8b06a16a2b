from dataclasses import dataclass
from enum import Enum, auto
from typing import Self

import pytest

from penscript.lexer import TokenType, Lexer, Token
from penscript.results import EmbedKind
from penscript.snippet import (
    EmbedSnippet,
    EmbedText,
    SnippetHeader,
    SnippetLanguage,
    SnippetProductionRule,
)


class CommandType(Enum):
    DefineSnippet = auto()
    ShowSnippet = auto()
    EmbedOutput = auto()
    EmbedItValue = auto()
    EmbedValue = auto()

    @classmethod
    def from_str(cls, s: str) -> Self:
        mapping = {
            "define": CommandType.DefineSnippet,
            "show": CommandType.ShowSnippet,
            "output": CommandType.EmbedOutput,
            "it": CommandType.EmbedItValue,
            "value": CommandType.EmbedValue,
        }
        if s not in mapping:
            raise ValueError(f'Unknown command "{s}", expected one of {list(mapping.keys())}')
        return mapping[s]

    @property
    def embed_kind(self) -> EmbedKind:
        return {
            CommandType.EmbedOutput: EmbedKind.Output,
            CommandType.EmbedItValue: EmbedKind.ItValue,
            CommandType.EmbedValue: EmbedKind.Value,
        }[self]


@dataclass
class DefineSnippet:
    header: SnippetHeader
    snippet_name: str
    content: list[SnippetProductionRule]


@dataclass
class ShowCommand:
    snippet_name: str


@dataclass
class EmbedResultCommand:
    snippet_name: str
    kind: EmbedKind


Command = DefineSnippet | ShowCommand | EmbedResultCommand


class MarkdownParser:
    BEGIN_COMMAND_SEQ = [TokenType.LeftBrace, TokenType.LeftBrace]
    END_COMMAND_SEQ = [TokenType.RightBrace, TokenType.RightBrace]
    END_MULTI_LINE_COMMAND_SEQ = [TokenType.Newline, *END_COMMAND_SEQ]
    EMBED_SNIPPET_SEQ = [*BEGIN_COMMAND_SEQ, TokenType.Word, *END_COMMAND_SEQ]
    SEPARATE_HEADER_FROM_CONTENT_SEQ = [TokenType.Hash, TokenType.Hash, TokenType.Hash]

    def __init__(self, text: str) -> None:
        self.lexer = Lexer(text)

    def read_tokens_until_any_sequence(self, break_on_any_of_sequences: list[list[TokenType]]) -> list[Token]:
        for break_on_sequence in break_on_any_of_sequences:
            if len(break_on_sequence) < 1:
                raise ValueError("Need at least one type to break on")

        tokens = []
        while True:
            next_tok = self.lexer.peek()
            if next_tok.type == TokenType.EOF:
                return tokens
            tokens.append(self.lexer.next())

            for break_on_sequence in break_on_any_of_sequences:
                # Look back at the last few tokens and see if it matches the break sequence
                last_few_tokens = tokens[-len(break_on_sequence) :]
                if [t.type for t in last_few_tokens] == break_on_sequence:
                    # Strip the break tokens
                    tokens = tokens[: -len(break_on_sequence)]
                    # Rewind the cursor
                    self.lexer.cursor = last_few_tokens[0].start_pos
                    return tokens

    def read_tokens_until_sequence(self, break_on_sequence: list[TokenType]) -> list[Token]:
        return self.read_tokens_until_any_sequence([break_on_sequence])

    def read_tokens_until_command_begins(self) -> list[Token]:
        return self.read_tokens_until_sequence(self.BEGIN_COMMAND_SEQ)

    def read_str_until_any_seq(self, delimiter_seqs: list[list[TokenType]]) -> str:
        tokens = self.read_tokens_until_any_sequence(delimiter_seqs)
        return "".join(t.value for t in tokens)

    @staticmethod
    def _append_text(rules: list[SnippetProductionRule], text: str) -> None:
        if rules and isinstance(rules[-1], EmbedText):
            rules[-1] = EmbedText(rules[-1].text + text)
        else:
            rules.append(EmbedText(text))

    def parse_snippet_production_rules(self) -> list[SnippetProductionRule]:
        out = []
        while True:
            # Only a `}}` at the start of a line closes the snippet, so code like `{"a": {"b": 1}}` is left alone
            tokens_before_nested_command = self.read_tokens_until_any_sequence(
                [self.BEGIN_COMMAND_SEQ, self.END_MULTI_LINE_COMMAND_SEQ]
            )
            # We might immediately have an embed-snippet rule, so it's not a guarantee that there will be text before
            # the first command.
            if len(tokens_before_nested_command):
                self._append_text(out, "".join(t.value for t in tokens_before_nested_command))

            # What's next?
            if self.lexer.peek_next_token_types_match(self.EMBED_SNIPPET_SEQ):
                self.match_command_open()
                embedded_snippet_name = self.match_word()
                self.expect_seq(self.END_COMMAND_SEQ)
                out.append(EmbedSnippet(embedded_snippet_name))
            elif self.lexer.peek_next_token_types_match(self.BEGIN_COMMAND_SEQ):
                # Double braces that don't name a snippet are just code, like an escaped brace in an f-string
                self._append_text(out, "".join(t.value for t in self.match_command_open()))
            else:
                self.match_command_close()
                break

        return out

    def expect(self, token_type: TokenType) -> Token:
        next_tok = self.lexer.next()
        if next_tok.type != token_type:
            raise RuntimeError(f"Expected {token_type}, but found {next_tok}")
        return next_tok

    def expect_seq(self, token_types: list[TokenType]) -> list[Token]:
        return [self.expect(tok_type) for tok_type in token_types]

    def match_command_open(self) -> list[Token]:
        return self.expect_seq(self.BEGIN_COMMAND_SEQ)

    def match_command_close(self) -> list[Token]:
        # Most characters to least characters
        delimiters = [
            [TokenType.Newline, *self.END_COMMAND_SEQ, TokenType.Newline],
            [TokenType.Newline, *self.END_COMMAND_SEQ],
            [*self.END_COMMAND_SEQ, TokenType.Newline],
            [*self.END_COMMAND_SEQ]
        ]
        for delimiter in delimiters:
            if self.lexer.peek_next_token_types_match(delimiter):
                return self.expect_seq(delimiter)
        raise ValueError(f"Failed to match a command close at offset {self.lexer.cursor}")

    def match_word(self) -> str:
        return self.expect(TokenType.Word).value

    def parse_command__define(self) -> DefineSnippet:
        self.expect(TokenType.Space)
        snippet_name = self.match_word()
        if self.lexer.peek_next_token_types_match(self.END_COMMAND_SEQ):
            # `{{define name}}` declares an empty snippet with a default header
            self.match_command_close()
            return DefineSnippet(header=SnippetHeader(), snippet_name=snippet_name, content=[])

        header_str = self.read_str_until_any_seq(
            [self.SEPARATE_HEADER_FROM_CONTENT_SEQ, self.END_MULTI_LINE_COMMAND_SEQ]
        )
        header = SnippetHeader.from_yaml(header_str)
        if self.lexer.peek_next_token_types_match(self.END_MULTI_LINE_COMMAND_SEQ):
            # Shorthand empty definition
            self.match_command_close()
            return DefineSnippet(header=header, snippet_name=snippet_name, content=[])

        self.expect_seq([*self.SEPARATE_HEADER_FROM_CONTENT_SEQ, TokenType.Newline])
        content = self.parse_snippet_production_rules()
        return DefineSnippet(header=header, snippet_name=snippet_name, content=content)

    def parse_command__show(self) -> ShowCommand:
        self.expect(TokenType.Space)
        snippet_name = self.match_word()
        self.match_command_close()
        return ShowCommand(snippet_name=snippet_name)

    def parse_command__embed_result(self, command_type: CommandType) -> EmbedResultCommand:
        self.expect(TokenType.Space)
        snippet_name = self.match_word()
        self.match_command_close()
        return EmbedResultCommand(snippet_name=snippet_name, kind=command_type.embed_kind)

    def parse_command(self) -> Command:
        # Expect two braces
        self.match_command_open()
        # Command name
        command_name = self.expect(TokenType.Word)
        command_type = CommandType.from_str(command_name.value)
        match command_type:
            case CommandType.DefineSnippet:
                return self.parse_command__define()
            case CommandType.ShowSnippet:
                return self.parse_command__show()
            case CommandType.EmbedOutput | CommandType.EmbedItValue | CommandType.EmbedValue:
                return self.parse_command__embed_result(command_type)
            case _:
                raise NotImplementedError(command_type)


class TestMarkdownParser:
    def test_text_before_command(self):
        source = """Let's compute something.
{{show totals}}
"""
        parser = MarkdownParser(source)
        tokens = parser.read_tokens_until_command_begins()
        assert "".join([t.value for t in tokens]) == "Let's compute something.\n"
        assert parser.parse_command() == ShowCommand(snippet_name="totals")
        assert parser.lexer.peek().type == TokenType.EOF

    def test_define(self):
        source = """{{define totals
lang: python
###
{{imports}}

prices = {"apple": {"unit": 3}}
print(f"{{total: {prices['apple']['unit']}}}")
{{report}}
}}
"""
        parser = MarkdownParser(source)
        assert parser.parse_command() == DefineSnippet(
            snippet_name="totals",
            header=SnippetHeader(lang=SnippetLanguage.PYTHON),
            content=[
                EmbedSnippet("imports"),
                EmbedText(
                    "\n"
                    "\n"
                    'prices = {"apple": {"unit": 3}}\n'
                    'print(f"{{total: {prices[\'apple\'][\'unit\']}}}")\n'
                ),
                EmbedSnippet("report"),
            ],
        )
        assert parser.lexer.peek().type == TokenType.EOF

    def test_define_without_header(self):
        parser = MarkdownParser("{{define answer\n###\n6 * 7\n}}")
        assert parser.parse_command() == DefineSnippet(
            snippet_name="answer",
            header=SnippetHeader(),
            content=[EmbedText("6 * 7")],
        )

    def test_define_expression_header(self):
        parser = MarkdownParser("{{define answer\nexpression: true\n###\n6 * 7\n}}\n")
        command = parser.parse_command()
        assert command.header.is_expression
        assert command.content == [EmbedText("6 * 7")]

    def test_shorthand_definitions(self):
        parser = MarkdownParser("{{define placeholder}}\n{{define notes\nlang: text\n}}\n")
        assert parser.parse_command() == DefineSnippet(header=SnippetHeader(), snippet_name="placeholder", content=[])
        assert parser.parse_command() == DefineSnippet(
            header=SnippetHeader(lang=SnippetLanguage.TEXT),
            snippet_name="notes",
            content=[],
        )

    def test_embed_result_commands(self):
        parser = MarkdownParser("{{output totals}}{{it totals}}\n{{value answer}}")
        assert parser.parse_command() == EmbedResultCommand("totals", EmbedKind.Output)
        assert parser.parse_command() == EmbedResultCommand("totals", EmbedKind.ItValue)
        assert parser.parse_command() == EmbedResultCommand("answer", EmbedKind.Value)

    def test_crlf_document(self):
        parser = MarkdownParser("{{define greet\r\n###\r\nprint('hi')\r\n}}\r\n")
        assert parser.parse_command() == DefineSnippet(
            header=SnippetHeader(),
            snippet_name="greet",
            content=[EmbedText("print('hi')")],
        )

    def test_unknown_command(self):
        with pytest.raises(ValueError, match="Unknown command"):
            MarkdownParser("{{execute main}}").parse_command()

    def test_unterminated_define(self):
        with pytest.raises(ValueError, match="Failed to match a command close"):
            MarkdownParser("{{define broken\n###\nprint('never closed')\n").parse_command()
