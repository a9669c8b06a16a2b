from dataclasses import dataclass
from enum import Enum, auto
from typing import Self

Cursor = int


class TokenType(Enum):
    EOF = auto()
    Word = auto()
    LeftBrace = auto()
    RightBrace = auto()
    Space = auto()
    Newline = auto()
    Hash = auto()

    @classmethod
    def try_from_str(cls, s: str) -> Self | None:
        mapping = {
            "{": TokenType.LeftBrace,
            "}": TokenType.RightBrace,
            " ": TokenType.Space,
            "\n": TokenType.Newline,
            "#": TokenType.Hash,
        }
        return mapping.get(s)


@dataclass
class Token:
    type: TokenType
    value: str
    start_pos: Cursor
    end_pos: Cursor

    @classmethod
    def eof(cls, text_len: int) -> Self:
        return cls(
            type=TokenType.EOF,
            value="",
            start_pos=text_len,
            end_pos=text_len,
        )


class Lexer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.cursor: Cursor = 0

    def _delimiter_at(self, cursor: Cursor) -> tuple[TokenType, str] | None:
        # Windows line endings count as a single newline
        if self.text.startswith("\r\n", cursor):
            return TokenType.Newline, "\r\n"
        ch = self.text[cursor]
        if token_type := TokenType.try_from_str(ch):
            return token_type, ch
        return None

    def _consume_token(self) -> Token:
        if self.cursor >= len(self.text):
            return Token.eof(len(self.text))

        start_pos = self.cursor
        if delimiter := self._delimiter_at(start_pos):
            token_type, value = delimiter
            return Token(type=token_type, value=value, start_pos=start_pos, end_pos=start_pos + len(value))

        # Otherwise, gather a word up to the next delimiter
        cursor = start_pos
        while cursor < len(self.text) and not self._delimiter_at(cursor):
            cursor += 1
        return Token(type=TokenType.Word, value=self.text[start_pos:cursor], start_pos=start_pos, end_pos=cursor)

    def next(self) -> Token:
        token = self._consume_token()
        self.cursor = token.end_pos
        return token

    def peek(self) -> Token:
        return self.peek_n(1)[0]

    def peek_n(self, n: int) -> list[Token]:
        start_cursor = self.cursor
        tokens = [self.next() for _ in range(n)]
        self.cursor = start_cursor
        return tokens

    def peek_next_token_types_match(self, next_types: list[TokenType]) -> bool:
        peek_tokens = self.peek_n(len(next_types))
        return [p.type for p in peek_tokens] == next_types


class TestLexer:
    def test(self):
        text = """print(a, {b}).\nfoo"""
        lexer = Lexer(text)
        assert lexer.peek() == Token(TokenType.Word, "print(a,", 0, 8)
        assert lexer.next() == Token(TokenType.Word, "print(a,", 0, 8)
        assert lexer.peek() == Token(TokenType.Space, " ", 8, 9)
        assert lexer.next() == Token(TokenType.Space, " ", 8, 9)
        assert lexer.next() == Token(TokenType.LeftBrace, "{", 9, 10)
        assert lexer.next() == Token(TokenType.Word, "b", 10, 11)
        assert lexer.next() == Token(TokenType.RightBrace, "}", 11, 12)
        assert lexer.next() == Token(TokenType.Word, ").", 12, 14)
        assert lexer.next() == Token(TokenType.Newline, "\n", 14, 15)
        assert lexer.next() == Token(TokenType.Word, "foo", 15, 18)
        assert lexer.peek() == Token(TokenType.EOF, "", 18, 18)
        assert lexer.next() == Token(TokenType.EOF, "", 18, 18)
        assert lexer.next() == Token(TokenType.EOF, "", 18, 18)

    def test_crlf_is_one_newline(self):
        lexer = Lexer("a\r\n# b")
        assert [t.type for t in lexer.peek_n(5)] == [
            TokenType.Word,
            TokenType.Newline,
            TokenType.Hash,
            TokenType.Space,
            TokenType.Word,
        ]
        lexer.next()
        assert lexer.next() == Token(TokenType.Newline, "\r\n", 1, 3)

    def test_peek_sequence(self):
        lexer = Lexer("{{show x}}")
        assert lexer.peek_next_token_types_match([TokenType.LeftBrace, TokenType.LeftBrace, TokenType.Word])
        assert not lexer.peek_next_token_types_match([TokenType.LeftBrace, TokenType.Word])
        assert lexer.cursor == 0
