from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Any, Optional

import pytest


TypedValue = tuple[Any, type]


class EmbedKind(Enum):
    """What a document wants pulled out of an evaluation result."""
    Output = auto()
    ItValue = auto()
    Value = auto()


@dataclass(frozen=True)
class EvaluationResult:
    """The outcome of evaluating one snippet.

    `it_value` is only ever set for statement snippets, `result` only for expression snippets.
    A failed evaluation produces an instance with every field left as None.
    """
    output: Optional[str] = None
    it_value: Optional[TypedValue] = None
    result: Optional[TypedValue] = None


def _indent(text: str) -> str:
    lines = [line for line in text.splitlines() if line]
    return "\n".join(f"    {line}" for line in lines)


@dataclass
class EvaluationFailedInfo:
    text: str
    as_expression: bool
    file: Optional[Path]
    exception: BaseException
    stderr: str

    def __str__(self) -> str:
        return f"Error evaluating expression \nExpression:\n{_indent(self.text)}\nError:\n{_indent(self.stderr)}"


class TestEvaluationFailedInfo:
    def test_str_indents_text_and_stderr(self):
        info = EvaluationFailedInfo(
            text="x = 1\n\nraise ValueError()",
            as_expression=False,
            file=None,
            exception=ValueError(),
            stderr="Traceback:\r\nValueError\n",
        )
        assert str(info) == (
            "Error evaluating expression \n"
            "Expression:\n"
            "    x = 1\n"
            "    raise ValueError()\n"
            "Error:\n"
            "    Traceback:\n"
            "    ValueError"
        )

    def test_empty_result(self):
        result = EvaluationResult()
        assert (result.output, result.it_value, result.result) == (None, None, None)
        with pytest.raises(AttributeError):
            result.output = "frozen"
