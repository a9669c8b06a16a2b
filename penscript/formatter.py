import pprint
import threading
from typing import Any, Callable, Optional, Sequence

import pytest

from penscript.blocks import Block, CodeBlock, TableBlock
from penscript.results import EmbedKind, EvaluationResult, TypedValue


NO_OUTPUT_PLACEHOLDER = "No output has been produced."
NO_VALUE_PLACEHOLDER = "No value has been returned"
DEFAULT_PRINT_WIDTH = 78

# Returns None when it doesn't know how to present the value
ValueTransformation = Callable[[Any, type], Optional[Sequence[Block]]]


class TransformationExhaustedError(RuntimeError):
    pass


def default_transformation(value: Any, value_type: type) -> list[Block]:
    return [CodeBlock(pprint.pformat(value, width=DEFAULT_PRINT_WIDTH))]


def tabulate_records(value: Any, value_type: type) -> Optional[list[Block]]:
    """Presents a list of dicts sharing the same keys as a table."""
    if not isinstance(value, list) or not value:
        return None
    if not all(isinstance(record, dict) for record in value):
        return None
    headers = list(value[0].keys())
    if any(list(record.keys()) != headers for record in value):
        return None
    rows = [[str(record[header]) for header in headers] for record in value]
    return [TableBlock(headers=[str(header) for header in headers], rows=rows)]


class ResultFormatter:
    def __init__(self) -> None:
        # Transformation callbacks may touch shared state, so they're never run concurrently
        self._lock = threading.RLock()
        self.value_transformations: list[ValueTransformation] = [default_transformation]

    def register_transformation(self, transformation: ValueTransformation) -> None:
        """Registers a function that formats (some) values produced by the evaluator.

        The function should return a list of blocks when it knows how to present the value,
        and None otherwise. The most recently registered transformation is tried first, and
        the generic default transformation is always tried last.
        """
        with self._lock:
            self.value_transformations.insert(0, transformation)

    def _transform(self, typed_value: TypedValue) -> list[Block]:
        value, value_type = typed_value
        with self._lock:
            for transformation in self.value_transformations:
                blocks = transformation(value, value_type)
                if blocks is not None:
                    return list(blocks)
        raise TransformationExhaustedError(f"No value transformation accepted a value of type {value_type}")

    def format(self, result: EvaluationResult, kind: EmbedKind) -> list[Block]:
        if not isinstance(result, EvaluationResult):
            raise TypeError(f"Expected an EvaluationResult to format, but found {type(result)}")

        match kind:
            case EmbedKind.Output:
                output = result.output if result.output is not None else NO_OUTPUT_PLACEHOLDER
                return [CodeBlock(output.strip())]
            case EmbedKind.ItValue if result.it_value is not None:
                return self._transform(result.it_value)
            case EmbedKind.Value if result.result is not None:
                return self._transform(result.result)
            case EmbedKind.ItValue | EmbedKind.Value:
                return [CodeBlock(NO_VALUE_PLACEHOLDER)]
            case _:
                raise ValueError(f"Unknown embed kind {kind}")


class TestResultFormatter:
    def test_output(self):
        formatter = ResultFormatter()
        assert formatter.format(EvaluationResult(output="\n  hello \n"), EmbedKind.Output) == [CodeBlock("hello")]
        assert formatter.format(EvaluationResult(), EmbedKind.Output) == [CodeBlock(NO_OUTPUT_PLACEHOLDER)]

    def test_default_value_rendering(self):
        formatter = ResultFormatter()
        assert formatter.format(EvaluationResult(output="", result=(42, int)), EmbedKind.Value) == [CodeBlock("42")]
        assert formatter.format(EvaluationResult(output="", it_value=("it", str)), EmbedKind.ItValue) == [
            CodeBlock("'it'")
        ]

    def test_missing_values(self):
        formatter = ResultFormatter()
        statement_result = EvaluationResult(output="", it_value=(1, int))
        assert formatter.format(statement_result, EmbedKind.Value) == [CodeBlock(NO_VALUE_PLACEHOLDER)]
        assert formatter.format(EvaluationResult(), EmbedKind.ItValue) == [CodeBlock(NO_VALUE_PLACEHOLDER)]

    def test_registered_transformation_takes_precedence(self):
        formatter = ResultFormatter()
        formatter.register_transformation(lambda value, value_type: [CodeBlock(f"int {value}")] if value_type is int else None)
        formatter.register_transformation(lambda value, value_type: [CodeBlock("forty-two")] if value == 42 else None)

        assert formatter.format(EvaluationResult(result=(42, int)), EmbedKind.Value) == [CodeBlock("forty-two")]
        assert formatter.format(EvaluationResult(result=(7, int)), EmbedKind.Value) == [CodeBlock("int 7")]
        # Anything else still reaches the default
        assert formatter.format(EvaluationResult(result=([1, 2], list)), EmbedKind.Value) == [CodeBlock("[1, 2]")]

    def test_exhaustion(self):
        formatter = ResultFormatter()
        formatter.value_transformations = [lambda value, value_type: None]
        with pytest.raises(TransformationExhaustedError):
            formatter.format(EvaluationResult(result=(1, int)), EmbedKind.Value)

    def test_misuse(self):
        formatter = ResultFormatter()
        with pytest.raises(TypeError):
            formatter.format({"output": "hello"}, EmbedKind.Output)

    def test_tabulate_records(self):
        records = [{"name": "a", "size": 1}, {"name": "b", "size": 2}]
        assert tabulate_records(records, list) == [TableBlock(headers=["name", "size"], rows=[["a", "1"], ["b", "2"]])]
        assert tabulate_records([{"a": 1}, {"b": 2}], list) is None
        assert tabulate_records([], list) is None
        assert tabulate_records("text", str) is None
