import threading
from pathlib import Path
from typing import Any, Callable, Generic, Optional, Protocol, TypeVar

import pytest

from penscript.blocks import Block, CodeBlock
from penscript.formatter import ResultFormatter, ValueTransformation
from penscript.interpreter import IT_VALUE_NAME, InterpreterEvaluationError, InterpreterSession
from penscript.results import EmbedKind, EvaluationFailedInfo, EvaluationResult


T = TypeVar("T")


class Event(Generic[T]):
    def __init__(self) -> None:
        self._handlers: list[Callable[[T], None]] = []

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[T], None]:
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Callable[[T], None]) -> None:
        self._handlers.remove(handler)

    def trigger(self, args: T) -> None:
        for handler in list(self._handlers):
            handler(args)


class SnippetEvaluator(Protocol):
    def evaluate(self, text: str, as_expression: bool, file: Optional[Path] = None) -> EvaluationResult:
        ...

    def format(self, result: EvaluationResult, kind: EmbedKind) -> list[Block]:
        ...


class Evaluator:
    """Evaluates Python snippets embedded in documents, in one shared interpreter session."""

    def __init__(self, options: Optional[list[str]] = None, repl_object: Any = None) -> None:
        self._session = InterpreterSession(options, repl_object)
        self._lock = threading.Lock()
        self.formatter = ResultFormatter()
        # Fired whenever evaluating a snippet fails
        self.evaluation_failed: Event[EvaluationFailedInfo] = Event()

    def register_transformation(self, transformation: ValueTransformation) -> None:
        self.formatter.register_transformation(transformation)

    def format(self, result: EvaluationResult, kind: EmbedKind) -> list[Block]:
        return self.formatter.format(result, kind)

    def _evaluate_in_session(self, text: str, as_expression: bool, file: Optional[Path]) -> EvaluationResult:
        if as_expression:
            output, value = self._session.eval_expression(text, file)
            return EvaluationResult(output=output, result=value)

        output = self._session.run_statements(text, file)
        # Plenty of snippets never produce a value, so a failed lookup is expected and stays silent
        it_value = self._session.try_eval_expression(IT_VALUE_NAME)
        return EvaluationResult(output=output, it_value=it_value)

    def evaluate(self, text: str, as_expression: bool, file: Optional[Path] = None) -> EvaluationResult:
        """Evaluates a snippet and returns what it printed and produced.

        As an expression, `result` holds the expression's value. Otherwise the text runs as a
        sequence of statements, and `it_value` holds the session's last-result binding (`_`).

        When `file` is given, the snippet runs as if it lived in that file's directory, so
        relative paths and sibling imports resolve against the document rather than against
        the process's current directory.

        A snippet that fails to compile or raises is reported through `evaluation_failed`
        and produces an empty result; the session stays usable for later snippets.
        """
        file = Path(file) if file else None
        try:
            with self._lock:
                directory = file.resolve().parent if file else Path.cwd()
                with self._session.working_directory(directory):
                    return self._evaluate_in_session(text, as_expression, file)
        except InterpreterEvaluationError as e:
            failure = EvaluationFailedInfo(
                text=text,
                as_expression=as_expression,
                file=file,
                exception=e.cause,
                stderr=e.stderr,
            )
            self.evaluation_failed.trigger(failure)
            return EvaluationResult()


class TestEvent:
    def test_subscribe_and_unsubscribe(self):
        event: Event[str] = Event()
        received = []
        handler = event.subscribe(received.append)
        event.trigger("first")
        event.unsubscribe(handler)
        event.trigger("second")
        assert received == ["first"]


class TestEvaluator:
    def test_statement_mode(self):
        evaluator = Evaluator()
        result = evaluator.evaluate("x = 1\nprint('hello')\nx + 1", as_expression=False)
        assert result.output == "hello\n"
        assert result.it_value == (2, int)
        assert result.result is None

    def test_statement_without_last_value(self):
        evaluator = Evaluator()
        result = evaluator.evaluate("y = 3", as_expression=False)
        assert result == EvaluationResult(output="", it_value=None, result=None)

    def test_expression_mode(self):
        evaluator = Evaluator()
        evaluator.evaluate("items = [1, 2, 3]", as_expression=False)
        result = evaluator.evaluate("sum(items)", as_expression=True)
        assert result.output == ""
        assert result.result == (6, int)
        assert result.it_value is None

    def test_bindings_persist_between_snippets(self):
        evaluator = Evaluator()
        evaluator.evaluate("x = 1", as_expression=False)
        assert evaluator.evaluate("print(x + 1)", as_expression=False).output == "2\n"

    @pytest.mark.parametrize("text, as_expression", [
        ("raise RuntimeError('boom')", False),
        ("def broken(:", False),
        ("1 / 0", True),
        ("not valid python", True),
    ])
    def test_failure(self, text, as_expression):
        evaluator = Evaluator()
        failures = []
        evaluator.evaluation_failed.subscribe(failures.append)

        assert evaluator.evaluate(text, as_expression=as_expression) == EvaluationResult()
        assert len(failures) == 1
        assert failures[0].text == text
        assert failures[0].as_expression == as_expression
        assert failures[0].file is None
        assert failures[0].stderr

        # The session survives the failure
        assert evaluator.evaluate("40 + 2", as_expression=True).result == (42, int)
        assert len(failures) == 1

    def test_failure_keeps_earlier_bindings(self):
        evaluator = Evaluator()
        evaluator.evaluate("kept = 'still here'", as_expression=False)
        evaluator.evaluate("partial = 1\nraise ValueError()", as_expression=False)
        assert evaluator.evaluate("(kept, partial)", as_expression=True).result == (("still here", 1), tuple)

    def test_relative_paths_resolve_against_file(self, tmp_path):
        (tmp_path / "numbers.txt").write_text("1 2 3")
        document = tmp_path / "doc.md"
        evaluator = Evaluator()
        result = evaluator.evaluate("print(open('numbers.txt').read())", as_expression=False, file=document)
        assert result.output == "1 2 3\n"

        failures = []
        evaluator.evaluation_failed.subscribe(failures.append)
        evaluator.evaluate("open('numbers.txt')", as_expression=True)
        assert failures[0].file is None
        assert isinstance(failures[0].exception, FileNotFoundError)

    def test_format_delegates_to_transformations(self):
        evaluator = Evaluator()
        evaluator.register_transformation(
            lambda value, value_type: [CodeBlock(f"<{value}>")] if value_type is int else None
        )
        result = evaluator.evaluate("6 * 7", as_expression=True)
        assert evaluator.format(result, EmbedKind.Value) == [CodeBlock("<42>")]
        assert evaluator.format(result, EmbedKind.Output) == [CodeBlock("")]

    def test_concurrent_evaluations_are_serialized(self):
        evaluator = Evaluator()
        results = {}

        def run(worker_id: int) -> None:
            snippet = f"for _i in range(200):\n    print('{worker_id}')\n"
            results[worker_id] = evaluator.evaluate(snippet, as_expression=False)

        threads = [threading.Thread(target=run, args=(worker_id,)) for worker_id in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for worker_id, result in results.items():
            assert result.output == f"{worker_id}\n" * 200
