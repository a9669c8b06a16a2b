import argparse
import ast
import builtins
import importlib
import io
import linecache
import os
import sys
import threading
import traceback
from contextlib import contextmanager, redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TextIO, TypeVar

import pytest

from penscript.noop_repl import NoOpReplObject
from penscript.results import TypedValue


# The name under which the REPL stores the value of the last expression statement
IT_VALUE_NAME = "_"
REPL_OBJECT_NAME = "repl"

T = TypeVar("T")


class InterpreterEvaluationError(Exception):
    def __init__(self, text: str, stderr: str, cause: BaseException) -> None:
        super().__init__(f"Evaluating snippet failed: {cause!r}")
        self.text = text
        self.stderr = stderr
        self.cause = cause


@dataclass
class SessionOptions:
    paths: list[str] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)
    defines: dict[str, str] = field(default_factory=dict)
    loads: list[str] = field(default_factory=list)

    @classmethod
    def from_args(cls, args: list[str]) -> "SessionOptions":
        parser = argparse.ArgumentParser(prog="penscript-session", add_help=False, exit_on_error=False)
        parser.add_argument("--path", action="append", default=[])
        parser.add_argument("--import", dest="imports", action="append", default=[])
        parser.add_argument("--define", action="append", default=[])
        parser.add_argument("--load", action="append", default=[])
        try:
            parsed, unknown = parser.parse_known_args(args)
        except argparse.ArgumentError as e:
            raise ValueError(f"Invalid interpreter option: {e}")
        if unknown:
            raise ValueError(f"Unknown interpreter options: {unknown}")

        defines = {}
        for define in parsed.define:
            name, sep, value = define.partition("=")
            if not sep or not name.isidentifier():
                raise ValueError(f'Expected --define NAME=VALUE, but found "{define}"')
            defines[name] = value

        return cls(paths=parsed.path, imports=parsed.imports, defines=defines, loads=parsed.load)


class _CaptureStream(io.StringIO):
    """Records what the capturing thread writes, and mirrors it into a shared merged stream.

    Writes from any other thread go to the stream that was in place before the capture began.
    """

    def __init__(self, merged: io.StringIO, passthrough: TextIO) -> None:
        super().__init__()
        self.merged = merged
        self.passthrough = passthrough
        self.owner = threading.get_ident()

    def write(self, s: str) -> int:
        if threading.get_ident() != self.owner:
            return self.passthrough.write(s)
        self.merged.write(s)
        return super().write(s)


class OutputCapture:
    def __init__(self) -> None:
        self.merged = io.StringIO()
        self.stdout = _CaptureStream(self.merged, sys.stdout)
        self.stderr = _CaptureStream(self.merged, sys.stderr)

    def record_exception(self, e: BaseException, source_name: str) -> None:
        if isinstance(e, SyntaxError):
            lines = traceback.format_exception_only(type(e), e)
        else:
            # Start the traceback at the snippet's own frame
            tb = e.__traceback__
            while tb and tb.tb_frame.f_code.co_filename != source_name:
                tb = tb.tb_next
            lines = traceback.format_exception(type(e), e, tb)
        self.stderr.write("".join(lines))


class InterpreterSession:
    """A long-lived, in-process Python session that snippets are fed into one at a time.

    Bindings made by one snippet stay visible to the snippets that follow, just like
    typing into the interactive interpreter. Only one call may run at a time: the working
    directory, `sys.path` and the redirected standard streams are process-wide.
    """

    def __init__(self, options: Optional[list[str]] = None, repl_object: Any = None) -> None:
        self.options = SessionOptions.from_args(options or [])
        self.namespace: dict[str, Any] = {
            "__name__": "__main__",
            "__builtins__": builtins,
            REPL_OBJECT_NAME: repl_object if repl_object is not None else NoOpReplObject(),
        }
        self.snippet_count = 0
        self._apply_options()

    def _apply_options(self) -> None:
        for path in reversed(self.options.paths):
            resolved = str(Path(path).resolve())
            # Sessions are rebuilt on every watch-mode rebuild
            if resolved not in sys.path:
                sys.path.insert(0, resolved)
        for module_name in self.options.imports:
            module = importlib.import_module(module_name)
            # `import a.b` binds `a`, so mirror that
            top_level_name = module_name.split(".")[0]
            self.namespace[top_level_name] = sys.modules[top_level_name] if "." in module_name else module
        self.namespace.update(self.options.defines)
        for load in self.options.loads:
            path = Path(load)
            print(f"Loading startup script {path.as_posix()}")
            self.run_statements(path.read_text(), file=path)

    def _register_source(self, text: str, file: Optional[Path]) -> str:
        self.snippet_count += 1
        if file:
            name = f"<{Path(file).as_posix()}#snippet-{self.snippet_count}>"
        else:
            name = f"<snippet-{self.snippet_count}>"
        # Allows tracebacks to show the offending snippet lines
        linecache.cache[name] = (len(text), None, text.splitlines(keepends=True), name)
        return name

    @contextmanager
    def _capture_output(self) -> Iterator[OutputCapture]:
        capture = OutputCapture()
        with redirect_stdout(capture.stdout), redirect_stderr(capture.stderr):
            yield capture

    def _execute_module(self, tree: ast.Module, source_name: str) -> None:
        body = tree.body
        last_expression = body[-1] if body and isinstance(body[-1], ast.Expr) else None
        if last_expression:
            body = body[:-1]

        if body:
            module = ast.Module(body=body, type_ignores=[])
            exec(compile(module, source_name, "exec"), self.namespace)

        if last_expression:
            expression = ast.Expression(body=last_expression.value)
            value = eval(compile(expression, source_name, "eval"), self.namespace)
            # Same rule as sys.displayhook: None never replaces the previous value
            if value is not None:
                self.namespace[IT_VALUE_NAME] = value

    def run_statements(self, text: str, file: Optional[Path] = None) -> str:
        source_name = self._register_source(text, file)
        with self._capture_output() as capture:
            try:
                tree = ast.parse(text, filename=source_name, mode="exec")
                self._execute_module(tree, source_name)
            except (Exception, SystemExit) as e:
                capture.record_exception(e, source_name)
                raise InterpreterEvaluationError(text, capture.merged.getvalue(), e) from e
        return capture.stdout.getvalue()

    def eval_expression(self, text: str, file: Optional[Path] = None) -> tuple[str, TypedValue]:
        source_name = self._register_source(text, file)
        with self._capture_output() as capture:
            try:
                code = compile(text.strip(), source_name, "eval")
                value = eval(code, self.namespace)
            except (Exception, SystemExit) as e:
                capture.record_exception(e, source_name)
                raise InterpreterEvaluationError(text, capture.merged.getvalue(), e) from e
        return capture.stdout.getvalue(), (value, type(value))

    def try_eval_expression(self, text: str) -> Optional[TypedValue]:
        with self._capture_output():
            try:
                value = eval(text, self.namespace)
            except Exception:
                return None
        return value, type(value)

    @contextmanager
    def working_directory(self, directory: Path) -> Iterator[None]:
        previous = Path.cwd()
        directory = Path(directory).resolve()
        os.chdir(directory)
        # Lets snippets import modules sitting next to the document
        sys.path.insert(0, str(directory))
        try:
            yield
        finally:
            sys.path.remove(str(directory))
            os.chdir(previous)

    def with_working_directory(self, directory: Path, thunk: Callable[[], T]) -> T:
        with self.working_directory(directory):
            return thunk()


class TestInterpreterSession:
    def test_bindings_persist(self):
        session = InterpreterSession()
        assert session.run_statements("x = 1") == ""
        assert session.run_statements("print(x + 1)") == "2\n"

    def test_last_expression_binds_it_value(self):
        session = InterpreterSession()
        assert session.try_eval_expression(IT_VALUE_NAME) is None
        session.run_statements("y = 20\ny + 1")
        assert session.try_eval_expression(IT_VALUE_NAME) == (21, int)
        # None results leave the previous value alone
        session.run_statements("print('hi')")
        assert session.try_eval_expression(IT_VALUE_NAME) == (21, int)

    def test_eval_expression(self):
        session = InterpreterSession()
        session.run_statements("def greet(name):\n    print('greeting')\n    return f'hello {name}'\n")
        output, value = session.eval_expression("greet('world')\n")
        assert output == "greeting\n"
        assert value == ("hello world", str)

    def test_runtime_failure(self):
        session = InterpreterSession()
        with pytest.raises(InterpreterEvaluationError) as exc_info:
            session.run_statements("print('before')\nraise KeyError('missing')")
        error = exc_info.value
        assert isinstance(error.cause, KeyError)
        assert error.text == "print('before')\nraise KeyError('missing')"
        assert "before" in error.stderr
        assert "KeyError: 'missing'" in error.stderr
        assert "raise KeyError('missing')" in error.stderr

    def test_syntax_failure(self):
        session = InterpreterSession()
        with pytest.raises(InterpreterEvaluationError) as exc_info:
            session.eval_expression("x = ")
        assert isinstance(exc_info.value.cause, SyntaxError)
        assert "SyntaxError" in exc_info.value.stderr

    def test_system_exit_is_an_evaluation_failure(self):
        session = InterpreterSession()
        with pytest.raises(InterpreterEvaluationError):
            session.run_statements("import sys\nsys.exit(3)")
        assert session.run_statements("print('still alive')") == "still alive\n"

    def test_try_eval_swallows_errors(self):
        session = InterpreterSession()
        assert session.try_eval_expression("undefined_name") is None
        assert session.try_eval_expression("1 / 0") is None

    def test_repl_object_is_bound(self):
        session = InterpreterSession()
        assert session.run_statements("repl.print_width = 100\nrepl.add_printer(str)\nprint(repl.print_width)") == "100\n"
        custom = object()
        assert InterpreterSession(repl_object=custom).namespace[REPL_OBJECT_NAME] is custom

    def test_working_directory_is_restored(self, tmp_path):
        (tmp_path / "data.txt").write_text("from the file")
        session = InterpreterSession()
        before = Path.cwd()
        output = session.with_working_directory(tmp_path, lambda: session.run_statements("print(open('data.txt').read())"))
        assert output == "from the file\n"
        assert Path.cwd() == before

        with pytest.raises(InterpreterEvaluationError):
            session.with_working_directory(tmp_path, lambda: session.run_statements("open('nope.txt')"))
        assert Path.cwd() == before
        assert str(tmp_path.resolve()) not in sys.path

    def test_sibling_modules_are_importable(self, tmp_path):
        (tmp_path / "penscript_sibling_helper.py").write_text("ANSWER = 42\n")
        session = InterpreterSession()
        with session.working_directory(tmp_path):
            session.run_statements("import penscript_sibling_helper")
        assert session.eval_expression("penscript_sibling_helper.ANSWER")[1] == (42, int)

    def test_startup_options(self, tmp_path):
        startup = tmp_path / "startup.py"
        startup.write_text("loaded = GREETING + '!'\n")
        session = InterpreterSession(["--import", "os.path", "--define", "GREETING=hi", "--load", str(startup)])
        assert session.eval_expression("loaded")[1] == ("hi!", str)
        assert session.eval_expression("os.path.sep")[1] == (os.path.sep, str)

    def test_path_option_is_added_once(self, tmp_path):
        option = ["--path", str(tmp_path)]
        try:
            InterpreterSession(option)
            InterpreterSession(option)
            assert sys.path.count(str(tmp_path.resolve())) == 1
        finally:
            sys.path.remove(str(tmp_path.resolve()))

    def test_other_threads_are_not_captured(self, capsys):
        session = InterpreterSession()
        session.run_statements("import threading\nstarted = threading.Event()\nfinish = threading.Event()")
        started = session.namespace["started"]
        finish = session.namespace["finish"]
        outputs = []

        def run() -> None:
            outputs.append(session.run_statements("started.set()\nfinish.wait(5)\nprint('mine')"))

        thread = threading.Thread(target=run)
        thread.start()
        assert started.wait(5)
        print("host progress")
        finish.set()
        thread.join()

        assert outputs == ["mine\n"]
        assert "host progress" in capsys.readouterr().out

    def test_invalid_options(self):
        with pytest.raises(ValueError):
            InterpreterSession(["--bogus"])
        with pytest.raises(ValueError):
            InterpreterSession(["--define", "no-equals-sign"])
