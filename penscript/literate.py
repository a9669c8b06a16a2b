from pathlib import Path
from typing import Optional

import pytest

from penscript.config import BuildConfig
from penscript.document_parser import DocumentSection, parse_document_text, parse_script_text
from penscript.evaluation import Evaluator, SnippetEvaluator
from penscript.formatter import tabulate_records
from penscript.output import OutputKind, write_document
from penscript.render import DocumentRenderer
from penscript.results import EvaluationFailedInfo


class DocumentEvaluationError(RuntimeError):
    def __init__(self, file: Path, failures: list[EvaluationFailedInfo]) -> None:
        super().__init__(f"{len(failures)} snippet(s) failed while rendering {file.as_posix()}")
        self.file = file
        self.failures = failures


def print_evaluation_failure(failure: EvaluationFailedInfo) -> None:
    location = failure.file.as_posix() if failure.file else "<no file>"
    print(f"Snippet in {location} failed to evaluate")
    print(failure)


def create_evaluator(config: BuildConfig) -> Evaluator:
    evaluator = Evaluator(options=config.interpreter_options)
    if config.tabulate_records:
        evaluator.register_transformation(tabulate_records)
    evaluator.evaluation_failed.subscribe(print_evaluation_failure)
    return evaluator


def _convert_sections(
    sections: list[DocumentSection],
    input_file: Path,
    output_file: Optional[Path],
    config: BuildConfig,
    evaluator: Optional[SnippetEvaluator],
) -> str:
    failures: list[EvaluationFailedInfo] = []
    if evaluator is None and config.evaluate:
        evaluator = create_evaluator(config)
    if isinstance(evaluator, Evaluator):
        evaluator.evaluation_failed.subscribe(failures.append)

    try:
        renderer = DocumentRenderer(sections, evaluator=evaluator if config.evaluate else None, file=input_file)
        blocks = renderer.render()
    finally:
        if isinstance(evaluator, Evaluator):
            evaluator.evaluation_failed.unsubscribe(failures.append)

    if failures and config.fail_on_error:
        raise DocumentEvaluationError(input_file, failures)

    title = config.title or input_file.stem
    text = write_document(blocks, config.output_kind, template=config.template, title=title)
    if output_file:
        print(f"Writing {output_file.as_posix()}")
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(text)
    return text


def convert_markdown(
    input_file: Path,
    output_file: Optional[Path] = None,
    config: Optional[BuildConfig] = None,
    evaluator: Optional[SnippetEvaluator] = None,
) -> str:
    """Renders a Markdown document with snippet commands to HTML or LaTeX."""
    input_file = Path(input_file)
    print(f"Rendering {input_file.as_posix()}")
    sections = parse_document_text(input_file.read_text())
    return _convert_sections(sections, input_file, output_file, config or BuildConfig(), evaluator)


def convert_script_file(
    input_file: Path,
    output_file: Optional[Path] = None,
    config: Optional[BuildConfig] = None,
    evaluator: Optional[SnippetEvaluator] = None,
) -> str:
    """Renders a literate Python script, whose prose lives in `#~` comments, to HTML or LaTeX."""
    input_file = Path(input_file)
    print(f"Rendering {input_file.as_posix()}")
    sections = parse_script_text(input_file.read_text())
    return _convert_sections(sections, input_file, output_file, config or BuildConfig(), evaluator)


def convert_file(
    input_file: Path,
    output_file: Optional[Path] = None,
    config: Optional[BuildConfig] = None,
    evaluator: Optional[SnippetEvaluator] = None,
) -> str:
    if Path(input_file).suffix == ".py":
        return convert_script_file(input_file, output_file, config, evaluator)
    return convert_markdown(input_file, output_file, config, evaluator)


class TestLiterate:
    def test_convert_markdown(self, tmp_path):
        document = tmp_path / "guide.md"
        document.write_text(
            "# Guide\n"
            "\n"
            "{{define greet\n###\nprint('hello <world>')\n}}\n"
            "{{show greet}}\n"
            "{{output greet}}\n"
        )
        output_file = tmp_path / "out" / "guide.html"
        text = convert_markdown(document, output_file)
        assert output_file.read_text() == text
        assert "<title>guide</title>" in text
        assert "<h1>Guide</h1>" in text
        assert '<pre class="output"><code>hello &lt;world&gt;</code></pre>' in text

    def test_convert_script_to_latex(self, tmp_path):
        script = tmp_path / "squares.py"
        script.write_text("#~ Squares of *small* numbers:\nprint([n * n for n in range(4)])\n#~ include-output\n")
        config = BuildConfig(output_kind=OutputKind.Latex, title="Squares")
        text = convert_file(script, config=config)
        assert r"\title{Squares}" in text
        assert r"Squares of \emph{small} numbers:" in text
        assert "\\begin{verbatim}\n[0, 1, 4, 9]\n\\end{verbatim}" in text

    def test_records_as_tables(self, tmp_path):
        document = tmp_path / "table.md"
        document.write_text("{{define rows\nexpression: true\n###\n[{'a': 1}, {'a': 2}]\n}}\n{{value rows}}\n")
        text = convert_markdown(document, config=BuildConfig(tabulate_records=True))
        assert "<tr><td>1</td></tr>" in text

    def test_fail_on_error(self, tmp_path, capsys):
        document = tmp_path / "broken.md"
        document.write_text("{{define broken\n###\nundefined_name\n}}\n")
        with pytest.raises(DocumentEvaluationError) as exc_info:
            convert_markdown(document, config=BuildConfig(fail_on_error=True))
        assert len(exc_info.value.failures) == 1
        assert "NameError" in capsys.readouterr().out

        # Without the flag the document still renders
        assert "<body>" in convert_markdown(document)

    def test_without_evaluation(self, tmp_path):
        document = tmp_path / "static.md"
        document.write_text("{{define side_effect\n###\nraise SystemExit(1)\n}}\n{{output side_effect}}\n")
        text = convert_markdown(document, config=BuildConfig(evaluate=False))
        assert "No output has been produced." not in text
