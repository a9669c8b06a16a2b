from penscript.blocks import Block, CodeBlock, ParagraphBlock, ProseBlock, RawBlock, TableBlock
from penscript.config import BuildConfig
from penscript.evaluation import Evaluator, Event, SnippetEvaluator
from penscript.formatter import ResultFormatter, TransformationExhaustedError, tabulate_records
from penscript.literate import DocumentEvaluationError, convert_file, convert_markdown, convert_script_file
from penscript.noop_repl import NoOpReplObject
from penscript.output import OutputKind
from penscript.results import EmbedKind, EvaluationFailedInfo, EvaluationResult
