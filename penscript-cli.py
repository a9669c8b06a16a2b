import argparse
from pathlib import Path

from penscript.config import BuildConfig
from penscript.env import DEFAULT_CONFIG_FILE_NAME
from penscript.hot_reload import watch
from penscript.literate import convert_file
from penscript.output import OutputKind


def load_config(args: argparse.Namespace) -> BuildConfig:
    config_file = Path(args.config) if args.config else Path(args.input_file).parent / DEFAULT_CONFIG_FILE_NAME
    if config_file.exists():
        print(f"Using configuration from {config_file.as_posix()}")
        config = BuildConfig.from_file(config_file)
    elif args.config:
        raise FileNotFoundError(f"Configuration file {config_file.as_posix()} does not exist")
    else:
        config = BuildConfig()

    # Command-line flags win over the configuration file
    if args.latex:
        config.output_kind = OutputKind.Latex
    if args.template:
        config.template = Path(args.template)
    if args.title:
        config.title = args.title
    if args.no_eval:
        config.evaluate = False
    if args.fail_on_error:
        config.fail_on_error = True
    if args.interpreter_option:
        config.interpreter_options = [*config.interpreter_options, *args.interpreter_option]
    return config


def main():
    parser = argparse.ArgumentParser(description="Render literate Python documents to HTML or LaTeX")
    parser.add_argument('input_file', help="A Markdown document, or a Python script with #~ prose comments")
    parser.add_argument('output_file')
    parser.add_argument('--config', help=f"Defaults to {DEFAULT_CONFIG_FILE_NAME} next to the input file")
    parser.add_argument('--template')
    parser.add_argument('--title')
    parser.add_argument('--latex', action='store_true', help="Produce LaTeX rather than HTML")
    parser.add_argument('--no-eval', action='store_true', help="Show snippets without running them")
    parser.add_argument('--fail-on-error', action='store_true')
    parser.add_argument(
        '--interpreter-option',
        action='append',
        default=[],
        help="Passed to the interpreter session, e.g. --interpreter-option=--path=src",
    )
    parser.add_argument('--watch', action='store_true', help="Re-render whenever the input changes")
    args = parser.parse_args()

    input_file = Path(args.input_file)
    output_file = Path(args.output_file)

    def build():
        convert_file(input_file, output_file, load_config(args))

    build()
    if args.watch:
        watch([input_file], build)


if __name__ == '__main__':
    main()
