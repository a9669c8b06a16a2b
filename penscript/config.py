from pathlib import Path
from typing import Optional

import pytest
import yaml
from pydantic import BaseModel, ConfigDict, Field

from penscript.output import OutputKind


class BuildConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    output_kind: OutputKind = Field(default=OutputKind.Html, alias="output-kind")
    # Falls back to the template shipped for the output kind
    template: Optional[Path] = Field(default=None)
    title: Optional[str] = Field(default=None)
    evaluate: bool = True
    # Startup flags for the interpreter session, e.g. ["--path", "src", "--import", "numpy"]
    interpreter_options: list[str] = Field(default=[], alias="interpreter-options")
    # Abort the build once the document is rendered if any snippet failed
    fail_on_error: bool = Field(default=False, alias="fail-on-error")
    # Present lists of records as tables rather than as printed values
    tabulate_records: bool = Field(default=False, alias="tabulate-records")

    @classmethod
    def from_file(cls, path: Path) -> "BuildConfig":
        raw_config = yaml.load(path.read_text(), Loader=yaml.SafeLoader) or {}
        if not isinstance(raw_config, dict):
            raise ValueError(f"Expected a mapping at the top of {path.as_posix()}, but found {type(raw_config)}")
        config = cls.model_validate(raw_config)
        # Templates are relative to the config file
        if config.template and not config.template.is_absolute():
            config.template = path.parent / config.template
        return config


class TestBuildConfig:
    def test_defaults(self):
        config = BuildConfig()
        assert config.output_kind == OutputKind.Html
        assert config.evaluate
        assert config.interpreter_options == []

    def test_from_file(self, tmp_path):
        config_file = tmp_path / "penscript.yaml"
        config_file.write_text(
            "output-kind: latex\n"
            "template: templates/paper.tex\n"
            "interpreter-options: [--path, src]\n"
            "fail-on-error: true\n"
        )
        config = BuildConfig.from_file(config_file)
        assert config.output_kind == OutputKind.Latex
        assert config.template == tmp_path / "templates" / "paper.tex"
        assert config.interpreter_options == ["--path", "src"]
        assert config.fail_on_error
        assert not config.tabulate_records

    def test_empty_file(self, tmp_path):
        config_file = tmp_path / "penscript.yaml"
        config_file.write_text("")
        assert BuildConfig.from_file(config_file) == BuildConfig()

    def test_invalid_file(self, tmp_path):
        config_file = tmp_path / "penscript.yaml"
        config_file.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            BuildConfig.from_file(config_file)
        config_file.write_text("output-kind: pdf\n")
        with pytest.raises(ValueError):
            BuildConfig.from_file(config_file)
