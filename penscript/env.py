from pathlib import Path

PACKAGE_ROOT = Path(__file__).parent
TEMPLATES_ROOT = PACKAGE_ROOT / "templates"
DEFAULT_CONFIG_FILE_NAME = "penscript.yaml"
