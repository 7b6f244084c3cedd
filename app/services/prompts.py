import yaml
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
PROMPTS_DIR = PROJECT_ROOT / "prompts"
TEMPLATES_DIR = PROJECT_ROOT / "templates"

_cache: dict[Path, dict] = {}


def _load_yaml(path: Path) -> dict:
    if path not in _cache:
        with open(path, "r") as f:
            _cache[path] = yaml.safe_load(f) or {}
    return _cache[path]


def load_prompt(name: str) -> dict:
    """Load a prompt YAML file from prompts/."""
    return _load_yaml(PROMPTS_DIR / name)


def load_templates(name: str = "assessment_templates.yaml") -> dict:
    """Load the assessment layouts from templates/, keyed by assessment type."""
    return _load_yaml(TEMPLATES_DIR / name)
