import yaml
from functools import lru_cache
from pathlib import Path
from typing import Dict

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

@lru_cache()
def load_prompt(name: str) -> Dict[str, str]:
    """Return the {system, user} templates of a packaged prompt."""
    path = PROMPTS_DIR / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Prompt {name} not found in {PROMPTS_DIR}")
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return {"system": data.get("system", ""), "user": data.get("user", "")}

def render(template: str, **values: str) -> str:
    # {{name}} placeholders; single braces stay literal so JSON skeletons survive
    for key, value in values.items():
        template = template.replace("{{" + key + "}}", value if value is not None else "")
    return template
