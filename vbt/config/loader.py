import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Older configs kept the tool paths under 'general'
    general = data.get("general")
    if isinstance(general, dict) and "tools" not in data:
        tools = {key: general.pop(key) for key in ("ffmpeg", "ffprobe") if key in general}
        if tools:
            data["tools"] = tools

    return AppConfig(**data)
