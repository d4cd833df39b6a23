"""
Bootstrap script to ensure essential configuration files exist in the config volume.
Copies factory defaults from defaults/ to the config directory if files are missing.
"""
import json
import os
import shutil
from pathlib import Path

# Project structure
PROJECT_ROOT = Path(__file__).parent
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
DEFAULTS_DIR = PROJECT_ROOT / "defaults"


def ensure_config_files(config_dir: Path = CONFIG_DIR, defaults_dir: Path = DEFAULTS_DIR) -> list[str]:
    """Verify and restore missing config files from the defaults folder.

    Returns the names of the files that were restored.
    """
    config_dir.mkdir(parents=True, exist_ok=True)
    restored: list[str] = []

    if not defaults_dir.exists():
        print(f"[Bootstrap] Warning: Defaults directory not found at {defaults_dir}")
        return restored

    # 1. Header synonym table (repaired when unreadable)
    src = defaults_dir / "header_synonyms.json"
    dst = config_dir / "header_synonyms.json"
    if src.exists():
        if not dst.exists():
            print("[Bootstrap] Restoring missing config file: header_synonyms.json")
            shutil.copy2(src, dst)
            restored.append(dst.name)
        else:
            try:
                if dst.stat().st_size == 0:
                    raise ValueError("Empty file")
                with open(dst, "r", encoding="utf-8") as f:
                    json.load(f)
            except ValueError:
                print("[Bootstrap] Repairing invalid header_synonyms.json")
                shutil.copy2(src, dst)
                restored.append(dst.name)

    # 2. Jinja2 templates
    for src_template in defaults_dir.glob("*.j2"):
        dst_template = config_dir / src_template.name
        if not dst_template.exists():
            print(f"[Bootstrap] Restoring missing template: {src_template.name}")
            shutil.copy2(src_template, dst_template)
            restored.append(dst_template.name)

    return restored


if __name__ == "__main__":
    ensure_config_files()
