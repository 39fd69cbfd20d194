import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "store": "memory",  # memory | sqlite | gist
    "store_path": ".prledger.db",
    "gist_id": None,
    "store_timeout": 10.0,  # seconds a single store call may take
    "max_retries": 3,  # attempts per unit on transient store errors
    "retry_base_delay": 1.0,  # seconds; doubled after every failed attempt
    "workers": 4,
    "alerts": {},  # e.g. {"max_false_positive_rate": 20, "min_adoption_rate": 80}
}


def load_config(config_path: str = ".prledger.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prledger.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "alerts": dict(DEFAULT_CONFIG["alerts"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping, got {type(file_config).__name__}")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["gist_token"] = os.environ.get("PRLEDGER_GIST_TOKEN")

    return config
