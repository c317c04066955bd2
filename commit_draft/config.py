"""
Configuration management for commit-draft
"""
import os
import json
from pathlib import Path


CONFIG_DIR_ENV = "COMMIT_DRAFT_CONFIG_DIR"


def default_models_dir() -> Path:
    """Directory that holds one sub-directory per local model"""
    return Path.home() / ".commit-draft" / "models"


class Config:
    """Configuration manager"""

    DEFAULT_CONFIG = {
        "models_dir": str(default_models_dir()),
        "model": None,
        "max_tokens": 200,
        "temperature": 0.8,
        "seed": 299792458,
        "repeat_penalty": 1.1,
        "repeat_last_n": 64,
        "fallback_message": "update",
        "num_threads": None,
    }

    def __init__(self, config_dir=None):
        if config_dir is None:
            config_dir = os.environ.get(CONFIG_DIR_ENV)
        if config_dir is None:
            config_dir = Path.home() / ".config" / "commit-draft"
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.json"
        self.config = self.load()

    def load(self):
        """Load configuration from file"""
        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                return {**self.DEFAULT_CONFIG, **json.load(f)}
        return self.DEFAULT_CONFIG.copy()

    def save(self):
        """Save configuration to file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self.config, f, indent=2)

    def get(self, key, default=None):
        """Get configuration value"""
        value = self.config.get(key)
        return default if value is None else value

    def set(self, key, value):
        """Set configuration value"""
        self.config[key] = value
        self.save()

    def show(self):
        """Show all configuration"""
        return self.config

    @property
    def models_dir(self) -> Path:
        return Path(self.get("models_dir")).expanduser()
