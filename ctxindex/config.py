# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Configuration loader for ctxindex.

Loads configuration from a JSON file with fallback to environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = [
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".cs",
    ".c", ".cpp", ".h", ".hpp",
]

DEFAULT_EXCLUDE_DIRS = [
    # Version control
    ".git", ".hg", ".svn",
    # Dependencies and build output
    "node_modules", "dist", "build", "out", "target",
    # Python
    "__pycache__", ".pytest_cache", ".mypy_cache", ".ruff_cache", ".tox",
    "venv", ".venv",
    # IDE
    ".vscode", ".idea",
    # ctxindex runtime
    ".ctxindex",
]


def _parse_csv_list(raw_value: Optional[str]) -> list[str]:
    """Parse comma-separated environment variable values into a list."""
    if not raw_value:
        return []
    return [item.strip() for item in raw_value.split(",") if item.strip()]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Configuration manager for ctxindex."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to a JSON config file. If None, searches in:
                1. ./ctxindex.json (current directory)
                2. ~/.ctxindex/config.json
                3. Falls back to environment variables
        """
        self.config_data: Dict[str, Any] = {}
        self._load_config(config_path)

    def _load_config(self, config_path: Optional[Path] = None):
        """Load configuration from file or environment."""
        if config_path:
            if config_path.exists():
                self._load_from_file(config_path)
            else:
                logger.info(
                    "Config path %s does not exist, using environment variables",
                    config_path,
                )
                self._load_from_env()
            return

        local_config = Path("ctxindex.json")
        if local_config.exists():
            self._load_from_file(local_config)
            return

        user_config = Path.home() / ".ctxindex" / "config.json"
        if user_config.exists():
            self._load_from_file(user_config)
            return

        logger.info("No ctxindex.json found, using environment variables")
        self._load_from_env()

    def _load_from_file(self, path: Path):
        """Load configuration from JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                self.config_data = json.load(f)
            logger.info("Loaded configuration from %s", path)
        except (OSError, ValueError) as e:
            logger.error("Error loading config from %s: %s", path, e)
            self._load_from_env()

    def _load_from_env(self):
        """Load configuration from CTXINDEX_* environment variables."""
        roots = _parse_csv_list(os.getenv("CTXINDEX_ROOTS"))
        self.config_data = {
            "server": {
                "log_level": os.getenv("CTXINDEX_LOG_LEVEL", "INFO"),
            },
            "workspace": {
                "name": os.getenv("CTXINDEX_WORKSPACE_NAME") or None,
                "roots": roots or ["."],
            },
            "index": {
                "path": os.getenv("CTXINDEX_INDEX_PATH", "~/.ctxindex/index"),
                "persist": _env_bool("CTXINDEX_PERSIST", "true"),
                "max_files": int(os.getenv("CTXINDEX_MAX_FILES", "1000")),
                "workers": int(os.getenv("CTXINDEX_INDEX_WORKERS", "4")),
            },
            "watch": {
                "enabled": _env_bool("CTXINDEX_WATCH_ENABLED", "true"),
                "debounce_seconds": float(os.getenv("CTXINDEX_WATCH_DEBOUNCE", "1.0")),
            },
            "admin": self._load_admin_from_env(),
        }

    def _load_admin_from_env(self) -> Dict[str, Any]:
        """Load admin config from environment variables."""
        allowed_ips_raw = os.getenv("CTXINDEX_ADMIN_ALLOWED_IPS", "127.0.0.1,::1")
        return {
            "enabled": _env_bool("CTXINDEX_ADMIN_ENABLED", "true"),
            "host": os.getenv("CTXINDEX_ADMIN_HOST", "127.0.0.1"),
            "port": int(os.getenv("CTXINDEX_ADMIN_PORT", "8765")),
            "api_key": os.getenv("CTXINDEX_ADMIN_API_KEY") or None,
            "allowed_ips": _parse_csv_list(allowed_ips_raw),
        }

    # Getters for easy access
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-notation key."""
        keys = key.split(".")
        value = self.config_data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    @property
    def log_level(self) -> str:
        return self.get("server.log_level", "INFO")

    @property
    def log_file(self) -> Optional[str]:
        """Get log file path from environment or config."""
        env_log_file = os.getenv("CTXINDEX_LOG_FILE")
        if env_log_file:
            return env_log_file
        return self.get("server.log_file") or None

    # --- Workspace ---

    @property
    def workspace_name(self) -> Optional[str]:
        return self.get("workspace.name")

    @property
    def workspace_roots(self) -> list[Path]:
        roots = self.get("workspace.roots", ["."])
        if isinstance(roots, str):
            roots = [roots]
        return [Path(r).expanduser().resolve() for r in roots]

    # --- Indexing ---

    @property
    def index_path(self) -> Path:
        path_str = self.get("index.path", "~/.ctxindex/index")
        return Path(path_str).expanduser().resolve()

    @property
    def index_persist(self) -> bool:
        return bool(self.get("index.persist", True))

    @property
    def index_flush_every(self) -> int:
        return max(1, int(self.get("index.flush_every", 10)))

    @property
    def index_max_files(self) -> int:
        return int(self.get("index.max_files", 1000))

    @property
    def index_batch_size(self) -> int:
        return max(1, int(self.get("index.batch_size", 10)))

    @property
    def index_batch_delay_seconds(self) -> float:
        return float(self.get("index.batch_delay_seconds", 0.01))

    @property
    def index_workers(self) -> int:
        return max(1, int(self.get("index.workers", 4)))

    @property
    def index_max_file_chars(self) -> int:
        """Size ceiling applied to incremental re-indexing."""
        return int(self.get("index.max_file_chars", 100_000))

    @property
    def index_extensions(self) -> list[str]:
        exts = self.get("index.extensions", DEFAULT_EXTENSIONS)
        return [e if e.startswith(".") else f".{e}" for e in exts]

    @property
    def index_exclude_dirs(self) -> list[str]:
        return self.get("index.exclude_dirs", list(DEFAULT_EXCLUDE_DIRS))

    @property
    def index_exclude_patterns(self) -> list[str]:
        return self.get("index.exclude_patterns", [])

    @property
    def index_initial_delay_seconds(self) -> float:
        return float(self.get("index.initial_delay_seconds", 5.0))

    # --- Retrieval / context ---

    @property
    def retrieval_limit(self) -> int:
        return int(self.get("retrieval.limit", 5))

    @property
    def retrieval_threshold(self) -> float:
        return float(self.get("retrieval.threshold", 0.5))

    @property
    def retrieval_snippet_threshold(self) -> float:
        return float(self.get("retrieval.snippet_threshold", 0.2))

    @property
    def retrieval_augment_limit(self) -> int:
        return int(self.get("retrieval.augment_limit", 3))

    @property
    def context_max_tokens(self) -> int:
        return int(self.get("context.max_tokens", 4000))

    # --- File watching ---

    @property
    def watch_enabled(self) -> bool:
        """Get whether file watching is enabled."""
        return self.get("watch.enabled", True)

    @property
    def watch_debounce_seconds(self) -> float:
        """Get file watch debounce time in seconds."""
        return float(self.get("watch.debounce_seconds", 1.0))

    @property
    def watch_ignore_dirs(self) -> list[str]:
        """Get directories to ignore when watching."""
        return self.get("watch.ignore_dirs", self.index_exclude_dirs)

    # --- Admin API configuration ---

    @property
    def admin_enabled(self) -> bool:
        return self.get("admin.enabled", True)

    @property
    def admin_host(self) -> str:
        return self.get("admin.host", "127.0.0.1")

    @property
    def admin_port(self) -> int:
        return int(self.get("admin.port", 8765))

    @property
    def admin_api_key(self) -> Optional[str]:
        return self.get("admin.api_key")

    @property
    def admin_allowed_ips(self) -> list[str]:
        return self.get("admin.allowed_ips", ["127.0.0.1", "::1"])


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from specified path."""
    global _config
    _config = Config(config_path)
    return _config


def configure_logging(cfg: Config) -> None:
    """Configure root logging for command line entry points."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.log_file:
        log_path = Path(cfg.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )
