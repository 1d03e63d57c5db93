from pathlib import Path
from typing import Dict, Any, Optional, List, Callable
from config.types import ProjectInfo
from workflow_engine import BUILTIN_ROOT, EngineConfig, EngineDefaults
import logging
import json
import os


class EnvironmentManager:
    """
    Environment manager holding the settings workflow runs are configured
    from: defaults, then a .env file, then the process environment.
    """

    _instance = None

    # List of all settings that are paths
    PATH_SETTINGS = [
        "project_root",
        "builtin_root",
        "workflow_base_dir",
        "sessions_dir",
        "mcp_config_path",
    ]

    # Default settings with their types
    DEFAULT_SETTINGS = {
        # Project settings
        "project_root": (None, str),
        "builtin_root": (None, str),
        "workflow_base_dir": (None, str),
        # Dispatch defaults
        "default_model": ("opus", str),
        "default_agent": (None, str),
        "permission_mode": ("bypassPermissions", str),
        "setting_sources": ("project", str),
        "mcp_config_path": (None, str),
        # Session persistence
        "sessions_dir": (".workflow-engine/sessions", str),
        # Safety limits
        "max_step_timeout_ms": (None, int),
        "max_workflow_duration_ms": (None, int),
        # Step selection
        "skip_checks": (False, bool),
        "skip_step_names": ("", str),
        # Audit
        "audit_max_entries": (10000, int),
        # Claude CLI
        "claude_cli_path": ("claude", str),
        "claude_cli_timeout": (None, float),
        # Logging
        "log_level": ("INFO", str),
    }

    # Create mapping dynamically - each setting can be set via its uppercase env var
    ENV_MAPPING = {setting.upper(): setting for setting in DEFAULT_SETTINGS.keys()}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize environment with default values"""
        self.project_info = ProjectInfo()
        self.env_variables: Dict[str, str] = {}
        self._providers: List[Callable[[], Dict[str, Any]]] = []
        self.settings: Dict[str, Any] = {}
        self.logger = logging.getLogger(__name__)

        # Initialize settings with default values
        for key, (default_value, _) in self.DEFAULT_SETTINGS.items():
            self.settings[key] = default_value
        self.settings["builtin_root"] = str(BUILTIN_ROOT)

        self._load_from_env_file()
        self._sync_settings_to_project()

    def _sync_settings_to_project(self):
        """Sync settings to project info object"""
        if value := self.settings.get("project_root"):
            self.project_info.project_root = value

    def _get_git_root(self) -> Optional[Path]:
        """Try to determine the git root directory

        Returns:
            Path to the git root directory or None if not found
        """
        current_dir = Path.cwd()

        dir_to_check = current_dir
        for _ in range(10):  # Limit the search depth
            git_dir = dir_to_check / ".git"
            if git_dir.exists():
                return dir_to_check

            parent_dir = dir_to_check.parent
            if parent_dir == dir_to_check:  # Reached the root
                break
            dir_to_check = parent_dir

        return None

    def _convert_value(self, value: str, target_type: type) -> Any:
        """Convert string value to target type"""
        if target_type == bool:
            return value.lower() == "true"
        if target_type in (int, float) and value == "":
            return None
        return target_type(value)

    def _apply_variable(self, key: str, value: str):
        """Record a variable and update the setting it maps to"""
        self.env_variables[key] = value

        if key in self.ENV_MAPPING:
            setting_name = self.ENV_MAPPING[key]
            _, target_type = self.DEFAULT_SETTINGS[setting_name]
            try:
                self.settings[setting_name] = self._convert_value(value, target_type)
            except ValueError:
                self.logger.warning(
                    f"Ignoring {key}={value!r}: expected {target_type.__name__}"
                )
        # Handle WORKFLOW_PATH_ prefixed variables
        elif key.startswith("WORKFLOW_PATH_"):
            path_name = key[14:].lower()
            self.project_info.additional_paths[path_name] = value

    def _load_from_env_file(self):
        """Find and load variables from a .env file"""
        env_file_paths = []

        if self.project_info.project_root:
            env_file_paths.append(Path(self.project_info.project_root) / ".env")

        # Also check current directory
        env_file_paths.append(Path.cwd() / ".env")

        git_root = self._get_git_root()
        if git_root:
            env_file_paths.append(git_root / ".env")

        # Load from the first .env file found
        for env_path in env_file_paths:
            if env_path.exists() and env_path.is_file():
                self.logger.debug(f"Loading environment from: {env_path}")
                self._parse_env_file(env_path)
                return

        self.logger.debug(
            "No .env file found. Tried: " + ", ".join(str(p) for p in env_file_paths)
        )

    def _parse_env_file(self, env_file_path: Path):
        """Parse a .env file and load variables into environment"""
        try:
            with open(env_file_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        key = key.strip()
                        value = value.strip()

                        # Remove quotes if present
                        if (value.startswith('"') and value.endswith('"')) or (
                            value.startswith("'") and value.endswith("'")
                        ):
                            value = value[1:-1]

                        self._apply_variable(key, value)

            # Sync settings to project info after loading all values
            self._sync_settings_to_project()

        except OSError as e:
            self.logger.warning(f"Error reading .env file {env_file_path}: {e}")

    def register_provider(self, provider: Callable[[], Dict[str, Any]]):
        """Register a provider function that returns additional settings"""
        self._providers.append(provider)
        return self

    def load(self):
        """Load all environment information"""
        self._load_from_env_file()

        # Load variables from OS environment
        for key, value in os.environ.items():
            self._apply_variable(key, value)

        self._sync_settings_to_project()

        # Call all registered providers
        for provider in self._providers:
            additional_data = provider()

            project = additional_data.get("project", {})
            for field in ["worktree_path", "branch_name", "session_id"]:
                if value := project.get(field):
                    setattr(self.project_info, field, value)
            if value := project.get("project_root"):
                self.settings["project_root"] = value

            if settings := additional_data.get("settings", {}):
                for key, value in settings.items():
                    if key in self.settings:
                        self.settings[key] = value
                    else:
                        self.logger.warning(f"Provider supplied unknown setting: {key}")

        self._sync_settings_to_project()
        return self

    def get_setting(self, name: str, default: Any = None) -> Any:
        """Get a setting value by name"""
        value = self.settings.get(name)
        return default if value is None else value

    def get_path_setting(self, name: str) -> Optional[Path]:
        """Get a path setting, resolved against the project root when relative"""
        value = self.get_setting(name)
        if value is None:
            return None
        path = Path(value)
        if not path.is_absolute():
            path = self.get_project_root() / path
        return path.resolve()

    def get_project_root(self) -> Path:
        root = self.settings.get("project_root")
        return Path(root).resolve() if root else Path.cwd().resolve()

    def get_list_setting(self, name: str) -> List[str]:
        """Get a comma separated setting as a list"""
        value = self.get_setting(name, "")
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        return [part.strip() for part in str(value).split(",") if part.strip()]

    def get_engine_defaults(self) -> EngineDefaults:
        """Engine dispatch defaults built from the current settings"""
        return EngineDefaults(
            model=self.get_setting("default_model") or "opus",
            permission_mode=self.get_setting("permission_mode") or "bypassPermissions",
            setting_sources=self.get_list_setting("setting_sources"),
            agent=self.get_setting("default_agent"),
        )

    def load_mcp_servers(self) -> Optional[Dict[str, Any]]:
        """Read the mcpServers map from the configured MCP config file

        Raises:
            ValueError: If the file is not valid JSON
        """
        path = self.get_path_setting("mcp_config_path")
        if path is None:
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid MCP config {path}: {e}") from e
        return data.get("mcpServers", data)

    def build_engine_config(self, **overrides) -> EngineConfig:
        """
        Build an EngineConfig from the current settings.

        Keyword arguments override the corresponding EngineConfig fields,
        e.g. ``build_engine_config(dry_run=True, session_id="wf-...")``.
        """
        project_root = self.get_project_root()
        values: Dict[str, Any] = {
            "working_directory": project_root,
            "workflow_base_dir": self.get_path_setting("workflow_base_dir") or project_root,
            "defaults": self.get_engine_defaults(),
            "mcp_servers": self.load_mcp_servers(),
            "skip_step_names": self.get_list_setting("skip_step_names"),
            "skip_checks": bool(self.get_setting("skip_checks", False)),
            "session_id": self.project_info.session_id,
            "branch_name": self.project_info.branch_name,
            "builtin_root": self.get_path_setting("builtin_root"),
            "audit_max_entries": self.get_setting("audit_max_entries", 10000),
            "max_step_timeout_ms": self.get_setting("max_step_timeout_ms"),
            "max_workflow_duration_ms": self.get_setting("max_workflow_duration_ms"),
        }
        values.update(overrides)
        return EngineConfig(**values)


def configure_logging(level: Optional[str] = None):
    """Configure root logging from the log_level setting"""
    level_name = (level or env_manager.get_setting("log_level", "INFO")).upper()
    numeric_level = getattr(logging, level_name, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level_name}")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Create a global instance
env_manager = EnvironmentManager()
