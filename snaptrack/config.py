"""
Configuration management for snaptrack.

Supports:
- TOML config files
- Environment variables
- Command-line overrides
- Sensible defaults

Priority (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Config file
4. Defaults
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib


# Default config file locations (searched in order)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / "snaptrack.toml",
    Path.cwd() / "config.toml",
    Path.home() / ".snaptrack" / "config.toml",
    Path.home() / ".config" / "snaptrack" / "config.toml",
]

STORE_BACKENDS = ("file", "postgres", "memory")
BACKUP_POLICIES = ("warn", "abort")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class ProjectConfig:
    """Which project records belong to, and who captures them."""
    project_id: str = ""
    user: str = ""

    def __post_init__(self):
        if not self.user:
            self.user = os.environ.get("USER") or os.environ.get("USERNAME") or ""


@dataclass
class StoreConfig:
    """Snapshot store configuration."""
    backend: str = "file"
    workspace: str = "./snaptrack_workspace"
    dsn: Optional[str] = None
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "snaptrack"
    page_size: int = 500
    cache_ttl: float = 300.0               # seconds, 0 disables the cache

    def connection_string(self) -> str:
        """Generate connection string."""
        if self.dsn:
            return self.dsn
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


@dataclass
class CompareConfig:
    """Comparison settings."""
    double_tolerance: float = 0.001
    include_unchanged: bool = False
    read_only_parameters: List[str] = field(default_factory=lambda: [
        "Area", "Perimeter", "Volume", "Unbounded Height",
        "Surface", "Périmètre", "Hauteur non liée",
    ])


@dataclass
class RestoreConfig:
    """Restore settings."""
    create_backup: bool = True
    backup_failure_policy: str = "warn"     # "warn" proceeds, "abort" stops
    place_recreated: bool = True


@dataclass
class IdentifiersConfig:
    """Identifier generation and duplicate resolution."""
    prefixes: Dict[str, str] = field(default_factory=lambda: {
        "Room": "ROOM",
        "Opening": "DOOR",
        "Generic": "ELEM",
    })
    code_fields: List[str] = field(default_factory=lambda: ["Number", "Numéro", "Mark", "Marque"])
    name_fields: List[str] = field(default_factory=lambda: ["Nom", "Name", "Nombre"])
    width: int = 4
    lookup_workers: int = 4


@dataclass
class OutputConfig:
    """Output configuration."""
    verbose: bool = False
    quiet: bool = False
    log_level: str = "INFO"


@dataclass
class Config:
    """Main configuration container."""
    project: ProjectConfig = field(default_factory=ProjectConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    compare: CompareConfig = field(default_factory=CompareConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
    identifiers: IdentifiersConfig = field(default_factory=IdentifiersConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Source tracking
    _config_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> "Config":
        """
        Load configuration from file, then apply environment overrides.

        Args:
            config_path: Explicit path to config file. If None, searches default locations.
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Config instance with loaded values
        """
        config = cls()

        # Find config file
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
        else:
            path = cls._find_config_file()

        if path:
            config = cls._load_from_file(path)
            config._config_file = path

        config.apply_env(os.environ if environ is None else environ)
        return config

    @classmethod
    def _find_config_file(cls) -> Optional[Path]:
        """Find config file in default locations."""
        for path in CONFIG_SEARCH_PATHS:
            if path.exists():
                return path
        return None

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load config from TOML file."""
        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        # Project
        if "project" in data:
            proj = data["project"]
            config.project = ProjectConfig(
                project_id=str(proj.get("project_id", config.project.project_id)),
                user=proj.get("user", config.project.user),
            )

        # Store
        if "store" in data:
            st = data["store"]
            config.store = StoreConfig(
                backend=st.get("backend", config.store.backend),
                workspace=st.get("workspace", config.store.workspace),
                dsn=st.get("dsn") or None,
                host=st.get("host", config.store.host),
                port=st.get("port", config.store.port),
                user=st.get("user", config.store.user),
                password=st.get("password", config.store.password),
                name=st.get("name", config.store.name),
                page_size=st.get("page_size", config.store.page_size),
                cache_ttl=st.get("cache_ttl", config.store.cache_ttl),
            )

        # Compare
        if "compare" in data:
            cmp = data["compare"]
            config.compare = CompareConfig(
                double_tolerance=cmp.get("double_tolerance", config.compare.double_tolerance),
                include_unchanged=cmp.get("include_unchanged", config.compare.include_unchanged),
                read_only_parameters=list(cmp.get("read_only_parameters", config.compare.read_only_parameters)),
            )

        # Restore
        if "restore" in data:
            rst = data["restore"]
            config.restore = RestoreConfig(
                create_backup=rst.get("create_backup", config.restore.create_backup),
                backup_failure_policy=rst.get("backup_failure_policy", config.restore.backup_failure_policy),
                place_recreated=rst.get("place_recreated", config.restore.place_recreated),
            )

        # Identifiers
        if "identifiers" in data:
            ids = data["identifiers"]
            prefixes = dict(config.identifiers.prefixes)
            prefixes.update(ids.get("prefixes", {}))
            config.identifiers = IdentifiersConfig(
                prefixes=prefixes,
                code_fields=list(ids.get("code_fields", config.identifiers.code_fields)),
                name_fields=list(ids.get("name_fields", config.identifiers.name_fields)),
                width=ids.get("width", config.identifiers.width),
                lookup_workers=ids.get("lookup_workers", config.identifiers.lookup_workers),
            )

        # Output
        if "output" in data:
            out = data["output"]
            config.output = OutputConfig(
                verbose=out.get("verbose", config.output.verbose),
                quiet=out.get("quiet", config.output.quiet),
                log_level=str(out.get("log_level", config.output.log_level)).upper(),
            )

        return config

    def apply_env(self, environ: Dict[str, str]) -> "Config":
        """Override values from SNAPTRACK_* environment variables."""
        if environ.get("SNAPTRACK_PROJECT_ID"):
            self.project.project_id = environ["SNAPTRACK_PROJECT_ID"]
        if environ.get("SNAPTRACK_USER"):
            self.project.user = environ["SNAPTRACK_USER"]
        if environ.get("SNAPTRACK_DB_PASSWORD"):
            self.store.password = environ["SNAPTRACK_DB_PASSWORD"]
        if environ.get("SNAPTRACK_DSN"):
            self.store.dsn = environ["SNAPTRACK_DSN"]
            self.store.backend = "postgres"
        return self

    def override_from_args(self, args) -> "Config":
        """
        Override config values from argparse namespace.

        Args with value None are ignored (keeping config file values).
        """
        if getattr(args, "project", None):
            self.project.project_id = args.project
        if getattr(args, "user", None):
            self.project.user = args.user

        # Store overrides
        if getattr(args, "workspace", None):
            self.store.workspace = args.workspace
            if not getattr(args, "dsn", None):
                self.store.backend = "file"
        if getattr(args, "dsn", None):
            self.store.dsn = args.dsn
            self.store.backend = "postgres"

        # Output overrides
        if getattr(args, "quiet", None):
            self.output.quiet = args.quiet
            self.output.verbose = not args.quiet
        if getattr(args, "verbose", None):
            self.output.verbose = True
            self.output.log_level = "DEBUG"

        return self

    def validate(self) -> list:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.project.project_id:
            errors.append("Project id is required. Set [project] project_id or SNAPTRACK_PROJECT_ID")

        if self.store.backend not in STORE_BACKENDS:
            errors.append(f"Unknown store backend '{self.store.backend}' (expected one of {', '.join(STORE_BACKENDS)})")
        if self.store.backend == "postgres" and not self.store.dsn and not self.store.host:
            errors.append("Database host or dsn is required for the postgres backend")
        if self.store.page_size < 1:
            errors.append("Store page_size must be at least 1")
        if self.store.cache_ttl < 0:
            errors.append("Store cache_ttl cannot be negative")

        if self.compare.double_tolerance < 0:
            errors.append("Compare double_tolerance cannot be negative")

        if self.restore.backup_failure_policy not in BACKUP_POLICIES:
            errors.append(
                f"Unknown backup_failure_policy '{self.restore.backup_failure_policy}' "
                f"(expected one of {', '.join(BACKUP_POLICIES)})"
            )

        if self.identifiers.width < 1:
            errors.append("Identifier width must be at least 1")
        if self.identifiers.lookup_workers < 1:
            errors.append("Identifier lookup_workers must be at least 1")
        for category, prefix in self.identifiers.prefixes.items():
            if not prefix:
                errors.append(f"Identifier prefix for {category} is empty")

        if self.output.log_level not in LOG_LEVELS:
            errors.append(f"Unknown log_level '{self.output.log_level}'")

        return errors

    def summary(self, include_config_path: bool = True) -> str:
        """Generate human-readable config summary."""
        lines = []

        if include_config_path:
            if self._config_file:
                lines.append(f"Config: {self._config_file}")
            else:
                lines.append("Config: (defaults)")

        lines.append(f"Project: {self.project.project_id or '(unset)'} as {self.project.user or '(unknown)'}")

        if self.store.backend == "postgres":
            if self.store.dsn:
                lines.append("Store: postgres (dsn)")
            else:
                lines.append(f"Store: postgres {self.store.user}@{self.store.host}:{self.store.port}/{self.store.name}")
        else:
            lines.append(f"Store: {self.store.backend} ({self.store.workspace})")

        lines.append(f"Compare: tolerance {self.compare.double_tolerance}, "
                     f"{len(self.compare.read_only_parameters)} read-only parameters")
        backup = "on" if self.restore.create_backup else "off"
        lines.append(f"Restore: backup {backup}, on backup failure: {self.restore.backup_failure_policy}")

        return "\n".join(lines)
