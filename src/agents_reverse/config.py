"""Runtime configuration for discovery, generation, and run tracing."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path

from agents_reverse.config_file import CONFIG_FILE_NAME, load_config_file

STATE_DIR_NAME = ".agents-reverse"
SUPPORTED_BACKENDS = ("auto", "claude", "codex", "gemini", "opencode")

_CONCURRENCY_MULTIPLIER = 5
_MIN_CONCURRENCY = 2
_MAX_CONCURRENCY = 20
_SUBPROCESS_MEMORY_GB = 0.512
_MEMORY_FRACTION = 0.5

DEFAULT_VENDOR_DIRS: tuple[str, ...] = (
    "node_modules",
    "vendor",
    ".git",
    "dist",
    "build",
    "__pycache__",
    ".next",
    "venv",
    ".venv",
    "target",
    ".cargo",
    ".gradle",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    ".tox",
    STATE_DIR_NAME,
    ".agents",
    ".planning",
    ".claude",
    ".opencode",
    ".gemini",
)

DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "*.lock",
    "package-lock.json",
    "pnpm-lock.yaml",
    "go.sum",
    ".gitignore",
    ".gitattributes",
    ".gitkeep",
    ".env",
    ".env.*",
    "*.log",
    "SKILL.md",
    "OPENCODE.md",
    "GEMINI.md",
)

DEFAULT_BINARY_EXTENSIONS: tuple[str, ...] = (
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".bmp",
    ".ico",
    ".webp",
    ".zip",
    ".tar",
    ".gz",
    ".rar",
    ".7z",
    ".exe",
    ".dll",
    ".so",
    ".dylib",
    ".mp3",
    ".mp4",
    ".wav",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".class",
    ".pyc",
    ".db",
    ".sqlite",
)


@dataclass(slots=True)
class GenerationSettings:
    """Backend selection and per-call limits."""

    backend: str = "auto"
    model: str = "sonnet"
    command: str | None = None
    timeout_seconds: float = 300.0
    grace_seconds: float = 5.0
    concurrency: int = _MIN_CONCURRENCY
    include_architecture: bool = False


@dataclass(slots=True)
class RetrySettings:
    """Exponential backoff for rate-limited calls."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    multiplier: float = 2.0
    jitter_seconds: float = 0.5


@dataclass(slots=True)
class DiscoverySettings:
    """File discovery filter chain settings."""

    vendor_dirs: tuple[str, ...] = DEFAULT_VENDOR_DIRS
    exclude_patterns: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    binary_extensions: tuple[str, ...] = DEFAULT_BINARY_EXTENSIONS
    max_file_size_bytes: int = 1024 * 1024
    respect_gitignore: bool = True


@dataclass(slots=True)
class TraceSettings:
    """NDJSON run trace settings."""

    enabled: bool = False
    keep_runs: int = 50


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    root: Path = Path(".")
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    trace: TraceSettings = field(default_factory=TraceSettings)

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIR_NAME

    @property
    def db_path(self) -> Path:
        return self.state_dir / "state.db"

    @property
    def config_path(self) -> Path:
        return self.state_dir / CONFIG_FILE_NAME

    @property
    def traces_dir(self) -> Path:
        return self.state_dir / "traces"

    @classmethod
    def from_env(cls, root: Path | None = None) -> Settings:
        """Load settings: defaults, then `.agents-reverse/config.yaml`, then environment.

        Lists from the file replace the defaults; list variables from the
        environment extend them.
        """

        resolved_root = resolve_root(root)
        values = load_config_file(resolved_root / STATE_DIR_NAME / CONFIG_FILE_NAME)
        exclude = values.get("exclude", {})
        options = values.get("options", {})
        ai = values.get("ai", {})
        retry = values.get("retry", {})
        trace = values.get("trace", {})
        default_concurrency = ai.get("concurrency") or compute_default_concurrency(
            cpu_count=os.cpu_count(),
            total_memory_bytes=_total_memory_bytes(),
        )
        command = os.getenv("AGENTS_REVERSE_COMMAND", "").strip() or ai.get("command")
        return cls(
            root=resolved_root,
            generation=GenerationSettings(
                backend=os.getenv("AGENTS_REVERSE_BACKEND", ai.get("backend", "auto"))
                .strip()
                .lower(),
                model=os.getenv("AGENTS_REVERSE_MODEL", ai.get("model", "sonnet")),
                command=command,
                timeout_seconds=_env_float(
                    "AGENTS_REVERSE_TIMEOUT_SECONDS",
                    ai.get("timeout_seconds", 300.0),
                ),
                grace_seconds=_env_float(
                    "AGENTS_REVERSE_GRACE_SECONDS",
                    ai.get("grace_seconds", 5.0),
                ),
                concurrency=_env_int("AGENTS_REVERSE_CONCURRENCY", default_concurrency),
                include_architecture=_env_bool(
                    "AGENTS_REVERSE_INCLUDE_ARCHITECTURE",
                    default=ai.get("include_architecture", False),
                ),
            ),
            retry=RetrySettings(
                max_retries=_env_int("AGENTS_REVERSE_MAX_RETRIES", retry.get("max_retries", 3)),
                base_delay_seconds=_env_float(
                    "AGENTS_REVERSE_RETRY_BASE_DELAY",
                    retry.get("base_delay_seconds", 1.0),
                ),
                max_delay_seconds=_env_float(
                    "AGENTS_REVERSE_RETRY_MAX_DELAY",
                    retry.get("max_delay_seconds", 8.0),
                ),
                multiplier=_env_float(
                    "AGENTS_REVERSE_RETRY_MULTIPLIER",
                    retry.get("multiplier", 2.0),
                ),
                jitter_seconds=_env_float(
                    "AGENTS_REVERSE_RETRY_JITTER",
                    retry.get("jitter_seconds", 0.5),
                ),
            ),
            discovery=DiscoverySettings(
                exclude_patterns=exclude.get("patterns", DEFAULT_EXCLUDE_PATTERNS)
                + _env_list("AGENTS_REVERSE_EXCLUDE_PATTERNS"),
                vendor_dirs=exclude.get("vendor_dirs", DEFAULT_VENDOR_DIRS)
                + _env_list("AGENTS_REVERSE_VENDOR_DIRS"),
                binary_extensions=exclude.get("binary_extensions", DEFAULT_BINARY_EXTENSIONS),
                max_file_size_bytes=_env_int(
                    "AGENTS_REVERSE_MAX_FILE_SIZE",
                    options.get("max_file_size", 1024 * 1024),
                ),
                respect_gitignore=_env_bool(
                    "AGENTS_REVERSE_RESPECT_GITIGNORE",
                    default=options.get("respect_gitignore", True),
                ),
            ),
            trace=TraceSettings(
                enabled=_env_bool("AGENTS_REVERSE_TRACE", default=trace.get("enabled", False)),
                keep_runs=_env_int("AGENTS_REVERSE_TRACE_KEEP_RUNS", trace.get("keep_runs", 50)),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.generation.backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported backend {self.generation.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_BACKENDS)}.",
            )
        if self.generation.timeout_seconds <= 0:
            raise ValueError("AGENTS_REVERSE_TIMEOUT_SECONDS must be > 0.")
        if self.generation.grace_seconds < 0:
            raise ValueError("AGENTS_REVERSE_GRACE_SECONDS must be >= 0.")
        if not 1 <= self.generation.concurrency <= _MAX_CONCURRENCY:
            raise ValueError(
                f"AGENTS_REVERSE_CONCURRENCY must be between 1 and {_MAX_CONCURRENCY}.",
            )
        if self.retry.max_retries < 0:
            raise ValueError("AGENTS_REVERSE_MAX_RETRIES must be >= 0.")
        if self.retry.base_delay_seconds < 0 or self.retry.jitter_seconds < 0:
            raise ValueError("Retry delays must be >= 0.")
        if self.retry.max_delay_seconds < self.retry.base_delay_seconds:
            raise ValueError(
                "AGENTS_REVERSE_RETRY_MAX_DELAY must be >= AGENTS_REVERSE_RETRY_BASE_DELAY.",
            )
        if self.retry.multiplier < 1:
            raise ValueError("AGENTS_REVERSE_RETRY_MULTIPLIER must be >= 1.")
        if self.discovery.max_file_size_bytes <= 0:
            raise ValueError("AGENTS_REVERSE_MAX_FILE_SIZE must be > 0.")
        if self.trace.keep_runs < 1:
            raise ValueError("AGENTS_REVERSE_TRACE_KEEP_RUNS must be >= 1.")


def resolve_root(root: Path | None) -> Path:
    return (root or Path(os.getenv("AGENTS_REVERSE_ROOT", "."))).resolve()


def compute_default_concurrency(
    *,
    cpu_count: int | None,
    total_memory_bytes: int | None,
) -> int:
    """Compute worker bound as clamp(cores * 5, 2, min(memory cap, 20)).

    Each worker drives one CLI subprocess budgeted at roughly half a gigabyte,
    and at most half of physical memory is given to them. Unknown or tiny
    memory sizes leave the cap at the ceiling.
    """

    cores = cpu_count or _MIN_CONCURRENCY
    ceiling = _MAX_CONCURRENCY
    if total_memory_bytes is not None:
        total_gb = total_memory_bytes / (1024**3)
        if total_gb > 1:
            memory_cap = math.floor(total_gb * _MEMORY_FRACTION / _SUBPROCESS_MEMORY_GB)
            ceiling = min(ceiling, memory_cap)
    return max(_MIN_CONCURRENCY, min(cores * _CONCURRENCY_MULTIPLIER, ceiling))


def _total_memory_bytes() -> int | None:
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, OSError, ValueError):
        return None


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    if not value:
        return float(default)
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {value!r}") from error
