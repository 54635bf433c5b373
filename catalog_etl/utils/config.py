# catalog_etl/utils/config.py
"""
Config Loader: Catalog ETL (Typed YAML Configs + Environment Overrides)

Intent
- Load + validate the two YAML files that drive every pipeline:
  - configs/parameters.yaml   (run / source / producer / consumer / storage / watermark / reports)
  - configs/credentials.yaml  (names of secret-bearing env vars; never the secrets themselves)
- Return **typed** configuration objects (Pydantic v2).
- Apply the deployment environment variables on top of the YAML values so a
  scheduler can tune a single invocation without editing files.

What this module guarantees
- **Strict validation:** invalid configs fail fast with actionable Pydantic errors.
- **Unicode whitespace hardening:** NBSP/BOM/narrow NBSP are normalized before YAML parsing.
- **Deterministic defaults:** omitted keys fall back to model defaults.

Environment overrides (applied after YAML)
- CHUNK_SIZE         -> producer.chunk_size
- BATCH_SIZE         -> consumer.batch_size
- S3_READ_GZIP       -> consumer.gzip ("true" | "false" | "auto")
- PROCESSING_BUCKET  -> storage.bucket
- DOWNLOAD_URL       -> source.download_url
- TARGET_LANGUAGE    -> consumer.language

Primary functions
- load_parameters(path="configs/parameters.yaml", *, env=None) -> ParametersConfig
- load_credentials(path="configs/credentials.yaml") -> CredentialsConfig
- resolve_database_url(credentials, *, env=None) -> str
- ensure_dirs(params) -> None

External dependencies
- PyYAML: yaml.safe_load
- Pydantic v2: BaseModel, validators, model_validate
"""


from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from catalog_etl.utils.logging import get_logger


DEFAULT_DOWNLOAD_URL = "https://static.openfoodfacts.org/data/en.openfoodfacts.org.products.jsonl.gz"

GzipSetting = Literal["true", "false", "auto"]


# -----------------------------
# Parameter models
# -----------------------------
class RunConfig(BaseModel):
    name: str = "catalog_etl"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # silence boto3 / urllib3 / sqlalchemy INFO logs
    silence_client_lv_logs: bool = True

    # progress logging cadence (0 = quiet, 1..10)
    verbose: int = 3


class SourceConfig(BaseModel):
    download_url: str = DEFAULT_DOWNLOAD_URL
    timeout_seconds: float = 60.0
    gzip: GzipSetting = "auto"

    @field_validator("gzip", mode="before")
    @classmethod
    def _normalize_gzip(cls, v: Any) -> Any:
        return _gzip_setting(v)


class ProducerConfig(BaseModel):
    chunk_size: int = 5000
    chunk_prefix: str = "etl/chunks"
    manifest_dir: str = "artifacts/manifests"

    @field_validator("chunk_size")
    @classmethod
    def _validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("producer.chunk_size must be > 0")
        return v

    @field_validator("chunk_prefix")
    @classmethod
    def _strip_prefix_slashes(cls, v: str) -> str:
        v = str(v).strip().strip("/")
        if not v:
            raise ValueError("producer.chunk_prefix must not be empty")
        return v


class ConsumerConfig(BaseModel):
    batch_size: int = 50
    gzip: GzipSetting = "auto"
    language: str = "en"

    # COUNT(*) after each commit, logged only
    verify_counts: bool = True

    @field_validator("batch_size")
    @classmethod
    def _validate_batch_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("consumer.batch_size must be > 0")
        return v

    @field_validator("gzip", mode="before")
    @classmethod
    def _normalize_gzip(cls, v: Any) -> Any:
        return _gzip_setting(v)

    @field_validator("language")
    @classmethod
    def _validate_language(cls, v: str) -> str:
        s = str(v).strip().lower()
        if not s:
            raise ValueError("consumer.language must be a non-empty language code")
        return s


class StorageConfig(BaseModel):
    backend: Literal["s3", "local"] = "s3"
    bucket: str = "nutritiveappbucket"

    # local backend: objects live under {local_root}/{bucket}/{key}
    local_root: str = "artifacts/blobs"

    # s3 backend: optional endpoint override (localstack / minio)
    endpoint_url: Optional[str] = None
    region: Optional[str] = None


class WatermarkConfig(BaseModel):
    key: str = "etl/last-processed-timestamp.txt"


class ReportsConfig(BaseModel):
    prefix: str = "etl/reports"
    local_dir: str = "artifacts/reports"


class ParametersConfig(BaseModel):
    run: RunConfig = Field(default_factory=RunConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    producer: ProducerConfig = Field(default_factory=ProducerConfig)
    consumer: ConsumerConfig = Field(default_factory=ConsumerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    watermark: WatermarkConfig = Field(default_factory=WatermarkConfig)
    reports: ReportsConfig = Field(default_factory=ReportsConfig)


# -----------------------------
# Credentials models
# -----------------------------
class CredentialsDatabase(BaseModel):
    url_env: str = "DATABASE_URL"
    echo: bool = False


class CredentialsConfig(BaseModel):
    database: CredentialsDatabase = Field(default_factory=CredentialsDatabase)


# -----------------------------
# Helpers
# -----------------------------
def _gzip_setting(v: Any) -> Any:
    """
    Accept bool / None / "true" / "false" / "auto" (any case).
    """
    if v is None:
        return "auto"
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, str):
        return v.strip().lower() or "auto"
    return v


def _load_yaml(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    text = p.read_text(encoding="utf-8")

    # sanitize BEFORE YAML parse (fix NBSP / BOM / narrow NBSP)
    for ch in ["\u00A0", "\u2007", "\u202F", "\uFEFF"]:
        text = text.replace(ch, " ")

    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML root must be a mapping/object: {path}")
    return data


_ENV_OVERRIDES = [
    # (env var, section, key)
    ("CHUNK_SIZE", "producer", "chunk_size"),
    ("BATCH_SIZE", "consumer", "batch_size"),
    ("S3_READ_GZIP", "consumer", "gzip"),
    ("PROCESSING_BUCKET", "storage", "bucket"),
    ("DOWNLOAD_URL", "source", "download_url"),
    ("TARGET_LANGUAGE", "consumer", "language"),
]


def _apply_env_overrides(raw: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    out = dict(raw)
    for var, section, key in _ENV_OVERRIDES:
        value = env.get(var)
        if value is None or not str(value).strip():
            continue
        block = out.get(section)
        block = dict(block) if isinstance(block, dict) else {}
        block[key] = str(value).strip()
        out[section] = block
    return out


def load_parameters(
    path: str | Path = "configs/parameters.yaml",
    *,
    env: Optional[Mapping[str, str]] = None,
) -> ParametersConfig:
    """
    Load parameters.yaml, apply environment overrides, validate into ParametersConfig.
    """
    logger = get_logger(__name__)
    raw = _load_yaml(path)
    raw = _apply_env_overrides(raw, os.environ if env is None else env)
    try:
        params = ParametersConfig.model_validate(raw)
    except ValidationError as e:
        logger.error("Invalid parameters.yaml: %s", e)
        raise
    return params


def load_credentials(path: str | Path = "configs/credentials.yaml") -> CredentialsConfig:
    """
    Load and validate credentials.yaml into a typed CredentialsConfig.
    """
    logger = get_logger(__name__)
    raw = _load_yaml(path)
    try:
        creds = CredentialsConfig.model_validate(raw)
    except ValidationError as e:
        logger.error("Invalid credentials.yaml: %s", e)
        raise
    return creds


def resolve_database_url(
    credentials: CredentialsConfig,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Read the SQLAlchemy database URL from the env var named in credentials.yaml.
    """
    source = os.environ if env is None else env
    var = credentials.database.url_env
    url = source.get(var)
    if not url or not str(url).strip():
        raise ValueError(f"Database URL env var is not set: {var}")
    return str(url).strip()


def ensure_dirs(params: ParametersConfig) -> None:
    """
    Ensure configured local artifact directories exist.
    """
    dirs = [
        params.producer.manifest_dir,
        params.reports.local_dir,
    ]
    if params.storage.backend == "local":
        dirs.append(params.storage.local_root)
    for d in dirs:
        Path(d).mkdir(parents=True, exist_ok=True)


__all__ = [
    "DEFAULT_DOWNLOAD_URL",
    "ParametersConfig",
    "CredentialsConfig",
    "load_parameters",
    "load_credentials",
    "resolve_database_url",
    "ensure_dirs",
]
