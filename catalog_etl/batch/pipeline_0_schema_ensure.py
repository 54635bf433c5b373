# catalog_etl/batch/pipeline_0_schema_ensure.py
"""
Pipeline 0: Ensure the relational schema exists.

Behavior
- Creates every missing table (product, nutriments, 5 dimension tables,
  5 junction tables).
- Existing tables are left untouched; no column changes, no migrations.
- Safe to run before every import.
"""

from __future__ import annotations

import argparse
from typing import List, Optional

from sqlalchemy.engine import Engine

from catalog_etl.core.db_schema import create_schema, engine_from_credentials
from catalog_etl.utils.config import load_parameters
from catalog_etl.utils.logging import configure_logging_from_params, get_logger


def run(
    *,
    parameters_path: str = "configs/parameters.yaml",
    credentials_path: str = "configs/credentials.yaml",
    engine: Optional[Engine] = None,
) -> List[str]:
    params = load_parameters(parameters_path)
    configure_logging_from_params(params)
    logger = get_logger(__name__)

    engine = engine or engine_from_credentials(credentials_path)
    logger.info("Pipeline 0: ensuring schema on %s", engine.url.render_as_string(hide_password=True))

    return create_schema(engine)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Pipeline 0: create missing database tables.")
    parser.add_argument("--parameters-path", default="configs/parameters.yaml")
    parser.add_argument("--credentials-path", default="configs/credentials.yaml")
    args = parser.parse_args(argv)

    run(parameters_path=args.parameters_path, credentials_path=args.credentials_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["run", "main"]
