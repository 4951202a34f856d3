from __future__ import annotations
import sys
from pathlib import Path
from typing import IO, List, Dict, Any

ROOT = Path(__file__).resolve().parent.parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lib.py.bq import InsertError, bytes_to_row, new_bq_uploader, parse_schema
from lib.py.bq_config import ConfigError, env, load_settings
from lib.py.jlog import log

JOB = "a03_bq_stream_rows"

def read_rows(fh: IO[bytes]) -> List[Dict[str, Any]]:
    """One JSON object per line; blank lines skipped, malformed lines become empty rows."""
    rows: List[Dict[str, Any]] = []
    for line in fh:
        if not line.strip(): continue
        rows.append(bytes_to_row(line))
    return rows

def load_rows(path: str) -> List[Dict[str, Any]]:
    if not path or path == "-":
        return read_rows(sys.stdin.buffer)
    with open(path, "rb") as fh:
        return read_rows(fh)

def main() -> None:
    table_id = env("BQ_TABLE_ID")
    if not table_id:
        log("ERROR", "BQ_TABLE_ID missing", job=JOB); sys.exit(2)
    schema_file = env("BQ_SCHEMA_FILE")
    dry_run = env("DRY_RUN").lower() == "true"

    try:
        rows = load_rows(env("ROWS_FILE"))
    except OSError as e:
        log("ERROR", "cannot read rows", job=JOB, err=str(e)[:200]); sys.exit(2)

    schema = None
    if schema_file:
        try:
            schema = Path(schema_file).read_bytes()
        except OSError as e:
            log("ERROR", "cannot read schema", job=JOB, err=str(e)[:200]); sys.exit(2)

    if dry_run:
        fields = parse_schema(schema).get("fields", []) if schema is not None else []
        log("INFO", f"{JOB} DRY_RUN", job=JOB, table=table_id, rows=len(rows), schema_file=schema_file, schema_fields=len(fields))
        return

    try:
        settings = load_settings()
    except ConfigError as e:
        log("ERROR", str(e), job=JOB); sys.exit(2)

    uploader = new_bq_uploader(settings.pkey, settings.project_id, settings.dataset_id, settings.service_email)

    if schema is not None:
        uploader.create_table(table_id, schema)

    try:
        uploader.insert_rows(table_id, rows)
    except InsertError as e:
        log("ERROR", "insert errors", job=JOB, table=table_id, insert_errors=e.errors); sys.exit(1)

    log("INFO", "done", job=JOB, project=uploader.project_id, dataset=uploader.dataset_id, table=table_id, rows=len(rows))

if __name__ == "__main__":
    main()
