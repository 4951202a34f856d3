import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lib.py.bq import BqUploader
from lib.py.bq_config import ConfigError, env, load_settings
from lib.py.jlog import utc_now_iso

SMOKE_SCHEMA = b'{"fields":[{"name":"ts","type":"TIMESTAMP"},{"name":"msg","type":"STRING"}]}'


def main() -> None:
    table_id = env("BQ_TABLE_ID", "smoke") or "smoke"
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f'...[ERROR] [verify] step=bq_insert ok=false reason="{exc}"')
        sys.exit(2)

    try:
        uploader = BqUploader.connect(settings.pkey, settings.project_id, settings.dataset_id, settings.service_email)
        uploader.create_table(table_id, SMOKE_SCHEMA)
        uploader.insert_row(table_id, {"ts": utc_now_iso(), "msg": "smoke-test"})
        print(
            f'...[INFO] [verify] step=bq_insert ok=true '
            f'table="{settings.project_id}.{settings.dataset_id}.{table_id}"'
        )
    except Exception as exc:  # pragma: no cover - best effort smoke path
        print(
            '...[ERROR] [verify] step=bq_insert ok=false '
            f'reason="{exc.__class__.__name__}: {str(exc).strip()[:200]}"'
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
