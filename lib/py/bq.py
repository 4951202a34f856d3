"""BigQuery streaming uploader bound to one project/dataset pair."""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

from google.auth.crypt import RSASigner
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GARequest
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from lib.py.jlog import log

BIGQUERY_SCOPE = "https://www.googleapis.com/auth/bigquery"
JWT_TOKEN_URL = "https://oauth2.googleapis.com/token"

Row = Mapping[str, Any]
JsonBytes = Union[bytes, str]


class UploaderInitError(RuntimeError):
    """Raised when the authenticated BigQuery service cannot be constructed."""


class InsertError(Exception):
    """Per-row failures reported by a streaming insert.

    ``errors`` is the ``insertErrors`` list exactly as returned by the API;
    the message is that list serialized as JSON.
    """

    def __init__(self, errors: Sequence[Mapping[str, Any]]):
        self.errors = list(errors)
        super().__init__(json.dumps(self.errors))


def service_credentials(pkey: bytes, service_email: str) -> service_account.Credentials:
    """Build signed-JWT service account credentials from a raw PEM key."""
    signer = RSASigner.from_string(pkey)
    return service_account.Credentials(
        signer,
        service_account_email=service_email,
        token_uri=JWT_TOKEN_URL,
        scopes=[BIGQUERY_SCOPE],
    )


def parse_schema(schema: JsonBytes) -> Dict[str, Any]:
    """Decode a table schema document; unreadable input gives an empty schema."""
    try:
        doc = json.loads(schema)
    except (ValueError, RecursionError):
        return {}
    # `bq show --schema` emits the bare fields list
    if isinstance(doc, list):
        return {"fields": doc}
    if isinstance(doc, dict):
        return doc
    return {}


def bytes_to_row(data: JsonBytes) -> Dict[str, Any]:
    """Decode a JSON object into a row mapping; malformed input yields an empty row."""
    try:
        row = json.loads(data)
    except (ValueError, RecursionError):
        return {}
    return row if isinstance(row, dict) else {}


def wrap_rows(rows: Iterable[Row]) -> List[Dict[str, Any]]:
    """Wrap rows into the insertAll request envelope."""
    return [{"json": dict(row)} for row in rows]


class BqUploader:
    """Holds the authenticated service and the target project/dataset."""

    def __init__(self, service: Any, project_id: str, dataset_id: str):
        self._bq = service
        self._project_id = project_id
        self._dataset_id = dataset_id

    @classmethod
    def connect(cls, pkey: bytes, project_id: str, dataset_id: str, service_email: str) -> "BqUploader":
        """Authenticate with a service account key and build the BigQuery v2 service.

        Raises UploaderInitError if the key is unusable, the token exchange
        fails or the service cannot be built.
        """
        try:
            creds = service_credentials(pkey, service_email)
            if not creds.valid:
                creds.refresh(GARequest())
            svc = build("bigquery", "v2", credentials=creds, cache_discovery=False)
        except (ValueError, GoogleAuthError, HttpError) as exc:
            raise UploaderInitError(f"Unable to create BigQuery service: {exc}") from exc
        return cls(svc, project_id, dataset_id)

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def dataset_id(self) -> str:
        return self._dataset_id

    def create_table(self, table_id: str, schema: JsonBytes) -> None:
        """Create ``table_id`` with ``schema`` unless a lookup for it succeeds.

        Any lookup failure counts as a missing table, so a transient error
        can lead to a creation call that fails with "already exists". That
        creation error is raised to the caller.
        """
        try:
            self._bq.tables().get(
                projectId=self._project_id,
                datasetId=self._dataset_id,
                tableId=table_id,
            ).execute()
            return
        except Exception as exc:
            log("WARN", "table lookup failed, creating", table=table_id, err=str(exc)[:200])

        body = {
            "schema": parse_schema(schema),
            "tableReference": {
                "projectId": self._project_id,
                "datasetId": self._dataset_id,
                "tableId": table_id,
            },
        }
        self._bq.tables().insert(
            projectId=self._project_id,
            datasetId=self._dataset_id,
            body=body,
        ).execute()
        log("INFO", "Done creating table", table=table_id)

    def insert_rows(self, table_id: str, rows: Iterable[Row]) -> None:
        """Stream all rows to the table in a single insertAll request."""
        envelopes = wrap_rows(rows)
        log("INFO", "insert rows", table=table_id, rows=len(envelopes))
        self.send_insert(table_id, envelopes)

    def insert_row(self, table_id: str, row: Row) -> None:
        """Stream one row to the table."""
        self.send_insert(table_id, wrap_rows([row]))

    def send_insert(self, table_id: str, envelopes: Sequence[Mapping[str, Any]]) -> None:
        """Issue one insertAll call; raise InsertError if any row was rejected."""
        result = self._bq.tabledata().insertAll(
            projectId=self._project_id,
            datasetId=self._dataset_id,
            tableId=table_id,
            body={"rows": list(envelopes)},
        ).execute()
        insert_errors = (result or {}).get("insertErrors") or []
        if insert_errors:
            raise InsertError(insert_errors)


def new_bq_uploader(pkey: bytes, project_id: str, dataset_id: str, service_email: str) -> BqUploader:
    """Return a connected uploader or terminate the process if authentication setup fails."""
    try:
        return BqUploader.connect(pkey, project_id, dataset_id, service_email)
    except UploaderInitError as exc:
        log("ERROR", "Unable to create BigQuery service", err=str(exc)[:200])
        sys.exit(1)


__all__: Iterable[str] = (
    "BIGQUERY_SCOPE",
    "JWT_TOKEN_URL",
    "BqUploader",
    "InsertError",
    "UploaderInitError",
    "bytes_to_row",
    "new_bq_uploader",
    "parse_schema",
    "service_credentials",
    "wrap_rows",
)
