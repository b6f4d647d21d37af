"""Durable stores for chat messages, vitals and attachments.

Supabase is the production target. A local JSONL store is always available for
dev/test and for running the dashboard without external dependencies.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import mimetypes
from pathlib import Path
from typing import Any, Callable, Protocol

from pajr.config import Settings

RowListener = Callable[[dict[str, Any]], None]


class RecordStore(Protocol):
    async def insert_message(self, row: dict[str, Any]) -> None: ...

    async def insert_vitals(self, rows: list[dict[str, Any]]) -> None: ...

    async def fetch_doctor_patients(self, doctor_id: str) -> list[dict[str, Any]]: ...


class LocalRecordStore:
    """Append-only JSONL tables mirroring the remote ``messages`` and ``vitals`` tables."""

    def __init__(self, settings: Settings):
        self._root = Path(settings.local_storage_dir)
        (self._root / "tables").mkdir(parents=True, exist_ok=True)
        self._messages_file = self._root / "tables" / "messages.jsonl"
        self._vitals_file = self._root / "tables" / "vitals.jsonl"
        self._patients_file = self._root / "tables" / "patients.json"
        self._listeners: list[RowListener] = []

    def add_insert_listener(self, listener: RowListener) -> None:
        self._listeners.append(listener)

    def _append_lines(self, path: Path, rows: list[dict[str, Any]]) -> None:
        with path.open("a", encoding="utf-8") as fp:
            for row in rows:
                fp.write(json.dumps(row, ensure_ascii=True, default=str) + "\n")

    async def insert_message(self, row: dict[str, Any]) -> None:
        self._append_lines(self._messages_file, [row])
        for listener in self._listeners:
            listener(dict(row))

    async def insert_vitals(self, rows: list[dict[str, Any]]) -> None:
        if rows:
            self._append_lines(self._vitals_file, rows)

    def read_messages(self, patient_id: str) -> list[dict[str, Any]]:
        return [row for row in self._read_lines(self._messages_file) if row.get("patient_id") == patient_id]

    def read_vitals(self, patient_id: str) -> list[dict[str, Any]]:
        return [row for row in self._read_lines(self._vitals_file) if row.get("patient_id") == patient_id]

    @staticmethod
    def _read_lines(path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]

    async def fetch_doctor_patients(self, doctor_id: str) -> list[dict[str, Any]]:
        if not self._patients_file.exists():
            return []
        rows = json.loads(self._patients_file.read_text(encoding="utf-8"))
        return [row for row in rows if row.get("assigned_doctor_id") == doctor_id]


class SupabaseRecordStore:
    """Supabase tables accessed through the synchronous client off the event loop."""

    def __init__(self, settings: Settings, client: Any | None = None):
        if client is None:
            from supabase import create_client

            if not settings.supabase_configured:
                raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set for the supabase store")
            client = create_client(settings.supabase_url, settings.supabase_key)
        self._client = client

    def table(self, name: str):
        return self._client.table(name)

    async def insert_message(self, row: dict[str, Any]) -> None:
        await asyncio.to_thread(lambda: self.table("messages").insert(row).execute())

    async def insert_vitals(self, rows: list[dict[str, Any]]) -> None:
        if rows:
            await asyncio.to_thread(lambda: self.table("vitals").insert(rows).execute())

    async def fetch_doctor_patients(self, doctor_id: str) -> list[dict[str, Any]]:
        response = await asyncio.to_thread(
            lambda: self.table("patients")
            .select("*, messages(*), vitals(*)")
            .eq("assigned_doctor_id", doctor_id)
            .execute()
        )
        return list(response.data or [])


class AttachmentArchive:
    """Stores inline attachments in S3 when configured, otherwise on local disk."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._root = Path(settings.local_storage_dir) / "attachments"
        self._root.mkdir(parents=True, exist_ok=True)

        self._s3 = None
        if settings.s3_bucket:
            import boto3

            self._s3 = boto3.client("s3", region_name=settings.s3_region)

    @staticmethod
    def is_inline(content: str) -> bool:
        return content.strip().startswith("data:") and "," in content

    @staticmethod
    def _decode_inline(value: str) -> tuple[bytes, str]:
        header, _, data = value.strip().partition(",")
        content_type = header[len("data:") :].split(";", 1)[0] or "application/octet-stream"
        try:
            return base64.b64decode(data, validate=False), content_type
        except binascii.Error as exc:
            raise ValueError("attachment is not valid base64") from exc

    def _s3_key(self, patient_id: str, name: str) -> str:
        prefix = self._settings.s3_prefix.strip("/")
        return f"{prefix}/{patient_id}/{name}" if prefix else f"{patient_id}/{name}"

    async def store_inline(self, patient_id: str, message_id: str, data_url: str, *, file_name: str | None) -> str:
        content, content_type = self._decode_inline(data_url)
        suffix = Path(file_name).suffix if file_name else (mimetypes.guess_extension(content_type) or ".bin")
        name = f"{message_id}{suffix}"
        key = self._s3_key(patient_id, name)

        if self._s3 is not None and self._settings.s3_bucket:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self._settings.s3_bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
            return f"s3://{self._settings.s3_bucket}/{key}"

        local_path = self._root / patient_id / name
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(content)
        return str(local_path)
