"""
Remote manifest storage in a Supabase ``books`` table.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from supabase import Client, create_client

from magicbook.common.config import PersistenceConfig
from magicbook.common.errors import PersistenceError

from .manifest import Manifest, utcnow

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], Client]


def manifest_to_row(manifest: Manifest) -> dict[str, Any]:
    """Row layout: the full manifest plus denormalized columns for listing."""
    return {
        "id": manifest.id,
        "user_id": manifest.owner_id,
        "status": manifest.status.value,
        "step": manifest.step,
        "error": manifest.error,
        "theme": manifest.theme,
        "style": manifest.style,
        "child_name": manifest.child.name,
        "child_age": manifest.child.age,
        "child_gender": manifest.child.gender,
        "pdf_url": manifest.document.url,
        "manifest": manifest.to_dict(),
        "updated_at": utcnow().isoformat(),
    }


def row_to_manifest(row: Mapping[str, Any]) -> Manifest:
    """Rebuild a manifest, filling gaps in the stored document from the columns."""
    document = dict(row.get("manifest") or {})
    document.setdefault("id", row.get("id"))
    document.setdefault("owner_id", row.get("user_id"))
    document.setdefault("status", row.get("status") or "created")
    document.setdefault("step", row.get("step") or "created")
    document.setdefault("error", row.get("error") or "")
    document.setdefault("theme", row.get("theme") or "")
    document.setdefault("style", row.get("style") or "read")
    if not document.get("child"):
        document["child"] = {
            "name": row.get("child_name") or "",
            "age": row.get("child_age"),
            "gender": row.get("child_gender") or "neutral",
        }
    document.setdefault("updated_at", row.get("updated_at"))
    document.setdefault("created_at", row.get("created_at"))
    return Manifest.from_dict(document)


class SupabaseBookTable:
    """
    Reads and writes book rows as the requesting user first, then as the
    service role.

    The user-scoped client is subject to row-level security; the service-role
    client is the fallback for writes made on a user's behalf and for admins.
    """

    def __init__(
        self,
        config: PersistenceConfig,
        *,
        client_factory: ClientFactory = create_client,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._admin: Client | None = None

    @property
    def table_name(self) -> str:
        return self._config.table

    def _user_client(self, access_token: str | None) -> Client | None:
        if not access_token or not self._config.supabase_anon_key:
            return None
        client = self._client_factory(self._config.supabase_url, self._config.supabase_anon_key)
        client.postgrest.auth(access_token)
        return client

    def _admin_client(self) -> Client | None:
        if not self._config.supabase_service_role_key:
            return None
        if self._admin is None:
            self._admin = self._client_factory(
                self._config.supabase_url, self._config.supabase_service_role_key
            )
        return self._admin

    def _clients(self, access_token: str | None) -> list[tuple[str, Client]]:
        candidates = [("user", self._user_client(access_token)), ("service", self._admin_client())]
        return [(label, client) for label, client in candidates if client is not None]

    def fetch(self, job_id: str, access_token: str | None = None) -> Manifest | None:
        """Return the stored manifest or ``None`` when no row exists."""
        clients = self._clients(access_token)
        if not clients:
            raise PersistenceError("No Supabase credentials configured.")

        errors: list[str] = []
        for label, client in clients:
            try:
                response = (
                    client.table(self.table_name).select("*").eq("id", job_id).limit(1).execute()
                )
            except Exception as exc:
                logger.warning("Supabase read (%s) failed for %s: %s", label, job_id, exc)
                errors.append(f"{label}: {exc}")
                continue
            rows = response.data or []
            if rows:
                return row_to_manifest(rows[0])
        if len(errors) == len(clients):
            raise PersistenceError(f"Could not read job {job_id}: {'; '.join(errors)}")
        return None

    def upsert(self, manifest: Manifest, access_token: str | None = None) -> None:
        clients = self._clients(access_token)
        if not clients:
            raise PersistenceError("No Supabase credentials configured.")

        row = manifest_to_row(manifest)
        errors: list[str] = []
        for label, client in clients:
            try:
                client.table(self.table_name).upsert(row, on_conflict="id").execute()
                return
            except Exception as exc:
                logger.warning("Supabase upsert (%s) failed for %s: %s", label, manifest.id, exc)
                errors.append(f"{label}: {exc}")
        raise PersistenceError(f"Could not save job {manifest.id}: {'; '.join(errors)}")
