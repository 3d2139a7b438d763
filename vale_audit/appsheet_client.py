#!/usr/bin/env python
"""
AppSheet client and reference-data extraction

Pulls the day's finished trips (viaje) plus the lookup tables needed to
resolve plates, obras and report recipients, and caches the result in the
blob store as ``extractions/<date>/data.json``.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests

from vale_audit.blob_store import BlobStore
from vale_audit.date_utils import date_path, format_appsheet_date, next_day, to_display_date
from vale_audit.errors import TabularSourceError
from vale_audit.ocr_models import ValeRecord


class AppSheetClient:
    """AppSheet API v2 client (Find action only)"""

    def __init__(self, app_id: str = None, app_key: str = None,
                 region: str = "www.appsheet.com", timeout: int = 60):
        self.app_id = app_id or os.getenv("APPSHEET_APP_ID")
        self.app_key = app_key or os.getenv("APPSHEET_APP_KEY")
        self.region = region
        self.timeout = timeout
        self.headers = {
            "ApplicationAccessKey": self.app_key or "",
            "Content-Type": "application/json",
        }

    def find(self, table: str, selector: Optional[str] = None) -> List[Dict]:
        """Rows of ``table``, optionally filtered with an AppSheet selector expression

        Raises:
            TabularSourceError: HTTP or transport failure, or a non-list body
        """
        url = f"https://{self.region}/api/v2/apps/{self.app_id}/tables/{table}/Action"
        payload = {"Action": "Find"}
        if selector:
            payload["Properties"] = {"Selector": selector}

        try:
            response = requests.post(url, headers=self.headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            print(f"❌ Error extracting from {table}: {e}")
            raise TabularSourceError(table, str(e)) from e
        except ValueError as e:
            raise TabularSourceError(table, f"invalid JSON body: {e}") from e

        if data is None or data == "":
            data = []
        if not isinstance(data, list):
            raise TabularSourceError(table, f"unexpected body type {type(data).__name__}")
        print(f"✅ Extracted {len(data)} records from {table}")
        return data


@dataclass
class ReferenceData:
    records: List[ValeRecord]
    valid_plates: List[str] = field(default_factory=list)
    users: Dict[str, Dict] = field(default_factory=dict)


def extraction_path(date_p: str) -> str:
    return f"extractions/{date_p}/data.json"


def _viaje_selector(date_str: str) -> str:
    return (
        f'Filter(viaje, AND([fecha_ultima_actualizacion] >= "{date_str}", '
        f'[estado] = "Finalizado", [fecha_ultima_actualizacion] < "{next_day(date_str)}"))'
    )


def _split_refs(value) -> List[str]:
    return [v.strip() for v in str(value or "").split(",") if v.strip()]


def build_user_directory(usuarios: List[Dict], usuario_obras: List[Dict],
                         obra_names: Dict[str, str]) -> Dict[str, Dict]:
    usuario_obra_by_id = {uo.get("Row ID"): uo for uo in usuario_obras}
    users = {}
    for u in usuarios:
        obra_ids = [
            usuario_obra_by_id[ref].get("id_obra")
            for ref in _split_refs(u.get("Related usuario_obras"))
            if ref in usuario_obra_by_id
        ]
        users[u.get("Row ID")] = {
            "email": u.get("correo_electronico"),
            "role": u.get("rol"),
            "status": u.get("estado_usuario"),
            "username": u.get("usuario"),
            "obras": [obra_names[i] for i in obra_ids if i in obra_names],
        }
    return users


def _find_optional(client: AppSheetClient, table: str) -> List[Dict]:
    try:
        return client.find(table)
    except TabularSourceError as e:
        print(f"⚠️ {e.message}, continuing without {table}")
        return []


def _from_cache(data: Dict) -> ReferenceData:
    users = {}
    for u in data.get("users") or []:
        u = dict(u)
        users[u.pop("id", None)] = u
    return ReferenceData(
        records=[ValeRecord.from_dict(r) for r in data.get("records") or []],
        valid_plates=list(data.get("valid_plates") or []),
        users=users,
    )


def load_reference_data(date_str: str, store: BlobStore, client: AppSheetClient) -> ReferenceData:
    """Reference records for an MM/DD/YYYY date, from cache or AppSheet

    Raises:
        TabularSourceError: the viaje table could not be fetched
    """
    path = extraction_path(date_path(date_str))

    cached = store.read_json(path)
    if cached.ok and cached.value and "records" in cached.value:
        print(f"📦 Loading cached extraction: {path}")
        ref = _from_cache(cached.value)
        print(f"✅ Loaded {len(ref.records)} records from cache")
        return ref

    print("🔄 No cache found, fetching from AppSheet...")
    viajes = client.find("viaje", _viaje_selector(date_str))
    vehiculos = _find_optional(client, "vehiculo")
    obras = _find_optional(client, "obra")
    usuarios = _find_optional(client, "usuario")
    usuario_obras = _find_optional(client, "usuario_obra")

    plates_by_id = {v.get("Row ID"): v.get("placa") for v in vehiculos}
    obra_names = {o.get("Row ID"): o.get("nombre") for o in obras}
    users = build_user_directory(usuarios, usuario_obras, obra_names)
    valid_plates = sorted({v.get("placa") for v in vehiculos if v.get("placa")})

    records = [
        ValeRecord(
            row_id=str(v.get("Row ID") or ""),
            numero_vale=str(v.get("numero_vale") or ""),
            placa=plates_by_id.get(v.get("id_vehiculo")) or "",
            m3=str(v.get("m3_transportados") or ""),
            fecha=format_appsheet_date(v.get("fecha_vale")) or "",
            obra=obra_names.get(v.get("id_obra")),
            foto_vale=v.get("foto_vale"),
        )
        for v in viajes
    ]

    store.write_json(path, {
        "extraction_date": datetime.now(timezone.utc).isoformat(),
        "date_filter": to_display_date(date_str),
        "estado_filter": "Finalizado",
        "record_count": len(records),
        "records": [r.to_dict() for r in records],
        "valid_plates": valid_plates,
        "users": [{"id": uid, **data} for uid, data in users.items()],
    })
    return ReferenceData(records, valid_plates, users)
