import os
import yaml


DEFAULTS = {
    "thresholds": {"confidence": 0.7, "quality_min_score": 7},
    "tolerances": {"date_days": 2, "quantity": 0.01},
    "retry": {"max_retries": 4, "base_delay_seconds": 1.0},
    "quality_gate": {"enabled": True},
    "gemini": {"model": "gemini-1.5-flash", "timeout_seconds": 120},
    "report": {"eligible_roles": ["Admin", "Super Admin", "Auditor"], "timezone": "America/Bogota"},
}


def _default_path() -> str:
    return os.getenv(
        "VALE_AUDIT_CONFIG",
        os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "audit.yml"),
    )


def _merge(base: dict, override: dict) -> dict:
    # shallow merge: one level of nested dicts
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in base.items()}
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k].update(v)
        else:
            merged[k] = v
    return merged


def load_audit_config(path: str = None) -> dict:
    path = path or _default_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        cfg = {}

    merged = _merge(DEFAULTS, cfg)

    # environment wins over the file
    if os.getenv("GEMINI_MAX_RETRIES"):
        merged["retry"]["max_retries"] = int(os.getenv("GEMINI_MAX_RETRIES"))
    if os.getenv("GEMINI_MODEL"):
        merged["gemini"]["model"] = os.getenv("GEMINI_MODEL")
    return merged
