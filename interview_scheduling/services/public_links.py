from interview_scheduling.core.config import settings


def build_public_path(path: str) -> str:
    base_path = (settings.public_app_base_path or "").strip()
    if base_path and not base_path.startswith("/"):
        base_path = f"/{base_path}"
    base_path = base_path.rstrip("/")
    if path and not path.startswith("/"):
        path = f"/{path}"
    return f"{base_path}{path}" if base_path else path


def build_public_link(path: str) -> str:
    base = (settings.public_app_origin or "").rstrip("/")
    full_path = build_public_path(path)
    return f"{base}{full_path}" if base else full_path


def scheduling_link_url(token: str) -> str:
    return build_public_link(f"/schedule/{token}")


def reschedule_url(reschedule_token: str) -> str:
    return build_public_link(f"/reschedule/{reschedule_token}")
