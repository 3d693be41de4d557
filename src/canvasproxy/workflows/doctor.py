"""Environment diagnostics for ``canvasproxy doctor``.

Each check is a small function returning a :class:`DoctorCheck`; warn-level
failures make the whole report not ok, info-level ones are reported only.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from . import stream_transport
from .client_transport import ClientTransport
from .proxy_config import ENV_KEYS, ENV_SSL_VERIFY, ENV_TEMPORARY, temporary_location_from_env
from .temporary import MEMORY, SPOOLED

_BOOLEAN_WORDS = {"0", "1", "true", "false", "yes", "no", "on", "off"}


@dataclass
class DoctorCheck:
    name: str
    ok: bool
    level: str = "warn"
    detail: Optional[str] = None
    remedy: Optional[str] = None
    value: Optional[str] = None

    @property
    def failed(self) -> bool:
        return not self.ok and self.level == "warn"

    def as_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "name": self.name,
            "status": "ok" if self.ok else "missing",
            "level": self.level,
            "detail": self.detail,
        }
        if self.remedy:
            entry["remedy"] = self.remedy
        if self.value is not None:
            entry["value"] = self.value
        return entry


def _directory_writable(path: Path) -> bool:
    """True when ``path`` is a writable directory or could be created as one."""
    try:
        if path.exists():
            return path.is_dir() and os.access(path, os.W_OK)
        return path.parent.is_dir() and os.access(path.parent, os.W_OK)
    except OSError:
        return False


def _requests_check() -> DoctorCheck:
    usable = ClientTransport().available()
    return DoctorCheck(
        "requests",
        usable,
        detail="client transport enabled" if usable else "falling back to the stream transport",
        remedy="Install requests (`pip install requests`).",
    )


def _ssl_check() -> DoctorCheck:
    usable = stream_transport.ssl is not None
    return DoctorCheck(
        "ssl",
        usable,
        detail="https supported by the stream transport" if usable else "https URLs fail on the stream transport",
        remedy="Use a Python build linked against OpenSSL.",
    )


def _temporary_check(env: Mapping[str, str]) -> DoctorCheck:
    location = temporary_location_from_env(env)
    if location in (MEMORY, SPOOLED):
        return DoctorCheck(ENV_TEMPORARY, True, level="info", detail=f"{location} buffer", value=location)
    return DoctorCheck(
        ENV_TEMPORARY,
        _directory_writable(Path(location)),
        detail=location,
        remedy=f"Create the directory or point {ENV_TEMPORARY} at a writable location.",
    )


def _ca_bundle_check(env: Mapping[str, str]) -> Optional[DoctorCheck]:
    setting = (env.get(ENV_SSL_VERIFY) or "").strip()
    if not setting or setting.lower() in _BOOLEAN_WORDS:
        return None
    return DoctorCheck(
        ENV_SSL_VERIFY,
        Path(setting).is_file(),
        detail=setting,
        remedy=f"Point {ENV_SSL_VERIFY} at an existing CA bundle.",
    )


def _override_checks(env: Mapping[str, str]) -> Iterator[DoctorCheck]:
    for key in ENV_KEYS:
        if key in (ENV_SSL_VERIFY, ENV_TEMPORARY):
            continue
        value = env.get(key)
        if value:
            yield DoctorCheck(key, True, level="info", detail="override set", value=value)


def run_checks(environ: Optional[Mapping[str, str]] = None) -> List[DoctorCheck]:
    env = os.environ if environ is None else environ
    checks = [_requests_check(), _ssl_check(), _temporary_check(env)]
    ca_bundle = _ca_bundle_check(env)
    if ca_bundle is not None:
        checks.append(ca_bundle)
    checks.extend(_override_checks(env))
    return checks


def build_doctor_report(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    checks = run_checks(environ)
    return {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": not any(check.failed for check in checks),
        "checks": [check.as_dict() for check in checks],
    }


def format_doctor_report(report: Dict[str, Any]) -> str:
    checks = report.get("checks", [])
    width = max((len(check.get("name", "")) for check in checks), default=0)
    verdict = "ok" if report.get("ok") else "problems found"
    lines = [f"canvasproxy doctor ({verdict}) at {report.get('generated_at')}"]
    for check in checks:
        mark = "+" if check.get("status") == "ok" else ("!" if check.get("level") == "warn" else "-")
        row = f"{mark} {check.get('name', ''):<{width}}  {check.get('detail') or ''}"
        if check.get("value"):
            row = f"{row} [{check['value']}]"
        lines.append(row.rstrip())
        if check.get("status") != "ok" and check.get("remedy"):
            lines.append(f"  {'':<{width}}remedy: {check['remedy']}")
    return "\n".join(lines) + "\n"


__all__ = ["DoctorCheck", "build_doctor_report", "format_doctor_report", "run_checks"]
