import json
import logging
from pathlib import Path

from models import AccountInfo, PlanType

log = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".claude.json"
BACKUPS_DIR = Path.home() / ".claude" / "backups"
BACKUP_PREFIX = ".claude.json.backup."


def _config_file(config_path: Path, backups_dir: Path) -> Path | None:
    if config_path.exists():
        return config_path
    try:
        backups = [p for p in backups_dir.iterdir() if p.name.startswith(BACKUP_PREFIX)]
    except OSError:
        return None
    # Suffix is a timestamp, so the largest name is the newest backup.
    return max(backups, key=lambda p: p.name) if backups else None


def plan_from_billing(billing_type: str, has_extra_usage: bool) -> PlanType:
    if "subscription" in billing_type.lower():
        return PlanType.MAX5 if has_extra_usage else PlanType.PRO
    return PlanType.API


def detect_account(
    config_path: Path = CONFIG_PATH,
    backups_dir: Path = BACKUPS_DIR,
) -> AccountInfo | None:
    """Read the signed-in account from Claude Code's local config file."""
    path = _config_file(config_path, backups_dir)
    if path is None:
        return None
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        log.debug("Could not read account config %s: %s", path, exc)
        return None

    account = data.get("oauthAccount") if isinstance(data, dict) else None
    if not isinstance(account, dict):
        return None
    email = account.get("emailAddress")
    if not isinstance(email, str) or not email:
        return None

    billing_type = account.get("billingType") or ""
    display_name = account.get("displayName")
    has_extra = account.get("hasExtraUsageEnabled") is True
    return AccountInfo(
        email=email,
        display_name=display_name if isinstance(display_name, str) else "",
        plan=plan_from_billing(str(billing_type), has_extra),
        has_extra_usage=has_extra,
    )
