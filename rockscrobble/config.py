"""
Persistent config: per-service API keys and scrobbling accounts.

Stored as JSON at ~/.config/rockscrobble/config.json:

    {"services": {"lastfm": {"api_key": "...", "api_secret": "..."}},
     "accounts": [{"service": "lastfm", "username": "...", "password_md5": "..."}]}

Passwords are only ever kept as their MD5 digest.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .errors import ConfigError

CONFIG_FILE = Path.home() / ".config" / "rockscrobble" / "config.json"

# Libre.fm accepts any key pair, so one public pair is shared by everyone.
LIBREFM_KEYS = ("rockscrobble", "rockscrobble")


@dataclass(frozen=True)
class ServiceKeys:
    api_key: str
    api_secret: str


@dataclass(frozen=True)
class Account:
    service: str
    username: str
    password_md5: str


@dataclass
class Config:
    services: Dict[str, ServiceKeys] = field(default_factory=dict)
    accounts: List[Account] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "services": {name: asdict(keys) for name, keys in self.services.items()},
            "accounts": [asdict(account) for account in self.accounts],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        try:
            services = {
                name: ServiceKeys(api_key=str(v["api_key"]), api_secret=str(v["api_secret"]))
                for name, v in (data.get("services") or {}).items()
            }
            accounts = [
                Account(service=str(a["service"]), username=str(a["username"]), password_md5=str(a["password_md5"]))
                for a in (data.get("accounts") or [])
            ]
        except (AttributeError, KeyError, TypeError) as exc:
            raise ConfigError(f"Malformed config: {exc}") from exc
        return cls(services=services, accounts=accounts)


def md5_hex(s: str) -> str:
    return hashlib.md5(s.encode("utf-8")).hexdigest()


def default_config_path() -> Path:
    return CONFIG_FILE


def load_config(path: Union[str, Path, None] = None) -> Config:
    path = Path(path) if path else CONFIG_FILE
    if not path.exists():
        return Config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed reading config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Failed parsing config at {path}: expected an object")
    return Config.from_dict(data)


def save_config(cfg: Config, path: Union[str, Path, None] = None) -> None:
    path = Path(path) if path else CONFIG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(cfg.to_dict(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as exc:
        raise ConfigError(f"Failed writing config at {path}: {exc}") from exc


def set_service_keys(cfg: Config, service: str, api_key: str, api_secret: str) -> None:
    cfg.services[service] = ServiceKeys(api_key=api_key, api_secret=api_secret)


def get_service_keys(cfg: Config, service: str) -> Optional[ServiceKeys]:
    return cfg.services.get(service)


def keys_for_account(cfg: Config, account: Account) -> Optional[ServiceKeys]:
    if account.service == "librefm":
        return ServiceKeys(*LIBREFM_KEYS)
    return get_service_keys(cfg, account.service)


def add_account(cfg: Config, service: str, username: str, password: str) -> Account:
    """Add or update an account. Only the password digest is stored."""
    account = Account(service=service, username=username, password_md5=md5_hex(password))
    for i, existing in enumerate(cfg.accounts):
        if existing.service == service and existing.username == username:
            cfg.accounts[i] = account
            return account
    cfg.accounts.append(account)
    return account


def remove_account(cfg: Config, service: str, username: str) -> bool:
    before = len(cfg.accounts)
    cfg.accounts = [a for a in cfg.accounts if not (a.service == service and a.username == username)]
    return len(cfg.accounts) != before


def iter_accounts(cfg: Config, service: Optional[str] = None) -> Iterator[Account]:
    for account in cfg.accounts:
        if service is None or account.service == service:
            yield account
