"""Service configuration read from a JSON file."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_TOP_LEVEL_STRINGS = ("dburl", "jsonrpc", "jwtsecret", "env")
_REDIS_FIELDS = ("addr", "password", "username")


@dataclass
class Configuration:
    rest_port: str = ""
    db_url: str = ""
    json_rpc: str = ""
    chain_id: int = 0
    kafka_brokers: list[str] = field(default_factory=list)
    redis_addr: str = ""
    redis_password: str = ""
    redis_username: str = ""
    jwt_secret: str = ""
    vdex_contract: str = ""
    tokens: dict[str, str] = field(default_factory=dict)
    dispatcher_wallets: list[str] = field(default_factory=list)
    gasless_wallets: list[str] = field(default_factory=list)
    env: str = ""
    push_port: str = ""
    push_path: str = ""

    def address_by_symbol(self, symbol: str) -> str:
        """Return the token address whose symbol matches, ignoring case, or ''."""
        wanted = symbol.casefold()
        return next(
            (addr for addr, sym in self.tokens.items() if sym.casefold() == wanted), ""
        )

    def dispatcher(self, index: int) -> str:
        """Return the dispatcher wallet at the given position."""
        return _pick(self.dispatcher_wallets, index)

    def gasless_dispatcher(self, index: int) -> str:
        """Return the gasless wallet at the given position."""
        return _pick(self.gasless_wallets, index)

    def redis_url(self) -> str:
        """Return the Redis URL; TLS is used outside the local environment."""
        scheme = "redis" if self.env == "local" else "rediss"
        return f"{scheme}://{self.redis_username}:{self.redis_password}@{self.redis_addr}/0"


def _pick(items: list[str], index: int) -> str:
    if index < 0:
        raise IndexError(f"index out of range: {index}")
    return items[index]


def _lower_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {str(key).lower(): _lower_keys(value) for key, value in data.items()}
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' expected a map, got {type(value).__name__}")
    return value


def _str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"'{name}' expected a string, got {type(value).__name__}")
    return str(value)


def _int(data: dict[str, Any], name: str) -> int:
    value = data.get(name)
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' expected an integer, got {value!r}") from None


def _str_list(data: dict[str, Any], name: str) -> list[str]:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{name}' expected a list, got {type(value).__name__}")
    return [str(item) for item in value]


def config_from_dict(data: dict[str, Any]) -> Configuration:
    """Build a Configuration from parsed JSON; key names match without regard to case."""
    data = _lower_keys(data)
    rest = _section(data, "restserver")
    kafka = _section(data, "kafka")
    redis = _section(data, "redis")
    contracts = _section(data, "contracts")
    push = _section(data, "pushserver")
    tokens = _section(data, "tokens")
    db_url, json_rpc, jwt_secret, env = (_str(data, name) for name in _TOP_LEVEL_STRINGS)
    redis_addr, redis_password, redis_username = (_str(redis, name) for name in _REDIS_FIELDS)
    return Configuration(
        rest_port=_str(rest, "port"),
        db_url=db_url,
        json_rpc=json_rpc,
        chain_id=_int(data, "chainid"),
        kafka_brokers=_str_list(kafka, "brokers"),
        redis_addr=redis_addr,
        redis_password=redis_password,
        redis_username=redis_username,
        jwt_secret=jwt_secret,
        vdex_contract=_str(contracts, "vdex"),
        tokens={key: _str(tokens, key) for key in tokens},
        dispatcher_wallets=_str_list(data, "dispatcherwallets"),
        gasless_wallets=_str_list(data, "gaslesswallets"),
        env=env,
        push_port=_str(push, "port"),
        push_path=_str(push, "path"),
    )


def load_config(path: str | Path) -> Configuration:
    """Read a JSON config file; a missing or unreadable file gives an empty configuration."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("config file not found: %s", exc)
        data = {}
    if not isinstance(data, dict):
        raise ValueError("config file must hold a JSON object")
    conf = config_from_dict(data)
    logger.debug("vdex: %r", conf)
    return conf