import ipaddress
import os
import re
import socket
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_STATIC_DIR = os.path.join(PACKAGE_DIR, "static")

LOCAL_HOSTNAMES = {
    "localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback", "0.0.0.0",
}


class ConfigError(Exception):
    pass


class Settings(BaseModel):
    mongodb_uri: str
    db_name: str = "postflow"
    static_dir: str = DEFAULT_STATIC_DIR
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"


def _uri_hosts(uri: str) -> list:
    # mongodb://user:pw@host1:27017,host2/db?opts  ->  ["host1", "host2"]
    rest = uri.split("://", 1)[-1]
    rest = re.split(r"[/?]", rest, maxsplit=1)[0]
    rest = rest.rsplit("@", 1)[-1]
    hosts = []
    for part in rest.split(","):
        part = part.strip()
        if part.startswith("["):
            hosts.append(part[1:part.find("]")])
        else:
            hosts.append(part.split(":", 1)[0])
    return [h.lower() for h in hosts if h]


def _host_address(host: str):
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        # short IPv4 forms such as 127.1 or 2130706433
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped:
        return addr.ipv4_mapped
    return addr


def is_local_uri(uri: str) -> bool:
    """True when any host in the connection string is local or loopback."""
    for host in _uri_hosts(uri):
        host = host.rstrip(".")
        if host in LOCAL_HOSTNAMES:
            return True
        addr = _host_address(host)
        if addr is not None and (addr.is_loopback or addr.is_unspecified):
            return True
    return False


def redact_uri(uri: str) -> str:
    return re.sub(r":[^:@/]+@", ":****@", uri)


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(dotenv_path=env_file or os.path.join(os.getcwd(), ".env"))

    uri = (os.getenv("MONGODB_URI") or "").strip()
    if not uri:
        raise ConfigError("MONGODB_URI is not set; add it to the environment or .env")
    if not uri.startswith(("mongodb://", "mongodb+srv://")):
        raise ConfigError("MONGODB_URI must start with mongodb:// or mongodb+srv://")
    if is_local_uri(uri):
        raise ConfigError("MONGODB_URI points at a local address; a remote database is required")

    try:
        port = int(os.getenv("PORT", 8080))
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got {os.getenv('PORT')!r}")

    return Settings(
        mongodb_uri=uri,
        db_name=os.getenv("DB_NAME", "postflow"),
        static_dir=os.getenv("STATIC_DIR", DEFAULT_STATIC_DIR),
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
