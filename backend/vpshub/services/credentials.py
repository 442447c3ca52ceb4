from __future__ import annotations
import re
import secrets
import string

# vendor panels reject most punctuation; keep to these
SAFE_SPECIALS = "@#&$"
PASSWORD_LENGTH = 12

_WINDOWS_RE = re.compile(r"windows|rdp|vps", re.I)

def is_windows_product(product_name: str | None) -> bool:
    return bool(_WINDOWS_RE.search(product_name or ""))

def login_username(product_name: str | None) -> str:
    return "administrator" if is_windows_product(product_name) else "root"

def target_os(product_name: str | None) -> str:
    return "Windows 2022 64" if is_windows_product(product_name) else "Ubuntu 22"

def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """At least one upper, lower, digit and special; shuffled."""
    pools = [string.ascii_uppercase, string.ascii_lowercase, string.digits, SAFE_SPECIALS]
    chars = [secrets.choice(p) for p in pools]
    alphabet = "".join(pools)
    chars += [secrets.choice(alphabet) for _ in range(max(length, len(pools)) - len(pools))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)

def generate_hostname(product_name: str | None, memory: str | None) -> str:
    clean = re.sub(r"[^a-z0-9]", "", (product_name or "").lower()) or "server"
    mem = (memory or "").lower().replace("gb", "").strip()
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return f"{clean}-{mem}gb-{suffix}.com"

def mask_secret(value: str | None, keep: int = 3) -> str:
    if not value:
        return "(missing)"
    return value[:keep] + "***" if len(value) > keep else value[:1] + "***"
