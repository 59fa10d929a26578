# plugins/core_shares/hashing.py
"""
分享密码的哈希格式。

存储值在读取时解析为两种变体之一：
- CurrentHash: bcrypt（`$2b$<cost>$...`）。
- LegacyHash: 升级前写入的格式，只用于验证，验证成功后立即替换为 bcrypt：
  - sha256_hex: 无盐 SHA-256 十六进制摘要；
  - pbkdf2_bare: 浏览器端写入的无前缀 base64(salt + hash)，PBKDF2-SHA256 100000 次；
  - pbkdf2_prefixed: `pbkdf2_sha256$<迭代次数>$<salt b64>$<hash b64>`。
"""
import base64
import binascii
import hashlib
import hmac
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import bcrypt

BCRYPT_ROUNDS = 12
# bcrypt 只使用前 72 字节，更长的密码直接拒绝
MAX_PASSWORD_BYTES = 72

LEGACY_PBKDF2_ITERATIONS = 100_000
LEGACY_SALT_BYTES = 16
LEGACY_DIGEST_BYTES = 32
LEGACY_PBKDF2_PREFIX = "pbkdf2_sha256$"

_BCRYPT_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")
_LEGACY_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class LegacyScheme(str, Enum):
    SHA256_HEX = "sha256_hex"
    PBKDF2_BARE = "pbkdf2_bare"
    PBKDF2_PREFIXED = "pbkdf2_prefixed"


@dataclass(frozen=True)
class CurrentHash:
    encoded: str

    def verify(self, password: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), self.encoded.encode("ascii"))


@dataclass(frozen=True)
class LegacyHash:
    scheme: LegacyScheme
    digest: bytes
    salt: bytes = b""
    iterations: int = 0

    def verify(self, password: str) -> bool:
        if self.scheme == LegacyScheme.SHA256_HEX:
            candidate = hashlib.sha256(password.encode("utf-8")).digest()
        else:
            candidate = hashlib.pbkdf2_hmac(
                "sha256", password.encode("utf-8"), self.salt, self.iterations, dklen=len(self.digest)
            )
        return hmac.compare_digest(candidate, self.digest)


PasswordHash = Union[CurrentHash, LegacyHash]


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def parse_password_hash(stored: str) -> PasswordHash:
    if _BCRYPT_RE.match(stored):
        return CurrentHash(encoded=stored)

    if stored.startswith(LEGACY_PBKDF2_PREFIX):
        try:
            _, iterations, salt_b64, digest_b64 = stored.split("$")
            return LegacyHash(
                scheme=LegacyScheme.PBKDF2_PREFIXED,
                iterations=int(iterations),
                salt=base64.b64decode(salt_b64, validate=True),
                digest=base64.b64decode(digest_b64, validate=True),
            )
        except (ValueError, binascii.Error) as e:
            raise ValueError("Malformed pbkdf2_sha256 hash") from e

    # 64 位十六进制恰好也是合法 base64，所以必须先判断
    if _LEGACY_HEX_RE.match(stored):
        return LegacyHash(scheme=LegacyScheme.SHA256_HEX, digest=bytes.fromhex(stored))

    try:
        combined = base64.b64decode(stored, validate=True)
    except binascii.Error as e:
        raise ValueError("Unrecognized password hash format") from e
    if len(combined) != LEGACY_SALT_BYTES + LEGACY_DIGEST_BYTES:
        raise ValueError("Unrecognized password hash format")
    return LegacyHash(
        scheme=LegacyScheme.PBKDF2_BARE,
        iterations=LEGACY_PBKDF2_ITERATIONS,
        salt=combined[:LEGACY_SALT_BYTES],
        digest=combined[LEGACY_SALT_BYTES:],
    )


def verify_password(password: str, stored: str) -> Tuple[bool, Optional[str]]:
    """
    返回 (是否匹配, 需要写回的新哈希)。
    第二项只有在旧格式验证成功时才非空。
    """
    try:
        parsed = parse_password_hash(stored)
    except ValueError:
        return False, None

    if isinstance(parsed, CurrentHash):
        if password_too_long(password):
            return False, None
        return parsed.verify(password), None

    if not parsed.verify(password):
        return False, None
    if password_too_long(password):
        # bcrypt 存不下，保留旧格式
        return True, None
    return True, hash_password(password)
