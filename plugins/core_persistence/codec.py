# plugins/core_persistence/codec.py
"""
/api/data 上传体的编解码。

客户端把 JSON 序列化后与固定密钥逐字节异或，作为二进制文件上传；
更早的客户端发送同样异或结果的十六进制文本；再早的客户端直接发 JSON。
这只是传输层的混淆，不是加密。
"""
import json
import re
from typing import Any, Dict, Optional

from .contracts import DataFormatError

XOR_KEY = "HotkerSync2025_Secret".encode("utf-8")
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def _xor(data: bytes) -> bytes:
    key_len = len(XOR_KEY)
    return bytes(b ^ XOR_KEY[i % key_len] for i, b in enumerate(data))


def xor_encode(text: str) -> bytes:
    return _xor(text.encode("utf-8"))


def xor_decode(data: bytes) -> str:
    try:
        return _xor(data).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DataFormatError("Binary payload is not valid XOR-obfuscated UTF-8") from e


def xor_hex_encode(text: str) -> str:
    return xor_encode(text).hex()


def xor_hex_decode(hex_text: str) -> str:
    if len(hex_text) % 2 != 0:
        raise DataFormatError("Hex payload has odd length")
    return xor_decode(bytes.fromhex(hex_text))


def encode_dataset(data: Dict[str, Any]) -> bytes:
    """客户端上传格式：紧凑 JSON -> XOR 二进制。"""
    return xor_encode(json.dumps(data, ensure_ascii=False, separators=(",", ":")))


def decode_file_payload(raw: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(xor_decode(raw))
    except json.JSONDecodeError as e:
        raise DataFormatError("Uploaded file does not contain JSON") from e
    return _require_object(data)


def decode_body_payload(body: bytes) -> Dict[str, Any]:
    """
    非 multipart 请求体：先按 Hex-XOR 尝试，再按普通 JSON 尝试。
    普通 JSON 可以是 {"data": {...}} 包装，也可以是数据集本身。
    """
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        raise DataFormatError("Unrecognized data format")

    if _HEX_RE.match(text):
        decoded = _try_hex(text)
        if decoded is not None:
            return decoded

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise DataFormatError("Unrecognized data format") from e

    if isinstance(parsed, dict) and isinstance(parsed.get("data"), dict):
        parsed = parsed["data"]
    return _require_object(parsed)


def _try_hex(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(xor_hex_decode(text))
    except (DataFormatError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _require_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict) or not data:
        raise DataFormatError("Unrecognized data format")
    return data
