"""
API key 加密

对称加密（Fernet），密钥由配置中的 secret 派生。
明文 key 只在调用模型前解密，永远不写日志。
"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from double_ai.config import Config
from double_ai.errors import ConfigurationError

__all__ = ["KeyCipher", "InvalidToken", "get_cipher"]


class KeyCipher:
    def __init__(self, secret: str):
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, text: Optional[str]) -> str:
        if not text:
            return ""
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, cipher_text: Optional[str]) -> str:
        """Raises InvalidToken when the ciphertext was not produced with this secret"""
        if not cipher_text:
            return ""
        return self._fernet.decrypt(cipher_text.encode("ascii")).decode("utf-8")


def get_cipher() -> KeyCipher:
    secret = Config.security.encryption_secret
    if not secret:
        raise ConfigurationError(
            "No encryption secret configured (SECURITY__ENCRYPTION_SECRET)",
            {"reason": "missing_encryption_secret"},
        )
    return KeyCipher(secret)
