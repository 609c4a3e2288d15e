"""
Double AI 异常体系

- ConfigurationError: 没有可用的 API key / 维护模式
- CompletionError:    模型调用失败或返回内容不可用
- PersistenceError:   远端仓库调用失败（在 SessionStore 边界降级为 SyncEvent）
- ValidationError:    空消息、未知会话、非法的设置 patch
"""

from typing import Any, Dict, Optional


class DoubleAIError(Exception):
    """Base exception for all domain errors"""

    code = "DOUBLE_AI_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(DoubleAIError):
    code = "CONFIGURATION_ERROR"


class CompletionError(DoubleAIError):
    code = "COMPLETION_ERROR"


class PersistenceError(DoubleAIError):
    code = "PERSISTENCE_ERROR"


class ValidationError(DoubleAIError):
    code = "VALIDATION_ERROR"


class SessionNotFoundError(ValidationError):
    code = "SESSION_NOT_FOUND"


class PersonalKeyNotAllowedError(ValidationError):
    code = "PERSONAL_KEY_NOT_ALLOWED"
