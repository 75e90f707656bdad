"""
Иерархия исключений.

Все ошибки наследуются от PSIError и несут контекст: фазу и роль,
в которых произошёл сбой. Повторных попыток нет, частичного вывода нет.
"""
from typing import Optional


class PSIError(Exception):
    """Базовое исключение"""

    def __init__(self, message: str, phase: Optional[str] = None, role: Optional[str] = None):
        self.message = message
        self.phase = phase
        self.role = role
        super().__init__(str(self))

    def __str__(self):
        context = [part for part in (self.role, self.phase) if part]
        if context:
            return f"[{'/'.join(context)}] {self.message}"
        return self.message


class ConfigurationError(PSIError):
    """Недопустимая комбинация флагов или неверный файл конфигурации"""


class SourceReadError(PSIError, OSError):
    """Исходный файл или изображение не читается"""


class ProtocolError(PSIError):
    """Ошибка транспорта: статус, таймаут, разрыв соединения, битый блоб"""


class OracleContractViolation(PSIError):
    """Оракул вернул индекс вне [0, N), размер больше N или отказал сам движок"""


class OutputWriteError(PSIError, OSError):
    """Результат не удаётся записать"""
