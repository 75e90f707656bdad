import os

import yaml
from pydantic import BaseModel, Field, ValidationError
from typing import Literal

from errors import ConfigurationError

# Путь к файлу config.yaml (относительно текущего файла), можно переопределить через PSI_CONFIG
config_path = os.environ.get(
    'PSI_CONFIG', os.path.join(os.path.dirname(__file__), 'config.yaml')
)


class Settings(BaseModel):
    host: str = '0.0.0.0'
    port: int = Field(5995, ge=1, le=65535)
    fpr: float = Field(0.001, gt=0, lt=1)
    default_size_hint: int = Field(100, ge=1)
    split: Literal['line', 'word', 'char'] = 'line'
    tile_size: int = Field(5, ge=1, le=9999)
    concurrency: int = Field(10, ge=1)
    timeout: float = Field(30.0, gt=0)
    redaction_salt: str = 'psi-redaction-salt-8675309'
    output_image: str = 'psi_output.png'


def load_config(path: str) -> Settings:
    """
    Загружает и проверяет конфигурацию из YAML.

    Если файла нет, используются значения по умолчанию.
    :raises ConfigurationError: файл не разбирается или значения недопустимы
    """
    if not os.path.exists(path):
        return Settings()
    try:
        with open(path, 'r') as file:
            raw = yaml.safe_load(file) or {}
        return Settings(**raw)
    except (yaml.YAMLError, ValidationError, TypeError) as e:
        raise ConfigurationError(f"Неверный файл конфигурации {path}: {e}", phase="config")


config = load_config(config_path)

# Параметры из YAML, которые читаются напрямую
redaction_salt = config.redaction_salt

# Производные параметры
channels = 4
