from dataclasses import dataclass


@dataclass
class AppConfig:
    name: str
    secret_key: str
    base_currency: str
    default_language: str
    invoice_prefix: str
    low_stock_threshold: int


@dataclass
class AIConfig:
    enabled: bool
    api_key: str
    base_url: str
    chat_model: str
    agent_model: str
    image_model: str
    timeout: int
