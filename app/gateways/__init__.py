from .model_client import ModelGateway, extract_reasoning
from .translation_client import TranslationGateway

__all__ = ["ModelGateway", "TranslationGateway", "extract_reasoning"]
