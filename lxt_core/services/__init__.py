from .collaborators import Collaborators
from .gemini_client import GeminiClient
from .openai_client import OpenAIClient
from .persona import LLMPersonaService
from .signals import HeuristicSignalsService
from .weather import OpenWeatherService

__all__ = [
    "Collaborators",
    "GeminiClient",
    "HeuristicSignalsService",
    "LLMPersonaService",
    "OpenAIClient",
    "OpenWeatherService",
]
