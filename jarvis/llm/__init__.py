from jarvis.llm.ai_service import AIService, AIServiceError, SearchResult

__all__ = ["AIService", "AIServiceError", "SearchResult"]
