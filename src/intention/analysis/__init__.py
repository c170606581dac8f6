from .analyzer import AnalysisError, Analyzer, analyze, extract_response_text
from .api_client import APIError, ResponsesClient

__all__ = ["AnalysisError", "Analyzer", "analyze", "extract_response_text", "APIError", "ResponsesClient"]
