# analysis/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urljoin


class APIError(Exception):
    """Raised when requests to the Responses API fail."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResponsesClient:
    """Blocking HTTP client for the OpenAI Responses API."""
    
    def __init__(self, base_url: str, api_key: str, timeout: float = 120.0):
        """
        Initialize API client.
        
        Args:
            base_url: Base URL of the API (e.g., "https://api.openai.com")
            api_key: Bearer token sent with every request
            timeout: Socket timeout per request, in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
    
    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
    ) -> dict:
        """
        Make an HTTP request to the API.
        
        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path (e.g., "/v1/responses")
            data: Optional JSON data to send in request body
            
        Returns:
            Parsed JSON response as dictionary
            
        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        
        req_headers = {
            "Authorization": f"Bearer {self.api_key}",
        }
        req_data = None
        if data is not None:
            req_headers["Content-Type"] = "application/json"
            req_data = json.dumps(data).encode("utf-8")
        
        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)
        
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"OpenAI error: {_error_message(error_body, e.code)}", status_code=e.code)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")
    
    def create_response(self, body: dict) -> dict:
        """Submit a new response request; may come back still in progress."""
        return self._request("POST", "/v1/responses", data=body)
    
    def get_response(self, response_id: str) -> dict:
        """Fetch the current state of a previously created response."""
        return self._request("GET", f"/v1/responses/{response_id}")


def _error_message(body: str, status_code: int) -> str:
    try:
        parsed = json.loads(body) if body else {}
    except json.JSONDecodeError:
        parsed = {}
    error = parsed.get("error") if isinstance(parsed, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {status_code}"
