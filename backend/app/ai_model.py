import json
import os
from typing import Any, Dict, Optional

import requests

from .logging_config import log_event


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    # Engines sometimes wrap the object in prose
    start = text.find('{')
    end = text.rfind('}')
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except ValueError:
            return None
    return None


class NCAnalysisClient:
    """Client for the internal AI engine that drafts NC analyses.

    Suggestions are advisory only. Every failure mode (engine not configured,
    unreachable, non-200, malformed body) yields ``None`` so callers fall back
    to manual entry.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.base_url = base_url if base_url is not None else os.getenv('AI_ENGINE_URL')
        self.api_key = api_key if api_key is not None else os.getenv('AI_ENGINE_API_KEY')
        self.timeout = timeout if timeout is not None else float(os.getenv('AI_ENGINE_TIMEOUT', '30'))

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def analyze(self, title: str, description: Optional[str], severity: str) -> Optional[Dict[str, str]]:
        if not self.configured:
            return None
        url = f"{self.base_url.rstrip('/')}/api/v1/analyze-nc"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Internal-API-Key"] = self.api_key
        body = {"title": title, "description": description or "", "severity": severity}
        try:
            r = requests.post(url, headers=headers, data=json.dumps(body), timeout=self.timeout)
        except requests.RequestException as e:
            log_event("ai_analysis_failed", level="warning", reason="unreachable", error=str(e))
            return None
        if r.status_code != 200:
            log_event("ai_analysis_failed", level="warning", reason="status", status=r.status_code)
            return None
        data = _extract_json(r.text)
        if not isinstance(data, dict):
            log_event("ai_analysis_failed", level="warning", reason="malformed")
            return None
        rca = data.get("root_cause_analysis")
        plan = data.get("suggested_action_plan")
        if not rca and not plan:
            log_event("ai_analysis_failed", level="warning", reason="empty")
            return None
        return {"root_cause_analysis": rca or "", "suggested_action_plan": plan or ""}
