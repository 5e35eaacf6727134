"""Workflow optimization advice from a Mistral chat model.

Two calls are made against the chat-completions API:

* :func:`generate_optimization_report` sends the workflow YAML plus its
  metrics and asks for a JSON report of concrete optimizations.
* :func:`generate_optimized_yaml` sends the YAML plus the optimizations the
  user picked and asks for the rewritten file.

Model output is untrusted: reports are validated and trimmed by
:func:`parse_optimization_result`, and code fences are stripped from YAML.
"""

from __future__ import annotations

import json
import logging
import re

import requests

from actions_dashboard.exceptions import AdvisorRequestError, OptimizationResponseError
from actions_dashboard.retry_utils import request_with_retry
from actions_dashboard.utils import round_half_up

logger = logging.getLogger(__name__)

MISTRAL_API_BASE = "https://api.mistral.ai/v1"
DEFAULT_MODEL = "mistral-large-latest"
MAX_OUTPUT_TOKENS = 4096
REQUEST_TIMEOUT = 120

CATEGORIES = ("performance", "cost", "reliability", "security", "maintenance")
EFFORT_LEVELS = ("Low", "Medium", "High")
SUMMARY_FIELDS = ("expected_avg_duration", "expected_success_rate", "expected_p95_duration", "notes")

_FENCE_RE = re.compile(r"^```[\w+-]*[ \t]*\n(.*?)\n?```$", re.DOTALL)

# Models sometimes answer in camelCase despite the instructions.
_KEY_ALIASES = {
    "codeExample": "code_example",
    "estimatedImpact": "estimated_impact",
    "expectedAvgDuration": "expected_avg_duration",
    "expectedSuccessRate": "expected_success_rate",
    "expectedP95Duration": "expected_p95_duration",
}


def build_optimization_prompt(
    workflow_name: str,
    workflow_yaml: str,
    metrics: dict,
    window_days: int = 30,
) -> str:
    success_rate = float(metrics.get("success_rate") or 0)
    avg_duration = round_half_up((metrics.get("avg_duration_ms") or 0) / 1000)
    p95_duration = round_half_up((metrics.get("p95_duration_ms") or 0) / 1000)
    failure_count = metrics.get("failure_count") or 0
    categories = " | ".join(f'"{c}"' for c in CATEGORIES)
    efforts = " | ".join(f'"{e}"' for e in EFFORT_LEVELS)

    return f"""You are an expert in GitHub Actions workflow optimization. Analyze the following workflow and provide specific, actionable optimization recommendations.

## Workflow: {workflow_name}

### Current Metrics (last {window_days} days)
- Total runs: {metrics.get("total_runs") or 0}
- Success rate: {success_rate:.1f}%
- Average duration: {avg_duration}s
- P95 duration: {p95_duration}s
- Failure count: {failure_count}

### Workflow YAML
```yaml
{workflow_yaml}
```

### Areas to cover
1. Caching: dependencies (npm, pip, cargo, ...) that could be cached to cut install time.
2. Parallelization: steps or jobs that could run in parallel instead of sequentially.
3. Runner optimization: runner types that fit the workload better.
4. Conditional steps: steps to skip based on changed paths or branch.
5. Action version pinning: actions that should be pinned to a commit SHA.
6. Failure reduction: ways to avoid the {failure_count} failures seen in this window.
7. Quick wins: small changes with an immediate payoff.

### Instructions
Return a JSON object and nothing else, with this shape:
{{
  "optimizations": [
    {{
      "id": "short-kebab-case-id",
      "title": "One-line title",
      "category": {categories},
      "explanation": "Why and how",
      "code_example": "Optional YAML snippet",
      "estimated_impact": "Optional, e.g. -30s per run",
      "effort": {efforts}
    }}
  ],
  "summary": {{
    "expected_avg_duration": "e.g. 60-80s",
    "expected_success_rate": "e.g. 92-95%",
    "expected_p95_duration": "e.g. 120s",
    "notes": "Optional"
  }}
}}
"""


def build_apply_prompt(workflow_name: str, workflow_yaml: str, optimizations: list[dict]) -> str:
    items = []
    for index, item in enumerate(optimizations, start=1):
        lines = [f"{index}. {item.get('title', '')}: {item.get('explanation', '')}"]
        example = item.get("code_example")
        if example:
            lines.append(f"   Example:\n```yaml\n{example}\n```")
        items.append("\n".join(lines))
    selected = "\n".join(items)

    return f"""Rewrite the GitHub Actions workflow "{workflow_name}" to apply the optimizations listed below.

### Original YAML
```yaml
{workflow_yaml}
```

### Optimizations to apply
{selected}

Return only the complete optimized workflow YAML. Keep every existing trigger, job and secret reference unless an optimization says otherwise. Do not add explanations.
"""


def strip_code_fences(text: str) -> str:
    stripped = (text or "").strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def _normalize_keys(obj: dict) -> dict:
    return {_KEY_ALIASES.get(k, k): v for k, v in obj.items()}


def _valid_item(item: object) -> dict | None:
    if not isinstance(item, dict):
        return None
    item = _normalize_keys(item)
    for field in ("id", "title", "explanation"):
        if not isinstance(item.get(field), str) or not item[field].strip():
            return None
    if item.get("category") not in CATEGORIES or item.get("effort") not in EFFORT_LEVELS:
        return None
    out = {
        "id": item["id"],
        "title": item["title"],
        "category": item["category"],
        "explanation": item["explanation"],
        "effort": item["effort"],
    }
    for optional in ("code_example", "estimated_impact"):
        if isinstance(item.get(optional), str) and item[optional]:
            out[optional] = item[optional]
    return out


def parse_optimization_result(raw: str) -> dict:
    """Decode and validate a report; malformed items are dropped, not fatal."""
    try:
        doc = json.loads(strip_code_fences(raw))
    except ValueError as exc:
        raise OptimizationResponseError(f"advisor response is not JSON: {exc}") from exc
    if not isinstance(doc, dict) or not isinstance(doc.get("optimizations"), list):
        raise OptimizationResponseError("advisor response has no optimizations list")

    optimizations = [v for v in (_valid_item(i) for i in doc["optimizations"]) if v is not None]
    dropped = len(doc["optimizations"]) - len(optimizations)
    if dropped:
        logger.info("dropped %d malformed optimization item(s)", dropped)

    raw_summary = doc.get("summary")
    summary = {}
    if isinstance(raw_summary, dict):
        raw_summary = _normalize_keys(raw_summary)
        summary = {k: str(raw_summary[k]) for k in SUMMARY_FIELDS if raw_summary.get(k) is not None}
    return {"optimizations": optimizations, "summary": summary}


class MistralClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        *,
        api_base: str = MISTRAL_API_BASE,
        timeout: int = REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def complete(self, prompt: str, json_mode: bool = False) -> tuple[str, dict]:
        """Single-turn completion; returns ``(text, usage)``."""
        body: dict = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": MAX_OUTPUT_TOKENS,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        try:
            resp = request_with_retry(
                "POST", f"{self.api_base}/chat/completions",
                headers=self._headers(), json=body, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AdvisorRequestError(f"Mistral request failed: {exc}") from exc

        if resp.status_code == 401:
            raise AdvisorRequestError("Mistral rejected the API key", status_code=401)
        if resp.status_code >= 400:
            snippet = (resp.text or "").strip().replace("\n", " ")[:200]
            raise AdvisorRequestError(
                f"Mistral returned {resp.status_code}: {snippet}", status_code=resp.status_code,
            )

        try:
            data = resp.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise AdvisorRequestError(f"unexpected Mistral response: {exc}") from exc

        usage = data.get("usage") or {}
        return text or "", {
            "prompt_tokens": usage.get("prompt_tokens"),
            "completion_tokens": usage.get("completion_tokens"),
        }


def generate_optimization_report(
    client: MistralClient,
    workflow_name: str,
    workflow_yaml: str,
    metrics: dict,
    window_days: int = 30,
) -> tuple[dict, dict]:
    """Returns ``(result, usage)``."""
    prompt = build_optimization_prompt(workflow_name, workflow_yaml, metrics, window_days)
    text, usage = client.complete(prompt, json_mode=True)
    return parse_optimization_result(text), usage


def generate_optimized_yaml(
    client: MistralClient,
    workflow_name: str,
    workflow_yaml: str,
    optimizations: list[dict],
) -> str:
    text, _ = client.complete(build_apply_prompt(workflow_name, workflow_yaml, optimizations))
    optimized = strip_code_fences(text)
    if not optimized:
        raise OptimizationResponseError("advisor returned an empty workflow")
    return optimized
