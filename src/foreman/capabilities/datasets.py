"""
foreman.capabilities.datasets - Dataset Acquisition and Generation
====================================================================

Capabilities:
    dataset_search      ask the completion service for a public dataset that
                        fits the job, download it and validate it
    dataset_download    download a dataset from a known URL and validate it
    synthetic_dataset   generate a CSV locally (classification, regression,
                        nlp, timeseries)

Validation:
    A downloaded file needs at least ``min_lines`` non-empty lines (a
    header and one row by default). Smaller or empty files are deleted and
    reported as failures so the caller can fall back to synthetic data.

Failure Shape:
    Search and download failures are expected outcomes and come back as
    ``{"success": False, "error": ..., "suggestion": ...}``. Contract
    violations (missing parameters, unsupported data type) raise
    ExecutionError.
"""

from __future__ import annotations

import csv
import json
import math
import random
import re
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Optional

import httpx
import structlog

from foreman.core.config import DatasetConfig
from foreman.core.enums import SyntheticDataKind
from foreman.core.exceptions import ExecutionError
from foreman.integrations.llm.base import BaseLLMProvider
from foreman.orchestration.coordination_bus import Capability, CoordinationBus


logger = structlog.get_logger()

SYNTHETIC_SUGGESTION = "Consider using synthetic data generation instead"

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_KIND_KEYWORDS: list[tuple[SyntheticDataKind, tuple[str, ...]]] = [
    (SyntheticDataKind.NLP, ("nlp", "text", "sentiment", "language", "llm")),
    (SyntheticDataKind.TIMESERIES, ("time series", "timeseries", "forecast")),
    (SyntheticDataKind.REGRESSION, ("regression", "price", "predict", "estimate")),
]

_NLP_SAMPLES = [
    ("The product works exactly as described, very happy", "positive"),
    ("Delivery was late and the box was damaged", "negative"),
    ("The item arrived on Tuesday", "neutral"),
    ("Fantastic support team, solved my issue in minutes", "positive"),
    ("The app crashes every time I open settings", "negative"),
    ("The manual is available in three languages", "neutral"),
    ("Great value for the price, would buy again", "positive"),
    ("Battery life is much worse than advertised", "negative"),
    ("The package contains two cables and a charger", "neutral"),
    ("Easy to set up and the interface is intuitive", "positive"),
]

DATASET_SEARCH_SYSTEM_PROMPT = (
    "You recommend small public datasets for technical assessments. "
    "Return ONLY a JSON object."
)


def infer_dataset_kind(text: str) -> str:
    """Pick a synthetic dataset kind from free text (job description, title)."""
    lowered = (text or "").lower()
    for kind, keywords in _KIND_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return kind.value
    return SyntheticDataKind.CLASSIFICATION.value


def dataset_file_name(name: str, file_format: str) -> str:
    """``"Iris Flowers", "csv"`` → ``"iris_flowers.csv"``."""
    stem = re.sub(r"\s+", "_", name.strip()).lower()
    return f"{stem}.{file_format.lstrip('.').lower()}"


class DatasetService:
    """Implements the three dataset capabilities.

    Args:
        project_path: Project root; dataset paths are relative to it.
        config: Validation thresholds, defaults and timeouts.
        llm_provider: Completion provider used by ``search``.
        http_client: Optional shared ``httpx.AsyncClient``. When omitted a
            client is opened per download.
        seed: Seed for synthetic generation. None gives fresh randomness.
    """

    def __init__(
        self,
        project_path: str | Path,
        config: Optional[DatasetConfig] = None,
        llm_provider: Optional[BaseLLMProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        seed: Optional[int] = None,
    ) -> None:
        self._project_path = Path(project_path)
        self._config = config or DatasetConfig()
        self._llm = llm_provider
        self._http_client = http_client
        self._seed = seed
        self._logger = logger.bind(component="dataset_service")

    # =========================================================================
    # Download + Validation
    # =========================================================================

    async def download(self, url: str, relative_path: str) -> dict[str, Any]:
        target = self._project_path / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url)
            else:
                timeout = httpx.Timeout(self._config.download_timeout_seconds, connect=10.0)
                async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                    response = await client.get(url)
        except httpx.TimeoutException:
            self._logger.warning("dataset_download_timeout", url=url)
            return self._failure(f"Dataset download timed out: {url}")
        except httpx.HTTPError as exc:
            self._logger.warning("dataset_download_error", url=url, error=str(exc))
            return self._failure(f"Dataset download failed: {exc}")

        if not response.is_success:
            return self._failure(f"Dataset download failed: HTTP {response.status_code}")

        target.write_bytes(response.content)
        line_count = self.count_lines(target)
        if line_count < self._config.min_lines:
            target.unlink(missing_ok=True)
            self._logger.warning("dataset_rejected_too_small", url=url, lines=line_count)
            return self._failure(f"Downloaded dataset is empty or too small ({line_count} lines)")

        self._logger.info("dataset_downloaded", url=url, path=str(target), lines=line_count)
        return {"success": True, "path": relative_path, "url": url, "lines": line_count}

    @staticmethod
    def count_lines(path: Path) -> int:
        with open(path, encoding="utf-8", errors="replace") as f:
            return sum(1 for line in f if line.strip())

    @staticmethod
    def _failure(error: str) -> dict[str, Any]:
        return {"success": False, "error": error, "suggestion": SYNTHETIC_SUGGESTION}

    # =========================================================================
    # Capability Handlers
    # =========================================================================

    async def download_capability(self, params: dict[str, Any]) -> dict[str, Any]:
        url = params.get("url")
        if not url:
            raise ExecutionError("dataset_download requires a url", capability="dataset_download")
        relative = params.get("path") or f"{self._config.output_dir}/{url.rstrip('/').rsplit('/', 1)[-1]}"
        return await self.download(url, relative)

    async def search(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._llm is None:
            return self._failure("Dataset search unavailable: no completion provider configured")

        prompt = (
            f"JOB TITLE: {params.get('job_title', 'Data Scientist')}\n"
            f"JOB DESCRIPTION: {params.get('job_description', 'Data analysis role')}\n"
            f"TECH STACK: {', '.join(params.get('tech_stack') or [])}\n\n"
            "Recommend one publicly downloadable dataset for this assessment. Respond with JSON:\n"
            '{"dataset_type": "...", "dataset_name": "...", "dataset_url": "https://...", '
            '"file_format": "csv", "reasoning": "...", "expected_features": ["..."], '
            '"expected_samples": 1000}'
        )
        try:
            response = await self._llm.generate_with_system(DATASET_SEARCH_SYSTEM_PROMPT, prompt)
        except Exception as exc:
            self._logger.warning("dataset_search_llm_failed", error=str(exc))
            return self._failure(f"Dataset search failed: {exc}")

        match = _JSON_OBJECT_RE.search(response.content)
        if match is None:
            return self._failure("Dataset search failed: no JSON object in response")
        try:
            recommendation = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            return self._failure(f"Dataset search failed: invalid JSON ({exc})")

        url = recommendation.get("dataset_url")
        name = recommendation.get("dataset_name") or "dataset"
        if not url:
            return self._failure("Dataset search failed: recommendation has no dataset_url")

        output_dir = params.get("output_dir") or self._config.output_dir
        relative = f"{output_dir}/{dataset_file_name(name, recommendation.get('file_format') or 'csv')}"
        result = await self.download(url, relative)
        if result["success"]:
            result.update(
                dataset_name=name,
                dataset_type=recommendation.get("dataset_type"),
                reasoning=recommendation.get("reasoning"),
                expected_features=recommendation.get("expected_features", []),
            )
        return result

    async def synthetic(self, params: dict[str, Any]) -> dict[str, Any]:
        kind = params.get("data_type") or infer_dataset_kind(params.get("hint", ""))
        try:
            data_kind = SyntheticDataKind(kind)
        except ValueError:
            raise ExecutionError(
                f"Unsupported synthetic data type: {kind}",
                capability="synthetic_dataset",
            ) from None

        rows = int(params.get("rows") or self._config.synthetic_rows)
        features = int(params.get("features") or self._config.synthetic_features)
        relative = params.get("path") or f"{self._config.output_dir}/{data_kind.value}_dataset.csv"
        return self.generate_synthetic(data_kind, rows, features, relative)

    # =========================================================================
    # Synthetic Generation
    # =========================================================================

    def generate_synthetic(
        self,
        kind: SyntheticDataKind,
        rows: int,
        features: int,
        relative_path: str,
    ) -> dict[str, Any]:
        rng = random.Random(self._seed)
        header, records = _GENERATORS[kind](rng, rows, features)

        target = self._project_path / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(header)
            writer.writerows(records)

        self._logger.info("synthetic_dataset_generated", kind=kind.value, rows=rows, path=str(target))
        return {
            "success": True,
            "path": relative_path,
            "data_type": kind.value,
            "rows": rows,
            "columns": header,
        }


def _feature_names(features: int) -> list[str]:
    return [f"feature_{i}" for i in range(1, features + 1)]


def _classification(rng: random.Random, rows: int, features: int):
    header = _feature_names(features) + ["target"]
    records = [
        [round(rng.random() * 10, 2) for _ in range(features)] + [rng.randint(0, 2)]
        for _ in range(rows)
    ]
    return header, records


# Weights for the first five features; extra features do not affect the target.
_REGRESSION_WEIGHTS = (2.0, 1.5, 0.8, 1.2, 0.9)


def _regression(rng: random.Random, rows: int, features: int):
    header = _feature_names(features) + ["target"]
    records = []
    for _ in range(rows):
        values = [round(rng.random() * 10, 2) for _ in range(features)]
        target = sum(w * v for w, v in zip(_REGRESSION_WEIGHTS, values)) + rng.random()
        records.append(values + [round(target, 2)])
    return header, records


def _nlp(rng: random.Random, rows: int, features: int):
    return ["text", "label"], [list(rng.choice(_NLP_SAMPLES)) for _ in range(rows)]


def _timeseries(rng: random.Random, rows: int, features: int):
    start = date(2023, 1, 1)
    records = []
    for i in range(rows):
        value = 100 + 0.5 * i + 10 * math.sin(2 * math.pi * i / 7) + rng.gauss(0, 2)
        records.append([(start + timedelta(days=i)).isoformat(), round(value, 2)])
    return ["date", "value"], records


_GENERATORS = {
    SyntheticDataKind.CLASSIFICATION: _classification,
    SyntheticDataKind.REGRESSION: _regression,
    SyntheticDataKind.NLP: _nlp,
    SyntheticDataKind.TIMESERIES: _timeseries,
}


def register_dataset_capabilities(bus: CoordinationBus, service: DatasetService) -> None:
    bus.register_capability(
        Capability(
            name="dataset_search",
            description="Find, download and validate a dataset matching the job",
            parameters={
                "job_description": "Free-text job description",
                "job_title": "Job title",
                "tech_stack": "List of technologies",
                "output_dir": "Directory relative to the project",
            },
            handler=service.search,
            owner="capabilities",
        )
    )
    bus.register_capability(
        Capability(
            name="dataset_download",
            description="Download and validate a dataset from a URL",
            parameters={"url": "Dataset URL", "path": "Target path relative to the project"},
            handler=service.download_capability,
            owner="capabilities",
        )
    )
    bus.register_capability(
        Capability(
            name="synthetic_dataset",
            description="Generate a synthetic CSV dataset",
            parameters={
                "data_type": "classification | regression | nlp | timeseries",
                "hint": "Free text used to infer data_type when it is omitted",
                "rows": "Number of rows",
                "features": "Number of feature columns",
                "path": "Target path relative to the project",
            },
            handler=service.synthetic,
            owner="capabilities",
        )
    )
