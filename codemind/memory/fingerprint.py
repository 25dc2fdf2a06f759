"""
Project Fingerprints ("project DNA").

Reduces every fragment embedding of a scanned project to one 4096-dim
vector so whole projects can be compared by cosine similarity.

The reduction is a weighted sum with a modular fold: a fragment embedding
of dimension d is tiled across the 4096 slots (slot i takes component
i % d). This is a fixed heuristic, not PCA or any learned projection, and
it must stay exactly as written for fingerprints computed separately to
remain comparable.
"""

import hashlib
import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from .embeddings import cosine_similarity

logger = logging.getLogger("codemind.memory.fingerprint")

FINGERPRINT_DIMENSION = 4096

# Structurally larger fragments dominate the fingerprint
TYPE_WEIGHTS = {
    "class": 2.0,
    "function": 1.5,
    "module": 1.0,
    "block": 0.5,
    "comment": 0.3,
}

BRANCH_PATTERN = re.compile(r"\b(?:if|for|while|switch)\s*\(")

FragmentType = Literal["function", "class", "module", "block", "comment"]


@dataclass
class CodeFragment:
    """An embeddable slice of a source file."""
    file: str
    start_line: int
    end_line: int
    content: str
    language: str
    type: FragmentType
    embedding: Optional[list[float]] = None

    @property
    def lines(self) -> int:
        return self.end_line - self.start_line + 1


@dataclass
class ProjectMetrics:
    total_files: int = 0
    total_lines: int = 0
    complexity: float = 0.0
    test_coverage: float = 0.0
    documentation: float = 0.0
    security_score: float = 70.0
    performance_score: float = 70.0
    maintainability: float = 100.0


@dataclass
class ProjectFingerprint:
    project_id: str
    project_path: str
    embedding: list[float]
    metrics: ProjectMetrics
    primary_language: str
    frameworks: list[str] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=datetime.now)


@dataclass
class SimilarProject:
    project: ProjectFingerprint
    similarity: float


def fragment_weight(fragment: CodeFragment) -> float:
    """Type weight times log10(lines + 1); inverted line ranges count as empty."""
    base = TYPE_WEIGHTS.get(fragment.type, 1.0)
    return base * math.log10(max(fragment.lines, 0) + 1)


class FingerprintAggregator:
    """
    Builds, stores and compares project fingerprints.

    Fingerprints are recomputed wholesale on re-analysis.
    """

    def __init__(self, dimension: int = FINGERPRINT_DIMENSION):
        self.dimension = dimension
        self._fingerprints: dict[str, ProjectFingerprint] = {}

    def aggregate(self, fragments: list[CodeFragment]) -> list[float]:
        """
        Fold fragment embeddings into one fixed-length vector.

        acc[i] = sum(embedding[i % d] * weight) / sum(weight), over
        fragments that have an embedding. Sums use math.fsum, so the
        result doesn't depend on fragment order.
        """
        columns: list[list[float]] = [[] for _ in range(self.dimension)]
        weights = []

        for fragment in fragments:
            if not fragment.embedding:
                continue

            weight = fragment_weight(fragment)
            weights.append(weight)

            embedding = fragment.embedding
            d = len(embedding)
            for i in range(self.dimension):
                columns[i].append(embedding[i % d] * weight)

        total_weight = math.fsum(weights)
        if total_weight <= 0:
            return [0.0] * self.dimension

        return [math.fsum(column) / total_weight for column in columns]

    def analyze_metrics(self, fragments: list[CodeFragment]) -> ProjectMetrics:
        """Size and rough branching complexity of the scanned fragments."""
        total_lines = 0
        complexity = 0
        for fragment in fragments:
            total_lines += fragment.lines
            complexity += len(BRANCH_PATTERN.findall(fragment.content))

        files = len({f.file for f in fragments})
        if files == 0:
            return ProjectMetrics()

        return ProjectMetrics(
            total_files=files,
            total_lines=total_lines,
            complexity=min(100.0, complexity / files * 10),
            maintainability=max(0.0, 100 - complexity / files * 5),
        )

    @staticmethod
    def primary_language(fragments: list[CodeFragment]) -> str:
        """Most common fragment language; first seen wins ties."""
        counts = Counter(f.language for f in fragments)
        if not counts:
            return "unknown"
        return counts.most_common(1)[0][0]

    @staticmethod
    def detect_frameworks(project_path: str) -> list[str]:
        """Frameworks named in the project's dependency manifests."""
        root = Path(project_path)
        frameworks: list[str] = []

        package_json = root / "package.json"
        if package_json.exists():
            try:
                pkg = json.loads(package_json.read_text())
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read {package_json}: {e}")
                pkg = {}
            deps = {**pkg.get("dependencies", {}), **pkg.get("devDependencies", {})}
            for dep, name in (
                ("react", "React"),
                ("vue", "Vue"),
                ("@angular/core", "Angular"),
                ("angular", "Angular"),
                ("next", "Next.js"),
                ("express", "Express"),
                ("electron", "Electron"),
            ):
                if dep in deps:
                    frameworks.append(name)

        if (root / "pubspec.yaml").exists():
            frameworks.append("Flutter")

        python_manifests = [root / "requirements.txt", root / "pyproject.toml"]
        python_text = "\n".join(
            p.read_text(errors="ignore").lower() for p in python_manifests if p.exists()
        )
        for dep, name in (("django", "Django"), ("flask", "Flask"), ("fastapi", "FastAPI")):
            if re.search(rf"\b{dep}\b", python_text):
                frameworks.append(name)

        # Deduplicate while preserving order
        return list(dict.fromkeys(frameworks))

    def build_fingerprint(
        self,
        project_path: str,
        fragments: list[CodeFragment],
        frameworks: Optional[list[str]] = None,
    ) -> ProjectFingerprint:
        """Compute a project's fingerprint from its embedded fragments."""
        fingerprint = ProjectFingerprint(
            project_id=hashlib.md5(project_path.encode()).hexdigest(),
            project_path=project_path,
            embedding=self.aggregate(fragments),
            metrics=self.analyze_metrics(fragments),
            primary_language=self.primary_language(fragments),
            frameworks=frameworks if frameworks is not None else self.detect_frameworks(project_path),
        )
        logger.info(
            f"Fingerprinted {project_path}: {len(fragments)} fragments, "
            f"language={fingerprint.primary_language}, frameworks={fingerprint.frameworks}"
        )
        return fingerprint

    def register(self, fingerprint: ProjectFingerprint) -> None:
        """Remember a fingerprint, replacing any earlier one for the same path."""
        self._fingerprints[fingerprint.project_path] = fingerprint

    def learn_project(
        self,
        project_path: str,
        fragments: list[CodeFragment],
        frameworks: Optional[list[str]] = None,
    ) -> ProjectFingerprint:
        fingerprint = self.build_fingerprint(project_path, fragments, frameworks)
        self.register(fingerprint)
        return fingerprint

    def get(self, project_path: str) -> Optional[ProjectFingerprint]:
        return self._fingerprints.get(project_path)

    @staticmethod
    def compare(a: ProjectFingerprint, b: ProjectFingerprint) -> float:
        return cosine_similarity(a.embedding, b.embedding)

    def find_similar_projects(self, project_path: str, limit: int = 5) -> list[SimilarProject]:
        """
        Rank other registered projects by similarity to one project.

        No threshold is applied; callers decide what counts as similar.
        """
        target = self._fingerprints.get(project_path)
        if target is None:
            return []

        results = [
            SimilarProject(project=fp, similarity=self.compare(target, fp))
            for path, fp in self._fingerprints.items()
            if path != project_path
        ]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    def clear(self) -> None:
        self._fingerprints.clear()
