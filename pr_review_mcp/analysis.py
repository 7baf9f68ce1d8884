"""Regex heuristics over PR diff content: quality, risk, security, patterns, deps, tests."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from pr_review_mcp.github_client import PullRequestDetails, PullRequestFile

LANGUAGE_BY_EXTENSION = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "java": "java",
    "go": "go",
    "rs": "rust",
    "cpp": "cpp",
    "c": "c",
    "cs": "csharp",
    "php": "php",
    "rb": "ruby",
    "swift": "swift",
    "kt": "kotlin",
}

_C_STYLE_KEYWORDS = ("if", "else", "while", "for", "switch", "case", "catch", "&&", "||", "?")
COMPLEXITY_KEYWORDS = {
    "javascript": _C_STYLE_KEYWORDS,
    "typescript": _C_STYLE_KEYWORDS,
    "java": _C_STYLE_KEYWORDS,
    "python": ("if", "elif", "else", "while", "for", "try", "except", "and", "or"),
}
MAX_COMPLEXITY = 20

TECHNICAL_DEBT_PATTERNS = (
    re.compile(r"TODO|FIXME|HACK|XXX", re.IGNORECASE),
    re.compile(r"console\.log|print\(|println!", re.IGNORECASE),
    re.compile(r"/\*.*?\*/", re.DOTALL),
    re.compile(r"\.length\s*>\s*\d{2,}", re.IGNORECASE),
    re.compile(r"function\s+\w+\([^)]{50,}\)", re.IGNORECASE),
    re.compile(r"if\s*\([^)]{50,}\)", re.IGNORECASE),
)

SECURITY_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "sql_injection": (
        re.compile(r"query\s*\+.*\+", re.IGNORECASE),
        re.compile(r"execute\s*\(.*\+.*\)", re.IGNORECASE),
        re.compile(r"SELECT.*\+.*FROM", re.IGNORECASE),
    ),
    "xss": (
        re.compile(r"innerHTML\s*=.*\+", re.IGNORECASE),
        re.compile(r"document\.write\s*\(", re.IGNORECASE),
        re.compile(r"\.html\s*\(.*\+", re.IGNORECASE),
    ),
    "hardcoded_secrets": (
        re.compile(r"password\s*=\s*[\"'][^\"']+[\"']", re.IGNORECASE),
        re.compile(r"api_key\s*=\s*[\"'][^\"']+[\"']", re.IGNORECASE),
        re.compile(r"secret\s*=\s*[\"'][^\"']+[\"']", re.IGNORECASE),
        re.compile(r"token\s*=\s*[\"'][^\"']+[\"']", re.IGNORECASE),
    ),
    "insecure_random": (
        re.compile(r"Math\.random\(\)", re.IGNORECASE),
        re.compile(r"rand\(\)", re.IGNORECASE),
    ),
    "eval_usage": (
        re.compile(r"eval\s*\(", re.IGNORECASE),
        re.compile(r"exec\s*\(", re.IGNORECASE),
        re.compile(r"setTimeout\s*\(.*string", re.IGNORECASE),
    ),
}
SECURITY_SEVERITY = {
    "sql_injection": "critical",
    "xss": "high",
    "hardcoded_secrets": "high",
    "insecure_random": "medium",
    "eval_usage": "high",
}
SECURITY_DESCRIPTION = {
    "sql_injection": "Potential SQL injection vulnerability detected",
    "xss": "Potential XSS vulnerability detected",
    "hardcoded_secrets": "Hardcoded secrets or credentials found",
    "insecure_random": "Insecure random number generation",
    "eval_usage": "Dangerous eval() or similar function usage",
}
SEVERITY_PENALTY = {"critical": 25, "high": 15, "medium": 5, "low": 2}

RISK_WEIGHTS = {
    "security_sensitive": 30,
    "breaking_changes": 25,
    "database_changes": 20,
    "api_changes": 15,
}
IMPACT_CATEGORIES = (
    "breaking_changes",
    "api_changes",
    "database_changes",
    "configuration_changes",
    "security_sensitive",
    "performance_critical",
)

PACKAGE_FILES = (
    "package.json",
    "requirements.txt",
    "Gemfile",
    "pom.xml",
    "Cargo.toml",
    "go.mod",
    "composer.json",
)
LOCK_FILES = (
    "package-lock.json",
    "yarn.lock",
    "Pipfile.lock",
    "Gemfile.lock",
    "Cargo.lock",
    "go.sum",
)
PACKAGE_JSON_ENTRY = re.compile(r'^\s*"(?P<name>[@\w./-]+)"\s*:\s*"(?P<version>[^"]*)"\s*,?\s*$')
PACKAGE_JSON_METADATA_KEYS = frozenset(
    {"name", "version", "description", "main", "module", "types", "license", "author",
     "homepage", "repository", "type", "private", "engines", "node", "npm"}
)
REQUIREMENT_ENTRY = re.compile(
    r"^\s*(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(?P<version>(?:===|[<>=!~]=?)\s*[^\s;#]+)?"
)

FOCUS_AREAS = ("performance", "security", "maintainability", "readability", "testing")
SUGGESTION_PRIORITY = {
    "security": "high",
    "performance": "medium",
    "maintainability": "medium",
    "readability": "low",
    "testing": "medium",
}
PRIORITY_ORDER = {"high": 1, "medium": 2, "low": 3}
MAX_PRIORITY_SUGGESTIONS = 10
MAX_IMPLEMENTATION_EXAMPLES = 5


@dataclass(frozen=True, slots=True)
class CodePattern:
    """Named regex describing a good practice or an anti-pattern."""

    name: str
    pattern: re.Pattern[str]
    description: str


ANTI_PATTERNS = (
    CodePattern("God Object", re.compile(r"class\s+\w+[\s\S]{1000,}", re.IGNORECASE),
                "Large classes that do too much"),
    CodePattern("Magic Numbers", re.compile(r"[^.\w]\d{2,}[^.\w]"),
                "Hardcoded numeric values without explanation"),
    CodePattern("Long Parameter List", re.compile(r"function\s+\w+\s*\([^)]{80,}\)", re.IGNORECASE),
                "Functions with too many parameters"),
)
GOOD_PATTERNS = (
    CodePattern("Single Responsibility", re.compile(r"class\s+\w+[\s\S]{50,200}", re.IGNORECASE),
                "Appropriately sized classes"),
    CodePattern("Constants Usage", re.compile(r"const\s+[A-Z_]+\s*=", re.IGNORECASE),
                "Use of constants instead of magic numbers"),
)


class AnalysisError(RuntimeError):
    """Raised when an analysis request cannot be satisfied from the PR data."""


def detect_language(filename: str) -> str:
    """Map a filename extension to a language name, or 'unknown'."""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return LANGUAGE_BY_EXTENSION.get(extension, "unknown")


def detect_primary_language(files: Iterable[PullRequestFile]) -> str:
    counts = Counter(detect_language(pull_file.filename) for pull_file in files)
    if not counts:
        return "unknown"
    return counts.most_common(1)[0][0]


def added_lines(patch: str | None) -> list[str]:
    """Return the '+' lines of a unified diff, without the '+++' file header."""
    if not patch:
        return []
    return [
        line for line in patch.splitlines() if line.startswith("+") and not line.startswith("+++")
    ]


def removed_lines(patch: str | None) -> list[str]:
    if not patch:
        return []
    return [
        line for line in patch.splitlines() if line.startswith("-") and not line.startswith("---")
    ]


def calculate_complexity(lines: Sequence[str], language: str) -> int:
    keywords = COMPLEXITY_KEYWORDS.get(language, COMPLEXITY_KEYWORDS["javascript"])
    complexity = 1
    for line in lines:
        stripped = line.lstrip("+").strip()
        complexity += sum(1 for keyword in keywords if keyword in stripped)
    return min(complexity, MAX_COMPLEXITY)


def calculate_maintainability_index(lines: Sequence[str], language: str) -> float:
    maintainability = 100 - calculate_complexity(lines, language) * 2 - len(lines) * 0.1
    code_text = "\n".join(lines)
    if "TODO" in code_text or "FIXME" in code_text:
        maintainability -= 5
    if re.search(r"\w{30,}", code_text):
        maintainability -= 3
    return round(max(0.0, min(100.0, maintainability)), 1)


def calculate_technical_debt(lines: Sequence[str]) -> int:
    code_text = "\n".join(lines)
    debt_score = sum(len(pattern.findall(code_text)) * 5 for pattern in TECHNICAL_DEBT_PATTERNS)
    return min(100, debt_score)


def is_test_file(filename: str) -> bool:
    return "test" in filename or "spec" in filename or "__tests__" in filename


def is_production_file(filename: str) -> bool:
    return (
        not is_test_file(filename)
        and "config" not in filename
        and "README" not in filename
        and "documentation" not in filename
    )


def is_dependency_file(filename: str) -> bool:
    basename = PurePosixPath(filename).name
    return basename in PACKAGE_FILES or basename in LOCK_FILES


def suggest_test_filename(filename: str) -> str:
    path = PurePosixPath(filename)
    if path.suffix == ".py":
        return str(path.with_name(f"test_{path.stem}.py"))
    suffix = path.suffix or ".js"
    return str(path.with_name(f"{path.stem}.test{suffix}"))


def _parse_dependency_lines(filename: str, lines: Iterable[str]) -> dict[str, str]:
    basename = PurePosixPath(filename).name
    entries: dict[str, str] = {}
    for line in lines:
        text = line[1:]
        if basename == "package.json":
            match = PACKAGE_JSON_ENTRY.match(text)
            if match is None or match.group("name") in PACKAGE_JSON_METADATA_KEYS:
                continue
            entries[match.group("name")] = match.group("version")
        elif basename == "requirements.txt":
            stripped = text.strip()
            if not stripped or stripped.startswith(("#", "-")):
                continue
            match = REQUIREMENT_ENTRY.match(stripped)
            if match is None:
                continue
            entries[match.group("name").lower()] = (match.group("version") or "").replace(" ", "")
    return entries


class AnalysisService:
    """Heuristic analysis provider consumed by the analysis tools."""

    def analyze_code_quality(
        self,
        details: PullRequestDetails,
        file_paths: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        selected = set(file_paths) if file_paths else None
        file_analyses = [
            self._analyze_file_quality(pull_file)
            for pull_file in details.files
            if selected is None or pull_file.filename in selected
        ]
        return {
            "overall_score": self._overall_quality_score(file_analyses),
            "files": file_analyses,
            "summary": self._quality_summary(file_analyses),
        }

    def _analyze_file_quality(self, pull_file: PullRequestFile) -> dict[str, Any]:
        language = detect_language(pull_file.filename)
        analysis: dict[str, Any] = {
            "filename": pull_file.filename,
            "language": language,
            "metrics": {
                "cyclomatic_complexity": 0,
                "lines_of_code": 0,
                "maintainability_index": 0,
                "technical_debt_ratio": 0,
            },
            "issues": [],
            "suggestions": [],
        }
        if not pull_file.patch:
            return analysis

        lines = added_lines(pull_file.patch)
        analysis["metrics"] = {
            "cyclomatic_complexity": calculate_complexity(lines, language),
            "lines_of_code": len(lines),
            "maintainability_index": calculate_maintainability_index(lines, language),
            "technical_debt_ratio": calculate_technical_debt(lines),
        }
        code_text = "\n".join(lines)

        if re.search(r"console\.log|print\(", code_text, re.IGNORECASE):
            analysis["issues"].append(
                {"type": "debug_code", "severity": "medium", "description": "Debug statements found in code"}
            )
        if re.search(r"TODO|FIXME", code_text, re.IGNORECASE):
            analysis["issues"].append(
                {"type": "incomplete_code", "severity": "low", "description": "TODO or FIXME comments found"}
            )

        if language in {"javascript", "typescript"}:
            if "var " in code_text:
                analysis["suggestions"].append(
                    {"type": "modernization", "description": "Consider using const/let instead of var",
                     "priority": "medium"}
                )
            if re.search(r"function\s*\(", code_text):
                analysis["suggestions"].append(
                    {"type": "modernization",
                     "description": "Consider using arrow functions for better readability",
                     "priority": "low"}
                )
        return analysis

    @staticmethod
    def _overall_quality_score(file_analyses: Sequence[dict[str, Any]]) -> int:
        if not file_analyses:
            return 100
        count = len(file_analyses)
        avg_maintainability = sum(f["metrics"]["maintainability_index"] for f in file_analyses) / count
        avg_complexity = sum(f["metrics"]["cyclomatic_complexity"] for f in file_analyses) / count
        avg_debt = sum(f["metrics"]["technical_debt_ratio"] for f in file_analyses) / count
        return round(avg_maintainability - avg_complexity * 2 - avg_debt * 0.5)

    @staticmethod
    def _quality_summary(file_analyses: Sequence[dict[str, Any]]) -> dict[str, list[Any]]:
        summary: dict[str, list[Any]] = {
            "high_complexity_files": [],
            "maintainability_issues": [],
            "code_smells": [],
            "recommendations": [],
        }
        for analysis in file_analyses:
            metrics = analysis["metrics"]
            if metrics["cyclomatic_complexity"] > 10:
                summary["high_complexity_files"].append(
                    {"filename": analysis["filename"], "complexity": metrics["cyclomatic_complexity"]}
                )
            if metrics["maintainability_index"] < 60:
                summary["maintainability_issues"].append(
                    {"filename": analysis["filename"], "score": metrics["maintainability_index"]}
                )
            if metrics["technical_debt_ratio"] > 20:
                summary["code_smells"].append(
                    {"filename": analysis["filename"], "debt_ratio": metrics["technical_debt_ratio"]}
                )

        if summary["high_complexity_files"]:
            summary["recommendations"].append(
                "Consider breaking down complex functions into smaller, more manageable pieces"
            )
        if summary["maintainability_issues"]:
            summary["recommendations"].append(
                "Focus on improving code readability and reducing complexity"
            )
        if summary["code_smells"]:
            summary["recommendations"].append(
                "Address technical debt by removing TODO comments and cleaning up code"
            )
        return summary

    def analyze_diff_impact(self, details: PullRequestDetails) -> dict[str, Any]:
        categories: dict[str, list[str]] = {name: [] for name in IMPACT_CATEGORIES}
        risk_factors: list[dict[str, str]] = []
        affected_areas: set[str] = set()

        for pull_file in details.files:
            filename = pull_file.filename
            lowered = filename.lower()
            if "config" in lowered or "setting" in lowered:
                categories["configuration_changes"].append(filename)
            if "security" in lowered or "auth" in lowered:
                categories["security_sensitive"].append(filename)
            if pull_file.status == "removed":
                risk_factors.append({"file": filename, "factor": "file_deletion"})
            parent = str(PurePosixPath(filename).parent)
            affected_areas.add("(root)" if parent == "." else parent)

        risk_score = sum(weight for name, weight in RISK_WEIGHTS.items() if categories[name])
        if risk_score >= 50:
            overall_risk = "HIGH"
        elif risk_score >= 25:
            overall_risk = "MEDIUM"
        else:
            overall_risk = "LOW"

        recommendations: list[str] = []
        if categories["security_sensitive"]:
            recommendations.append("Conduct thorough security review and testing")
        if categories["configuration_changes"]:
            recommendations.append("Verify configuration changes across all deployment environments")
        if risk_factors:
            recommendations.append("Confirm nothing still references the deleted files")
        if overall_risk == "HIGH":
            recommendations.append("Consider staged deployment and increased monitoring")

        return {
            "overall_risk": overall_risk,
            "risk_score": risk_score,
            "impact_categories": categories,
            "risk_factors": risk_factors,
            "affected_areas": sorted(affected_areas),
            "recommendations": recommendations,
        }

    def detect_security_issues(self, details: PullRequestDetails) -> dict[str, Any]:
        vulnerabilities: list[dict[str, str]] = []
        for pull_file in details.files:
            code_text = "\n".join(added_lines(pull_file.patch))
            if not code_text:
                continue
            for category, patterns in SECURITY_PATTERNS.items():
                for pattern in patterns:
                    if pattern.search(code_text):
                        vulnerabilities.append(
                            {
                                "type": category,
                                "file": pull_file.filename,
                                "severity": SECURITY_SEVERITY.get(category, "medium"),
                                "description": SECURITY_DESCRIPTION.get(category, "Security issue detected"),
                            }
                        )

        score = 100 - sum(SEVERITY_PENALTY.get(item["severity"], 0) for item in vulnerabilities)
        return {
            "security_score": max(0, score),
            "vulnerabilities": vulnerabilities,
            "warnings": [],
            "best_practices": [],
            "compliance_issues": [],
        }

    def detect_code_patterns(
        self,
        details: PullRequestDetails,
        language: str | None = None,
    ) -> dict[str, Any]:
        found: dict[str, list[dict[str, str]]] = {
            "good_patterns": [],
            "anti_patterns": [],
            "architectural_issues": [],
            "design_patterns": [],
        }
        for pull_file in details.files:
            if not pull_file.patch:
                continue
            for code_pattern in ANTI_PATTERNS:
                if code_pattern.pattern.search(pull_file.patch):
                    found["anti_patterns"].append(
                        {"name": code_pattern.name, "file": pull_file.filename,
                         "description": code_pattern.description}
                    )
            for code_pattern in GOOD_PATTERNS:
                if code_pattern.pattern.search(pull_file.patch):
                    found["good_patterns"].append(
                        {"name": code_pattern.name, "file": pull_file.filename,
                         "description": code_pattern.description}
                    )

        recommendations: list[str] = []
        if found["anti_patterns"]:
            recommendations.append("Address identified anti-patterns to improve code maintainability")
        if found["good_patterns"]:
            recommendations.append("Continue using the identified good design patterns")

        return {
            "patterns_found": found,
            "recommendations": recommendations,
            "language": language or detect_primary_language(details.files),
        }

    def analyze_dependencies(self, details: PullRequestDetails) -> dict[str, Any]:
        added: list[dict[str, str]] = []
        removed: list[dict[str, str]] = []
        updated: list[dict[str, str]] = []
        dependency_files: list[str] = []
        lockfile_only: list[str] = []

        for pull_file in details.files:
            if not is_dependency_file(pull_file.filename):
                continue
            dependency_files.append(pull_file.filename)
            if PurePosixPath(pull_file.filename).name in LOCK_FILES:
                lockfile_only.append(pull_file.filename)
                continue

            new_entries = _parse_dependency_lines(pull_file.filename, added_lines(pull_file.patch))
            old_entries = _parse_dependency_lines(pull_file.filename, removed_lines(pull_file.patch))
            for name, version in new_entries.items():
                if name not in old_entries:
                    added.append({"name": name, "version": version, "file": pull_file.filename})
                elif old_entries[name] != version:
                    updated.append(
                        {"name": name, "from": old_entries[name], "to": version, "file": pull_file.filename}
                    )
            for name, version in old_entries.items():
                if name not in new_entries:
                    removed.append({"name": name, "version": version, "file": pull_file.filename})

        if removed:
            risk_level = "HIGH"
        elif added or updated:
            risk_level = "MEDIUM"
        else:
            risk_level = "LOW"

        recommendations: list[str] = []
        if added:
            recommendations.append("Review new dependencies for security and licensing compliance")
        if updated:
            recommendations.append("Check changelogs of updated dependencies for breaking changes")
        if removed:
            recommendations.append("Confirm removed dependencies are no longer imported anywhere")
        if lockfile_only and not (added or updated or removed):
            recommendations.append("Lockfile changed without manifest changes; confirm this is intentional")

        return {
            "dependency_files": dependency_files,
            "dependency_changes": {
                "added": added,
                "removed": removed,
                "updated": updated,
                "security_issues": [],
            },
            "impact_assessment": {
                "risk_level": risk_level,
                "compatibility_issues": [],
                "security_implications": [],
                "performance_impact": [],
            },
            "recommendations": recommendations,
        }

    def analyze_test_coverage(self, details: PullRequestDetails) -> dict[str, Any]:
        test_files = [f for f in details.files if is_test_file(f.filename)]
        production_files = [f for f in details.files if is_production_file(f.filename)]

        if not production_files:
            coverage_estimate = 100
        else:
            coverage_estimate = min(100, round(len(test_files) / len(production_files) * 80))

        missing_tests: list[dict[str, str]] = []
        for prod_file in production_files:
            stem = PurePosixPath(prod_file.filename).stem
            if not any(stem in test_file.filename for test_file in test_files):
                missing_tests.append(
                    {
                        "filename": prod_file.filename,
                        "suggested_test_file": suggest_test_filename(prod_file.filename),
                    }
                )

        unit_tests = integration_tests = edge_cases = 0
        for test_file in test_files:
            if not test_file.patch:
                continue
            content = test_file.patch
            unit_tests += len(re.findall(r"describe|it\(|test\(|def test_", content))
            integration_tests += len(re.findall(r"request|supertest|integration", content, re.IGNORECASE))
            edge_cases += len(re.findall(r"edge|boundary|null|undefined|empty|None", content, re.IGNORECASE))

        recommendations: list[str] = []
        if coverage_estimate < 70:
            recommendations.append("Consider adding more test coverage for the changed code")
        if missing_tests:
            recommendations.append(
                "Add tests for: " + ", ".join(item["filename"] for item in missing_tests)
            )
        if edge_cases == 0:
            recommendations.append("Consider adding edge case testing")

        return {
            "coverage_estimate": coverage_estimate,
            "test_files": [f.filename for f in test_files],
            "production_files": [f.filename for f in production_files],
            "missing_tests": missing_tests,
            "test_quality": {
                "unit_tests": unit_tests,
                "integration_tests": integration_tests,
                "edge_cases": edge_cases,
            },
            "recommendations": recommendations,
        }

    def generate_suggestions(
        self,
        details: PullRequestDetails,
        file_path: str,
        focus_areas: Sequence[str] = (),
    ) -> dict[str, Any]:
        pull_file = next((f for f in details.files if f.filename == file_path), None)
        if pull_file is None:
            raise AnalysisError(f"File {file_path} not found in PR changes")

        language = detect_language(file_path)
        areas = tuple(focus_areas) or FOCUS_AREAS
        categories = {area: self._area_suggestions(pull_file, area) for area in areas}

        ranked = [
            {**suggestion, "area": area, "priority": SUGGESTION_PRIORITY.get(suggestion["type"], "low")}
            for area, suggestions in categories.items()
            for suggestion in suggestions
        ]
        ranked.sort(key=lambda item: PRIORITY_ORDER.get(item["priority"], 3))
        priority_suggestions = ranked[:MAX_PRIORITY_SUGGESTIONS]

        return {
            "filename": file_path,
            "language": language,
            "categories": categories,
            "priority_suggestions": priority_suggestions,
            "implementation_examples": [
                {
                    "suggestion": item["description"],
                    "example": item.get("example") or f"// {item['description']}",
                    "language": language,
                }
                for item in priority_suggestions[:MAX_IMPLEMENTATION_EXAMPLES]
            ],
        }

    @staticmethod
    def _area_suggestions(pull_file: PullRequestFile, area: str) -> list[dict[str, str]]:
        code_text = pull_file.patch
        if not code_text:
            return []

        if area == "performance" and "for (" in code_text and "length" in code_text:
            return [{
                "type": "performance",
                "description": "Cache array length in loop conditions for better performance",
                "example": "for (let i = 0, len = array.length; i < len; i++)",
            }]
        if area == "security" and "innerHTML" in code_text:
            return [{
                "type": "security",
                "description": "Consider using textContent instead of innerHTML to prevent XSS",
                "example": "element.textContent = userInput;",
            }]
        if area == "maintainability" and re.search(r"function\s+\w+\s*\([^)]{50,}\)", code_text):
            return [{
                "type": "maintainability",
                "description": "Consider breaking down functions with many parameters",
                "example": "Use configuration objects instead of long parameter lists",
            }]
        if area == "readability" and "var " in code_text:
            return [{
                "type": "readability",
                "description": "Use const/let instead of var for better scoping",
                "example": "const value = ...; // or let if reassignment needed",
            }]
        if area == "testing" and not is_test_file(pull_file.filename) and pull_file.status == "added":
            return [{
                "type": "testing",
                "description": "Consider adding unit tests for new functionality",
                "example": f"Create {suggest_test_filename(pull_file.filename)}",
            }]
        return []
