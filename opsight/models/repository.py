"""
Repository analysis records supplied by the external repository scanner.

Not persisted by the engine. Field names accept the scanner's camelCase
JSON as well as snake_case.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ScannerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RepositoryInfo(_ScannerModel):
    name: str
    full_name: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.name


class RepositoryStructure(_ScannerModel):
    has_readme: bool = False
    has_tests: bool = False
    has_ci: bool = Field(False, alias="hasCI")
    has_docs: bool = False
    has_docker: bool = False
    has_env_example: bool = False


class CodeInsights(_ScannerModel):
    total_todos: int = 0


class Completeness(_ScannerModel):
    score: float = Field(0, ge=0, le=100)
    missing_elements: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)


class IssueStats(_ScannerModel):
    open: int = 0
    closed: int = 0
    stale: int = 0
    bug_count: int = 0
    feature_count: int = 0


class PullRequestStats(_ScannerModel):
    open: int = 0
    stale: int = 0
    avg_merge_time: Optional[float] = None


class RepositoryAnalysis(_ScannerModel):
    """Scanner output for one repository."""
    repo: RepositoryInfo
    structure: RepositoryStructure = Field(default_factory=RepositoryStructure)
    code_insights: CodeInsights = Field(default_factory=CodeInsights)
    completeness: Completeness = Field(default_factory=Completeness)
    issues: IssueStats = Field(default_factory=IssueStats)
    prs: PullRequestStats = Field(default_factory=PullRequestStats)

    def summary(self) -> dict:
        """Compact view used in the analyzer prompt."""
        return {
            "name": self.repo.display_name,
            "description": self.repo.description,
            "language": self.repo.language,
            "completeness": self.completeness.score,
            "missingElements": list(self.completeness.missing_elements),
            "todoCount": self.code_insights.total_todos,
            "openIssues": self.issues.open,
            "staleIssues": self.issues.stale,
            "bugCount": self.issues.bug_count,
            "openPRs": self.prs.open,
            "stalePRs": self.prs.stale,
            "hasTests": self.structure.has_tests,
            "hasCI": self.structure.has_ci,
            "hasDocs": self.structure.has_docs,
        }
