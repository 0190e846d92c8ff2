"""Domain models representing core business entities.

All results are frozen dataclasses: they are built once per request, cached
as JSON under a TTL and never mutated afterwards.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from gitdash.domain.errors import ValidationError


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class RepositoryIdentifier:
    """Immutable `owner/name` pair identifying a GitHub repository."""
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        """Returns the full repository name (owner/name)."""
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> 'RepositoryIdentifier':
        """Parse an `owner/name` string.

        Raises:
            ValidationError: Unless the string holds exactly one `/` between
                two non-empty segments.
        """
        if not isinstance(value, str) or value.count("/") != 1:
            raise ValidationError(
                f"Invalid repository identifier {value!r}. Expected format: 'owner/repo'"
            )
        owner, name = value.split("/")
        if not owner or not name:
            raise ValidationError(
                f"Invalid repository identifier {value!r}. Expected format: 'owner/repo'"
            )
        return cls(owner=owner, name=name)

    @classmethod
    def from_url(cls, value: str) -> 'RepositoryIdentifier':
        """Parse either a full GitHub URL or the `owner/name` shorthand."""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Repository URL must not be empty")
        value = value.strip()
        if "github.com" not in value:
            return cls.parse(value)

        if "://" not in value:
            value = f"https://{value}"
        segments = [s for s in urlparse(value).path.split("/") if s]
        if len(segments) < 2:
            raise ValidationError(
                f"Invalid repository URL {value!r}. Use a full GitHub URL or 'owner/repo'"
            )
        name = segments[1]
        if name.endswith(".git"):
            name = name[:-len(".git")]
        return cls.parse(f"{segments[0]}/{name}")

    def __str__(self) -> str:
        return self.full_name


class TimeRange(Enum):
    """Supported statistics windows."""
    ONE_WEEK = "1 week"
    ONE_MONTH = "1 month"
    THREE_MONTHS = "3 months"

    @property
    def days(self) -> int:
        return _TIME_RANGE_DAYS[self]

    @property
    def slug(self) -> str:
        """Compact form used inside cache keys."""
        return self.name.lower()

    def since(self, now: datetime) -> datetime:
        """Start of the window that ends at `now`."""
        return now - timedelta(days=self.days)

    @classmethod
    def parse(cls, value: Any) -> 'TimeRange':
        if isinstance(value, cls):
            return value
        for time_range in cls:
            if time_range.value == value:
                return time_range
        allowed = ", ".join(f"'{t.value}'" for t in cls)
        raise ValidationError(f"Invalid time range {value!r}. Allowed values: {allowed}")


_TIME_RANGE_DAYS = {
    TimeRange.ONE_WEEK: 7,
    TimeRange.ONE_MONTH: 30,
    TimeRange.THREE_MONTHS: 90,
}


@dataclass(frozen=True)
class RepositorySummary:
    """Repository metadata as listed for the authenticated user."""
    id: int
    name: str
    full_name: str
    html_url: str
    description: Optional[str] = None
    stargazers_count: int = 0
    forks_count: int = 0
    language: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _format_datetime(self.created_at)
        data["updated_at"] = _format_datetime(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RepositorySummary':
        return cls(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            html_url=data["html_url"],
            description=data.get("description"),
            stargazers_count=data.get("stargazers_count", 0),
            forks_count=data.get("forks_count", 0),
            language=data.get("language", ""),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class CommitSummary:
    """A single commit on the default branch."""
    sha: str
    message: str
    author_name: str
    author_email: str
    date: datetime
    author_login: Optional[str] = None
    additions: int = 0
    deletions: int = 0

    @property
    def total_changes(self) -> int:
        return self.additions + self.deletions

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["date"] = _format_datetime(self.date)
        data["total_changes"] = self.total_changes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CommitSummary':
        return cls(
            sha=data["sha"],
            message=data["message"],
            author_name=data["author_name"],
            author_email=data["author_email"],
            date=_parse_datetime(data["date"]),
            author_login=data.get("author_login"),
            additions=data.get("additions", 0),
            deletions=data.get("deletions", 0),
        )


@dataclass(frozen=True)
class Collaborator:
    """Repository collaborator as returned by the upstream API."""
    login: str
    avatar_url: str
    role: str = "read"


@dataclass(frozen=True)
class CollaboratorSummary:
    """Collaborator with activity counts over a time window."""
    login: str
    avatar_url: str
    role: str
    commits: int = 0
    pull_requests: int = 0
    issues: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CollaboratorSummary':
        return cls(**data)


@dataclass(frozen=True)
class Kpis:
    commits: int = 0
    prs_merged: int = 0
    issues_closed: int = 0
    commits_label: str = ""
    prs_merged_label: str = ""
    issues_closed_label: str = ""


@dataclass(frozen=True)
class OpenWork:
    open_prs: int = 0
    open_issues: int = 0
    needs_review: int = 0


@dataclass(frozen=True)
class PeakActivity:
    most_active_day: Optional[str] = None
    peak_hour_utc: Optional[int] = None
    team_size: int = 0


@dataclass(frozen=True)
class RepositoryOverviewStats:
    """Headline statistics for one repository over a time window."""
    kpis: Kpis = field(default_factory=Kpis)
    open_work: OpenWork = field(default_factory=OpenWork)
    peak_activity: PeakActivity = field(default_factory=PeakActivity)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RepositoryOverviewStats':
        return cls(
            kpis=Kpis(**data["kpis"]),
            open_work=OpenWork(**data["open_work"]),
            peak_activity=PeakActivity(**data["peak_activity"]),
        )


@dataclass(frozen=True)
class CommitStats:
    total_count: int = 0


@dataclass(frozen=True)
class PullRequestStats:
    total_count: int = 0
    merged_count: int = 0


@dataclass(frozen=True)
class IssueStats:
    total_count: int = 0
    closed_count: int = 0


@dataclass(frozen=True)
class ReviewStats:
    given_count: int = 0


@dataclass(frozen=True)
class CollaboratorActivity:
    """Per-collaborator activity; every part defaults to zero independently."""
    commits: CommitStats = field(default_factory=CommitStats)
    pull_requests: PullRequestStats = field(default_factory=PullRequestStats)
    issues: IssueStats = field(default_factory=IssueStats)
    reviews: ReviewStats = field(default_factory=ReviewStats)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CollaboratorActivity':
        return cls(
            commits=CommitStats(**data["commits"]),
            pull_requests=PullRequestStats(**data["pull_requests"]),
            issues=IssueStats(**data["issues"]),
            reviews=ReviewStats(**data["reviews"]),
        )


@dataclass(frozen=True)
class CodeChangeTotals:
    additions: int = 0
    deletions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CodeChangeTotals':
        return cls(additions=data["additions"], deletions=data["deletions"])


DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24


@dataclass(frozen=True)
class ActivityHeatmap:
    """Commit counts indexed by [weekday][hour], UTC, Monday first."""
    cells: Tuple[Tuple[int, ...], ...]

    def __post_init__(self):
        if len(self.cells) != DAYS_PER_WEEK or any(
            len(row) != HOURS_PER_DAY for row in self.cells
        ):
            raise ValueError("Heat-map must be 7 rows of 24 hours")

    @classmethod
    def empty(cls) -> 'ActivityHeatmap':
        return cls(tuple((0,) * HOURS_PER_DAY for _ in range(DAYS_PER_WEEK)))

    @classmethod
    def from_timestamps(cls, timestamps: List[datetime]) -> 'ActivityHeatmap':
        grid = [[0] * HOURS_PER_DAY for _ in range(DAYS_PER_WEEK)]
        for ts in timestamps:
            grid[ts.weekday()][ts.hour] += 1
        return cls(tuple(tuple(row) for row in grid))

    def count(self, day: int, hour: int) -> int:
        return self.cells[day][hour]


@dataclass(frozen=True)
class IssueSearchFilters:
    """Structured filters rendered into GitHub issue search qualifiers.

    `kind` is either "pr" or "issue". Each date pair bounds one search field;
    either end may be left open.
    """
    kind: str = "issue"
    state: Optional[str] = None
    merged: bool = False
    author: Optional[str] = None
    reviewed_by: Optional[str] = None
    review_required: bool = False
    created_since: Optional[datetime] = None
    created_until: Optional[datetime] = None
    closed_since: Optional[datetime] = None
    closed_until: Optional[datetime] = None
    merged_since: Optional[datetime] = None
    merged_until: Optional[datetime] = None
    updated_since: Optional[datetime] = None
    updated_until: Optional[datetime] = None

    def __post_init__(self):
        if self.kind not in ("pr", "issue"):
            raise ValidationError(f"Unknown issue kind {self.kind!r}")
        if self.state not in (None, "open", "closed"):
            raise ValidationError(f"Unknown issue state {self.state!r}")

    def qualifiers(self) -> List[str]:
        parts = [f"is:{self.kind}"]
        if self.state:
            parts.append(f"is:{self.state}")
        if self.merged:
            parts.append("is:merged")
        if self.author:
            parts.append(f"author:{self.author}")
        if self.reviewed_by:
            parts.append(f"reviewed-by:{self.reviewed_by}")
        if self.review_required:
            parts.append("review:required")
        for name in ("created", "closed", "merged", "updated"):
            qualifier = _range_qualifier(
                name, getattr(self, f"{name}_since"), getattr(self, f"{name}_until")
            )
            if qualifier:
                parts.append(qualifier)
        return parts


def _search_date(value: datetime) -> str:
    # Seconds precision; GitHub search rejects fractional timestamps.
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _range_qualifier(
    name: str, since: Optional[datetime], until: Optional[datetime]
) -> Optional[str]:
    if since and until:
        return f"{name}:{_search_date(since)}..{_search_date(until)}"
    if since:
        return f"{name}:>={_search_date(since)}"
    if until:
        return f"{name}:<={_search_date(until)}"
    return None
