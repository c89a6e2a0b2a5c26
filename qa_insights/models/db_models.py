"""
SQLAlchemy database models for QA Insights.

These tables are the read side of the test-management data store: the
report services query them, flatten the rows and hand them to the
analytics functions. Nothing in this service writes execution data.
"""
from datetime import datetime, timezone
import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey, JSON, Table,
    Enum as SQLEnum, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class CaseSourceEnum(str, enum.Enum):
    """Where a repository case originates from."""
    MANUAL = "MANUAL"
    API = "API"
    JUNIT = "JUNIT"
    TESTNG = "TESTNG"
    XUNIT = "XUNIT"
    NUNIT = "NUNIT"
    MSTEST = "MSTEST"
    MOCHA = "MOCHA"
    CUCUMBER = "CUCUMBER"


class JUnitResultTypeEnum(str, enum.Enum):
    """Declared result type of an imported automated result."""
    PASSED = "PASSED"
    FAILURE = "FAILURE"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"


issue_cases = Table(
    "issue_cases",
    Base.metadata,
    Column("issue_id", Integer, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True),
    Column("repository_case_id", Integer, ForeignKey("repository_cases.id", ondelete="CASCADE"), primary_key=True),
)

issue_test_runs = Table(
    "issue_test_runs",
    Base.metadata,
    Column("issue_id", Integer, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True),
    Column("test_run_id", Integer, ForeignKey("test_runs.id", ondelete="CASCADE"), primary_key=True),
)

issue_sessions = Table(
    "issue_sessions",
    Base.metadata,
    Column("issue_id", Integer, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True),
    Column("session_id", Integer, ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True),
)

issue_session_results = Table(
    "issue_session_results",
    Base.metadata,
    Column("issue_id", Integer, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True),
    Column("session_result_id", Integer, ForeignKey("session_results.id", ondelete="CASCADE"), primary_key=True),
)


class Project(Base):
    """A test-management project."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    cases = relationship("RepositoryCase", back_populates="project")

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}')>"


class Status(Base):
    """Workflow status a result or test run case can carry."""
    __tablename__ = "statuses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    system_name = Column(String(100), nullable=False)  # e.g. "passed", "untested", "skipped"
    color = Column(String(20))  # Hex color, e.g. "#22c55e"
    is_success = Column(Boolean, default=False, nullable=False)
    is_failure = Column(Boolean, default=False, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Status(name='{self.name}', success={self.is_success}, failure={self.is_failure})>"


class RepositoryCase(Base):
    """A test case in a project repository."""
    __tablename__ = "repository_cases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(500), nullable=False)
    source = Column(SQLEnum(CaseSourceEnum), nullable=False, default=CaseSourceEnum.MANUAL)
    automated = Column(Boolean, default=False, nullable=False)
    template_id = Column(Integer)
    state_id = Column(Integer)
    estimate = Column(Integer)  # Seconds
    is_deleted = Column(Boolean, default=False, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    project = relationship("Project", back_populates="cases")
    field_values = relationship("CaseFieldValue", back_populates="case", cascade="all, delete-orphan")
    issues = relationship("Issue", secondary=issue_cases, back_populates="cases")

    __table_args__ = (
        Index('idx_case_project', 'project_id', 'is_deleted'),
        Index('idx_case_created', 'created_at'),
    )

    def __repr__(self):
        return f"<RepositoryCase(id={self.id}, name='{self.name}', source={self.source.value})>"


class CaseFieldValue(Base):
    """Custom field value of a repository case (JSON: scalar or list)."""
    __tablename__ = "case_field_values"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(Integer, ForeignKey("repository_cases.id", ondelete="CASCADE"), nullable=False)
    field_id = Column(Integer, nullable=False)
    value = Column(JSON)

    case = relationship("RepositoryCase", back_populates="field_values")

    __table_args__ = (
        Index('idx_field_value_case', 'case_id', 'field_id'),
    )


class Milestone(Base):
    """Project milestone grouping test runs and sessions."""
    __tablename__ = "milestones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Milestone(id={self.id}, name='{self.name}')>"


class TestRun(Base):
    """A manual or automated test run."""
    __tablename__ = "test_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    milestone_id = Column(Integer, ForeignKey("milestones.id", ondelete="SET NULL"))
    name = Column(String(200), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    cases = relationship("TestRunCase", back_populates="test_run", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<TestRun(id={self.id}, name='{self.name}')>"


class TestRunCase(Base):
    """A repository case scheduled in a test run."""
    __tablename__ = "test_run_cases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    test_run_id = Column(Integer, ForeignKey("test_runs.id", ondelete="CASCADE"), nullable=False)
    repository_case_id = Column(Integer, ForeignKey("repository_cases.id", ondelete="CASCADE"), nullable=False)
    status_id = Column(Integer, ForeignKey("statuses.id"))  # Current status of the case in this run

    test_run = relationship("TestRun", back_populates="cases")
    repository_case = relationship("RepositoryCase")
    status = relationship("Status")
    results = relationship("TestRunResult", back_populates="test_run_case", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_run_case', 'test_run_id', 'repository_case_id'),
    )


class TestRunResult(Base):
    """A manual execution result recorded against a test run case."""
    __tablename__ = "test_run_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    test_run_case_id = Column(Integer, ForeignKey("test_run_cases.id", ondelete="CASCADE"), nullable=False)
    status_id = Column(Integer, ForeignKey("statuses.id"), nullable=False)
    executed_at = Column(DateTime(timezone=True))  # NULL means not executed yet
    elapsed = Column(Integer)  # Seconds
    is_deleted = Column(Boolean, default=False, nullable=False)

    test_run_case = relationship("TestRunCase", back_populates="results")
    status = relationship("Status")
    step_results = relationship("TestRunStepResult", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_result_executed', 'executed_at'),
    )


class TestRunStepResult(Base):
    """Per-step result of a manual execution."""
    __tablename__ = "test_run_step_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    test_run_result_id = Column(Integer, ForeignKey("test_run_results.id", ondelete="CASCADE"), nullable=False)
    elapsed = Column(Integer)  # Seconds


class JUnitTestSuite(Base):
    """Imported JUnit suite attached to a test run."""
    __tablename__ = "junit_test_suites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    test_run_id = Column(Integer, ForeignKey("test_runs.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(500))

    test_run = relationship("TestRun")


class JUnitTestResult(Base):
    """Imported automated result for a repository case."""
    __tablename__ = "junit_test_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    test_suite_id = Column(Integer, ForeignKey("junit_test_suites.id", ondelete="CASCADE"), nullable=False)
    repository_case_id = Column(Integer, ForeignKey("repository_cases.id", ondelete="CASCADE"), nullable=False)
    type = Column(SQLEnum(JUnitResultTypeEnum), nullable=False)
    status_id = Column(Integer, ForeignKey("statuses.id"))  # Optional explicit status mapping
    executed_at = Column(DateTime(timezone=True))

    test_suite = relationship("JUnitTestSuite")
    status = relationship("Status")

    __table_args__ = (
        Index('idx_junit_case_executed', 'repository_case_id', 'executed_at'),
    )


class Issue(Base):
    """Issue from an external tracker linked to test cases."""
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    title = Column(Text)
    status = Column(String(50))
    priority = Column(String(50))
    issue_type_name = Column(String(100))
    external_key = Column(String(100))
    external_url = Column(String(2000))
    is_deleted = Column(Boolean, default=False, nullable=False)

    cases = relationship("RepositoryCase", secondary=issue_cases, back_populates="issues")
    test_runs = relationship("TestRun", secondary=issue_test_runs)
    sessions = relationship("TestSession", secondary=issue_sessions)
    session_results = relationship("SessionResult", secondary=issue_session_results)

    def __repr__(self):
        return f"<Issue(id={self.id}, name='{self.name}')>"


class TestSession(Base):
    """Exploratory testing session within a milestone."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    milestone_id = Column(Integer, ForeignKey("milestones.id", ondelete="SET NULL"))
    name = Column(String(200), nullable=False)
    estimate = Column(Integer)  # Seconds
    is_deleted = Column(Boolean, default=False, nullable=False)

    results = relationship("SessionResult", back_populates="session", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<TestSession(id={self.id}, name='{self.name}')>"


class SessionResult(Base):
    """Result recorded for an exploratory session."""
    __tablename__ = "session_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    status_id = Column(Integer, ForeignKey("statuses.id"))
    elapsed = Column(Integer)  # Seconds
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    session = relationship("TestSession", back_populates="results")
    status = relationship("Status")
