"""
Pytest configuration and fixtures for testing.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
TESTS_DIR = Path(__file__).resolve().parent
PROJECT_DIR = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_DIR))

# Settings are cached on first use, so the test environment goes in first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["API_KEY"] = ""
os.environ["ADMIN_API_KEY"] = ""

from qa_insights.models.db_models import Base

# Reference instant used by every time-relative fixture and assertion
NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def initialize_cache():
    """
    Initialize FastAPI cache for all tests.

    Without this, any endpoint using the @cache decorator will fail with
    'You must call init first!' error.
    """
    from fastapi_cache import FastAPICache
    from fastapi_cache.backends.inmemory import InMemoryBackend

    FastAPICache.init(InMemoryBackend())
    yield
    FastAPICache.reset()


@pytest.fixture
def now():
    """Fixed 'now' for health and staleness calculations."""
    return NOW


@pytest.fixture(scope="function")
def test_db():
    """
    Create a temporary in-memory database for testing.
    Each test gets a fresh database.
    """
    # StaticPool keeps one connection so the TestClient thread sees the same data
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSessionLocal = sessionmaker(bind=engine)
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def sample_statuses(test_db):
    """Create the workflow statuses used by results."""
    from qa_insights.models.db_models import Status

    statuses = {
        "passed": Status(name="Passed", system_name="passed", color="#22c55e",
                         is_success=True, is_completed=True),
        "failed": Status(name="Failed", system_name="failed", color="#ef4444",
                         is_failure=True, is_completed=True),
        "blocked": Status(name="Blocked", system_name="blocked", color="#f59e0b"),
        "untested": Status(name="Untested", system_name="untested", color="#9ca3af"),
        "skipped": Status(name="Skipped", system_name="skipped", color="#6b7280"),
    }
    test_db.add_all(statuses.values())
    test_db.commit()
    return statuses


@pytest.fixture(scope="function")
def sample_project(test_db):
    """Create a sample project for testing."""
    from qa_insights.models.db_models import Project

    project = Project(name="Alpha Project", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)
    return project


@pytest.fixture(scope="function")
def sample_cases(test_db, sample_project):
    """
    Create repository cases of the sample project.

    login (manual), checkout (junit, automated), never_run (manual),
    search (junit, automated), export (manual) and a deleted case.
    """
    from qa_insights.models.db_models import RepositoryCase, CaseSourceEnum

    def make(name, source, automated, created, **kwargs):
        return RepositoryCase(
            project_id=sample_project.id,
            name=name,
            source=source,
            automated=automated,
            created_at=datetime(2024, 6, created, 9, 0, tzinfo=timezone.utc),
            **kwargs
        )

    cases = {
        "login": make("Login works", CaseSourceEnum.MANUAL, False, 3, template_id=1, state_id=1),
        "checkout": make("Checkout fails", CaseSourceEnum.JUNIT, True, 4, template_id=1, state_id=2),
        "never_run": make("Never run", CaseSourceEnum.MANUAL, False, 5, template_id=2, state_id=1),
        "search": make("Flaky search", CaseSourceEnum.JUNIT, True, 10, template_id=1, state_id=1),
        "export": make("Stale export", CaseSourceEnum.MANUAL, False, 11, template_id=1, state_id=1),
        "removed": make("Removed case", CaseSourceEnum.MANUAL, False, 4, is_deleted=True),
    }
    test_db.add_all(cases.values())
    test_db.commit()
    return cases


@pytest.fixture(scope="function")
def sample_results(test_db, sample_project, sample_statuses, sample_cases):
    """
    Create execution history relative to NOW.

    - login: 5 manual passes, 1..5 days ago
    - checkout: 5 automated failures (explicit status on none), 1..5 days ago
    - never_run: one manual "untested" result only
    - search: 6 automated results alternating, newest is a failure
    - export: one manual pass 45 days ago
    """
    from qa_insights.models.db_models import (
        TestRun, TestRunCase, TestRunResult, JUnitTestSuite, JUnitTestResult,
        JUnitResultTypeEnum
    )

    manual_run = TestRun(project_id=sample_project.id, name="Regression run")
    junit_run = TestRun(project_id=sample_project.id, name="CI import")
    test_db.add_all([manual_run, junit_run])
    test_db.flush()

    suite = JUnitTestSuite(test_run_id=junit_run.id, name="ci-suite")
    test_db.add(suite)
    test_db.flush()

    def run_case(case, status=None):
        rc = TestRunCase(
            test_run_id=manual_run.id,
            repository_case_id=case.id,
            status_id=status.id if status else None,
        )
        test_db.add(rc)
        test_db.flush()
        return rc

    passed = sample_statuses["passed"]
    login_rc = run_case(sample_cases["login"], passed)
    for days in range(1, 6):
        test_db.add(TestRunResult(
            test_run_case_id=login_rc.id, status_id=passed.id,
            executed_at=NOW - timedelta(days=days), elapsed=60,
        ))

    never_rc = run_case(sample_cases["never_run"])
    test_db.add(TestRunResult(
        test_run_case_id=never_rc.id, status_id=sample_statuses["untested"].id,
        executed_at=NOW - timedelta(days=1),
    ))

    export_rc = run_case(sample_cases["export"], passed)
    test_db.add(TestRunResult(
        test_run_case_id=export_rc.id, status_id=passed.id,
        executed_at=NOW - timedelta(days=45), elapsed=30,
    ))
    # Deleted results never count
    test_db.add(TestRunResult(
        test_run_case_id=export_rc.id, status_id=sample_statuses["failed"].id,
        executed_at=NOW - timedelta(days=2), is_deleted=True,
    ))

    for days in range(1, 6):
        test_db.add(JUnitTestResult(
            test_suite_id=suite.id, repository_case_id=sample_cases["checkout"].id,
            type=JUnitResultTypeEnum.FAILURE, executed_at=NOW - timedelta(days=days),
        ))
    # Skipped automated results are not executions
    test_db.add(JUnitTestResult(
        test_suite_id=suite.id, repository_case_id=sample_cases["checkout"].id,
        type=JUnitResultTypeEnum.SKIPPED, executed_at=NOW - timedelta(hours=1),
    ))

    for days in range(1, 7):
        result_type = JUnitResultTypeEnum.FAILURE if days % 2 == 1 else JUnitResultTypeEnum.PASSED
        test_db.add(JUnitTestResult(
            test_suite_id=suite.id, repository_case_id=sample_cases["search"].id,
            type=result_type, executed_at=NOW - timedelta(days=days),
        ))

    test_db.commit()
    return {"manual_run": manual_run, "junit_run": junit_run}


@pytest.fixture(scope="function")
def sample_issues(test_db, sample_project, sample_cases):
    """
    BUG-1 links login, checkout and never_run; BUG-2 links login only.
    A deleted issue links checkout.
    """
    from qa_insights.models.db_models import Issue

    bug1 = Issue(project_id=sample_project.id, name="BUG-1", title="Checkout broken",
                 status="Open", priority="High", external_key="BUG-1")
    bug2 = Issue(project_id=sample_project.id, name="BUG-2", title="Login flicker",
                 status="Open", priority="Low", external_key="BUG-2")
    gone = Issue(project_id=sample_project.id, name="BUG-0", is_deleted=True)
    bug1.cases = [sample_cases["login"], sample_cases["checkout"], sample_cases["never_run"]]
    bug2.cases = [sample_cases["login"]]
    gone.cases = [sample_cases["checkout"]]
    test_db.add_all([bug1, bug2, gone])
    test_db.commit()
    return {"bug1": bug1, "bug2": bug2}


@pytest.fixture(scope="function")
def cross_project_links(test_db, sample_project, sample_statuses, sample_cases):
    """
    Links that cross project boundaries.

    BUG-3 belongs to the sample project and links "Gamma smoke", a case of
    project Gamma whose only result failed 2 days ago. GAMMA-1 belongs to
    Gamma and links the sample project's login case.
    """
    from qa_insights.models.db_models import (
        Project, RepositoryCase, CaseSourceEnum, Issue, TestRun, TestRunCase, TestRunResult
    )

    gamma = Project(name="Gamma")
    test_db.add(gamma)
    test_db.flush()

    smoke = RepositoryCase(project_id=gamma.id, name="Gamma smoke", source=CaseSourceEnum.MANUAL,
                           automated=False, created_at=datetime(2024, 6, 6, 9, 0, tzinfo=timezone.utc))
    run = TestRun(project_id=gamma.id, name="Gamma run")
    test_db.add_all([smoke, run])
    test_db.flush()

    failed = sample_statuses["failed"]
    run_case = TestRunCase(test_run_id=run.id, repository_case_id=smoke.id, status_id=failed.id)
    test_db.add(run_case)
    test_db.flush()
    test_db.add(TestRunResult(
        test_run_case_id=run_case.id, status_id=failed.id, executed_at=NOW - timedelta(days=2),
    ))

    bug3 = Issue(project_id=sample_project.id, name="BUG-3", title="Smoke regression")
    gamma_issue = Issue(project_id=gamma.id, name="GAMMA-1", title="Login copy")
    bug3.cases = [smoke]
    gamma_issue.cases = [sample_cases["login"]]
    test_db.add_all([bug3, gamma_issue])
    test_db.commit()
    return {"project": gamma, "case": smoke, "bug3": bug3, "gamma_issue": gamma_issue}


@pytest.fixture(scope="function")
def sample_milestone(test_db, sample_statuses):
    """
    A milestone in a second project with one test run and two sessions.

    Run "Sprint 1": two passed cases with results (elapsed 60 + steps 30/10,
    and 50) and one case without status or result (estimate 120). A deleted
    run of the milestone is ignored. Session "Explore checkout" has no
    result (estimate 300); "Explore login" has an older failed result and a
    newer passed one (elapsed 40).
    """
    from qa_insights.models.db_models import (
        Project, RepositoryCase, Milestone, TestRun, TestRunCase, TestRunResult,
        TestRunStepResult, TestSession, SessionResult
    )

    project = Project(name="Beta")
    test_db.add(project)
    test_db.flush()

    milestone = Milestone(project_id=project.id, name="Release 1.0")
    test_db.add(milestone)
    test_db.flush()

    cases = [
        RepositoryCase(project_id=project.id, name=f"Beta case {i}", estimate=estimate)
        for i, estimate in enumerate([100, 80, 120], start=1)
    ]
    test_db.add_all(cases)
    test_db.flush()

    run = TestRun(project_id=project.id, milestone_id=milestone.id, name="Sprint 1")
    deleted_run = TestRun(project_id=project.id, milestone_id=milestone.id,
                          name="Old sprint", is_deleted=True)
    test_db.add_all([run, deleted_run])
    test_db.flush()

    passed = sample_statuses["passed"]
    rc1 = TestRunCase(test_run_id=run.id, repository_case_id=cases[0].id, status_id=passed.id)
    rc2 = TestRunCase(test_run_id=run.id, repository_case_id=cases[1].id, status_id=passed.id)
    rc3 = TestRunCase(test_run_id=run.id, repository_case_id=cases[2].id, status_id=None)
    rc_deleted = TestRunCase(test_run_id=deleted_run.id, repository_case_id=cases[0].id,
                             status_id=passed.id)
    test_db.add_all([rc1, rc2, rc3, rc_deleted])
    test_db.flush()

    result1 = TestRunResult(test_run_case_id=rc1.id, status_id=passed.id,
                            executed_at=NOW - timedelta(days=1), elapsed=60)
    result2 = TestRunResult(test_run_case_id=rc2.id, status_id=passed.id,
                            executed_at=NOW - timedelta(days=1), elapsed=50)
    test_db.add_all([result1, result2])
    test_db.flush()
    test_db.add_all([
        TestRunStepResult(test_run_result_id=result1.id, elapsed=30),
        TestRunStepResult(test_run_result_id=result1.id, elapsed=10),
    ])

    pending_session = TestSession(project_id=project.id, milestone_id=milestone.id,
                                  name="Explore checkout", estimate=300)
    done_session = TestSession(project_id=project.id, milestone_id=milestone.id,
                               name="Explore login", estimate=200)
    test_db.add_all([pending_session, done_session])
    test_db.flush()
    test_db.add_all([
        SessionResult(session_id=done_session.id, status_id=sample_statuses["failed"].id,
                      elapsed=10, created_at=NOW - timedelta(days=3)),
        SessionResult(session_id=done_session.id, status_id=passed.id,
                      elapsed=40, created_at=NOW - timedelta(days=1)),
        SessionResult(session_id=done_session.id, status_id=sample_statuses["failed"].id,
                      elapsed=99, created_at=NOW, is_deleted=True),
    ])

    test_db.commit()
    return {
        "milestone": milestone,
        "run": run,
        "deleted_run": deleted_run,
        "pending_session": pending_session,
        "done_session": done_session,
    }


@pytest.fixture(scope="function")
def milestone_issues(test_db, sample_milestone):
    """
    Issues around the sample milestone.

    BETA-1 links the run, BETA-2 the pending session and BETA-3 the live
    session result. BETA-4 only links the deleted run, BETA-5 only a
    deleted session result, and BETA-6 is a deleted issue on the run.
    """
    from qa_insights.models.db_models import Issue, SessionResult

    project_id = sample_milestone["milestone"].project_id
    done_session = sample_milestone["done_session"]
    results = test_db.query(SessionResult).filter(
        SessionResult.session_id == done_session.id
    ).order_by(SessionResult.id).all()
    live_result = next(r for r in results if not r.is_deleted and r.elapsed == 40)
    deleted_result = next(r for r in results if r.is_deleted)

    def issue(name, **kwargs):
        return Issue(project_id=project_id, name=name, title=f"{name} title",
                     status="Open", external_key=name, **kwargs)

    linked = [
        issue("BETA-1", test_runs=[sample_milestone["run"]]),
        issue("BETA-2", sessions=[sample_milestone["pending_session"]]),
        issue("BETA-3", session_results=[live_result]),
        issue("BETA-4", test_runs=[sample_milestone["deleted_run"]]),
        issue("BETA-5", session_results=[deleted_result]),
        issue("BETA-6", test_runs=[sample_milestone["run"]], is_deleted=True),
    ]
    test_db.add_all(linked)
    test_db.commit()
    return {i.name: i for i in linked}


@pytest.fixture(scope="function")
def override_get_db(test_db):
    """
    Override FastAPI's database and clock dependencies.

    Integration tests using TestClient share the database session of the
    sample fixtures and see NOW as the current time.
    """
    from qa_insights.main import app
    from qa_insights.database import get_db
    from qa_insights.routers.reports import get_now

    def get_test_db():
        try:
            yield test_db
        finally:
            pass  # Don't close test_db here, the test_db fixture handles it

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_now] = lambda: NOW
    yield
    app.dependency_overrides.clear()
