"""Suite, step and runtime result models."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SUPPORTED_VERSION = 1
SUPPORTED_SQL_DRIVERS = ("postgres",)


class FrozenModel(BaseModel):
    """Immutable model; serialises with wire-format aliases."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class HttpRequestSpec(FrozenModel):
    """Request issued by an HTTP step."""

    method: str
    path: str
    headers: Optional[dict[str, str]] = None
    query: Optional[dict[str, Union[str, int, float, bool]]] = None
    body: Any = None
    timeout_ms: Optional[int] = None
    retries: Optional[int] = None


class HttpExpectation(FrozenModel):
    """Acceptable outcome of an HTTP step.

    ``json_pattern`` is only checked when it was supplied, so an explicit
    ``json: null`` still asserts a JSON ``null`` body.
    """

    status: Optional[int] = None
    json_pattern: Any = Field(default=None, alias="json")
    body_contains: Optional[str] = Field(default=None, alias="bodyContains")

    @property
    def checks_json(self) -> bool:
        return "json_pattern" in self.model_fields_set


class ExecCommandSpec(FrozenModel):
    """Shell command run by an exec step."""

    run: str
    cwd: Optional[str] = None
    env: Optional[dict[str, str]] = None
    timeout_ms: Optional[int] = None
    retries: Optional[int] = None


class ExecExpectation(FrozenModel):
    exit_code: int = 0
    stdout_contains: Optional[str] = None
    stderr_contains: Optional[str] = None


class SqlQuerySpec(FrozenModel):
    """Query run by a SQL step; ``url_env`` names the variable holding the DSN."""

    driver: Literal["postgres"] = "postgres"
    url_env: str
    query: str
    timeout_ms: Optional[int] = None
    retries: Optional[int] = None


class SqlExpectation(FrozenModel):
    rows: Optional[int] = None
    equals: Any = None

    @property
    def checks_first_row(self) -> bool:
        return "equals" in self.model_fields_set


class HttpStep(FrozenModel):
    kind: Literal["http"] = "http"
    http: HttpRequestSpec
    expect: HttpExpectation = Field(default_factory=HttpExpectation)

    @property
    def title(self) -> str:
        return f"http {self.http.method} {self.http.path}"


class ExecStep(FrozenModel):
    kind: Literal["exec"] = "exec"
    exec: ExecCommandSpec
    expect: ExecExpectation = Field(default_factory=ExecExpectation)

    @property
    def title(self) -> str:
        return f"exec {self.exec.run}"


class SqlStep(FrozenModel):
    kind: Literal["sql"] = "sql"
    sql: SqlQuerySpec
    expect: SqlExpectation = Field(default_factory=SqlExpectation)

    @property
    def title(self) -> str:
        return f"sql {self.sql.driver} ({self.sql.url_env})"


Step = Annotated[Union[HttpStep, ExecStep, SqlStep], Field(discriminator="kind")]
StepKind = Literal["http", "exec", "sql"]


class Scenario(FrozenModel):
    """Ordered steps asserting one end-to-end behaviour."""

    id: str
    steps: list[Step]


class Contract(FrozenModel):
    name: str
    scenarios: list[Scenario]


class SuiteDocument(FrozenModel):
    """Validated suite; built once per loaded source and never mutated."""

    version: Literal[1] = SUPPORTED_VERSION
    suite: str
    contracts: list[Contract]


class StepResult(FrozenModel):
    """Runtime result for one step."""

    ok: bool
    kind: StepKind
    title: str
    notes: list[str] = Field(default_factory=list)
    status: Optional[int] = None
    method: Optional[str] = None
    url: Optional[str] = None
    attempts: int = 1
    duration_ms: float = 0.0


class ScenarioResult(FrozenModel):
    """Aggregated result for one scenario, tagged with its suite and contract."""

    suite: str
    contract: str
    id: str
    ok: bool
    method: Optional[str] = None
    url: Optional[str] = None
    status: Optional[int] = None
    notes: list[str] = Field(default_factory=list)
    steps: list[StepResult] = Field(default_factory=list)
    duration_ms: float = 0.0


class RunReport(FrozenModel):
    """Final tally written to the JSON report file."""

    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    suites: list[str] = Field(default_factory=list)
    total: int
    failed: int
    passed: int
    ok: bool
    results: list[ScenarioResult] = Field(default_factory=list)
