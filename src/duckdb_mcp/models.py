"""Data models shared by the server and the agent."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

EXECUTE_SQL = "execute-sql"
GENERATE_SQL = "generate-sql"
ANALYZE_QUERY = "analyze-query"

SCHEMA_URI = "schema://schema"
TABLES_URI = "schema://tables"

SQL_ASSISTANT_PROMPT = "sql-assistant"
OPTIMIZE_QUERY_PROMPT = "optimize-query"

DEFAULT_LIMIT = 100


class SchemaEntry(BaseModel):
    """One column of one table, as reported by information_schema.columns."""

    table_name: str
    column_name: str
    data_type: str
    is_nullable: bool
    column_default: str | None = None

    @field_validator("is_nullable", mode="before")
    @classmethod
    def _coerce_yes_no(cls, value: Any) -> Any:
        # information_schema reports 'YES' / 'NO'
        if isinstance(value, str):
            return value.strip().upper() == "YES"
        return value


class TableEntry(BaseModel):
    """One row of the table-list resource."""

    table_name: str


class ResourceContent(BaseModel):
    """A single piece of content returned from a resource read."""

    uri: str
    mimeType: str = Field(default="application/json")
    text: str


# =============================================================================
# Tool calls - one tagged variant per registered tool
# =============================================================================


class _ToolCall(BaseModel):
    """Base for tool call requests.

    ``name`` is the tool name on the wire; everything else is an argument.
    """

    def arguments(self) -> dict[str, Any]:
        """Return the argument mapping sent with the call."""
        return self.model_dump(exclude={"name"}, exclude_none=True)


class ExecuteSqlCall(_ToolCall):
    name: Literal["execute-sql"] = EXECUTE_SQL
    sql: str = Field(..., description="SQL query to execute against the DuckDB database")
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, description="Maximum number of rows to return")


class GenerateSqlCall(_ToolCall):
    name: Literal["generate-sql"] = GENERATE_SQL
    question: str = Field(..., description="Natural language question to convert to SQL")
    context: str | None = Field(default=None, description="Additional context about the query")


class AnalyzeQueryCall(_ToolCall):
    name: Literal["analyze-query"] = ANALYZE_QUERY
    sql: str = Field(..., description="SQL query to analyze")


ToolCallRequest = Annotated[
    ExecuteSqlCall | GenerateSqlCall | AnalyzeQueryCall,
    Field(discriminator="name"),
]
