"""Prompt templates handed to the model. Pure string templating."""

from duckdb_mcp.models import SCHEMA_URI

FENCE_MARKER = "```sql"


def sql_assistant_prompt(question: str, schema: str | None = None) -> str:
    """Instruction for generating a single bare DuckDB statement."""
    schema_text = schema or f"Use the {SCHEMA_URI} resource to get the current schema"
    return f"""You are a SQL expert. Given the following database schema and question, \
generate a valid DuckDB SQL query.

Database Schema:
{schema_text}

Question: {question}

Requirements:
- Return only the SQL query, no explanation, formatting or any other text.
- Do not print "{FENCE_MARKER}" or any other code fence.
- Use proper DuckDB syntax and functions
- Ensure the query is safe and well-formed
- Consider performance implications
- TO_VARCHAR is not a DuckDB function
- TO_CHAR is not a DuckDB function
- Every selected column that is not inside an aggregate function must appear in the GROUP BY clause
"""


def optimize_query_prompt(sql: str, performance_issues: str | None = None) -> str:
    """Instruction for rewriting a slow query."""
    issues = f"Known Issues: {performance_issues}\n\n" if performance_issues else ""
    return f"""You are a SQL optimization expert. Analyze and optimize the following DuckDB query:

Original Query:
{sql}

{issues}Please provide:
1. An optimized version of the query
2. Explanation of optimizations made
3. Potential performance improvements"""


def generation_prompt(schema_text: str, question: str) -> str:
    """Prompt the agent sends to the model when answering a question end to end."""
    return f"""
I have a DuckDB database with the following schema:

{schema_text}

Please generate a SQL query to answer this question:
{question}

Requirements:
- Return only the SQL statement, no explanations or formatting
- Use proper DuckDB syntax and functions
- Ensure the query is safe and well-formed
- Use the exact table_name and column_name from the schema provided
- Consider performance implications

SQL Query:"""
