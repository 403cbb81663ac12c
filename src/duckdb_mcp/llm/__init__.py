"""Model backend access and stream assembly."""

from duckdb_mcp.llm.bedrock import BedrockStreamer
from duckdb_mcp.llm.stream import (
    ModelStreamError,
    assemble_text,
    collect_completion,
    decode_delta,
    iter_text_deltas,
)

__all__ = [
    "BedrockStreamer",
    "ModelStreamError",
    "assemble_text",
    "collect_completion",
    "decode_delta",
    "iter_text_deltas",
]
