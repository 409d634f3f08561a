"""riglm: an MCP aggregation proxy that shows the client the tools relevant to what it is doing."""

__version__ = "0.2.0"
