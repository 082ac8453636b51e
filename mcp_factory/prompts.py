"""Prompt templates for the natural-language path.

Placeholders use {name} and are filled with format_prompt, which replaces
only the keys it is given (JSON braces in the templates stay untouched).
"""

from __future__ import annotations

SYSTEM_PROMPT = """You are an expert Python developer specializing in building MCP (Model Context Protocol) servers with FastMCP.

Your code follows these principles:
1. Error resilience - never let exceptions escape a tool, return error objects
2. Explicit inputs - validate arguments before using them
3. Standard tooling - prefer httpx for HTTP and the standard library elsewhere
4. Readable code - descriptive names, comments only where logic is non-obvious

When generating tool implementations:
- Write Python 3.10+ code
- Use async/await for I/O (httpx.AsyncClient, not requests)
- Keep each tool focused on a single purpose"""

EXTRACT_TOOLS_PROMPT = """You are a tool specification extractor. Analyze the user's description and identify the distinct tools needed.

For each tool, determine:
1. A clear, descriptive name in snake_case
2. A concise description of what it does (one sentence)
3. All required and optional parameters with types
4. The expected return type and structure
5. Any third-party Python packages needed (PyPI names)

User Description:
{description}

Return a JSON array where each element has this exact structure:
{
  "name": "tool_name_in_snake_case",
  "description": "What the tool does in one clear sentence.",
  "input_schema": {
    "type": "object",
    "properties": {
      "param1": {"type": "string", "description": "Description of param1"},
      "param2": {"type": "integer", "description": "Description of param2", "default": 10}
    },
    "required": ["param1"]
  },
  "output_schema": {
    "type": "object",
    "properties": {
      "result": {"type": "string", "description": "The result"}
    }
  },
  "implementation_hints": "Use library X to fetch data from Y...",
  "dependencies": ["httpx"]
}

Important:
- Use snake_case for tool names and parameter names
- Every tool must have input_schema with "type": "object" and "properties"
- Be specific about parameter types (string, integer, number, boolean, array, object)
- Include default values where sensible
- List only PyPI packages (not standard library modules)

Return ONLY the JSON array, no other text."""

GENERATE_IMPLEMENTATION_PROMPT = """Generate the BODY of this MCP tool handler in Python.

Tool Specification:
- Name: {name}
- Description: {description}
- Input Schema: {input_schema}
- Output Schema: {output_schema}
- Implementation Hints: {hints}
- Dependencies: {dependencies}

Your code is placed inside this handler:

@mcp.tool(name="{name}")
async def {name}({arguments}) -> dict:
    params = {...the arguments above that are not None...}
    try:
        # >>> YOUR CODE GOES HERE <<<
    except Exception as e:
        return _error(str(e))

Requirements:
1. Write statements only: NO function signature, NO surrounding def
2. Use the arguments directly by name ({argument_names}) or via the `params` dict
3. Return `_text(result)` on success, where result is any JSON-serializable value
4. Return `_error("message")` for invalid input instead of raising
5. Do NOT wrap the code in try/except; the handler already does
6. Imports you need go at the very top of your code, before any other statement

Example:
import httpx

if not city:
    return _error("city is required")

async with httpx.AsyncClient(timeout=30.0) as client:
    response = await client.get(
        "https://api.example.com/weather",
        params={"q": city, "key": os.environ.get("WEATHER_API_KEY")},
    )
    response.raise_for_status()
    data = response.json()

return _text({"city": city, "temperature": data["temp"]})

Return ONLY the Python code, no explanations."""

RESEARCH_PROMPT = """You are researching how to build tools for an MCP server.

Server description:
{description}

Summarize, in under 300 words, the public APIs, Python packages, endpoints,
authentication methods and data formats a developer would need to implement
these tools. List the most relevant documentation URLs on lines starting
with "Source: "."""

ENHANCE_DESCRIPTION_TEMPLATE = """{description}

Research notes:
{research}"""


def format_prompt(template: str, **values: str) -> str:
    """Replace {key} placeholders for the given keys only."""
    result = template
    for key, value in values.items():
        result = result.replace("{" + key + "}", value)
    return result
