"""Tool schema definitions (Anthropic Messages API style) and mode gating sets."""

from typing import Any, Dict

READ_SCHEMA: Dict[str, Any] = {
    "name": "read",
    "description": "Read a file and return its content with line numbers. Accepts absolute paths or paths relative to the project directory.",
    "input_schema": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "Absolute or project-relative path to the file to read"},
            "offset": {"type": "integer", "minimum": 1, "description": "1-based line number to start reading from (default: 1)"},
            "limit": {"type": "integer", "minimum": 0, "description": "Maximum number of lines to return (default: all)"},
        },
        "required": ["file_path"],
        "additionalProperties": False,
    },
}

WRITE_SCHEMA: Dict[str, Any] = {
    "name": "write",
    "description": "Write content to a file. Creates parent directories if they don't exist. Overwrites the file if it already exists.",
    "input_schema": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "Absolute or project-relative path to write to"},
            "content": {"type": "string", "description": "The full content to write to the file"},
        },
        "required": ["file_path", "content"],
        "additionalProperties": False,
    },
}

EDIT_SCHEMA: Dict[str, Any] = {
    "name": "edit",
    "description": "Perform an exact string replacement in a file. The old_string must appear exactly once in the file. Fails if old_string is not found or appears more than once.",
    "input_schema": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "Absolute or project-relative path to the file to edit"},
            "old_string": {"type": "string", "description": "The exact text to find (must be unique in the file)"},
            "new_string": {"type": "string", "description": "The replacement text"},
        },
        "required": ["file_path", "old_string", "new_string"],
        "additionalProperties": False,
    },
}

GLOB_SCHEMA: Dict[str, Any] = {
    "name": "glob",
    "description": "Find files matching a glob pattern relative to the project directory. Supports patterns like \"**/*.ts\", \"src/**/*.tsx\". Skips node_modules, .git, dist, build and .gitignore'd paths.",
    "input_schema": {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Glob pattern to match files (e.g. \"**/*.ts\", \"src/**/*.tsx\")"},
        },
        "required": ["pattern"],
        "additionalProperties": False,
    },
}

GREP_SCHEMA: Dict[str, Any] = {
    "name": "grep",
    "description": "Search file contents for a regex pattern. Returns matching lines with file path and line number (max 100). If path is provided, searches only that file or directory.",
    "input_schema": {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Regular expression pattern to search for"},
            "path": {"type": "string", "description": "File or directory to search in (default: entire project)"},
        },
        "required": ["pattern"],
        "additionalProperties": False,
    },
}

WEBFETCH_SCHEMA: Dict[str, Any] = {
    "name": "webfetch",
    "description": "Fetch content from a URL and return it as markdown or plain text. Use this to read web pages, documentation, articles, or any URL. Returns cleaned content with HTML/JS/CSS removed.",
    "input_schema": {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to fetch content from"},
            "format": {
                "type": "string",
                "enum": ["text", "markdown"],
                "description": "Output format: 'markdown' (default) preserves headings/links/code, 'text' is plain text",
            },
            "timeout": {"type": "number", "exclusiveMinimum": 0, "description": "Optional timeout in seconds (default: 30, max: 120)"},
        },
        "required": ["url"],
        "additionalProperties": False,
    },
}

# description is filled in at registry time (mentions the current year)
WEBSEARCH_SCHEMA: Dict[str, Any] = {
    "name": "websearch",
    "description": "",
    "input_schema": {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Web search query"},
        },
        "required": ["query"],
        "additionalProperties": False,
    },
}

CODESEARCH_SCHEMA: Dict[str, Any] = {
    "name": "codesearch",
    "description": "Search and get relevant context for any programming task using Exa Code API. Provides fresh context for libraries, SDKs, and APIs. Returns code examples, documentation, and API references. Examples: 'React useState hook examples', 'Python pandas dataframe filtering', 'Express.js middleware'.",
    "input_schema": {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query to find relevant context for APIs, libraries, and SDKs"},
            "tokensNum": {
                "type": "integer",
                "minimum": 1000,
                "maximum": 50000,
                "description": "Number of tokens to return (1000-50000). Default is 5000 tokens.",
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    },
}

IMAGEFETCH_SCHEMA: Dict[str, Any] = {
    "name": "imagefetch",
    "description": "Fetch an image from a URL and return it for visual inspection. Use this when you need to view or analyze an image from a URL. Supports common image formats (PNG, JPEG, GIF, WebP, SVG).",
    "input_schema": {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The image URL to fetch"},
        },
        "required": ["url"],
        "additionalProperties": False,
    },
}

SKILL_SCHEMA: Dict[str, Any] = {
    "name": "skill",
    "description": "",
    "input_schema": {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "The name of the skill to load"},
        },
        "required": ["name"],
        "additionalProperties": False,
    },
}

QUESTION_SCHEMA: Dict[str, Any] = {
    "name": "question",
    "description": "Ask the user clarifying questions before creating a plan. Use this to gather requirements, preferences, and constraints. Each question can be free-text (textarea), single-select (radio), or multi-select (checkboxes). The user's answers will arrive as the next user message.",
    "input_schema": {
        "type": "object",
        "properties": {
            "questions": {
                "type": "array",
                "description": "Array of questions to ask the user",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {
                            "type": "string",
                            "enum": ["text", "single_select", "multi_select"],
                            "description": "text = free-form textarea, single_select = radio buttons, multi_select = checkboxes",
                        },
                        "question": {"type": "string", "description": "The question to display as a label"},
                        "options": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Options for single_select / multi_select (ignored for text)",
                        },
                    },
                    "required": ["type", "question"],
                },
            },
        },
        "required": ["questions"],
        "additionalProperties": False,
    },
}

PLAN_WRITE_SCHEMA: Dict[str, Any] = {
    "name": "plan_write",
    "description": "Write or update the plan file. Use this to save your implementation plan. This is the ONLY file you can write to in plan mode. Write the full plan content; this overwrites the previous plan.",
    "input_schema": {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "The full plan content (markdown)"},
        },
        "required": ["content"],
        "additionalProperties": False,
    },
}

PLAN_EXIT_SCHEMA: Dict[str, Any] = {
    "name": "plan_exit",
    "description": "Call this when your plan is complete and you are ready to switch to agent (build) mode. This will signal the user to switch to agent mode to execute the plan.",
    "input_schema": {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    },
}

# ---------------------------------------------------------------------------
# Mode gating
# ---------------------------------------------------------------------------

ALWAYS_TOOLS = ("read", "glob", "grep", "webfetch", "websearch", "codesearch", "imagefetch", "skill")
AGENT_ONLY_TOOLS = ("write", "edit")
PLAN_ONLY_TOOLS = ("question", "plan_write", "plan_exit")

PLAN_EXIT_TOOL = "plan_exit"
