"""
Terraform .tfvars Reader

Reads the subset of HCL that variable files use in practice:
  - key = "string" / number / true / false
  - key = ["list", "of", "values"]   (single or multi-line, trailing comma ok)
  - key = { nested = "map" }
Comments (#, //, /* */) are ignored. Anything else is kept as the raw text
so variable validation can report it.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, Union

# key = ... at line start or after a comma; map keys may be quoted
_ASSIGNMENT = re.compile(
    r'(?m)(?:^|(?<=,))[ \t]*(?:"([^"\n]+)"|([A-Za-z_][A-Za-z0-9_-]*))[ \t]*=(?!=)'
)
_STRINGS_AND_COMMENTS = re.compile(r'"(?:\\.|[^"\\])*"|#[^\n]*|//[^\n]*|/\*.*?\*/', re.S)
_TRAILING_COMMA = re.compile(r',\s*([\]}])')
_INTEGER = re.compile(r'^-?\d+$')
_FLOAT = re.compile(r'^-?\d+\.\d+$')


def _strip_comments(text: str) -> str:
    def keep_strings(match):
        token = match.group(0)
        return token if token.startswith('"') else ''
    return _STRINGS_AND_COMMENTS.sub(keep_strings, text)


def _scan(text: str):
    """Bracket depth at the end of text and whether it ends inside a string"""
    depth = 0
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in '[{(':
            depth += 1
        elif ch in ']})':
            depth -= 1
    return depth, in_string


def _parse_value(raw: str) -> Any:
    value = raw.strip().rstrip(',').strip()

    if value.startswith('{') and value.endswith('}'):
        return parse_tfvars(value[1:-1])

    if value.startswith('['):
        try:
            return json.loads(_TRAILING_COMMA.sub(r'\1', value))
        except json.JSONDecodeError:
            return value

    if value.startswith('"'):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    if value in ('true', 'false'):
        return value == 'true'
    if _INTEGER.match(value):
        return int(value)
    if _FLOAT.match(value):
        return float(value)
    return value


def parse_tfvars(text: str) -> Dict[str, Any]:
    """
    Parse tfvars content into a dictionary.

    Args:
        text: Contents of a .tfvars file (or the body of a map)

    Returns:
        Mapping of variable name to parsed value
    """
    text = _strip_comments(text)

    top_level = [m for m in _ASSIGNMENT.finditer(text) if _scan(text[:m.start()]) == (0, False)]

    values = {}
    for i, match in enumerate(top_level):
        end = top_level[i + 1].start() if i + 1 < len(top_level) else len(text)
        values[match.group(1) or match.group(2)] = _parse_value(text[match.end():end])
    return values


def load_tfvars(path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse a tfvars file"""
    return parse_tfvars(Path(path).read_text(encoding='utf-8'))
