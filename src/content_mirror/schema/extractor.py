"""Best-effort extraction of collection schemas from a content config file.

The config file is TypeScript such as::

    const blog = defineCollection({
      type: "content",
      schema: z.object({
        title: z.string(),
        tags: z.array(z.string()).optional(),
      }),
    });
    export const collections = { blog };

This is not a compiler. Extraction is a two-stage structural scan:

1. find every ``name: defineCollection(`` / ``name = defineCollection(``
   declaration and take its balanced argument list;
2. inside it, take the ``schema`` entry, find its ``z.object({ ... })`` literal
   and read ``field: <type expression>`` pairs at the top level of that literal.

The base type of a field is the identifier after ``z.`` (``z.coerce.`` is
skipped); anything else degrades to ``string``. A field is optional when the
word ``optional`` appears anywhere in its expression. Bracket matching skips
string literals and comments, so nested objects, arrays and URLs in defaults
do not derail the scan. Whatever happens, at least one schema is returned.
"""

import logging
import re
from typing import Dict, List, Optional

from ..errors import SourceFileNotFoundError
from ..upstream.base import RepoRef, SourceRepositoryClient
from .models import CollectionSchema, FieldSpec, FieldType


logger = logging.getLogger(__name__)

_DECLARATION = re.compile(r"\b([A-Za-z_$][\w$]*)\s*[:=]\s*defineCollection\s*\(")
_OBJECT_CALL = re.compile(r"\bz\s*\.\s*object\s*\(\s*\{")
_ENTRY = re.compile(
    r"""^\s*(?:([A-Za-z_$][\w$]*)|'([^']*)'|"([^"]*)")\s*:\s*(.*)$""",
    re.DOTALL,
)
_TYPE_PREFIX = re.compile(r"^z\s*\.\s*(?:coerce\s*\.\s*)?([A-Za-z_]\w*)")

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}
_QUOTES = {"'", '"', "`"}


def default_schema() -> CollectionSchema:
    """Schema used when the config file is missing or declares nothing."""
    return CollectionSchema(
        name="blog",
        fields={
            "title": FieldSpec(FieldType.STRING, optional=False),
            "slug": FieldSpec(FieldType.STRING, optional=False),
            "tags": FieldSpec(FieldType.ARRAY, optional=True),
            "episodeUrl": FieldSpec(FieldType.STRING, optional=True),
            "transcription": FieldSpec(FieldType.ARRAY, optional=True),
        },
    )


def extract_schemas(config_text: Optional[str]) -> List[CollectionSchema]:
    """
    Extract collection schemas from the text of a content config file.

    Args:
        config_text: File content, or None if the file does not exist

    Returns:
        Declared collections, or a single default schema if none were found
    """
    if not config_text or not config_text.strip():
        return [default_schema()]

    try:
        collections = _extract_collections(_strip_comments(config_text))
    except Exception as e:
        logger.warning(f"Could not scan content config, using default schema: {e}")
        return [default_schema()]

    if not collections:
        logger.info("No collections found in content config, using default schema")
        return [default_schema()]

    return collections


async def load_schemas(
    client: SourceRepositoryClient,
    repo: RepoRef,
    config_path: str,
) -> List[CollectionSchema]:
    """
    Fetch the content config from the repository and extract its schemas.

    Never raises: a missing file or a failed fetch yields the default schema.
    """
    try:
        config_file = await client.get_file(repo, config_path)
    except SourceFileNotFoundError:
        logger.info(f"No {config_path} in {repo}, using default schema")
        return [default_schema()]
    except Exception as e:
        logger.warning(f"Failed to fetch {config_path} from {repo}: {e}")
        return [default_schema()]

    schemas = extract_schemas(config_file.content)
    logger.info(
        f"Found {len(schemas)} schema(s) in {repo}: {', '.join(s.name for s in schemas)}"
    )
    return schemas


def _extract_collections(text: str) -> List[CollectionSchema]:
    collections: List[CollectionSchema] = []
    seen = set()

    for match in _DECLARATION.finditer(text):
        name = match.group(1)
        open_index = match.end() - 1
        close_index = _find_closing(text, open_index)
        if close_index is None or name in seen:
            continue

        seen.add(name)
        body = text[open_index + 1:close_index]
        collections.append(CollectionSchema(name=name, fields=_extract_fields(body)))

    return collections


def _extract_fields(body: str) -> Dict[str, FieldSpec]:
    """Read field declarations from the schema entry of a collection body."""
    start = body.find("{")
    if start == -1:
        return {}
    end = _find_closing(body, start)
    if end is None:
        return {}

    schema_value = None
    for entry in _split_top_level(body[start + 1:end]):
        key, value = _split_entry(entry)
        if key == "schema":
            schema_value = value
            break

    if schema_value is None:
        return {}

    object_match = _OBJECT_CALL.search(schema_value)
    if not object_match:
        return {}

    open_index = object_match.end() - 1
    close_index = _find_closing(schema_value, open_index)
    if close_index is None:
        return {}

    fields: Dict[str, FieldSpec] = {}
    for entry in _split_top_level(schema_value[open_index + 1:close_index]):
        key, value = _split_entry(entry)
        if key is None:
            continue
        fields[key] = _parse_type_expression(value)

    return fields


def _parse_type_expression(expression: str) -> FieldSpec:
    expression = expression.strip()
    optional = "optional" in expression

    field_type = FieldType.STRING
    prefix = _TYPE_PREFIX.match(expression)
    if prefix:
        try:
            field_type = FieldType(prefix.group(1))
        except ValueError:
            field_type = FieldType.STRING

    return FieldSpec(type=field_type, optional=optional)


def _split_entry(entry: str):
    match = _ENTRY.match(entry)
    if not match:
        return None, ""
    key = match.group(1) or match.group(2) or match.group(3)
    return key, match.group(4)


def _skip_string(text: str, index: int) -> int:
    """Return the index just past the string literal starting at index."""
    quote = text[index]
    i = index + 1
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == quote:
            return i + 1
        i += 1
    return len(text)


def _strip_comments(text: str) -> str:
    out = []
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        if char in _QUOTES:
            end = _skip_string(text, i)
            out.append(text[i:end])
            i = end
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = length if newline == -1 else newline
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = length if close == -1 else close + 2
            out.append(" ")
        else:
            out.append(char)
            i += 1
    return "".join(out)


def _find_closing(text: str, open_index: int) -> Optional[int]:
    """Index of the bracket closing the one at open_index, or None."""
    stack = []
    i = open_index
    while i < len(text):
        char = text[i]
        if char in _QUOTES:
            i = _skip_string(text, i)
            continue
        if char in _OPENERS:
            stack.append(_OPENERS[char])
        elif char in _CLOSERS:
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return i
        i += 1
    return None


def _split_top_level(text: str) -> List[str]:
    """Split an object literal body on commas that are not nested."""
    parts = []
    depth = 0
    current_start = 0
    i = 0
    while i < len(text):
        char = text[i]
        if char in _QUOTES:
            i = _skip_string(text, i)
            continue
        if char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(text[current_start:i])
            current_start = i + 1
        i += 1
    parts.append(text[current_start:])
    return [part for part in parts if part.strip()]
