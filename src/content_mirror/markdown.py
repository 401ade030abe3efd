"""Front-matter splitting and serialization for markdown content files."""

from typing import Any, Dict, Tuple

import frontmatter


def parse_markdown(raw_content: str) -> Tuple[Dict[str, Any], str]:
    """
    Split a markdown file into its front-matter metadata and body.

    Raises:
        ValueError: If the front matter is not a mapping
        yaml.YAMLError: If the front matter is not valid YAML
    """
    post = frontmatter.loads(raw_content)
    metadata = post.metadata
    if not isinstance(metadata, dict):
        raise ValueError(f"Front matter must be a mapping, got {type(metadata).__name__}")
    return dict(metadata), post.content


def serialize_markdown(metadata: Dict[str, Any], body: str) -> str:
    """Render metadata as YAML front matter followed by the body."""
    post = frontmatter.Post(body)
    post.metadata.update(metadata)
    text = frontmatter.dumps(post, sort_keys=False)
    return text if text.endswith("\n") else text + "\n"
