from collections.abc import Mapping
from pathlib import Path


def render_template(
    text: str,
    variables: Mapping[str, object] | None = None,
    root_path: str | Path | None = None,
    cwd: str | Path | None = None,
) -> str:
    rendered = text
    if root_path is not None:
        rendered = rendered.replace("${root_path}", str(root_path))
    if cwd is not None:
        rendered = rendered.replace("${cwd}", str(cwd))
    for key, value in (variables or {}).items():
        rendered = rendered.replace("${" + key + "}", str(value))
    return rendered
