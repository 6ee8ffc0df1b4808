from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ValidationError

from hmr.common.exceptions import PathError

Segment = Union[str, int]


def parse_path(path: str) -> list[Segment]:
    """Split a dotted path into name and index segments.

    Supported:
    - "a.b.c"
    - "a.b[0].c"
    - "a[0][1].b"

    Raises PathError for empty segments, unterminated brackets, "[]" and
    non-numeric or negative indexes. An empty path yields no segments.
    """
    if not path:
        return []

    segments: list[Segment] = []
    buffer = ""
    idx = 0
    expect_name = True

    while idx < len(path):
        ch = path[idx]
        if ch == ".":
            if buffer:
                segments.append(buffer)
                buffer = ""
            elif expect_name:
                raise PathError(f"Empty segment in path '{path}'", path=path)
            expect_name = True
            idx += 1
            continue

        if ch == "[":
            if buffer:
                segments.append(buffer)
                buffer = ""
            elif expect_name:
                raise PathError(f"Index without a name in path '{path}'", path=path)
            close = path.find("]", idx + 1)
            if close == -1:
                raise PathError(f"Unterminated index in path '{path}'", path=path)
            raw = path[idx + 1 : close].strip()
            if not raw.isdigit():
                raise PathError(f"Bad index '{raw}' in path '{path}'", path=path)
            segments.append(int(raw))
            expect_name = False
            idx = close + 1
            if idx < len(path) and path[idx] not in ".[":
                raise PathError(f"Unexpected '{path[idx]}' after index in path '{path}'", path=path)
            continue

        if ch == "]" or ch.isspace():
            raise PathError(f"Unexpected '{ch}' in path '{path}'", path=path)
        buffer += ch
        expect_name = False
        idx += 1

    if buffer:
        segments.append(buffer)
    elif expect_name:
        raise PathError(f"Path '{path}' ends with a separator", path=path)
    return segments


def format_path(segments: list[Segment]) -> str:
    out = ""
    for seg in segments:
        if isinstance(seg, int):
            out += f"[{seg}]"
        else:
            out += f".{seg}" if out else seg
    return out


def _model_fields(model: BaseModel) -> dict[str, Any]:
    return type(model).model_fields


def get_path(data: Any, path: str) -> Any:
    """Safely traverse a dict/BaseModel/list by a dot + [idx] path.

    Returns None when the path cannot be resolved, including malformed paths.
    """
    try:
        segments = parse_path(path)
    except PathError:
        return None

    current: Any = data
    for seg in segments:
        if current is None:
            return None
        if isinstance(seg, int):
            if not isinstance(current, (list, tuple)) or seg >= len(current):
                return None
            current = current[seg]
        elif isinstance(current, dict):
            current = current.get(seg)
        elif isinstance(current, BaseModel):
            if seg not in _model_fields(current):
                return None
            current = getattr(current, seg)
        else:
            return None
    return current


def resolve_path(data: Any, path: str) -> Any:
    """Strict variant of :func:`get_path`.

    Malformed paths, names a model does not declare and traversal into a
    scalar raise PathError. A missing list slot or mapping key is a miss, not
    an error, and returns None.
    """
    segments = parse_path(path)
    current: Any = data
    for pos, seg in enumerate(segments):
        if current is None:
            return None
        if isinstance(seg, int):
            if not isinstance(current, (list, tuple)):
                raise PathError(
                    f"'{format_path(segments[:pos]) or '<root>'}' is not a list in path '{path}'", path=path
                )
            if seg >= len(current):
                return None
            current = current[seg]
        elif isinstance(current, dict):
            current = current.get(seg)
        elif isinstance(current, BaseModel):
            if seg not in _model_fields(current):
                raise PathError(f"Unknown field '{seg}' in path '{path}'", path=path)
            current = getattr(current, seg)
        else:
            raise PathError(f"Cannot traverse into a scalar at '{seg}' in path '{path}'", path=path)
    return current


def set_path(data: Any, path: str, value: Any) -> Any:
    """Return a copy of ``data`` with ``value`` written at ``path``.

    Only the containers along the path are copied; untouched siblings are
    shared with the input, which is never mutated. Models are re-validated so
    enum and string coercion applies to the written value.
    """
    segments = parse_path(path)
    if not segments:
        raise PathError("Cannot replace the root object", path=path)
    return _assign(data, segments, 0, value, path)


def _assign(node: Any, segments: list[Segment], pos: int, value: Any, path: str) -> Any:
    if pos == len(segments):
        return value
    seg = segments[pos]
    where = format_path(segments[: pos + 1])

    if isinstance(seg, int):
        if not isinstance(node, (list, tuple)):
            raise PathError(f"'{where}' indexes a non-list in path '{path}'", path=path)
        if seg >= len(node):
            raise PathError(f"Index {seg} out of range ({len(node)} items) in path '{path}'", path=path)
        items = list(node)
        items[seg] = _assign(items[seg], segments, pos + 1, value, path)
        return tuple(items) if isinstance(node, tuple) else items

    if isinstance(node, BaseModel):
        fields = _model_fields(node)
        if seg not in fields:
            raise PathError(f"Unknown field '{seg}' in path '{path}'", path=path)
        payload = {name: getattr(node, name) for name in fields}
        payload[seg] = _assign(payload[seg], segments, pos + 1, value, path)
        try:
            return type(node).model_validate(payload)
        except ValidationError as exc:
            raise PathError(f"Value rejected at '{where}': {exc.errors()[0]['msg']}", path=path) from exc

    if isinstance(node, dict):
        if pos + 1 < len(segments) and node.get(seg) is None:
            raise PathError(f"Missing key '{where}' in path '{path}'", path=path)
        updated = dict(node)
        updated[seg] = _assign(node.get(seg), segments, pos + 1, value, path)
        return updated

    raise PathError(f"Cannot traverse into a scalar at '{where}' in path '{path}'", path=path)


__all__ = ["Segment", "format_path", "get_path", "parse_path", "resolve_path", "set_path"]
