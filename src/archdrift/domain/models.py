"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from archdrift.constants import DEFAULT_NOTE

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192
_MAX_PATH = 4096
_MAX_EXCLUSIONS = 4096


class DomainValidationError(ValueError):
    """Raised when a payload does not satisfy a domain model contract."""


class JobRequestError(DomainValidationError):
    """Raised when a job request is malformed or missing required fields."""


class PathStatus(StrEnum):
    VALID = "Valid"
    EXCLUDED = "Excluded"
    INVALID = "Invalid"


class JobState(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


def _fail(path: str, message: str) -> NoReturn:
    raise DomainValidationError(f"{path}: {message}")


def canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_path_key(value: object, path: str) -> str:
    parsed = _as_str(value, path, max_len=_MAX_PATH)
    if "\x00" in parsed:
        _fail(path, "must not contain NUL bytes")
    return parsed


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if isinstance(value, CanonicalModel):
        return {
            item.name: _serialize_value(getattr(value, item.name), f"{path}.{item.name}")
            for item in fields(cast("type", type(value)))
            if item.repr
        }
    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


@dataclass(frozen=True, slots=True)
class PathNode(CanonicalModel):
    """One folder of the checked-out tree, as persisted for a project."""

    project: str
    full_path: str
    visited: bool = False
    excluded: bool = False
    note: str = DEFAULT_NOTE

    def __post_init__(self) -> None:
        _as_str(self.project, "PathNode.project", strip=False)
        _as_path_key(self.full_path, "PathNode.full_path")
        _as_bool(self.visited, "PathNode.visited")
        _as_bool(self.excluded, "PathNode.excluded")
        if not isinstance(self.note, str):
            _fail("PathNode.note", f"expected string, got {type(self.note).__name__}")


@dataclass(frozen=True, slots=True)
class ExcludedPath(CanonicalModel):
    path: str
    note: str

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ExcludedPath:
        parsed = _expect_object(data, "ExcludedPath", required={"path", "note"})
        return cls(
            path=_as_path_key(parsed["path"], "ExcludedPath.path"),
            note=_as_str(parsed["note"], "ExcludedPath.note", min_len=0),
        )


@dataclass(frozen=True, slots=True)
class GitHubSource(CanonicalModel):
    username: str
    password: str = field(repr=False)
    organization: str
    repository: str
    branch: str

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> GitHubSource:
        parsed = _expect_object(
            data,
            "github",
            required={"username", "password", "organization", "repository", "branch"},
        )
        repository = _as_str(parsed["repository"], "github.repository", max_len=256)
        if "/" in repository or "\\" in repository or repository in {".", ".."}:
            _fail("github.repository", "must be a bare repository name")
        return cls(
            username=_as_str(parsed["username"], "github.username", max_len=256),
            password=_as_str(parsed["password"], "github.password", strip=False),
            organization=_as_str(parsed["organization"], "github.organization", max_len=256),
            repository=repository,
            branch=_as_str(parsed["branch"], "github.branch", max_len=256),
        )


@dataclass(frozen=True, slots=True)
class StructurizrSource(CanonicalModel):
    workspace_id: int
    api_key: str = field(repr=False)
    secret: str = field(repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> StructurizrSource:
        parsed = _expect_object(data, "structurizr", required={"workSpaceId", "apiKey", "secret"})
        return cls(
            workspace_id=_as_int(parsed["workSpaceId"], "structurizr.workSpaceId", minimum=1),
            api_key=_as_str(parsed["apiKey"], "structurizr.apiKey", strip=False),
            secret=_as_str(parsed["secret"], "structurizr.secret", strip=False),
        )


@dataclass(frozen=True, slots=True)
class JobRequest(CanonicalModel):
    """A reconciliation job as delivered on the request channel.

    Secrets stay out of ``repr`` and ``to_dict``; ``to_dict`` is safe to log.
    """

    project_name: str
    github: GitHubSource
    structurizr: StructurizrSource
    excluded_paths: tuple[ExcludedPath, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> JobRequest:
        try:
            parsed = _expect_object(
                data,
                "JobRequest",
                required={"github", "projectName", "structurizr"},
                optional={"excludedPaths"},
            )
            raw_exclusions = _as_sequence(parsed.get("excludedPaths", []), "excludedPaths")
            if len(raw_exclusions) > _MAX_EXCLUSIONS:
                _fail("excludedPaths", f"too many items (>{_MAX_EXCLUSIONS})")
            exclusions: list[ExcludedPath] = []
            for index, item in enumerate(raw_exclusions):
                if not isinstance(item, Mapping):
                    _fail(f"excludedPaths[{index}]", "expected object")
                exclusions.append(ExcludedPath.from_dict(item))
            github = parsed["github"]
            structurizr = parsed["structurizr"]
            if not isinstance(github, Mapping):
                _fail("github", "expected object")
            if not isinstance(structurizr, Mapping):
                _fail("structurizr", "expected object")
            return cls(
                project_name=_as_str(parsed["projectName"], "projectName", max_len=256),
                github=GitHubSource.from_dict(github),
                structurizr=StructurizrSource.from_dict(structurizr),
                excluded_paths=tuple(exclusions),
            )
        except JobRequestError:
            raise
        except DomainValidationError as exc:
            raise JobRequestError(str(exc)) from exc


@dataclass(frozen=True, slots=True)
class JobStatusEvent(CanonicalModel):
    """Terminal status published once per job on the status channel."""

    job_id: str
    project: str
    status: JobState
    error_kind: str | None = None
    error: str | None = None
    node_count: int | None = None
    counts: dict[str, int] | None = None
    unmatched_locators: tuple[str, ...] = ()
    unmatched_exclusions: tuple[str, ...] = ()
    report_location: str | None = None
    attempts: int = 1


__all__ = [
    "CanonicalModel",
    "DomainValidationError",
    "ExcludedPath",
    "GitHubSource",
    "JSONScalar",
    "JSONValue",
    "JobRequest",
    "JobRequestError",
    "JobState",
    "JobStatusEvent",
    "PathNode",
    "PathStatus",
    "StructurizrSource",
    "canonical_json",
]
