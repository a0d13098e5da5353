from dataclasses import dataclass, field, replace
from enum import Enum
import time
from typing import Any, Self, TypeAlias
import uuid


__all__ = (
    'FileTree',
    'LogEntry',
    'Project',
    'ProjectKind',
    'ProjectMetadata',
    'ProjectSettings',
    'Severity',
)


FileTree: TypeAlias = dict[str, bytes]


def now_millis() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class ProjectKind(Enum):
    EMBEDDED_DOCUMENT = 'embedded-document'
    EXTERNAL_REFERENCE = 'external-reference'
    RAW_SNIPPET = 'raw-snippet'


class Severity(Enum):
    INFO = 'info'
    WARN = 'warn'
    ERROR = 'error'
    DEBUG = 'debug'

    @classmethod
    def parse(cls, value: object) -> 'Severity':
        """Map a console method name onto a severity, defaulting to info."""
        if value == 'warning':
            return cls.WARN
        try:
            return cls(value)
        except ValueError:
            return cls.INFO


@dataclass(frozen=True)
class ProjectSettings:
    credential: 'None | str' = None
    inject_console: bool = True

    def to_json(self) -> 'dict[str, Any]':
        return {'credential': self.credential, 'inject_console': self.inject_console}

    @classmethod
    def from_json(cls, data: 'dict[str, Any]') -> Self:
        return cls(
            credential=data.get('credential'),
            inject_console=bool(data.get('inject_console', True)),
        )


@dataclass
class ProjectMetadata:
    """Everything about a project but its files."""
    id: str
    name: str
    kind: ProjectKind
    description: str = ''
    created_at: int = field(default_factory=now_millis)
    entry: str = ''
    external_url: 'None | str' = None
    settings: ProjectSettings = field(default_factory=ProjectSettings)
    pinned: bool = False

    def to_json(self) -> 'dict[str, Any]':
        return {
            'id': self.id,
            'name': self.name,
            'kind': self.kind.value,
            'description': self.description,
            'created_at': self.created_at,
            'entry': self.entry,
            'external_url': self.external_url,
            'settings': self.settings.to_json(),
            'pinned': self.pinned,
        }

    @staticmethod
    def fields_from_json(data: 'dict[str, Any]') -> 'dict[str, Any]':
        return dict(
            id=data['id'],
            name=data['name'],
            kind=ProjectKind(data['kind']),
            description=data.get('description', ''),
            created_at=int(data['created_at']),
            entry=data.get('entry', ''),
            external_url=data.get('external_url'),
            settings=ProjectSettings.from_json(data.get('settings', {})),
            pinned=bool(data.get('pinned', False)),
        )

    @classmethod
    def from_json(cls, data: 'dict[str, Any]') -> Self:
        return cls(**cls.fields_from_json(data))


@dataclass
class Project(ProjectMetadata):
    """
    A project. Embedded documents and raw snippets carry a file tree, with
    only embedded documents also having an entry path. External references
    carry an address instead.
    """
    files: FileTree = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind is ProjectKind.EXTERNAL_REFERENCE:
            if not self.external_url or self.files:
                raise ValueError(
                    f'external reference "{self.name}" needs an address and no files')
        elif self.external_url is not None:
            raise ValueError(f'project "{self.name}" has files and an address')
        elif self.kind is ProjectKind.EMBEDDED_DOCUMENT and not self.entry:
            raise ValueError(f'embedded document "{self.name}" has no entry')

    def metadata(self) -> ProjectMetadata:
        return ProjectMetadata(
            **{k: v for k, v in vars(self).items() if k != 'files'})

    def with_settings(self, **changes: Any) -> Self:
        self.settings = replace(self.settings, **changes)
        return self

    def toggle_pin(self) -> Self:
        self.pinned = not self.pinned
        return self


@dataclass(frozen=True)
class LogEntry:
    project_id: str
    severity: Severity
    message: str
    timestamp: int = field(default_factory=now_millis)
    stack: 'None | str' = None
    id: str = field(default_factory=new_id)

    def to_json(self) -> 'dict[str, Any]':
        data = {
            'id': self.id,
            'project_id': self.project_id,
            'timestamp': self.timestamp,
            'severity': self.severity.value,
            'message': self.message,
        }
        if self.stack is not None:
            data['stack'] = self.stack
        return data

    @classmethod
    def from_json(cls, data: 'dict[str, Any]') -> Self:
        return cls(
            project_id=data['project_id'],
            severity=Severity(data['severity']),
            message=data['message'],
            timestamp=int(data['timestamp']),
            stack=data.get('stack'),
            id=data['id'],
        )
