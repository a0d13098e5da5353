"""
Persistence of projects, their logs, and the key-value storage of running
documents. `ProjectStore` is the interface the rest of the package relies
on; `DirectoryStore` implements it on the local file system with one
directory per project:

    <root>/<id>/project.json     metadata and the list of files
    <root>/<id>/files/<path>     the file tree
    <root>/<id>/logs.jsonl       log entries, one JSON object per line
    <root>/<id>/storage/<key>.json
                                 the document's key-value storage

Deleting a project removes its directory and hence also its logs and storage.
"""

import json
import logging
from pathlib import Path
import shutil
from typing import Any, Protocol
from urllib.parse import quote, unquote

from .project import LogEntry, Project, ProjectMetadata


__all__ = ('DirectoryStore', 'ProjectStorage', 'ProjectStore')

logger = logging.getLogger('hakoniwa.store')


class ProjectStorage:
    """A project's key-value storage. Values are anything JSON can encode."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def __repr__(self) -> str:
        return f'<hakoniwa-storage {self._directory}>'

    def _path(self, key: str) -> Path:
        return self._directory / f'{quote(key, safe="")}.json'

    def get(self, key: str) -> Any:
        try:
            return json.loads(self._path(key).read_text('utf8'))
        except FileNotFoundError:
            return None

    def set(self, key: str, value: Any) -> None:
        data = json.dumps(value)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(data, 'utf8')

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def clear(self) -> None:
        shutil.rmtree(self._directory, ignore_errors=True)

    def keys(self) -> 'list[str]':
        if not self._directory.is_dir():
            return []
        return sorted(
            unquote(path.name[:-5])
            for path in self._directory.iterdir()
            if path.name.endswith('.json')
        )

    def get_all(self) -> 'dict[str, Any]':
        return {key: self.get(key) for key in self.keys()}


class ProjectStore(Protocol):
    def get(self, project_id: str) -> 'None | Project':
        ...

    def put(self, project: Project) -> None:
        ...

    def update(self, metadata: ProjectMetadata) -> None:
        ...

    def delete(self, project_id: str) -> None:
        ...

    def list(self) -> 'list[ProjectMetadata]':
        ...

    def append_log(self, entry: LogEntry) -> None:
        ...

    def logs_for(self, project_id: str) -> 'list[LogEntry]':
        ...

    def clear_logs(self, project_id: str) -> None:
        ...

    def storage(self, project_id: str) -> ProjectStorage:
        ...


class DirectoryStore:
    def __init__(self, root: 'str | Path') -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f'<hakoniwa-store {self._root}>'

    def _directory(self, project_id: str) -> Path:
        if not project_id or '/' in project_id or '\\' in project_id or project_id in ('.', '..'):
            raise ValueError(f'invalid project id "{project_id}"')
        return self._root / project_id

    # ----------------------------------------------------------------------------------

    def get(self, project_id: str) -> 'None | Project':
        directory = self._directory(project_id)
        try:
            data = json.loads((directory / 'project.json').read_text('utf8'))
        except FileNotFoundError:
            return None

        files = {}
        for key in data.get('files', []):
            try:
                files[key] = (directory / 'files' / key).read_bytes()
            except FileNotFoundError:
                logger.warning('project %s is missing file "%s"', project_id, key)
        return Project(**ProjectMetadata.fields_from_json(data), files=files)

    def put(self, project: Project) -> None:
        # A put replaces all files, just like a fresh import does.
        directory = self._directory(project.id)
        files_dir = directory / 'files'
        shutil.rmtree(files_dir, ignore_errors=True)

        for key, content in project.files.items():
            path = (files_dir / key).resolve()
            if not path.is_relative_to(files_dir.resolve()):
                raise ValueError(f'file "{key}" escapes project {project.id}')
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        self._write_metadata(project.metadata(), sorted(project.files))

    def update(self, metadata: ProjectMetadata) -> None:
        directory = self._directory(metadata.id)
        try:
            data = json.loads((directory / 'project.json').read_text('utf8'))
        except FileNotFoundError:
            raise KeyError(f'no project with id {metadata.id}') from None
        self._write_metadata(metadata, data.get('files', []))

    def _write_metadata(self, metadata: ProjectMetadata, files: 'list[str]') -> None:
        directory = self._directory(metadata.id)
        directory.mkdir(parents=True, exist_ok=True)
        data = metadata.to_json()
        data['files'] = files
        (directory / 'project.json').write_text(json.dumps(data, indent=2), 'utf8')

    def delete(self, project_id: str) -> None:
        shutil.rmtree(self._directory(project_id), ignore_errors=True)

    def list(self) -> 'list[ProjectMetadata]':
        projects = []
        for path in self._root.glob('*/project.json'):
            projects.append(ProjectMetadata.from_json(json.loads(path.read_text('utf8'))))
        return sorted(projects, key=lambda p: p.created_at, reverse=True)

    # ----------------------------------------------------------------------------------

    def append_log(self, entry: LogEntry) -> None:
        directory = self._directory(entry.project_id)
        if not directory.is_dir():
            raise KeyError(f'no project with id {entry.project_id}')
        with open(directory / 'logs.jsonl', mode='a', encoding='utf8') as file:
            file.write(json.dumps(entry.to_json()) + '\n')

    def logs_for(self, project_id: str) -> 'list[LogEntry]':
        try:
            text = (self._directory(project_id) / 'logs.jsonl').read_text('utf8')
        except FileNotFoundError:
            return []
        entries = [LogEntry.from_json(json.loads(line)) for line in text.splitlines() if line]
        return sorted(entries, key=lambda e: e.timestamp)

    def clear_logs(self, project_id: str) -> None:
        (self._directory(project_id) / 'logs.jsonl').unlink(missing_ok=True)

    def storage(self, project_id: str) -> ProjectStorage:
        return ProjectStorage(self._directory(project_id) / 'storage')
