from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

import yaml

from .errors import CatalogError
from .models import ImageSpec, JobSpec

T = TypeVar("T")


def load_document(path: Path) -> Any:
    """Parse a JSON document, falling back to YAML for anything else."""

    try:
        raw_text = path.read_text()
    except OSError as exc:
        raise CatalogError(f"Cannot read {path}: {exc}") from exc
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError:
        pass
    try:
        return yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise CatalogError(f"{path} is neither valid JSON nor YAML: {exc}") from exc


def _index(entries: Iterable[Dict[str, Any]], factory: Callable[[Dict[str, Any]], T], kind: str) -> Dict[str, T]:
    indexed: Dict[str, T] = {}
    for entry in entries:
        try:
            spec = factory(entry)
        except (KeyError, TypeError, AttributeError) as exc:
            raise CatalogError(f"Malformed {kind} entry {entry!r}: {exc}") from exc
        spec_id = getattr(spec, "id")
        if spec_id in indexed:
            raise CatalogError(f"Duplicate {kind} id: {spec_id}")
        indexed[spec_id] = spec
    return indexed


@dataclass
class Catalog:
    """Loader for the jobs and images declared in the catalog file."""

    path: Path
    _jobs: Optional[Dict[str, JobSpec]] = None
    _images: Optional[Dict[str, ImageSpec]] = None

    @classmethod
    def from_file(cls, path: str | Path) -> "Catalog":
        return cls(path=Path(path))

    def _load(self) -> None:
        if self._jobs is not None and self._images is not None:
            return

        raw_data = load_document(self.path)
        if not isinstance(raw_data, dict) or not ({"jobs", "images"} & set(raw_data)):
            raise CatalogError("Catalog must contain a top-level 'jobs' or 'images' list")

        self._jobs = _index(raw_data.get("jobs") or [], JobSpec.from_dict, "job")
        self._images = _index(raw_data.get("images") or [], ImageSpec.from_dict, "image")

    @property
    def jobs(self) -> Dict[str, JobSpec]:
        self._load()
        assert self._jobs is not None
        return self._jobs

    @property
    def images(self) -> Dict[str, ImageSpec]:
        self._load()
        assert self._images is not None
        return self._images

    def iter_jobs(self) -> Iterable[JobSpec]:
        return self.jobs.values()

    def iter_images(self) -> Iterable[ImageSpec]:
        return self.images.values()

    def get_job(self, job_id: str) -> JobSpec:
        try:
            return self.jobs[job_id]
        except KeyError as exc:
            raise CatalogError(f"Unknown job id: {job_id}") from exc

    def get_image(self, image_id: str) -> ImageSpec:
        try:
            return self.images[image_id]
        except KeyError as exc:
            raise CatalogError(f"Unknown image id: {image_id}") from exc

    def add_jobs(self, jobs: List[JobSpec]) -> None:
        for job in jobs:
            if job.id in self.jobs:
                raise CatalogError(f"Duplicate job id: {job.id}")
            self.jobs[job.id] = job

    def __len__(self) -> int:
        return len(self.jobs) + len(self.images)

    def __contains__(self, spec_id: str) -> bool:
        return spec_id in self.jobs or spec_id in self.images
